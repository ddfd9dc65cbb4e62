"""Shared test fixtures for the Disc Backup Orchestrator."""

import os
import shutil
import tempfile
from pathlib import Path

import pytest

from dbo.config import clear_config_cache


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test isolation."""
    dir_path = tempfile.mkdtemp()
    yield Path(dir_path)
    shutil.rmtree(dir_path, ignore_errors=True)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep tests away from the user's ~/.dbo and DBO_* environment."""
    for var in list(os.environ):
        if var.startswith("DBO_"):
            monkeypatch.delenv(var)
    monkeypatch.setenv("DBO_DATA_DIR", str(tmp_path / "dbo-data"))
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def dvd_root(temp_dir: Path) -> Path:
    """A mounted-DVD lookalike: VIDEO_TS with IFO, BUP and VOB files."""
    root = temp_dir / "dvd"
    video_ts = root / "VIDEO_TS"
    video_ts.mkdir(parents=True)
    (video_ts / "VIDEO_TS.IFO").write_bytes(b"DVDVIDEO-VMG" + bytes(500))
    (video_ts / "VIDEO_TS.BUP").write_bytes(b"DVDVIDEO-VMG" + bytes(500))
    (video_ts / "VTS_01_0.IFO").write_bytes(b"DVDVIDEO-VTS" + bytes(300))
    (video_ts / "VTS_01_1.VOB").write_bytes(bytes(2048))
    (video_ts / "readme.txt").write_text("not part of the fingerprint")
    return root


@pytest.fixture
def bluray_root(temp_dir: Path) -> Path:
    """A mounted-Blu-ray lookalike with title, content id and disc id."""
    root = temp_dir / "bluray"
    (root / "BDMV" / "PLAYLIST").mkdir(parents=True)
    (root / "BDMV" / "STREAM").mkdir()
    meta = root / "BDMV" / "META" / "DL"
    meta.mkdir(parents=True)
    (meta / "bdmt_fra.xml").write_text(
        "<disclib><di:discinfo><di:title><di:name>Le Film</di:name>"
        "</di:title></di:discinfo></disclib>"
    )
    (meta / "bdmt_eng.xml").write_text(
        "<disclib><di:discinfo><di:title><di:name>The Movie</di:name>"
        "</di:title></di:discinfo></disclib>"
    )
    aacs = root / "AACS"
    aacs.mkdir()
    (aacs / "mcmf.xml").write_text(
        '<mcmf contentID="0123456789abcdef0123456789abcdef"></mcmf>'
    )
    cert = root / "CERTIFICATE"
    cert.mkdir()
    (cert / "id.bdmv").write_bytes(
        bytes(40) + bytes.fromhex("00001234") + bytes(range(16))
    )
    return root
