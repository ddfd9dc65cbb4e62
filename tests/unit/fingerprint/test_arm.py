"""Tests for fingerprint/arm.py."""

import json
from pathlib import Path

import httpx
import pytest

from dbo.fingerprint.arm import ArmDatabase
from dbo.fingerprint.models import ArmMatch

DATABASE_URL = "https://example.invalid/database.json"


def _transport(payload=None, status: int = 200, raw: bytes | None = None):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if raw is not None:
            return httpx.Response(status, content=raw)
        return httpx.Response(status, json=payload)

    transport = httpx.MockTransport(handler)
    transport.requests = requests
    return transport


def _database(cache_file: Path, transport=None) -> ArmDatabase:
    return ArmDatabase(cache_file, database_url=DATABASE_URL, transport=transport)


@pytest.fixture
def cache_file(temp_dir: Path) -> Path:
    return temp_dir / "arm" / "dvd-crc64.json"


@pytest.mark.asyncio
class TestLocalCache:
    """Tests for lookup, add_to_cache, stats and clear."""

    async def test_empty_cache(self, cache_file: Path) -> None:
        db = _database(cache_file)
        assert await db.lookup("8a2b48b0fdb13115") is None
        stats = await db.stats()
        assert stats.entries == 0
        assert stats.last_sync is None
        assert stats.cache_file == cache_file

    async def test_add_then_lookup_is_case_insensitive(self, cache_file: Path) -> None:
        db = _database(cache_file)
        await db.add_to_cache("8A2B48B0FDB13115", ArmMatch(title="Movie", year=2001))

        match = await db.lookup("8a2b48b0fdb13115")

        assert match.title == "Movie"
        assert match.year == 2001
        assert match.source == "local"
        assert match.confidence == 0.99

    async def test_persisted_across_instances(self, cache_file: Path) -> None:
        await _database(cache_file).add_to_cache("abc", ArmMatch(title="Kept"))

        data = json.loads(cache_file.read_text())
        assert data["version"] == 1
        assert data["entries"]["abc"]["title"] == "Kept"
        assert "addedAt" in data["entries"]["abc"]

        match = await _database(cache_file).lookup("ABC")
        assert match.title == "Kept"

    async def test_add_replaces_existing(self, cache_file: Path) -> None:
        db = _database(cache_file)
        await db.add_to_cache("abc", ArmMatch(title="Old"))
        await db.add_to_cache("abc", ArmMatch(title="New", media_type="series"))

        match = await db.lookup("abc")
        assert match.title == "New"
        assert match.media_type == "series"

    async def test_corrupt_file_is_treated_as_empty(self, cache_file: Path) -> None:
        cache_file.parent.mkdir(parents=True)
        cache_file.write_text("{not json")

        db = _database(cache_file)
        assert (await db.stats()).entries == 0

        await db.add_to_cache("abc", ArmMatch(title="Fresh"))
        assert json.loads(cache_file.read_text())["entries"]["abc"]["title"] == "Fresh"

    async def test_clear(self, cache_file: Path) -> None:
        db = _database(cache_file)
        await db.add_to_cache("abc", ArmMatch(title="Gone"))

        await db.clear()

        assert not cache_file.exists()
        assert await db.lookup("abc") is None
        assert (await db.stats()).entries == 0

    async def test_clear_without_file(self, cache_file: Path) -> None:
        await _database(cache_file).clear()
        assert not cache_file.exists()


@pytest.mark.asyncio
class TestSync:
    """Tests for ArmDatabase.sync against a mocked HTTP transport."""

    async def test_adds_only_new_entries(self, cache_file: Path) -> None:
        transport = _transport(
            {
                "entries": {
                    "AAA": {"title": "Remote One", "year": "1999", "type": "movie"},
                    "bbb": {"title": "Local Wins"},
                    "ccc": {"title": ""},
                    "ddd": "not a dict",
                    "eee": {"title": "Bad Year", "year": "n/a"},
                }
            }
        )
        db = _database(cache_file, transport)
        await db.add_to_cache("bbb", ArmMatch(title="Mine"))

        result = await db.sync()

        assert result.success
        assert result.added == 2
        assert transport.requests[0].url == DATABASE_URL
        one = await db.lookup("aaa")
        assert one.title == "Remote One"
        assert one.year == 1999
        assert one.source == "arm"
        assert (await db.lookup("bbb")).title == "Mine"
        assert (await db.lookup("eee")).year is None
        assert await db.lookup("ccc") is None
        stats = await db.stats()
        assert stats.entries == 3
        assert stats.last_sync is not None

    async def test_unknown_fields_survive_a_save(self, cache_file: Path) -> None:
        entry = {"title": "T", "imdb": "tt0133093"}
        transport = _transport({"entries": {"aaa": entry}})
        db = _database(cache_file, transport)

        await db.sync()

        data = json.loads(cache_file.read_text())
        assert data["entries"]["aaa"]["imdb"] == "tt0133093"
        assert data["lastSync"] is not None

    async def test_http_error(self, cache_file: Path) -> None:
        db = _database(cache_file, _transport({}, status=503))

        result = await db.sync()

        assert not result.success
        assert result.error == "HTTP 503"
        assert not cache_file.exists()

    async def test_invalid_json(self, cache_file: Path) -> None:
        result = await _database(cache_file, _transport(raw=b"<html>")).sync()
        assert not result.success
        assert result.error == "Invalid JSON response"

    async def test_invalid_format(self, cache_file: Path) -> None:
        result = await _database(cache_file, _transport({"items": []})).sync()
        assert not result.success
        assert result.error == "Invalid database format"

    async def test_network_error(self, cache_file: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        db = _database(cache_file, httpx.MockTransport(handler))
        result = await db.sync()

        assert not result.success
        assert "connection refused" in result.error
