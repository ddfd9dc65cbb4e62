"""Tests for the HTTP API served by dbo.server.app."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
import pytest_asyncio
from fakes import (
    FakeAdapter,
    FakeAdapterFactory,
    FakePlatform,
    make_runtime,
    platform_error,
)

from dbo.server.app import create_app

pytestmark = pytest.mark.asyncio


def _platform(dvd_root: Path, **kwargs) -> FakePlatform:
    return FakePlatform(
        labels={"E:": "MOVIE_ONE", "G:": "SECOND_DISC"},
        sizes={"E:": 7_500_000_000, "G:": 25_000_000_000},
        roots={"E:": dvd_root},
        **kwargs,
    )


@pytest.fixture
def platform(dvd_root: Path) -> FakePlatform:
    return _platform(dvd_root)


@pytest.fixture
def factory(temp_dir: Path) -> FakeAdapterFactory:
    return FakeAdapterFactory(backup_dir=temp_dir / "discs" / "backup")


@pytest.fixture
def runtime(temp_dir: Path, platform: FakePlatform, factory: FakeAdapterFactory):
    return make_runtime(temp_dir / "discs", platform=platform, factory=factory)


@pytest.fixture
def app(runtime):
    app = create_app(runtime)
    app["sse_heartbeat_interval"] = 0.05
    return app


@pytest_asyncio.fixture
async def client(aiohttp_client, app):
    return await aiohttp_client(app)


async def _read_sse(response, until: str, limit: int = 200) -> list[tuple[str, dict]]:
    """Collect (event, data) pairs up to and including the event named until."""
    events: list[tuple[str, dict]] = []
    name = None
    for _ in range(limit):
        raw = await asyncio.wait_for(response.content.readline(), timeout=5)
        line = raw.decode().rstrip("\n")
        if line.startswith("event: "):
            name = line[len("event: ") :]
        elif line.startswith("data: "):
            events.append((name, json.loads(line[len("data: ") :])))
            if name == until:
                return events
    raise AssertionError(f"{until} not received")


class TestHealth:
    """Tests for GET /health."""

    async def test_healthy(self, client) -> None:
        resp = await client.get("/health")

        assert resp.status == 200
        data = await resp.json()
        assert data["status"] == "healthy"
        assert data["backups_running"] == 0
        assert data["shutting_down"] is False
        assert data["version"]

    async def test_shutting_down(self, client, app) -> None:
        app["lifecycle"].initiate_shutdown()

        resp = await client.get("/health")

        assert resp.status == 503
        assert (await resp.json())["status"] == "shutting_down"


class TestDrives:
    """Tests for the drive endpoints."""

    async def test_list_drives(self, client) -> None:
        resp = await client.get("/api/drives")

        assert resp.status == 200
        data = await resp.json()
        drives = data["drives"]
        assert [d["drive_letter"] for d in drives] == ["E:", "G:"]
        assert drives[0]["disc_type"] == "dvd"
        assert drives[0]["tool_disc_index"] == 0
        assert drives[0]["description"] == "Optical Drive (E:)"
        assert drives[1]["disc_type"] == "bluray"
        assert drives[1]["tool_disc_index"] == 2
        assert data["errors"] == []
        assert data["last_error"] is None

    async def test_scan_errors_are_reported(self, dvd_root, temp_dir, aiohttp_client):
        failures = {"list_drive_letters": platform_error()}
        platform = _platform(dvd_root, failures=failures)
        client = await aiohttp_client(
            create_app(make_runtime(temp_dir / "discs", platform=platform))
        )

        data = await (await client.get("/api/drives")).json()
        assert data["drives"] == []
        assert data["last_error"]

        errors = await (await client.get("/api/drives/errors")).json()
        assert errors["last_error"] == data["last_error"]

    async def test_eject(self, client, platform) -> None:
        resp = await client.post("/api/drives/e/eject")

        assert resp.status == 200
        assert await resp.json() == {"success": True, "drive_letter": "E:"}
        assert platform.ejected == ["E:"]

    @pytest.mark.parametrize("letter", ["EE", "1", "E%3A%26calc"])
    async def test_eject_rejects_bad_letter(self, client, platform, letter) -> None:
        resp = await client.post(f"/api/drives/{letter}/eject")

        assert resp.status == 400
        assert (await resp.json())["code"] == "INVALID_PARAMETER"
        assert platform.ejected == []

    async def test_eject_failure(self, dvd_root, temp_dir, aiohttp_client) -> None:
        platform = _platform(dvd_root, failures={"eject": platform_error("stuck")})
        client = await aiohttp_client(
            create_app(make_runtime(temp_dir / "discs", platform=platform))
        )

        resp = await client.post("/api/drives/E:/eject")

        assert resp.status == 500
        body = await resp.json()
        assert body["code"] == "OPERATION_FAILED"
        assert "stuck" in body["error"]


class TestBackups:
    """Tests for the backup endpoints."""

    async def test_start_requires_scan(self, client) -> None:
        resp = await client.post("/api/backups", json={"drive_id": 0})

        assert resp.status == 404
        assert (await resp.json())["code"] == "NOT_FOUND"

    async def test_start_and_complete(self, client, runtime, factory) -> None:
        await client.get("/api/drives")
        queue = runtime.event_bus.subscribe_queue()

        resp = await client.post("/api/backups", json={"drive_id": 0})

        assert resp.status == 202
        data = await resp.json()
        assert data["success"] is True
        assert data["started"] is True
        assert data["fingerprint"]["type"] == "crc64"
        assert len(data["fingerprint"]["crc64"]) == 16

        await runtime.orchestrator.wait_idle()
        names = []
        while not queue.empty():
            names.append(queue.get_nowait().name)
        assert names == ["backup-started", "backup-complete"]
        assert factory.created[0].calls == [(0, "MOVIE_ONE", 7_500_000_000)]

    @pytest.mark.parametrize(
        ("body", "code"),
        [
            ("{not json", "INVALID_JSON"),
            ("[1, 2]", "INVALID_REQUEST"),
            ('{"drive_id": "0"}', "INVALID_PARAMETER"),
            ('{"drive_id": true}', "INVALID_PARAMETER"),
        ],
    )
    async def test_start_validates_body(self, client, body: str, code: str) -> None:
        resp = await client.post(
            "/api/backups", data=body, headers={"Content-Type": "application/json"}
        )

        assert resp.status == 400
        assert (await resp.json())["code"] == code

    async def test_duplicate_start_conflicts(self, client, factory) -> None:
        adapter = FakeAdapter(hold=True)
        factory.push(adapter)
        await client.get("/api/drives")

        first = await client.post("/api/backups", json={"drive_id": 0})
        second = await client.post("/api/backups", json={"drive_id": 0})

        assert first.status == 202
        assert second.status == 409
        assert (await second.json())["code"] == "RESOURCE_CONFLICT"

        listing = await (await client.get("/api/backups")).json()
        assert [b["drive_id"] for b in listing["backups"]] == [0]
        assert listing["backups"][0]["state"] == "running"
        adapter.release()

    async def test_adapter_failure(self, client, factory) -> None:
        factory.error = RuntimeError("makemkvcon not found")
        await client.get("/api/drives")

        resp = await client.post("/api/backups", json={"drive_id": 0})

        assert resp.status == 500
        body = await resp.json()
        assert body["code"] == "OPERATION_FAILED"
        assert body["error"] == "makemkvcon not found"
        assert body["details"]["success"] is False

    async def test_cancel(self, client, runtime, factory) -> None:
        adapter = FakeAdapter(hold=True)
        factory.push(adapter)
        await client.get("/api/drives")
        await client.post("/api/backups", json={"drive_id": 0})

        resp = await client.delete("/api/backups/0")

        assert resp.status == 200
        assert await resp.json() == {"success": True, "drive_id": 0}
        assert not runtime.orchestrator.is_backup_running(0)
        await runtime.orchestrator.wait_idle()
        assert adapter.cancel_calls == 1

    async def test_cancel_unknown(self, client) -> None:
        resp = await client.delete("/api/backups/5")
        assert resp.status == 404

    async def test_cancel_invalid_id(self, client) -> None:
        resp = await client.delete("/api/backups/abc")
        assert resp.status == 400
        assert (await resp.json())["code"] == "INVALID_PARAMETER"

    async def test_refused_while_shutting_down(self, client, app) -> None:
        await client.get("/api/drives")
        app["lifecycle"].initiate_shutdown()

        resp = await client.post("/api/backups", json={"drive_id": 0})

        assert resp.status == 503
        assert (await resp.json())["code"] == "SHUTTING_DOWN"


class TestEventStream:
    """Tests for GET /api/events."""

    async def test_streams_backup_events(self, client) -> None:
        await client.get("/api/drives")
        stream = await client.get("/api/events")
        assert stream.status == 200
        assert stream.headers["Content-Type"].startswith("text/event-stream")

        connected = await _read_sse(stream, until="connected")
        assert connected[0][1]["subscribers"] >= 1

        await client.post("/api/backups", json={"drive_id": 1})
        events = await _read_sse(stream, until="backup-complete")

        names = [name for name, _ in events if name != "heartbeat"]
        assert names == ["backup-started", "backup-complete"]
        complete = events[-1][1]
        assert complete["drive_id"] == 1
        assert complete["success"] is True
        stream.close()

    async def test_heartbeat(self, client) -> None:
        stream = await client.get("/api/events")

        events = await _read_sse(stream, until="heartbeat")

        assert events[-1][1]["timestamp"]
        stream.close()

    async def test_close_on_shutdown(self, client, app) -> None:
        stream = await client.get("/api/events")
        await _read_sse(stream, until="connected")

        app["lifecycle"].initiate_shutdown()
        events = await _read_sse(stream, until="close")

        assert events[-1][1] == {"reason": "server_shutdown"}
        stream.close()
