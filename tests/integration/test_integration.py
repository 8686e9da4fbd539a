"""Integration tests — full tenant lifecycle through the HTTP surface.

Validates the complete host lifecycle: enroll over HTTP → engine
session opens → status connected → credentials rotate → transient
drop and resume → delete mid-connection → nothing left behind.  Runs
against file-backed and SQLite-backed storage.

Test Techniques Used:
    - Integration Testing: BotHost + FastAPI + real storage adapters,
      MockEngine in place of the messaging bridge.
    - State-based Testing: persisted artifacts inspected after each step.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path

import httpx
import pytest

from bothost._app import BotHost
from bothost._engine import DisconnectReason, MockEngine
from bothost._models import TenantStatus
from bothost._settings import StorageSettings
from bothost._storage import open_storage
from bothost.testing import FakeClock, make_seed, make_settings, wait_until

pytestmark = pytest.mark.integration

OWNER = "+15551234567"
SECRET = "integration-secret"


@pytest.fixture(params=["file", "sqlite"])
def storage_url(request: pytest.FixtureRequest, tmp_path: Path) -> str:
    if request.param == "file":
        return str(tmp_path / "sessions")
    return f"sqlite:{tmp_path / 'bothost.db'}"


@pytest.fixture
def engine() -> MockEngine:
    return MockEngine()


@pytest.fixture
async def host(storage_url: str, engine: MockEngine) -> AsyncIterator[BotHost]:
    settings = make_settings(
        storage=StorageSettings(url=storage_url),
        admin_secret=SECRET,
    )
    bot_host = BotHost(settings, engine=engine, clock=FakeClock())
    async with bot_host.lifespan():
        yield bot_host


@pytest.fixture
async def client(host: BotHost) -> AsyncIterator[httpx.AsyncClient]:
    app = host.asgi()
    app.state.service = host.service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://bothost") as c:
        yield c


async def _status(host: BotHost, tenant_id: str = "alice") -> TenantStatus | None:
    record = await host.storage.registry.get(tenant_id)
    return None if record is None else record.status


async def _wait_status(host: BotHost, status: TenantStatus, timeout: float = 2.0) -> None:
    """Poll the persisted status of alice."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while await _status(host) is not status:
        if loop.time() >= deadline:
            pytest.fail(f"status never became {status}")
        await asyncio.sleep(0.001)


class TestAliceLifecycle:
    """The reference tenant walk-through.

    Technique: Integration Testing.
    """

    async def test_enroll_connect_rotate_resume_delete(
        self,
        host: BotHost,
        client: httpx.AsyncClient,
        engine: MockEngine,
    ) -> None:
        response = await client.post(
            "/api/connect",
            json={"botName": "alice", "ownerNumber": OWNER, "sessionId": make_seed("alice")},
        )
        assert response.status_code == 200
        assert response.json()["message"] == "Bot alice is being connected"

        # Handshake completes.
        await wait_until(lambda: bool(engine.sessions_for("alice")))
        first = engine.latest("alice")
        first.open()
        await _wait_status(host, TenantStatus.CONNECTED)
        users = (await client.get("/api/users")).json()
        assert users[0]["status"] == "connected"
        assert users[0]["live"] is True

        # Credentials rotate and are durable before the engine hears back.
        rotated = {"me": {"id": "alice@s.whatsapp.net"}, "deviceId": "device-alice", "v": 2}
        first.rotate(rotated, seq=2)
        await wait_until(lambda: bool(first.acknowledged))
        stored = await host.storage.credentials.load("alice")
        assert stored is not None
        assert stored.creds == rotated

        # Transient drop: same tenant resumes with the rotated credentials.
        first.drop(DisconnectReason.CONNECTION_LOST)
        await wait_until(lambda: len(engine.sessions_for("alice")) == 2)
        second = engine.latest("alice")
        assert second.credentials.creds == rotated
        second.open()

        # Delete mid-connection.
        response = await client.post(
            "/api/admin/delete", json={"botName": "alice", "password": SECRET}
        )
        assert response.status_code == 200
        assert second.closed
        assert (await client.get("/api/active")).json() == {"count": 0, "bots": []}
        assert await host.storage.registry.get("alice") is None
        assert await host.storage.credentials.load("alice") is None

    async def test_logged_out_tenant_is_evicted_and_can_reenroll(
        self,
        host: BotHost,
        client: httpx.AsyncClient,
        engine: MockEngine,
    ) -> None:
        body = {"botName": "alice", "ownerNumber": OWNER, "sessionId": make_seed("alice")}
        await client.post("/api/connect", json=body)
        await wait_until(lambda: bool(engine.sessions_for("alice")))
        engine.latest("alice").open()
        await _wait_status(host, TenantStatus.CONNECTED)

        engine.latest("alice").drop(DisconnectReason.LOGGED_OUT)
        await wait_until(lambda: not host.supervisor.is_live("alice"))

        assert await _status(host) is TenantStatus.DISCONNECTED
        assert await host.storage.credentials.load("alice") is None
        # Still registered, so a second enrollment is a duplicate...
        assert (await client.post("/api/connect", json=body)).status_code == 400
        # ...until an operator deletes it.
        await client.post("/api/admin/delete", json={"botName": "alice", "password": SECRET})
        assert (await client.post("/api/connect", json=body)).status_code == 200


class TestRestart:
    """A second host picks up where the first stopped.

    Technique: State-based Testing.
    """

    async def test_connected_tenant_is_restored(self, storage_url: str) -> None:
        settings = make_settings(storage=StorageSettings(url=storage_url))
        clock = FakeClock()

        first_engine = MockEngine(auto_open=True)
        async with BotHost(settings, engine=first_engine, clock=clock).lifespan() as first:
            await first.service.enroll("alice", OWNER, make_seed("alice"))
            await _wait_status(first, TenantStatus.CONNECTED)

        storage = await open_storage(storage_url)
        try:
            record = await storage.registry.get("alice")
        finally:
            await storage.aclose()
        assert record is not None
        assert record.status is TenantStatus.CONNECTED

        second_engine = MockEngine(auto_open=True)
        async with BotHost(settings, engine=second_engine, clock=clock).lifespan() as second:
            await wait_until(lambda: second.supervisor.is_live("alice"))
            await wait_until(lambda: second_engine.connect_count == 1)
