"""Unit tests for bothost._api — HTTP surface.

Test Techniques Used:
    - Specification-based Testing: status codes and JSON bodies per route
    - Equivalence Partitioning: valid vs. malformed request bodies
    - In-process Transport: httpx.ASGITransport, no sockets
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest

from bothost._engine import DisconnectReason
from bothost._reconnect import SessionState
from bothost._settings import Settings
from bothost.testing import HostHarness, make_seed, wait_until

OWNER = "+15551234567"
SECRET = "s3cret"


@pytest.fixture
def harness() -> HostHarness:
    return HostHarness.create(max_tenants=2, admin_secret=SECRET)


@pytest.fixture
async def client(harness: HostHarness) -> AsyncIterator[httpx.AsyncClient]:
    async with harness.client() as c:
        yield c


def _connect_body(name: str = "alice", **overrides: str) -> dict[str, str]:
    body = {"botName": name, "ownerNumber": OWNER, "sessionId": make_seed(name)}
    body.update(overrides)
    return body


class TestConnect:
    """POST /api/connect.

    Technique: Equivalence Partitioning.
    """

    async def test_accepted(self, client: httpx.AsyncClient, harness: HostHarness) -> None:
        response = await client.post("/api/connect", json=_connect_body())

        assert response.status_code == 200
        assert response.json() == {
            "message": "Bot alice is being connected",
            "botName": "alice",
        }
        await wait_until(lambda: harness.engine.connect_count == 1)

    @pytest.mark.parametrize(
        "owner", ["15551234567", "+1555", "+1234567890123456", "+1555abc4567"]
    )
    async def test_owner_number_format(self, client: httpx.AsyncClient, owner: str) -> None:
        response = await client.post("/api/connect", json=_connect_body(ownerNumber=owner))
        assert response.status_code == 400
        assert response.json()["error_type"] == "invalid_request"

    async def test_missing_field(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/connect", json={"botName": "alice"})
        assert response.status_code == 400

    async def test_invalid_seed(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/connect", json=_connect_body(sessionId="@@@"))
        assert response.status_code == 400
        body = response.json()
        assert body["error_type"] == "invalid_seed"
        assert body["message"].startswith("Invalid session ID")

    async def test_duplicate(self, client: httpx.AsyncClient) -> None:
        await client.post("/api/connect", json=_connect_body())
        response = await client.post("/api/connect", json=_connect_body())
        assert response.status_code == 400
        assert response.json()["error_type"] == "duplicate_tenant"

    async def test_capacity(self, client: httpx.AsyncClient) -> None:
        for name in ("alice", "bob"):
            assert (await client.post("/api/connect", json=_connect_body(name))).status_code == 200
        response = await client.post("/api/connect", json=_connect_body("carol"))
        assert response.status_code == 429
        assert response.json()["error_type"] == "capacity_exceeded"


class TestListing:
    """GET /api/users and /api/active.

    Technique: Specification-based Testing.
    """

    async def test_users_do_not_echo_seed(
        self, client: httpx.AsyncClient, harness: HostHarness
    ) -> None:
        await client.post("/api/connect", json=_connect_body())
        await wait_until(lambda: harness.host.supervisor.state_of("alice") is not None)

        users = (await client.get("/api/users")).json()

        assert len(users) == 1
        user = users[0]
        assert user["botName"] == "alice"
        assert user["ownerNumber"] == OWNER
        assert user["status"] in {"connecting", "connected"}
        assert user["live"] is True
        assert "sessionId" not in user
        assert make_seed("alice") not in str(users)

    async def test_users_report_last_error(
        self, client: httpx.AsyncClient, harness: HostHarness
    ) -> None:
        await client.post("/api/connect", json=_connect_body())
        supervisor = harness.host.supervisor
        await wait_until(lambda: supervisor.state_of("alice") is SessionState.OPEN)
        assert (await client.get("/api/users")).json()[0]["lastError"] is None

        harness.engine.latest("alice").drop(DisconnectReason.LOGGED_OUT)
        await wait_until(lambda: not supervisor.is_live("alice"))

        user = (await client.get("/api/users")).json()[0]
        assert user["live"] is False
        assert user["lastError"]["error_type"] == "terminal_connection_fault"
        assert user["lastError"]["tenant"] == "alice"
        assert user["lastError"]["details"] == {"reason": "logged_out"}

    async def test_active(self, client: httpx.AsyncClient) -> None:
        await client.post("/api/connect", json=_connect_body("bob"))
        await client.post("/api/connect", json=_connect_body("alice"))
        assert (await client.get("/api/active")).json() == {
            "count": 2,
            "bots": ["alice", "bob"],
        }


class TestAdmin:
    """Shared-secret protected deletion.

    Technique: Decision Table.
    """

    async def test_delete_with_wrong_password(self, client: httpx.AsyncClient) -> None:
        await client.post("/api/connect", json=_connect_body())
        response = await client.post(
            "/api/admin/delete", json={"botName": "alice", "password": "nope"}
        )
        assert response.status_code == 401
        assert (await client.get("/api/active")).json()["bots"] == ["alice"]

    async def test_delete(self, client: httpx.AsyncClient, harness: HostHarness) -> None:
        await client.post("/api/connect", json=_connect_body())
        response = await client.post(
            "/api/admin/delete", json={"botName": "alice", "password": SECRET}
        )
        assert response.status_code == 200
        assert (await client.get("/api/users")).json() == []
        assert await harness.storage.credentials.load("alice") is None

    async def test_delete_all(self, client: httpx.AsyncClient) -> None:
        for name in ("alice", "bob"):
            await client.post("/api/connect", json=_connect_body(name))
        response = await client.post("/api/admin/delete-all", json={"password": SECRET})
        assert response.status_code == 200
        assert response.json()["deleted"] == ["alice", "bob"]
        assert (await client.get("/api/active")).json()["count"] == 0

    async def test_admin_disabled_without_secret(self) -> None:
        harness = HostHarness.create()
        async with harness.client() as client:
            response = await client.post("/api/admin/delete-all", json={"password": ""})
        assert response.status_code == 401
        assert response.json()["error_type"] == "unauthorized"


class TestService:
    """Banner, health and not-yet-started behaviour.

    Technique: Specification-based Testing.
    """

    async def test_index_and_health(self, client: httpx.AsyncClient) -> None:
        assert (await client.get("/")).json()["service"] == "bothost"
        assert (await client.get("/health")).json() == {"status": "ok", "active": 0}

    async def test_routes_answer_503_before_start(self) -> None:
        from bothost._api import create_api
        from bothost.testing import make_settings

        settings: Settings = make_settings()
        app = create_api(settings)
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://bothost") as client:
            assert (await client.get("/api/users")).status_code == 503
            assert (await client.get("/health")).json()["status"] == "starting"
