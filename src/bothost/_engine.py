"""External messaging engine port and adapters.

The wire protocol (handshake, encryption, message encoding) lives in an
external engine.  The lifecycle manager drives it through two narrow
protocols:

- :class:`EnginePort` — ``connect(tenant_id, credentials)`` returns a
  :class:`SessionHandle`.
- :class:`SessionHandle` — an ordered stream of typed events
  (:class:`Opened`, :class:`Closed`, :class:`CredentialsRotated`), plus
  ``acknowledge`` and ``close`` commands.

Adapters:

- BridgeEngine — real adapter speaking JSON over one WebSocket per
  tenant to a protocol bridge process.
- MockEngine — in-memory test double whose sessions are driven by the
  test.

``websockets`` is imported lazily inside :meth:`BridgeEngine.connect`
so the mock works without the dependency installed.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from bothost._models import CredentialState

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Disconnect classification
# ---------------------------------------------------------------------------


class DisconnectReason(StrEnum):
    """Why a session closed.

    Only :attr:`LOGGED_OUT` and :attr:`BAD_SESSION` are terminal: the
    credentials were invalidated server-side and reconnecting with them
    can never succeed.  Everything else is worth a retry.
    """

    LOGGED_OUT = "logged_out"
    BAD_SESSION = "bad_session"
    CONNECTION_CLOSED = "connection_closed"
    CONNECTION_LOST = "connection_lost"
    CONNECTION_REPLACED = "connection_replaced"
    TIMED_OUT = "timed_out"
    RESTART_REQUIRED = "restart_required"
    MULTIDEVICE_MISMATCH = "multidevice_mismatch"
    UNAVAILABLE_SERVICE = "unavailable_service"
    CONNECT_FAILED = "connect_failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @classmethod
    def from_status_code(cls, code: int | None) -> DisconnectReason:
        """Map a protocol status code; unknown codes count as a lost connection."""
        if code is None:
            return cls.CONNECTION_LOST
        return _STATUS_CODES.get(code, cls.CONNECTION_LOST)


_TERMINAL = frozenset({DisconnectReason.LOGGED_OUT, DisconnectReason.BAD_SESSION})

_STATUS_CODES: dict[int, DisconnectReason] = {
    401: DisconnectReason.LOGGED_OUT,
    500: DisconnectReason.BAD_SESSION,
    428: DisconnectReason.CONNECTION_CLOSED,
    408: DisconnectReason.CONNECTION_LOST,
    440: DisconnectReason.CONNECTION_REPLACED,
    411: DisconnectReason.MULTIDEVICE_MISMATCH,
    515: DisconnectReason.RESTART_REQUIRED,
    503: DisconnectReason.UNAVAILABLE_SERVICE,
}

# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Opened:
    """The engine reports a live, authenticated session."""

    user_id: str | None = None


@dataclass(frozen=True, slots=True)
class Closed:
    """The session ended; *reason* decides between resume and eviction."""

    reason: DisconnectReason
    detail: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.reason.is_terminal


@dataclass(frozen=True, slots=True)
class CredentialsRotated:
    """New key material that must be persisted before it is acknowledged."""

    credentials: CredentialState
    seq: int = 0


type SessionEvent = Opened | Closed | CredentialsRotated

# ---------------------------------------------------------------------------
# Ports (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class SessionHandle(Protocol):
    """One live (or establishing) engine session for a tenant."""

    def events(self) -> AsyncIterator[SessionEvent]:
        """Yield events in order until the session ends."""
        ...

    async def acknowledge(self, event: CredentialsRotated) -> None:
        """Confirm that *event*'s credentials are durably stored."""
        ...

    async def close(self) -> None:
        """Request a graceful shutdown.  Idempotent."""
        ...


@runtime_checkable
class EnginePort(Protocol):
    """Factory of engine sessions."""

    async def connect(
        self,
        tenant_id: str,
        credentials: CredentialState,
    ) -> SessionHandle: ...


# ---------------------------------------------------------------------------
# Mock / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MockSession:
    """Test-driven session: the test pushes events, the supervisor consumes them."""

    tenant_id: str
    credentials: CredentialState
    acknowledged: list[CredentialsRotated] = field(default_factory=list)
    closed: bool = False
    close_error: Exception | None = None
    _queue: asyncio.Queue[SessionEvent | None] = field(
        default_factory=asyncio.Queue,
        init=False,
        repr=False,
    )

    async def events(self) -> AsyncIterator[SessionEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def acknowledge(self, event: CredentialsRotated) -> None:
        self.acknowledged.append(event)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(None)
        if self.close_error is not None:
            raise self.close_error

    # -- Test helpers -------------------------------------------------------

    def emit(self, event: SessionEvent) -> None:
        """Deliver *event* to the consumer; ignored once closed."""
        if not self.closed:
            self._queue.put_nowait(event)

    def open(self, user_id: str | None = None) -> None:
        self.emit(Opened(user_id=user_id or f"{self.tenant_id}@bot"))

    def drop(self, reason: DisconnectReason = DisconnectReason.CONNECTION_LOST) -> None:
        self.emit(Closed(reason))

    def rotate(self, creds: dict[str, Any], seq: int = 1) -> CredentialsRotated:
        event = CredentialsRotated(CredentialState(creds=creds), seq=seq)
        self.emit(event)
        return event

    def end(self) -> None:
        """End the event stream without a ``Closed`` event."""
        self._queue.put_nowait(None)


@dataclass
class MockEngine:
    """In-memory engine that records connects and hands out MockSessions.

    With ``auto_open=True`` every session reports :class:`Opened` right
    away, i.e. a healthy engine.  :meth:`hold` keeps subsequent connects
    in flight until :meth:`release`.
    """

    auto_open: bool = False
    sessions: list[MockSession] = field(default_factory=list)
    connects: list[tuple[str, CredentialState]] = field(default_factory=list)
    _failures: list[Exception] = field(default_factory=list, init=False, repr=False)
    _gate: asyncio.Event | None = field(default=None, init=False, repr=False)

    async def connect(self, tenant_id: str, credentials: CredentialState) -> MockSession:
        self.connects.append((tenant_id, credentials))
        if self._gate is not None:
            await self._gate.wait()
        if self._failures:
            raise self._failures.pop(0)
        session = MockSession(tenant_id=tenant_id, credentials=credentials)
        self.sessions.append(session)
        if self.auto_open:
            session.open()
        return session

    # -- Test helpers -------------------------------------------------------

    def fail_next_connect(self, exc: Exception | None = None) -> None:
        self._failures.append(exc or ConnectionError("simulated connect failure"))

    def hold(self) -> None:
        self._gate = asyncio.Event()

    def release(self) -> None:
        if self._gate is not None:
            self._gate.set()
            self._gate = None

    def sessions_for(self, tenant_id: str) -> list[MockSession]:
        return [s for s in self.sessions if s.tenant_id == tenant_id]

    def latest(self, tenant_id: str) -> MockSession:
        """Most recent session of *tenant_id*."""
        return self.sessions_for(tenant_id)[-1]

    @property
    def connect_count(self) -> int:
        return len(self.connects)


# ---------------------------------------------------------------------------
# Real adapter
# ---------------------------------------------------------------------------


def parse_bridge_message(raw: str | bytes) -> SessionEvent | None:
    """Translate one bridge JSON frame into an event.

    Frames that carry no lifecycle meaning (``qr``, ``error``, inbound
    messages) are logged and yield ``None``.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Invalid JSON from bridge: %.100s", raw)
        return None
    if not isinstance(data, dict):
        logger.warning("Unexpected frame from bridge: %.100s", raw)
        return None

    msg_type = data.get("type")

    if msg_type == "status":
        status = data.get("status")
        if status in ("open", "connected"):
            return Opened(user_id=data.get("user"))
        if status in ("close", "disconnected"):
            code = data.get("statusCode")
            return Closed(
                DisconnectReason.from_status_code(code if isinstance(code, int) else None),
                str(data.get("reason", "")),
            )
        logger.debug("Bridge status: %s", status)
        return None

    if msg_type == "creds":
        try:
            credentials = CredentialState.model_validate(data.get("credentials"))
        except ValidationError:
            logger.error("Malformed credential update from bridge")
            return None
        seq = data.get("seq", 0)
        if isinstance(seq, bool) or not isinstance(seq, int):
            logger.error("Credential update from bridge has non-integer seq %r", seq)
            return None
        return CredentialsRotated(credentials, seq=seq)

    if msg_type == "error":
        logger.error("Bridge error: %s", data.get("error"))
    elif msg_type == "qr":
        logger.warning("Bridge requests QR pairing; stored credentials were not accepted")
    else:
        logger.debug("Ignoring bridge frame of type %r", msg_type)
    return None


class BridgeSession:
    """One tenant's WebSocket to the protocol bridge."""

    def __init__(self, tenant_id: str, ws: Any) -> None:
        self.tenant_id = tenant_id
        self._ws = ws
        self._closing = False

    async def events(self) -> AsyncIterator[SessionEvent]:
        try:
            async for raw in self._ws:
                event = parse_bridge_message(raw)
                if event is None:
                    continue
                yield event
                if isinstance(event, Closed):
                    return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._closing:
                return
            logger.warning("Bridge socket for %s failed: %s", self.tenant_id, exc)
            yield Closed(DisconnectReason.CONNECTION_LOST, str(exc))
            return
        if not self._closing:
            yield Closed(DisconnectReason.CONNECTION_LOST, "bridge socket closed")

    async def acknowledge(self, event: CredentialsRotated) -> None:
        await self._ws.send(
            json.dumps({"type": "creds.ack", "tenant": self.tenant_id, "seq": event.seq})
        )

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        try:
            await self._ws.send(json.dumps({"type": "stop", "tenant": self.tenant_id}))
        finally:
            await self._ws.close()


class BridgeEngine:
    """Production engine adapter backed by a WebSocket protocol bridge.

    Architecture: Python <-> WebSocket <-> bridge process <-> messaging
    network.  Each tenant gets its own socket so one tenant's failure
    never tears down another's session.

    Frames sent::

        {"type": "auth", "token": "..."}             (when a token is set)
        {"type": "start", "tenant": "...", "credentials": {...}}
        {"type": "creds.ack", "tenant": "...", "seq": 3}
        {"type": "stop", "tenant": "..."}

    Frames received are translated by :func:`parse_bridge_message`.
    """

    def __init__(self, url: str, token: str | None = None) -> None:
        self.url = url
        self.token = token

    async def connect(self, tenant_id: str, credentials: CredentialState) -> BridgeSession:
        try:
            import websockets  # noqa: PLC0415
        except ModuleNotFoundError as exc:
            msg = "websockets is required to use BridgeEngine"
            raise RuntimeError(msg) from exc

        ws = await websockets.connect(self.url)
        try:
            if self.token:
                await ws.send(json.dumps({"type": "auth", "token": self.token}))
            await ws.send(
                json.dumps(
                    {
                        "type": "start",
                        "tenant": tenant_id,
                        "credentials": credentials.model_dump(mode="json"),
                    }
                )
            )
        except BaseException:
            await ws.close()
            raise
        logger.debug("Bridge session requested for %s", tenant_id)
        return BridgeSession(tenant_id, ws)
