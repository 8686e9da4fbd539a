"""Connection supervisor: one live session per tenant.

The supervisor owns an injectable :class:`ConnectionRegistry` mapping
tenant ids to :class:`Connection` entries, plus the set of tenants that
failed terminally.  It is the single source of truth for "is this
tenant live"; the persisted :class:`~bothost._registry.TenantRegistry`
only records what happened last.

Each started tenant runs as its own asyncio task:

1. load persisted credentials (preferred over the enrollment seed),
2. connect through the :class:`~bothost._engine.EnginePort`,
3. feed engine events through a
   :class:`~bothost._reconnect.SessionMachine` and execute the
   resulting commands in order,
4. on ``Resume`` sleep the backoff delay and go back to 1,
5. on ``Evict`` record the failure and leave the registry.

Concurrency rules:

- ``start`` inserts the registry entry before its first ``await``, so
  two concurrent starts for one tenant cannot both win.
- Every persistence step of a task runs under the entry's
  ``write_lock`` and is skipped once the entry is stopped; ``forget``
  waits for that lock so a deleted tenant is never resurrected by a
  late write.
- A ``stop`` that arrives while the engine handshake is in flight does
  not cancel it; the task notices the stop once the handle exists and
  closes it instead of registering it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field

from bothost._clock import ClockPort, SystemClock
from bothost._credentials import CredentialStore
from bothost._engine import (
    Closed,
    CredentialsRotated,
    DisconnectReason,
    EnginePort,
    SessionEvent,
    SessionHandle,
)
from bothost._errors import (
    BotHostError,
    ErrorPayload,
    StoreUnavailable,
    TerminalConnectionFault,
    TransientConnectionFault,
    build_error_payload,
)
from bothost._models import CredentialState, TenantStatus
from bothost._reconnect import (
    Command,
    Evict,
    MarkConnected,
    PersistCredentials,
    ReconnectPolicy,
    Resume,
    SessionMachine,
    SessionState,
)
from bothost._registry import TenantRegistry
from bothost._seed import decode_seed

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Registry of live connections
# ---------------------------------------------------------------------------


@dataclass(eq=False)
class Connection:
    """Ephemeral, process-local state of one supervised tenant."""

    tenant_id: str
    owner_id: str
    seed: str
    initial: CredentialState
    machine: SessionMachine
    handle: SessionHandle | None = None
    task: asyncio.Task[None] | None = None
    stopped: bool = False
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def state(self) -> SessionState:
        return self.machine.state


class ConnectionRegistry:
    """Tenant id → :class:`Connection`, plus the terminal-failure set.

    All methods are synchronous.  On a single event loop that makes
    :meth:`insert_if_absent` atomic: no other task can run between its
    check and its insert.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Connection] = {}
        self._terminated: set[str] = set()

    def insert_if_absent(self, entry: Connection) -> bool:
        if entry.tenant_id in self._entries:
            return False
        self._entries[entry.tenant_id] = entry
        return True

    def get(self, tenant_id: str) -> Connection | None:
        return self._entries.get(tenant_id)

    def remove(self, tenant_id: str, entry: Connection | None = None) -> Connection | None:
        """Remove and return the entry for *tenant_id*.

        When *entry* is given, only that exact entry is removed; a newer
        entry registered for the same tenant is left alone.
        """
        current = self._entries.get(tenant_id)
        if current is None or (entry is not None and current is not entry):
            return None
        del self._entries[tenant_id]
        return current

    def tenant_ids(self) -> list[str]:
        return sorted(self._entries)

    def __contains__(self, tenant_id: object) -> bool:
        return tenant_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # -- terminal failures ---------------------------------------------------

    def mark_terminated(self, tenant_id: str) -> None:
        self._terminated.add(tenant_id)

    def clear_terminated(self, tenant_id: str) -> None:
        self._terminated.discard(tenant_id)

    def is_terminated(self, tenant_id: str) -> bool:
        return tenant_id in self._terminated


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------


class ConnectionSupervisor:
    """Starts, resumes, evicts and stops per-tenant engine sessions.

    Args:
        engine: Factory of engine sessions.
        credentials: Persisted credential state.
        registry: Persisted tenant metadata (status, last activity).
        clock: Source of activity timestamps.
        policy: Backoff policy for transient disconnects.
        connections: Live-connection registry; a fresh one by default.
        store_retry_interval: Seconds between retries of failed writes.
        store_retry_attempts: Attempts for metadata writes.  Credential
            writes are retried until they succeed or the tenant stops.
    """

    def __init__(
        self,
        *,
        engine: EnginePort,
        credentials: CredentialStore,
        registry: TenantRegistry,
        clock: ClockPort | None = None,
        policy: ReconnectPolicy | None = None,
        connections: ConnectionRegistry | None = None,
        store_retry_interval: float = 1.0,
        store_retry_attempts: int = 5,
    ) -> None:
        self._engine = engine
        self._credentials = credentials
        self._registry = registry
        self._clock = clock if clock is not None else SystemClock()
        self._policy = policy if policy is not None else ReconnectPolicy()
        self.connections = connections if connections is not None else ConnectionRegistry()
        self._store_retry_interval = store_retry_interval
        self._store_retry_attempts = store_retry_attempts
        self._tasks: set[asyncio.Task[None]] = set()
        self._faults: dict[str, ErrorPayload] = {}

    # -- queries -------------------------------------------------------------

    def is_live(self, tenant_id: str) -> bool:
        return tenant_id in self.connections

    def is_terminated(self, tenant_id: str) -> bool:
        return self.connections.is_terminated(tenant_id)

    def active_tenants(self) -> list[str]:
        """Tenant ids with a live or reconnecting session."""
        return self.connections.tenant_ids()

    def state_of(self, tenant_id: str) -> SessionState | None:
        entry = self.connections.get(tenant_id)
        return None if entry is None else entry.state

    def last_fault(self, tenant_id: str) -> ErrorPayload | None:
        """Most recent disconnect or eviction of *tenant_id* since it last connected."""
        return self._faults.get(tenant_id)

    # -- commands ------------------------------------------------------------

    async def start(self, tenant_id: str, owner_id: str, seed: str) -> bool:
        """Begin supervising *tenant_id*; returns once the task is scheduled.

        Returns ``False`` without side effects when the tenant is already
        live or terminally failed.

        Raises:
            InvalidSeed: If *seed* cannot be decoded.  Nothing is
                registered or persisted in that case.
        """
        # No await before insert_if_absent: check and insert must happen
        # in the same step of the event loop.
        if tenant_id in self.connections:
            logger.debug(
                "Tenant %s already live, start ignored",
                tenant_id,
                extra={"tenant": tenant_id},
            )
            return False
        if self.connections.is_terminated(tenant_id):
            logger.warning(
                "Tenant %s failed terminally, start refused",
                tenant_id,
                extra={"tenant": tenant_id},
            )
            return False

        initial = decode_seed(seed)
        entry = Connection(
            tenant_id=tenant_id,
            owner_id=owner_id,
            seed=seed,
            initial=initial,
            machine=SessionMachine(self._policy),
        )
        if not self.connections.insert_if_absent(entry):
            return False

        task = asyncio.create_task(self._run(entry), name=f"bothost:{tenant_id}")
        entry.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Starting tenant %s", tenant_id, extra={"tenant": tenant_id})
        return True

    async def stop(self, tenant_id: str) -> bool:
        """Stop supervising *tenant_id*.  Returns ``False`` if it was not live.

        The engine handle is closed best-effort; shutdown errors are
        logged and swallowed.  The persisted status is left untouched.
        """
        entry = self.connections.remove(tenant_id)
        if entry is None:
            return False
        entry.stopped = True
        self.connections.clear_terminated(tenant_id)

        if entry.handle is not None:
            await self._close_quietly(entry.handle, tenant_id)

        task = entry.task
        if task is not None and not task.done() and entry.state is not SessionState.CONNECTING:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("Stopped tenant %s", tenant_id, extra={"tenant": tenant_id})
        return True

    async def forget(self, tenant_id: str) -> None:
        """Stop *tenant_id* ahead of deletion and clear its terminal flag.

        Waits for an in-flight credential or status write of the tenant
        to finish, so the caller may delete persisted state afterwards
        without it being written back.
        """
        entry = self.connections.get(tenant_id)
        await self.stop(tenant_id)
        self.connections.clear_terminated(tenant_id)
        self._faults.pop(tenant_id, None)
        if entry is not None:
            async with entry.write_lock:
                pass

    async def shutdown(self) -> None:
        """Stop every tenant without touching persisted statuses."""
        for tenant_id in self.connections.tenant_ids():
            await self.stop(tenant_id)
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        results = await asyncio.gather(*pending, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                logger.error("Tenant task error during shutdown: %s", result)

    # -- per-tenant task -----------------------------------------------------

    async def _run(self, entry: Connection) -> None:
        tenant_id = entry.tenant_id
        try:
            while not entry.stopped:
                outcome = await self._connect_once(entry)
                if outcome is None:
                    break
                if isinstance(outcome, Evict):
                    await self._evict(entry, outcome)
                    break
                self._record_fault(
                    tenant_id,
                    TransientConnectionFault(
                        f"Disconnected ({outcome.reason}), reconnecting in "
                        f"{outcome.delay:.2f}s (attempt {outcome.attempt})"
                    ),
                    reason=str(outcome.reason),
                    attempt=outcome.attempt,
                )
                await asyncio.sleep(outcome.delay)
                entry.machine.resuming()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception(
                "Supervisor task for tenant %s crashed", tenant_id, extra={"tenant": tenant_id}
            )
            self._faults[tenant_id] = build_error_payload(
                exc, tenant=tenant_id, clock=self._clock.now
            )
            self.connections.mark_terminated(tenant_id)
            async with entry.write_lock:
                await self._write_status(entry, TenantStatus.ERROR)
        finally:
            self.connections.remove(tenant_id, entry)

    async def _connect_once(self, entry: Connection) -> Resume | Evict | None:
        """One connect-and-pump cycle.  ``None`` means the tenant was stopped."""
        tenant_id = entry.tenant_id
        try:
            credentials = await self._credentials_for(entry)
        except StoreUnavailable as exc:
            logger.error(
                "Cannot load credentials of %s: %s",
                tenant_id,
                exc,
                extra={"tenant": tenant_id},
            )
            return self._disconnect(entry, Closed(DisconnectReason.CONNECT_FAILED, str(exc)))
        if entry.stopped:
            return None

        try:
            handle = await self._engine.connect(tenant_id, credentials)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "Engine connect for %s failed: %s",
                tenant_id,
                exc,
                extra={"tenant": tenant_id},
            )
            return self._disconnect(entry, Closed(DisconnectReason.CONNECT_FAILED, str(exc)))

        if entry.stopped:
            logger.info(
                "Tenant %s stopped during handshake, closing session",
                tenant_id,
                extra={"tenant": tenant_id},
            )
            await self._close_quietly(handle, tenant_id)
            return None

        entry.handle = handle
        try:
            return await self._pump(entry, handle)
        finally:
            entry.handle = None
            await self._close_quietly(handle, tenant_id)

    async def _pump(self, entry: Connection, handle: SessionHandle) -> Resume | Evict | None:
        async for event in handle.events():
            if entry.stopped:
                return None
            for command in entry.machine.on_event(event):
                if isinstance(command, (Resume, Evict)):
                    return command
                await self._execute(entry, handle, command)
        if entry.stopped:
            return None
        return self._disconnect(
            entry, Closed(DisconnectReason.CONNECTION_LOST, "event stream ended")
        )

    def _disconnect(self, entry: Connection, event: SessionEvent) -> Resume | Evict | None:
        for command in entry.machine.on_event(event):
            if isinstance(command, (Resume, Evict)):
                return command
        return None

    async def _execute(self, entry: Connection, handle: SessionHandle, command: Command) -> None:
        tenant_id = entry.tenant_id
        if isinstance(command, MarkConnected):
            self.connections.clear_terminated(tenant_id)
            self._faults.pop(tenant_id, None)
            async with entry.write_lock:
                await self._write_status(entry, TenantStatus.CONNECTED)
            logger.info("Tenant %s connected", tenant_id, extra={"tenant": tenant_id})
        elif isinstance(command, PersistCredentials):
            async with entry.write_lock:
                saved = await self._save_credentials(entry, command.event.credentials)
            if saved:
                await self._acknowledge(handle, command.event, tenant_id)

    async def _evict(self, entry: Connection, command: Evict) -> None:
        tenant_id = entry.tenant_id
        # Flag first: a start racing with the eviction must be refused.
        self.connections.mark_terminated(tenant_id)
        async with entry.write_lock:
            if command.retries_exhausted:
                attempts = entry.machine.attempts - 1
                self._record_fault(
                    tenant_id,
                    TransientConnectionFault(
                        f"Gave up after {attempts} reconnect attempts ({command.reason})"
                    ),
                    level=logging.ERROR,
                    reason=str(command.reason),
                    retries_exhausted=True,
                )
                await self._write_status(entry, TenantStatus.ERROR)
            else:
                self._record_fault(
                    tenant_id,
                    TerminalConnectionFault(
                        f"Session ended ({command.reason}), credentials discarded"
                    ),
                    reason=str(command.reason),
                )
                await self._write_status(entry, TenantStatus.DISCONNECTED)
                await self._delete_credentials(entry)
        self.connections.remove(tenant_id, entry)

    def _record_fault(
        self,
        tenant_id: str,
        fault: BotHostError,
        *,
        level: int = logging.WARNING,
        **details: object,
    ) -> None:
        payload = build_error_payload(
            fault, tenant=tenant_id, details=details, clock=self._clock.now
        )
        self._faults[tenant_id] = payload
        logger.log(
            level,
            "Tenant %s: %s",
            tenant_id,
            payload.message,
            extra={"tenant": tenant_id},
        )

    # -- persistence helpers (callers hold entry.write_lock) -----------------

    async def _credentials_for(self, entry: Connection) -> CredentialState:
        """Persisted credentials if any, else the seed-derived state (persisted)."""
        stored = await self._credentials.load(entry.tenant_id)
        if stored is not None:
            return stored
        async with entry.write_lock:
            await self._save_credentials(entry, entry.initial)
        return entry.initial

    async def _save_credentials(self, entry: Connection, state: CredentialState) -> bool:
        """Save until it succeeds or the tenant is stopped; never dropped silently."""
        attempt = 0
        while not entry.stopped:
            try:
                await self._credentials.save(entry.tenant_id, state)
            except StoreUnavailable as exc:
                attempt += 1
                logger.error(
                    "Persisting credentials of %s failed (attempt %d): %s",
                    entry.tenant_id,
                    attempt,
                    exc,
                    extra={"tenant": entry.tenant_id},
                )
                await asyncio.sleep(self._store_retry_interval)
            else:
                return True
        return False

    async def _write_status(self, entry: Connection, status: TenantStatus) -> None:
        for attempt in range(1, self._store_retry_attempts + 1):
            if entry.stopped:
                return
            try:
                await self._registry.upsert(
                    entry.tenant_id,
                    entry.owner_id,
                    entry.seed,
                    status,
                    at=self._clock.now(),
                )
            except StoreUnavailable as exc:
                logger.warning(
                    "Writing status %s for %s failed (attempt %d): %s",
                    status,
                    entry.tenant_id,
                    attempt,
                    exc,
                    extra={"tenant": entry.tenant_id},
                )
                if attempt < self._store_retry_attempts:
                    await asyncio.sleep(self._store_retry_interval)
            else:
                return
        logger.error(
            "Giving up on status %s for tenant %s",
            status,
            entry.tenant_id,
            extra={"tenant": entry.tenant_id},
        )

    async def _delete_credentials(self, entry: Connection) -> None:
        for attempt in range(1, self._store_retry_attempts + 1):
            try:
                await self._credentials.delete(entry.tenant_id)
            except StoreUnavailable as exc:
                logger.warning(
                    "Deleting credentials of %s failed (attempt %d): %s",
                    entry.tenant_id,
                    attempt,
                    exc,
                    extra={"tenant": entry.tenant_id},
                )
                if attempt < self._store_retry_attempts:
                    await asyncio.sleep(self._store_retry_interval)
            else:
                return
        logger.error(
            "Could not delete credentials of tenant %s",
            entry.tenant_id,
            extra={"tenant": entry.tenant_id},
        )

    # -- engine helpers ------------------------------------------------------

    @staticmethod
    async def _acknowledge(
        handle: SessionHandle, event: CredentialsRotated, tenant_id: str
    ) -> None:
        try:
            await handle.acknowledge(event)
        except Exception:
            logger.warning(
                "Acknowledging credentials of %s failed",
                tenant_id,
                exc_info=True,
                extra={"tenant": tenant_id},
            )

    @staticmethod
    async def _close_quietly(handle: SessionHandle, tenant_id: str) -> None:
        try:
            await handle.close()
        except Exception:
            logger.debug(
                "Closing session of %s failed",
                tenant_id,
                exc_info=True,
                extra={"tenant": tenant_id},
            )
