"""Tenant service: the operations behind the HTTP surface.

Admission (enrollment) is serialised by a lock so that the duplicate
and capacity checks and the registry write happen as one step even
though the registry is asynchronous.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from bothost._clock import ClockPort
from bothost._credentials import CredentialStore
from bothost._errors import CapacityExceeded, DuplicateTenant, ErrorPayload, InvalidSeed
from bothost._models import TenantRecord, TenantStatus, validate_tenant_id
from bothost._registry import TenantRegistry
from bothost._seed import decode_seed
from bothost._supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)

_RESTORABLE = frozenset({TenantStatus.CONNECTING, TenantStatus.CONNECTED})


@dataclass(frozen=True, slots=True)
class TenantView:
    """A registry record joined with the supervisor's view of the tenant."""

    record: TenantRecord
    live: bool
    last_fault: ErrorPayload | None = None


class TenantService:
    """Enrollment, listing and deletion of tenants."""

    def __init__(
        self,
        *,
        supervisor: ConnectionSupervisor,
        registry: TenantRegistry,
        credentials: CredentialStore,
        clock: ClockPort,
        max_tenants: int = 50,
    ) -> None:
        self.supervisor = supervisor
        self._registry = registry
        self._credentials = credentials
        self._clock = clock
        self.max_tenants = max_tenants
        self._admission = asyncio.Lock()

    async def enroll(self, tenant_id: str, owner_id: str, seed: str) -> TenantRecord:
        """Register a tenant and start its connection.

        Returns as soon as the connection task is scheduled; the handshake
        continues in the background.

        Raises:
            InvalidSeed: Malformed tenant id or seed.
            DuplicateTenant: The id is registered or live.
            CapacityExceeded: ``max_tenants`` tenants already exist.
        """
        try:
            validate_tenant_id(tenant_id)
        except ValueError as exc:
            raise InvalidSeed(str(exc)) from exc
        decode_seed(seed)

        async with self._admission:
            if (
                await self._registry.get(tenant_id) is not None
                or self.supervisor.is_live(tenant_id)
            ):
                msg = f"Bot {tenant_id} already exists"
                raise DuplicateTenant(msg)

            registered = await self._registry.list()
            if len(registered) >= self.max_tenants:
                msg = f"Maximum number of bots ({self.max_tenants}) reached"
                raise CapacityExceeded(msg)

            record = await self._registry.upsert(
                tenant_id,
                owner_id,
                seed,
                TenantStatus.CONNECTING,
                at=self._clock.now(),
            )
            try:
                await self.supervisor.start(tenant_id, owner_id, seed)
            except Exception:
                logger.exception(
                    "Starting tenant %s failed, rolling back",
                    tenant_id,
                    extra={"tenant": tenant_id},
                )
                await self._registry.remove(tenant_id)
                raise

        logger.info(
            "Enrolled tenant %s for owner %s",
            tenant_id,
            owner_id,
            extra={"tenant": tenant_id},
        )
        return record

    async def list_tenants(self) -> list[TenantView]:
        return [
            TenantView(
                record,
                self.supervisor.is_live(record.tenant_id),
                self.supervisor.last_fault(record.tenant_id),
            )
            for record in await self._registry.list()
        ]

    def active_tenants(self) -> list[str]:
        return self.supervisor.active_tenants()

    async def delete(self, tenant_id: str) -> None:
        """Stop *tenant_id* and remove all of its persisted state.  Idempotent.

        Holds the admission lock, so a delete never interleaves with the
        record-then-start steps of an enrollment.
        """
        async with self._admission:
            await self.supervisor.forget(tenant_id)
            await self._registry.remove(tenant_id)
            await self._credentials.delete(tenant_id)
        logger.info("Deleted tenant %s", tenant_id, extra={"tenant": tenant_id})

    async def delete_all(self) -> list[str]:
        """Delete every registered or live tenant; returns the ids deleted.

        A failure on one tenant is logged and does not stop the others.
        """
        tenant_ids = {record.tenant_id for record in await self._registry.list()}
        tenant_ids.update(self.supervisor.active_tenants())
        deleted: list[str] = []
        for tenant_id in sorted(tenant_ids):
            try:
                await self.delete(tenant_id)
            except Exception:
                logger.exception(
                    "Deleting tenant %s failed", tenant_id, extra={"tenant": tenant_id}
                )
            else:
                deleted.append(tenant_id)
        return deleted

    async def restore(self) -> list[str]:
        """Restart tenants a previous run left connecting or connected."""
        restored: list[str] = []
        for record in await self._registry.list():
            if record.status not in _RESTORABLE:
                continue
            try:
                started = await self.supervisor.start(
                    record.tenant_id,
                    record.owner_id,
                    record.enrollment_seed,
                )
            except InvalidSeed as exc:
                logger.error(
                    "Not restoring tenant %s: %s",
                    record.tenant_id,
                    exc,
                    extra={"tenant": record.tenant_id},
                )
                continue
            if started:
                restored.append(record.tenant_id)
        if restored:
            logger.info("Restored %d tenant(s): %s", len(restored), ", ".join(restored))
        return restored
