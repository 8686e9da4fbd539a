"""Periodic eviction of inactive tenants.

A tenant whose ``last_activity_at`` is older than the retention window
is stopped and its metadata and credentials are deleted.  Tenants are
processed one at a time; a failure on one is logged and the sweep
moves on to the next.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from bothost._clock import ClockPort
from bothost._credentials import CredentialStore
from bothost._registry import TenantRegistry
from bothost._supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)


class CleanupSweeper:
    """Deletes tenants inactive for longer than *retention*.

    Args:
        supervisor: Stopped before a tenant's persisted state goes.
        registry: Source of ``last_activity_at`` and of the tenant list.
        credentials: Credential store to purge.
        clock: Wall clock; injectable for tests.
        retention: Inactivity window.  Records strictly older are swept.
        interval: Seconds between sweeps in :meth:`run`.
    """

    def __init__(
        self,
        *,
        supervisor: ConnectionSupervisor,
        registry: TenantRegistry,
        credentials: CredentialStore,
        clock: ClockPort,
        retention: timedelta = timedelta(days=3),
        interval: float = 3600.0,
    ) -> None:
        self._supervisor = supervisor
        self._registry = registry
        self._credentials = credentials
        self._clock = clock
        self.retention = retention
        self.interval = interval

    async def sweep(self) -> list[str]:
        """Run one pass.  Returns the ids that were removed."""
        now = self._clock.now()
        removed: list[str] = []
        for record in await self._registry.list():
            if now - record.last_activity_at <= self.retention:
                continue
            try:
                await self._supervisor.forget(record.tenant_id)
                await self._registry.remove(record.tenant_id)
                await self._credentials.delete(record.tenant_id)
            except Exception:
                logger.exception(
                    "Sweeping inactive tenant %s failed",
                    record.tenant_id,
                    extra={"tenant": record.tenant_id},
                )
                continue
            logger.info(
                "Removed inactive tenant %s (last activity %s)",
                record.tenant_id,
                record.last_activity_at.isoformat(),
                extra={"tenant": record.tenant_id},
            )
            removed.append(record.tenant_id)
        if removed:
            logger.info("Sweep removed %d tenant(s)", len(removed))
        return removed

    async def run(self) -> None:
        """Sweep every :attr:`interval` seconds until cancelled."""
        logger.info(
            "Cleanup sweeper running every %.0fs, retention %s",
            self.interval,
            self.retention,
        )
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Cleanup sweep failed, retrying next interval")
