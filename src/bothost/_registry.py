"""Tenant registry port and adapters.

Provides TenantRegistry (Protocol) and three implementations:

- FileTenantRegistry — ``metadata.json`` beside the credentials file
- SqlTenantRegistry — one row per tenant in the ``tenants`` table
- MemoryTenantRegistry — test double

The registry is the durable record of who enrolled which tenant and
what happened to it last.  It is *not* a liveness oracle: whether a
tenant currently has a connection is answered only by the
:class:`~bothost._supervisor.ConnectionSupervisor`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from bothost import _files
from bothost._errors import StoreUnavailable
from bothost._models import TenantRecord, TenantStatus, validate_tenant_id
from bothost._sql import Database

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"

# ---------------------------------------------------------------------------
# Port (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class TenantRegistry(Protocol):
    """Port contract for tenant metadata."""

    async def upsert(
        self,
        tenant_id: str,
        owner_id: str,
        seed: str,
        status: TenantStatus,
        *,
        at: datetime,
    ) -> TenantRecord:
        """Create or overwrite a record; ``last_activity_at`` becomes *at*."""
        ...

    async def get(self, tenant_id: str) -> TenantRecord | None: ...

    async def list(self) -> list[TenantRecord]:
        """All records, sorted by tenant id."""
        ...

    async def remove(self, tenant_id: str) -> None: ...


# ---------------------------------------------------------------------------
# Filesystem adapter
# ---------------------------------------------------------------------------


class FileTenantRegistry:
    """Metadata files under ``<root>/<tenant_id>/metadata.json``."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _path(self, tenant_id: str) -> Path:
        return _files.tenant_dir(self.root, tenant_id) / METADATA_FILE

    async def upsert(
        self,
        tenant_id: str,
        owner_id: str,
        seed: str,
        status: TenantStatus,
        *,
        at: datetime,
    ) -> TenantRecord:
        record = TenantRecord(tenant_id, owner_id, seed, status, at)
        try:
            await _files.write_json(self._path(tenant_id), record.to_dict())
        except OSError as exc:
            raise StoreUnavailable(f"Cannot write metadata of {tenant_id}: {exc}") from exc
        return record

    async def get(self, tenant_id: str) -> TenantRecord | None:
        try:
            data = await _files.read_json(self._path(tenant_id))
            return None if data is None else TenantRecord.from_dict(data)
        except (OSError, ValueError) as exc:
            raise StoreUnavailable(f"Cannot read metadata of {tenant_id}: {exc}") from exc

    async def list(self) -> list[TenantRecord]:
        records: list[TenantRecord] = []
        try:
            tenant_ids = _files.list_tenant_dirs(self.root, METADATA_FILE)
        except OSError as exc:
            raise StoreUnavailable(f"Cannot list {self.root}: {exc}") from exc
        for tenant_id in tenant_ids:
            try:
                record = await self.get(tenant_id)
            except StoreUnavailable as exc:
                logger.warning(
                    "Skipping unreadable tenant %s: %s", tenant_id, exc, extra={"tenant": tenant_id}
                )
                continue
            # Removed between listing and reading.
            if record is not None:
                records.append(record)
        return records

    async def remove(self, tenant_id: str) -> None:
        try:
            await _files.remove(self._path(tenant_id))
        except OSError as exc:
            raise StoreUnavailable(f"Cannot delete metadata of {tenant_id}: {exc}") from exc


# ---------------------------------------------------------------------------
# Relational adapter
# ---------------------------------------------------------------------------


class SqlTenantRegistry:
    """Tenant rows in the ``tenants`` table."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def upsert(
        self,
        tenant_id: str,
        owner_id: str,
        seed: str,
        status: TenantStatus,
        *,
        at: datetime,
    ) -> TenantRecord:
        record = TenantRecord(validate_tenant_id(tenant_id), owner_id, seed, status, at)
        await self.db.execute(
            "INSERT INTO tenants "
            "(tenant_id, owner_id, enrollment_seed, status, last_activity_at) "
            "VALUES (:tenant_id, :owner_id, :enrollment_seed, :status, :last_activity_at) "
            "ON CONFLICT(tenant_id) DO UPDATE SET "
            "owner_id = excluded.owner_id, "
            "enrollment_seed = excluded.enrollment_seed, "
            "status = excluded.status, "
            "last_activity_at = excluded.last_activity_at",
            record.to_dict(),
        )
        return record

    async def get(self, tenant_id: str) -> TenantRecord | None:
        row = await self.db.fetch_one(
            "SELECT * FROM tenants WHERE tenant_id = :tenant_id",
            {"tenant_id": tenant_id},
        )
        if row is None:
            return None
        try:
            return TenantRecord.from_dict(row)
        except ValueError as exc:
            raise StoreUnavailable(f"Cannot read metadata of {tenant_id}: {exc}") from exc

    async def list(self) -> list[TenantRecord]:
        rows = await self.db.fetch_all("SELECT * FROM tenants ORDER BY tenant_id")
        records: list[TenantRecord] = []
        for row in rows:
            try:
                records.append(TenantRecord.from_dict(row))
            except ValueError as exc:
                tenant_id = row.get("tenant_id")
                logger.warning(
                    "Skipping unreadable tenant %s: %s", tenant_id, exc, extra={"tenant": tenant_id}
                )
        return records

    async def remove(self, tenant_id: str) -> None:
        await self.db.execute(
            "DELETE FROM tenants WHERE tenant_id = :tenant_id",
            {"tenant_id": tenant_id},
        )


# ---------------------------------------------------------------------------
# Memory / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MemoryTenantRegistry:
    """In-memory test double keyed by tenant id.

    ``fail_tenants`` lists ids whose ``remove`` raises
    :class:`StoreUnavailable`, for exercising per-tenant isolation.
    """

    records: dict[str, TenantRecord] = field(default_factory=dict)
    fail_tenants: set[str] = field(default_factory=set)

    async def upsert(
        self,
        tenant_id: str,
        owner_id: str,
        seed: str,
        status: TenantStatus,
        *,
        at: datetime,
    ) -> TenantRecord:
        record = TenantRecord(tenant_id, owner_id, seed, status, at)
        self.records[tenant_id] = record
        return record

    async def get(self, tenant_id: str) -> TenantRecord | None:
        return self.records.get(tenant_id)

    async def list(self) -> list[TenantRecord]:
        return [self.records[key] for key in sorted(self.records)]

    async def remove(self, tenant_id: str) -> None:
        if tenant_id in self.fail_tenants:
            raise StoreUnavailable(f"Simulated remove failure for {tenant_id}")
        self.records.pop(tenant_id, None)
