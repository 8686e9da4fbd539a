"""Credential store port and adapters.

Provides CredentialStore (Protocol) and three implementations:

- FileCredentialStore — one JSON file per tenant directory
- SqlCredentialStore — one row per tenant in the ``credentials`` table
- MemoryCredentialStore — test double that records calls

Contract shared by all adapters:

- ``load`` returns ``None`` when nothing is stored.
- ``save`` replaces the stored state wholesale and is visible to the
  next ``load`` once it returns.
- ``delete`` is idempotent.
- Backend failures surface as :class:`StoreUnavailable`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import ValidationError

from bothost import _files
from bothost._errors import StoreUnavailable
from bothost._models import CredentialState, validate_tenant_id
from bothost._sql import Database

logger = logging.getLogger(__name__)

CREDENTIALS_FILE = "credentials.json"

# ---------------------------------------------------------------------------
# Port (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class CredentialStore(Protocol):
    """Port contract for persisted credential state."""

    async def load(self, tenant_id: str) -> CredentialState | None: ...

    async def save(self, tenant_id: str, state: CredentialState) -> None: ...

    async def delete(self, tenant_id: str) -> None: ...


# ---------------------------------------------------------------------------
# Filesystem adapter
# ---------------------------------------------------------------------------


class FileCredentialStore:
    """Credential files under ``<root>/<tenant_id>/credentials.json``.

    Only safe for a single process: there is no cross-process locking.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _path(self, tenant_id: str) -> Path:
        return _files.tenant_dir(self.root, tenant_id) / CREDENTIALS_FILE

    async def load(self, tenant_id: str) -> CredentialState | None:
        try:
            text = await _files.read_text(self._path(tenant_id))
            return None if text is None else CredentialState.from_json(text)
        except (OSError, ValidationError) as exc:
            raise StoreUnavailable(f"Cannot read credentials of {tenant_id}: {exc}") from exc

    async def save(self, tenant_id: str, state: CredentialState) -> None:
        try:
            await _files.write_text(self._path(tenant_id), state.to_json())
        except OSError as exc:
            raise StoreUnavailable(f"Cannot write credentials of {tenant_id}: {exc}") from exc
        logger.debug("Saved credentials of %s", tenant_id)

    async def delete(self, tenant_id: str) -> None:
        try:
            await _files.remove(self._path(tenant_id))
        except OSError as exc:
            raise StoreUnavailable(f"Cannot delete credentials of {tenant_id}: {exc}") from exc


# ---------------------------------------------------------------------------
# Relational adapter
# ---------------------------------------------------------------------------


class SqlCredentialStore:
    """Credential rows in the ``credentials`` table, payload as JSON text."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def load(self, tenant_id: str) -> CredentialState | None:
        row = await self.db.fetch_one(
            "SELECT payload FROM credentials WHERE tenant_id = :tenant_id",
            {"tenant_id": tenant_id},
        )
        if row is None:
            return None
        try:
            return CredentialState.from_json(row["payload"])
        except ValidationError as exc:
            raise StoreUnavailable(f"Corrupt credentials for {tenant_id}: {exc}") from exc

    async def save(self, tenant_id: str, state: CredentialState) -> None:
        await self.db.execute(
            "INSERT INTO credentials (tenant_id, payload, updated_at) "
            "VALUES (:tenant_id, :payload, :updated_at) "
            "ON CONFLICT(tenant_id) DO UPDATE SET "
            "payload = excluded.payload, updated_at = excluded.updated_at",
            {
                "tenant_id": validate_tenant_id(tenant_id),
                "payload": state.to_json(),
                "updated_at": datetime.now(UTC).isoformat(),
            },
        )
        logger.debug("Saved credentials of %s", tenant_id)

    async def delete(self, tenant_id: str) -> None:
        await self.db.execute(
            "DELETE FROM credentials WHERE tenant_id = :tenant_id",
            {"tenant_id": tenant_id},
        )


# ---------------------------------------------------------------------------
# Memory / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MemoryCredentialStore:
    """In-memory test double that records credential operations.

    ``fail_saves`` makes the next *n* ``save`` calls raise
    :class:`StoreUnavailable`, for exercising the retry path.
    """

    states: dict[str, CredentialState] = field(default_factory=dict)
    saves: list[tuple[str, CredentialState]] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)
    fail_saves: int = 0

    async def load(self, tenant_id: str) -> CredentialState | None:
        state = self.states.get(tenant_id)
        return None if state is None else state.model_copy(deep=True)

    async def save(self, tenant_id: str, state: CredentialState) -> None:
        if self.fail_saves > 0:
            self.fail_saves -= 1
            raise StoreUnavailable(f"Simulated save failure for {tenant_id}")
        self.states[tenant_id] = state.model_copy(deep=True)
        self.saves.append((tenant_id, state))

    async def delete(self, tenant_id: str) -> None:
        self.states.pop(tenant_id, None)
        self.deletes.append(tenant_id)
