"""Storage backend selection from a connection string.

The credential store and the tenant registry always share one backend
so that a tenant's metadata and credentials live side by side.

Connection string formats:

- ``"memory:"`` → in-memory doubles (tests, throwaway runs)
- ``"/var/lib/bothost"`` or ``"./sessions"`` → filesystem tree
- ``"file:/var/lib/bothost"`` → filesystem tree
- ``"sqlite:/var/lib/bothost/bothost.db"`` → SQLite tables
- ``"sqlite::memory:"`` → SQLite in-memory
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from bothost._credentials import (
    CredentialStore,
    FileCredentialStore,
    MemoryCredentialStore,
    SqlCredentialStore,
)
from bothost._registry import (
    FileTenantRegistry,
    MemoryTenantRegistry,
    SqlTenantRegistry,
    TenantRegistry,
)
from bothost._sql import Database

logger = logging.getLogger(__name__)


async def _nothing() -> None:
    return None


@dataclass
class Storage:
    """Credential store and tenant registry over one backend."""

    credentials: CredentialStore
    registry: TenantRegistry
    _close: Callable[[], Awaitable[None]] = field(default=_nothing, repr=False)

    async def aclose(self) -> None:
        await self._close()

    @classmethod
    def memory(cls) -> Storage:
        return cls(credentials=MemoryCredentialStore(), registry=MemoryTenantRegistry())


async def open_storage(url: str) -> Storage:
    """Open the backend described by *url*.

    Raises:
        ValueError: If the connection string format is not recognised.
        StoreUnavailable: If the SQLite database cannot be opened.
    """
    if url.startswith(("/", "./", "../")):
        return _file_storage(url)

    if ":" not in url:
        msg = (
            f"Invalid storage url: '{url}'. "
            "Expected 'type:connection_info' or a path (absolute or relative)."
        )
        raise ValueError(msg)

    kind, info = url.split(":", 1)
    kind = kind.lower()

    if kind == "memory":
        return Storage.memory()

    if kind == "file":
        return _file_storage(info)

    if kind == "sqlite":
        db = Database(info)
        await db.open()
        return Storage(
            credentials=SqlCredentialStore(db),
            registry=SqlTenantRegistry(db),
            _close=db.close,
        )

    msg = f"Unknown storage type: '{kind}'. Supported: memory, file, sqlite"
    raise ValueError(msg)


def _file_storage(root: str) -> Storage:
    logger.info("Using filesystem storage at %s", root)
    return Storage(
        credentials=FileCredentialStore(root),
        registry=FileTenantRegistry(root),
    )
