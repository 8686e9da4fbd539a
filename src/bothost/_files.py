"""Filesystem layout shared by the file-backed stores.

Layout::

    <root>/
        alice/
            credentials.json   ← FileCredentialStore
            metadata.json      ← FileTenantRegistry
        bob/
            ...

Writes go to a temporary sibling and are moved into place with
``os.replace`` so a crash never leaves a half-written file behind.
Blocking calls run in a worker thread via :func:`asyncio.to_thread`.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from bothost._models import validate_tenant_id


def tenant_dir(root: Path, tenant_id: str) -> Path:
    """Directory holding every file of *tenant_id*."""
    return root / validate_tenant_id(tenant_id)


def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp)
        raise


def _read(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def _unlink(path: Path) -> None:
    path.unlink(missing_ok=True)
    # Drop the tenant directory once both files are gone.
    with contextlib.suppress(OSError):
        path.parent.rmdir()


async def write_text(path: Path, text: str) -> None:
    await asyncio.to_thread(_write_atomic, path, text)


async def read_text(path: Path) -> str | None:
    """Return the file content, or ``None`` when it does not exist."""
    return await asyncio.to_thread(_read, path)


async def remove(path: Path) -> None:
    """Delete *path* if present and prune its now-empty directory."""
    await asyncio.to_thread(_unlink, path)


async def write_json(path: Path, data: dict[str, Any]) -> None:
    await write_text(path, json.dumps(data, indent=2, sort_keys=True))


async def read_json(path: Path) -> dict[str, Any] | None:
    text = await read_text(path)
    if text is None:
        return None
    return json.loads(text)


def list_tenant_dirs(root: Path, filename: str) -> list[str]:
    """Tenant ids under *root* that contain *filename*, sorted."""
    if not root.is_dir():
        return []
    return sorted(
        entry.name
        for entry in root.iterdir()
        if entry.is_dir() and (entry / filename).is_file()
    )
