"""Tenant and credential value objects.

A tenant is identified by a caller-chosen ``tenant_id`` which doubles
as directory name and primary key in the storage backends, so it is
restricted to a conservative character set.

:class:`CredentialState` is opaque to the lifecycle manager: it only
needs to be stored, loaded and handed to the engine unchanged.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, Field

_TENANT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")


def validate_tenant_id(tenant_id: str) -> str:
    """Return *tenant_id* unchanged, or raise ``ValueError``."""
    if not _TENANT_ID_RE.match(tenant_id):
        msg = (
            f"Invalid tenant id {tenant_id!r}: use 1-64 letters, digits, "
            "'_', '-' or '.', starting with a letter or digit"
        )
        raise ValueError(msg)
    return tenant_id


class TenantStatus(StrEnum):
    """Persisted lifecycle status of a tenant."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class TenantRecord:
    """Durable metadata of one tenant, independent of any live connection."""

    tenant_id: str
    owner_id: str
    enrollment_seed: str
    status: TenantStatus
    last_activity_at: datetime

    def to_dict(self) -> dict[str, str]:
        """Serialise to a JSON-compatible dictionary."""
        return {
            "tenant_id": self.tenant_id,
            "owner_id": self.owner_id,
            "enrollment_seed": self.enrollment_seed,
            "status": self.status.value,
            "last_activity_at": self.last_activity_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Inverse of :meth:`to_dict`; also accepts SQL rows.

        Raises:
            ValueError: If a field is missing or malformed.
        """
        try:
            return cls(
                tenant_id=data["tenant_id"],
                owner_id=data["owner_id"],
                enrollment_seed=data["enrollment_seed"],
                status=TenantStatus(data["status"]),
                last_activity_at=datetime.fromisoformat(data["last_activity_at"]),
            )
        except KeyError as exc:
            msg = f"Malformed tenant record: missing {exc.args[0]}"
            raise ValueError(msg) from exc
        except TypeError as exc:
            msg = f"Malformed tenant record: {exc}"
            raise ValueError(msg) from exc


class CredentialState(BaseModel):
    """Key material needed to resume a session without re-enrollment.

    ``creds`` holds the authentication keys (identity, device, noise and
    signed pre-keys in the usual protocol libraries); ``keys`` holds the
    rotating key store.  Neither is interpreted here.
    """

    creds: dict[str, Any]
    keys: dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str | bytes) -> Self:
        return cls.model_validate_json(raw)
