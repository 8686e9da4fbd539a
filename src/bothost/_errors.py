"""Error kinds and structured error payloads.

Every failure the lifecycle manager knows about derives from
:class:`BotHostError` and carries the HTTP status the API layer maps
it to.  Validation errors (:class:`InvalidSeed`,
:class:`DuplicateTenant`, :class:`CapacityExceeded`) are raised
synchronously to the caller of an enrollment.  Connection faults
(:class:`TransientConnectionFault`, :class:`TerminalConnectionFault`)
are handled inside the per-tenant task and never cross the HTTP
response boundary; the supervisor turns them into the tenant's last
fault payload, which ``GET /api/users`` reports as ``lastError``.

Payload schema::

    {
        "error_type": "invalid_seed",
        "message": "Human-readable error description",
        "tenant": "alice" | null,
        "timestamp": "2026-02-14T12:34:56+00:00",
        "details": {}
    }
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class BotHostError(Exception):
    """Base class for all bothost errors."""

    status_code: int = 500


class InvalidSeed(BotHostError):
    """Enrollment seed is not decodable or misses required fields."""

    status_code = 400


class DuplicateTenant(BotHostError):
    """A tenant with this id is already registered."""

    status_code = 400


class CapacityExceeded(BotHostError):
    """The configured tenant cap has been reached."""

    status_code = 429


class Unauthorized(BotHostError):
    """Admin shared secret missing or wrong."""

    status_code = 401


class TransientConnectionFault(BotHostError):
    """Disconnect expected to clear by reconnecting with the same credentials."""


class TerminalConnectionFault(BotHostError):
    """Disconnect after which the stored credentials are useless."""


class StoreUnavailable(BotHostError):
    """A credential or metadata backend could not complete an operation."""

    status_code = 503


ERROR_TYPES: dict[type[Exception], str] = {
    InvalidSeed: "invalid_seed",
    DuplicateTenant: "duplicate_tenant",
    CapacityExceeded: "capacity_exceeded",
    Unauthorized: "unauthorized",
    TransientConnectionFault: "transient_connection_fault",
    TerminalConnectionFault: "terminal_connection_fault",
    StoreUnavailable: "store_unavailable",
}
"""Exact-class mapping from exception types to ``error_type`` strings."""

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """Immutable structured error payload.

    Represents a single error event ready for JSON serialisation,
    either as an HTTP error body or as a log attachment.
    """

    error_type: str
    message: str
    tenant: str | None
    timestamp: str
    details: dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Serialise to a plain dictionary."""
        return asdict(self)

    def to_json(self) -> str:
        """Serialise to a JSON string."""
        return json.dumps(self.to_dict())


# ---------------------------------------------------------------------------
# Payload builder
# ---------------------------------------------------------------------------


def build_error_payload(
    error: Exception,
    *,
    error_type_map: dict[type[Exception], str] | None = None,
    tenant: str | None = None,
    details: dict[str, object] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ErrorPayload:
    """Convert an exception into a structured :class:`ErrorPayload`.

    Looks up the exact class of the exception; subclasses are not matched.

    Args:
        error: The exception to convert.
        error_type_map: Mapping from exception types to machine-readable
            ``error_type`` strings.  Defaults to :data:`ERROR_TYPES`.
            Falls back to ``"error"`` for unmapped types.
        tenant: Optional tenant id to include in the payload.
        details: Optional dict of additional context.
        clock: Optional callable returning a :class:`~datetime.datetime`.
            Defaults to ``datetime.now(UTC)``.

    Returns:
        A frozen dataclass ready for serialisation.
    """
    resolved_map = ERROR_TYPES if error_type_map is None else error_type_map
    error_type = resolved_map.get(type(error), "error")
    now = clock() if clock is not None else datetime.now(UTC)
    return ErrorPayload(
        error_type=error_type,
        message=str(error),
        tenant=tenant,
        timestamp=now.isoformat(),
        details=details or {},
    )
