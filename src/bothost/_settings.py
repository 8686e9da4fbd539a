"""Application configuration via pydantic-settings.

Configuration is loaded from environment variables and/or ``.env``
files.  All variables carry the ``BOTHOST_`` prefix and nested models
use ``__`` as the delimiter, e.g. ``BOTHOST_SERVER__PORT=8080``.

The schema covers:

* **Server** — HTTP bind address.
* **Storage** — backend connection string shared by the credential
  store and the tenant registry.
* **Engine** — where the external messaging bridge listens.
* **Reconnect** — backoff policy for transient disconnects.
* **Sweeper** — retention window and sweep interval.
* **Logging** — level, format, optional file sink, rotation.

All durations are in **seconds**.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from bothost._reconnect import ReconnectPolicy

_THREE_DAYS = 3 * 24 * 60 * 60.0

# -------------------------------------------------------------------
# Sub-models (BaseModel, NOT BaseSettings — nested via composition)
# -------------------------------------------------------------------


class ServerSettings(BaseModel):
    """HTTP bind address.

    Environment variables::

        BOTHOST_SERVER__HOST=0.0.0.0
        BOTHOST_SERVER__PORT=3000
    """

    host: str = Field(
        default="0.0.0.0",  # noqa: S104
        description="Interface the HTTP server binds to.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=3000,
        description="HTTP server port.",
    )


class StorageSettings(BaseModel):
    """Persistence backend for credentials and tenant metadata.

    The ``url`` selects the backend:

    - ``./sessions`` or ``/var/lib/bothost`` or ``file:<dir>`` — one
      directory per tenant (single process only).
    - ``sqlite:/path/to/bothost.db`` — two relational tables, safe to
      share between processes on one host.
    - ``memory:`` — in-process only, lost on exit.
    """

    url: str = Field(
        default="./sessions",
        description="Storage connection string.",
    )


class EngineSettings(BaseModel):
    """External messaging bridge connection."""

    bridge_url: str = Field(
        default="ws://localhost:3001",
        description="WebSocket URL of the protocol bridge.",
    )
    bridge_token: SecretStr | None = Field(
        default=None,
        description="Optional token sent to the bridge before any command.",
    )


class ReconnectSettings(BaseModel):
    """Backoff policy applied after transient disconnects."""

    initial_delay: Annotated[float, Field(ge=0)] = Field(
        default=1.0,
        description="Seconds to wait before the first reconnect attempt.",
    )
    max_delay: Annotated[float, Field(ge=0)] = Field(
        default=300.0,
        description="Upper bound for the exponential backoff delay.",
    )
    multiplier: Annotated[float, Field(ge=1)] = Field(
        default=2.0,
        description="Factor applied to the delay after each failure.",
    )
    jitter: Annotated[float, Field(ge=0, le=1)] = Field(
        default=0.1,
        description="Fractional random spread applied to each delay.",
    )
    max_retries: Annotated[int, Field(ge=0)] | None = Field(
        default=10,
        description=(
            "Consecutive transient failures tolerated before the tenant "
            "is marked as failed.  ``None`` retries forever."
        ),
    )

    def to_policy(self) -> ReconnectPolicy:
        """Build the immutable policy consumed by the state machine."""
        return ReconnectPolicy(
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            multiplier=self.multiplier,
            jitter=self.jitter,
            max_retries=self.max_retries,
        )


class SweeperSettings(BaseModel):
    """Cleanup of idle tenants."""

    retention_s: Annotated[float, Field(gt=0)] = Field(
        default=_THREE_DAYS,
        description="Tenants idle for longer than this are evicted.",
    )
    interval_s: Annotated[float, Field(gt=0)] = Field(
        default=3600.0,
        description="Seconds between two sweeps.",
    )


class LoggingSettings(BaseModel):
    """Logging configuration.

    When ``file`` is set, logs are also written to a rotating file
    (size-based rotation, ``backup_count`` generations kept).  When
    ``None``, logs go to stderr only.

    The ``format`` field selects the output format:

    - ``"json"`` (default) — structured JSON lines for container
      log aggregators.
    - ``"text"`` — human-readable timestamped format for local
      development and direct terminal use.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format: 'json' lines or 'text'.",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description=(
            "Maximum log file size in megabytes before rotation. "
            "Only applies when ``file`` is set."
        ),
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings for a bothost server.

    Example ``.env``::

        BOTHOST_SERVER__PORT=3000
        BOTHOST_STORAGE__URL=sqlite:/var/lib/bothost/bothost.db
        BOTHOST_ENGINE__BRIDGE_URL=ws://bridge:3001
        BOTHOST_ADMIN_SECRET=change-me
        BOTHOST_MAX_TENANTS=50
        BOTHOST_SWEEPER__RETENTION_S=259200
        BOTHOST_LOGGING__FORMAT=text
    """

    model_config = SettingsConfigDict(
        env_prefix="BOTHOST_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    server: ServerSettings = Field(default_factory=ServerSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    reconnect: ReconnectSettings = Field(default_factory=ReconnectSettings)
    sweeper: SweeperSettings = Field(default_factory=SweeperSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    max_tenants: Annotated[int, Field(ge=1)] = Field(
        default=50,
        description="Enrollments are refused once this many tenants exist.",
    )
    admin_secret: SecretStr | None = Field(
        default=None,
        description=(
            "Shared secret for the admin endpoints.  When unset every "
            "admin request is refused."
        ),
    )
    restore_on_startup: bool = Field(
        default=True,
        description="Reconnect tenants left connecting/connected by a previous run.",
    )
    store_retry_interval: Annotated[float, Field(ge=0)] = Field(
        default=1.0,
        description="Seconds between retries of a failed storage write.",
    )
    store_retry_attempts: Annotated[int, Field(ge=1)] = Field(
        default=5,
        description=(
            "Attempts for metadata writes.  Credential writes are retried "
            "until they succeed or the tenant is stopped."
        ),
    )
