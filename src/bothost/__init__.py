"""bothost.

Multi-tenant bot session host: keeps one authenticated messaging
session alive per tenant, persists rotating credentials, and evicts
tenants that fail terminally or go inactive.
"""

from importlib.metadata import PackageNotFoundError, version

from bothost._api import create_api
from bothost._app import BotHost
from bothost._clock import ClockPort, SystemClock
from bothost._credentials import (
    CredentialStore,
    FileCredentialStore,
    MemoryCredentialStore,
    SqlCredentialStore,
)
from bothost._engine import (
    BridgeEngine,
    Closed,
    CredentialsRotated,
    DisconnectReason,
    EnginePort,
    Opened,
    SessionEvent,
    SessionHandle,
)
from bothost._errors import (
    BotHostError,
    CapacityExceeded,
    DuplicateTenant,
    ErrorPayload,
    InvalidSeed,
    StoreUnavailable,
    TerminalConnectionFault,
    TransientConnectionFault,
    Unauthorized,
    build_error_payload,
)
from bothost._logging import JsonFormatter, configure_logging
from bothost._models import CredentialState, TenantRecord, TenantStatus
from bothost._reconnect import ReconnectPolicy, SessionMachine, SessionState
from bothost._registry import (
    FileTenantRegistry,
    MemoryTenantRegistry,
    SqlTenantRegistry,
    TenantRegistry,
)
from bothost._seed import decode_seed, encode_seed
from bothost._service import TenantService, TenantView
from bothost._settings import LoggingSettings, Settings
from bothost._storage import Storage, open_storage
from bothost._supervisor import ConnectionRegistry, ConnectionSupervisor
from bothost._sweeper import CleanupSweeper

try:
    __version__ = version("bothost")
except PackageNotFoundError:
    # Editable installs without metadata
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # App
    "BotHost",
    "create_api",
    # Clock
    "ClockPort",
    "SystemClock",
    # Credentials
    "CredentialState",
    "CredentialStore",
    "FileCredentialStore",
    "MemoryCredentialStore",
    "SqlCredentialStore",
    "decode_seed",
    "encode_seed",
    # Registry
    "FileTenantRegistry",
    "MemoryTenantRegistry",
    "SqlTenantRegistry",
    "TenantRecord",
    "TenantRegistry",
    "TenantStatus",
    "Storage",
    "open_storage",
    # Engine
    "BridgeEngine",
    "Closed",
    "CredentialsRotated",
    "DisconnectReason",
    "EnginePort",
    "Opened",
    "SessionEvent",
    "SessionHandle",
    # Lifecycle
    "CleanupSweeper",
    "ConnectionRegistry",
    "ConnectionSupervisor",
    "ReconnectPolicy",
    "SessionMachine",
    "SessionState",
    "TenantService",
    "TenantView",
    # Errors
    "BotHostError",
    "CapacityExceeded",
    "DuplicateTenant",
    "ErrorPayload",
    "InvalidSeed",
    "StoreUnavailable",
    "TerminalConnectionFault",
    "TransientConnectionFault",
    "Unauthorized",
    "build_error_payload",
    # Logging
    "JsonFormatter",
    "configure_logging",
    # Settings
    "LoggingSettings",
    "Settings",
]
