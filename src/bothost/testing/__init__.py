"""Public test-support utilities for bothost.

Re-exports test doubles and factories so that consumer test suites can
import everything from a single ``bothost.testing`` namespace instead
of reaching into private modules.

Provided symbols:

- :class:`HostHarness` — a :class:`~bothost.BotHost` wired to test doubles.
- :class:`MockEngine` / :class:`MockSession` — test-driven engine.
- :class:`MemoryCredentialStore` / :class:`MemoryTenantRegistry` — storage doubles.
- :class:`FakeClock` — settable wall clock.
- :func:`make_settings` — ``Settings`` without ``.env`` or environment.
- :func:`make_seed` — a valid enrollment seed for a tenant.
- :func:`wait_until` — poll a condition while background tasks run.
"""

from bothost._credentials import MemoryCredentialStore
from bothost._engine import MockEngine, MockSession
from bothost._registry import MemoryTenantRegistry
from bothost.testing._clock import FakeClock
from bothost.testing._harness import HostHarness, make_seed, wait_until
from bothost.testing._settings import make_settings

__all__ = [
    "FakeClock",
    "HostHarness",
    "MemoryCredentialStore",
    "MemoryTenantRegistry",
    "MockEngine",
    "MockSession",
    "make_seed",
    "make_settings",
    "wait_until",
]
