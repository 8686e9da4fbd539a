"""Pytest plugin providing shared test fixtures for bothost.

Auto-registers ``fake_clock``, ``mock_engine``, ``memory_storage`` and
``supervisor`` fixtures for any test suite that depends on bothost.
Discovered through the ``pytest11`` entry point.

Imports of bothost modules are deferred into the fixture bodies: this
module is loaded during plugin discovery, before coverage tracing
starts.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from bothost._engine import MockEngine
    from bothost._storage import Storage
    from bothost._supervisor import ConnectionSupervisor
    from bothost.testing._clock import FakeClock


@pytest.fixture
def fake_clock() -> FakeClock:
    """FakeClock at the fixed test epoch."""
    from bothost.testing._clock import FakeClock

    return FakeClock()


@pytest.fixture
def mock_engine() -> MockEngine:
    """MockEngine whose sessions wait for the test to open them."""
    from bothost._engine import MockEngine

    return MockEngine()


@pytest.fixture
def memory_storage() -> Storage:
    """Memory credential store and tenant registry."""
    from bothost._storage import Storage

    return Storage.memory()


@pytest.fixture
async def supervisor(
    mock_engine: MockEngine,
    memory_storage: Storage,
    fake_clock: FakeClock,
) -> AsyncIterator[ConnectionSupervisor]:
    """ConnectionSupervisor over the companion doubles, shut down after the test.

    Uses millisecond backoff without jitter and three retries.
    """
    from bothost._reconnect import ReconnectPolicy
    from bothost._supervisor import ConnectionSupervisor

    sup = ConnectionSupervisor(
        engine=mock_engine,
        credentials=memory_storage.credentials,
        registry=memory_storage.registry,
        clock=fake_clock,
        policy=ReconnectPolicy(initial_delay=0.001, max_delay=0.01, jitter=0.0, max_retries=3),
        store_retry_interval=0.0,
    )
    yield sup
    await sup.shutdown()
