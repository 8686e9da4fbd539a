"""Wall-clock port and system adapter.

Provides ClockPort (Protocol) and SystemClock for timestamping tenant
activity.

**Why wall time?** ``last_activity_at`` is persisted and compared
across process restarts by the cleanup sweeper, so a monotonic epoch
would be meaningless once written to disk.  All timestamps are
timezone-aware UTC.

Backoff sleeps do not go through this port; they use
``asyncio.sleep`` directly.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Wall clock used for activity timestamps and retention checks.

    The default implementation wraps ``datetime.now(UTC)``.  Tests
    inject a deterministic fake clock so retention windows can be
    crossed without waiting.
    """

    def now(self) -> datetime:
        """Return the current time as a timezone-aware UTC datetime."""
        ...


class SystemClock:
    """Production clock wrapping ``datetime.now(UTC)``.

    Satisfies :class:`ClockPort` via structural subtyping — no
    base-class inheritance required (PEP 544).
    """

    def now(self) -> datetime:
        """Return the current UTC time."""
        return datetime.now(UTC)
