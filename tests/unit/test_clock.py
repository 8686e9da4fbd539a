"""Unit tests for bothost._clock and bothost.testing.FakeClock.

Test Techniques Used:
    - Protocol Conformance: isinstance checks for ClockPort
    - Specification-based Testing: timezone-aware UTC wall time
    - State-based Testing: FakeClock.advance()
"""

from __future__ import annotations

from datetime import UTC, timedelta

from bothost._clock import ClockPort, SystemClock
from bothost.testing import FakeClock


class TestSystemClock:
    """SystemClock production adapter.

    Technique: Specification-based Testing.
    """

    def test_satisfies_clock_port(self) -> None:
        assert isinstance(SystemClock(), ClockPort)

    def test_now_is_utc_aware(self) -> None:
        now = SystemClock().now()
        assert now.tzinfo is not None
        assert now.utcoffset() == timedelta(0)

    def test_now_does_not_go_backwards(self) -> None:
        clock = SystemClock()
        assert clock.now() <= clock.now()


class TestFakeClock:
    """FakeClock test double.

    Technique: State-based Testing.
    """

    def test_satisfies_clock_port(self) -> None:
        assert isinstance(FakeClock(), ClockPort)

    def test_starts_at_fixed_epoch(self) -> None:
        clock = FakeClock()
        assert clock.now() == clock.start
        assert clock.now().tzinfo is UTC

    def test_advance_moves_time_forward(self) -> None:
        clock = FakeClock()
        returned = clock.advance(days=4, hours=1)
        assert returned == clock.now()
        assert clock.now() - clock.start == timedelta(days=4, hours=1)
