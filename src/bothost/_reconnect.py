"""Per-tenant reconnect state machine.

States::

    CONNECTING ──Opened──▶ OPEN ──Closed──▶ CLOSED ─┬─transient──▶ RESUMING ──▶ CONNECTING
         │                                         └─terminal───▶ TERMINATED
         └──────────────Closed─────────────────────▶ (same branch)

The machine is pure: it consumes typed engine events and returns the
commands the supervisor must execute, in order.  It never performs
I/O, which keeps the transition table testable without an engine or a
store.

Transient disconnects are retried with bounded exponential backoff.
After ``max_retries`` consecutive transient failures without reaching
OPEN the tenant is terminated as well; the command records whether the
cause was an invalid credential or exhausted retries.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import StrEnum

from bothost._engine import Closed, CredentialsRotated, DisconnectReason, Opened, SessionEvent

# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ReconnectPolicy:
    """Bounded exponential backoff.

    ``delay(n)`` for the *n*-th consecutive failure (1-based) is
    ``min(max_delay, initial_delay * multiplier ** (n - 1))``, spread by
    ``± jitter`` of itself.
    """

    initial_delay: float = 1.0
    max_delay: float = 300.0
    multiplier: float = 2.0
    jitter: float = 0.1
    max_retries: int | None = 10

    def delay(self, attempt: int, *, rng: random.Random | None = None) -> float:
        base = min(self.max_delay, self.initial_delay * self.multiplier ** max(attempt - 1, 0))
        if self.jitter <= 0 or base <= 0:
            return base
        spread = (rng or random).uniform(-self.jitter, self.jitter)
        return max(0.0, base * (1 + spread))

    def exhausted(self, attempt: int) -> bool:
        """Whether *attempt* consecutive failures exceed the retry budget."""
        return self.max_retries is not None and attempt > self.max_retries


# ---------------------------------------------------------------------------
# States and commands
# ---------------------------------------------------------------------------


class SessionState(StrEnum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    RESUMING = "resuming"
    TERMINATED = "terminated"


@dataclass(frozen=True, slots=True)
class MarkConnected:
    """Persist status ``connected`` and clear any terminal flag."""


@dataclass(frozen=True, slots=True)
class PersistCredentials:
    """Store the rotated credentials, then acknowledge the event."""

    event: CredentialsRotated


@dataclass(frozen=True, slots=True)
class Resume:
    """Reconnect after *delay* seconds; persisted status stays as is."""

    delay: float
    attempt: int
    reason: DisconnectReason


@dataclass(frozen=True, slots=True)
class Evict:
    """Give up on the tenant until it is deleted and re-enrolled."""

    reason: DisconnectReason
    retries_exhausted: bool = False


type Command = MarkConnected | PersistCredentials | Resume | Evict

# ---------------------------------------------------------------------------
# Machine
# ---------------------------------------------------------------------------


class SessionMachine:
    """Transition table for one tenant's connection lifecycle."""

    def __init__(self, policy: ReconnectPolicy, *, rng: random.Random | None = None) -> None:
        self.policy = policy
        self.state = SessionState.CONNECTING
        self.attempts = 0
        self._rng = rng

    @property
    def terminated(self) -> bool:
        return self.state is SessionState.TERMINATED

    def on_event(self, event: SessionEvent) -> list[Command]:
        if self.state is SessionState.TERMINATED:
            return []

        if isinstance(event, CredentialsRotated):
            return [PersistCredentials(event)]

        if isinstance(event, Opened):
            self.state = SessionState.OPEN
            self.attempts = 0
            return [MarkConnected()]

        if isinstance(event, Closed):
            return self._on_closed(event)

        msg = f"Unknown session event: {event!r}"
        raise TypeError(msg)

    def _on_closed(self, event: Closed) -> list[Command]:
        self.state = SessionState.CLOSED
        if event.is_terminal:
            self.state = SessionState.TERMINATED
            return [Evict(event.reason)]

        self.attempts += 1
        if self.policy.exhausted(self.attempts):
            self.state = SessionState.TERMINATED
            return [Evict(event.reason, retries_exhausted=True)]

        self.state = SessionState.RESUMING
        delay = self.policy.delay(self.attempts, rng=self._rng)
        return [Resume(delay=delay, attempt=self.attempts, reason=event.reason)]

    def resuming(self) -> None:
        """Backoff elapsed; a new connect attempt begins."""
        if self.state is SessionState.RESUMING:
            self.state = SessionState.CONNECTING
