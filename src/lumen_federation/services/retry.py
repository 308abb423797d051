"""Processing outcomes and bounded retry bookkeeping.

Inbound jobs and outbound destinations share the same retry model: an
attempt counter plus the earliest time the next attempt may run. The state
machine knows nothing about queues or sleeping, callers decide how to wait.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    TRANSIENT = "transientFailure"
    PERMANENT = "permanentFailure"


@dataclass(frozen=True)
class ProcessingOutcome:
    """Result of processing one queued job."""

    kind: OutcomeKind
    reason: str | None = None

    @classmethod
    def success(cls) -> ProcessingOutcome:
        return cls(OutcomeKind.SUCCESS)

    @classmethod
    def transient(cls, reason: str) -> ProcessingOutcome:
        return cls(OutcomeKind.TRANSIENT, reason)

    @classmethod
    def permanent(cls, reason: str) -> ProcessingOutcome:
        return cls(OutcomeKind.PERMANENT, reason)

    @property
    def is_success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt bound and exponential backoff schedule."""

    max_attempts: int
    base_delay_seconds: float
    max_delay_seconds: float

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        delay = self.base_delay_seconds * (2 ** max(0, attempt - 1))
        return min(delay, self.max_delay_seconds)


class RetryStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RetryState:
    """Progress of one unit of work through its retry budget."""

    policy: RetryPolicy
    attempts: int = 0
    next_eligible_at: datetime | None = None
    status: RetryStatus = RetryStatus.PENDING
    last_error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not RetryStatus.PENDING

    def is_eligible(self, now: datetime) -> bool:
        if self.is_terminal:
            return False
        return self.next_eligible_at is None or now >= self.next_eligible_at

    def seconds_until_eligible(self, now: datetime) -> float:
        if self.next_eligible_at is None:
            return 0.0
        return max(0.0, (self.next_eligible_at - now).total_seconds())

    def record_attempt(self) -> int:
        """Count an attempt that is about to run and return its number."""
        if self.is_terminal:
            raise RuntimeError("cannot attempt terminal work again")
        self.attempts += 1
        return self.attempts

    def record_success(self) -> None:
        self.status = RetryStatus.SUCCEEDED
        self.next_eligible_at = None
        self.last_error = None

    def record_failure(self, now: datetime, error: str, *, retryable: bool = True) -> None:
        """Record a failed attempt; schedules the next one while budget remains."""
        self.last_error = error
        if retryable and self.attempts < self.policy.max_attempts:
            self.next_eligible_at = now + timedelta(seconds=self.policy.delay_for(self.attempts))
            return
        self.status = RetryStatus.FAILED
        self.next_eligible_at = None
