"""Delivery status transitions and retry backoff."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from delivery_service.core.exceptions import InvalidStatusTransitionError
from delivery_service.domain.enums import DeliveryStatus
from delivery_service.domain.models import DeliveryAttempt, Endpoint, Outcome

DELIVERY_TRANSITIONS: dict[DeliveryStatus, set[DeliveryStatus]] = {
    DeliveryStatus.PENDING: {DeliveryStatus.SUCCESS, DeliveryStatus.RETRYING, DeliveryStatus.FAILED},
    DeliveryStatus.RETRYING: {DeliveryStatus.PENDING, DeliveryStatus.FAILED},
    DeliveryStatus.FAILED: {DeliveryStatus.RETRYING},
    DeliveryStatus.SUCCESS: set(),
}

_MAX_EXPONENT = 32


def validate_delivery_transition(current: DeliveryStatus, new: DeliveryStatus) -> None:
    if current == new:
        return
    if new not in DELIVERY_TRANSITIONS.get(current, set()):
        raise InvalidStatusTransitionError(
            f"Invalid delivery status transition: {current.value} → {new.value}"
        )


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff: ``base_delay * 2**retry_count`` capped at ``max_delay``."""

    base_delay: timedelta
    max_delay: timedelta = timedelta(hours=1)

    @classmethod
    def for_endpoint(cls, endpoint: Endpoint, max_delay_seconds: float) -> "BackoffPolicy":
        return cls(
            base_delay=timedelta(milliseconds=endpoint.retry_delay_ms),
            max_delay=timedelta(seconds=max_delay_seconds),
        )

    def delay(self, retry_count: int) -> timedelta:
        exponent = min(max(retry_count, 0), _MAX_EXPONENT)
        seconds = self.base_delay.total_seconds() * (2**exponent)
        return min(timedelta(seconds=seconds), self.max_delay)


@dataclass(frozen=True)
class Transition:
    """Fields written when an in-flight attempt completes."""

    status: DeliveryStatus
    next_retry_at: datetime | None
    last_error: str | None


def next_transition(
    attempt: DeliveryAttempt,
    endpoint: Endpoint,
    outcome: Outcome,
    now: datetime,
    policy: BackoffPolicy,
) -> Transition:
    """Decide where an executed attempt goes next.

    ``retry_count`` counts retries already claimed, so an endpoint with
    ``max_retries = N`` gets at most ``N + 1`` executions before ``failed``.
    """
    if outcome.success:
        target = Transition(DeliveryStatus.SUCCESS, None, None)
    elif not outcome.retryable or attempt.retry_count >= endpoint.max_retries:
        target = Transition(DeliveryStatus.FAILED, None, outcome.error)
    else:
        target = Transition(
            DeliveryStatus.RETRYING,
            now + policy.delay(attempt.retry_count),
            outcome.error,
        )
    validate_delivery_transition(attempt.status, target.status)
    return target
