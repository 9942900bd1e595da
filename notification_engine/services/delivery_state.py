"""Delivery lifecycle.

    SCHEDULED -> PENDING -> PROCESSING -> SENT -> DELIVERED
                                      \\-> FAILED -> PENDING (retry)

PENDING and SCHEDULED may also end in CANCELLED or EXPIRED. The functions
here only mutate the row in memory; persistence and claiming live in
``retry_manager``.
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Iterable, Optional

from notification_engine.core.errors import IllegalTransitionError
from notification_engine.models.enums import DeliveryStatus

logger = logging.getLogger(__name__)

S = DeliveryStatus

TRANSITIONS: Dict[DeliveryStatus, FrozenSet[DeliveryStatus]] = {
    S.SCHEDULED: frozenset({S.PENDING, S.CANCELLED, S.EXPIRED}),
    S.PENDING: frozenset({S.PROCESSING, S.CANCELLED, S.EXPIRED}),
    S.PROCESSING: frozenset({S.SENT, S.FAILED}),
    S.SENT: frozenset({S.DELIVERED, S.FAILED}),
    S.FAILED: frozenset({S.PENDING}),
    S.DELIVERED: frozenset(),
    S.CANCELLED: frozenset(),
    S.EXPIRED: frozenset(),
}

CANCELLABLE = (S.PENDING.value, S.SCHEDULED.value)


def can_transition(current: str, target: str) -> bool:
    return S(target) in TRANSITIONS[S(current)]


def transition(delivery, target: DeliveryStatus, now: datetime) -> None:
    if not can_transition(delivery.status, target.value):
        raise IllegalTransitionError(delivery.status, target.value)
    logger.debug("Delivery %s: %s -> %s", delivery.id, delivery.status, target.value)
    delivery.status = target.value
    delivery.updated_at = now


def is_terminal(delivery) -> bool:
    status = S(delivery.status)
    if status in (S.SENT, S.DELIVERED, S.CANCELLED, S.EXPIRED):
        return True
    return status == S.FAILED and delivery.next_retry_at is None


def backoff_seconds(retry_count: int, base: int = 60, cap: int = 3600) -> int:
    """Delay before automatic retry number ``retry_count`` (1-based)."""
    return min(base * (2 ** max(retry_count - 1, 0)), cap)


class RetryPolicy:
    """Decides whether a failure reason is worth an automatic retry.

    Reasons are opaque transport strings; operators can list prefixes of
    reasons known to be permanent (``non_retryable_reasons`` setting).
    """

    def __init__(self, non_retryable: Iterable[str] = (), base_seconds: int = 60, max_seconds: int = 3600):
        self.non_retryable = tuple(non_retryable)
        self.base_seconds = base_seconds
        self.max_seconds = max_seconds

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(settings.non_retryable_reasons, settings.retry_base_seconds, settings.retry_max_seconds)

    def is_retryable(self, reason: Optional[str]) -> bool:
        return not (reason and reason.startswith(self.non_retryable)) if self.non_retryable else True


def mark_sent(delivery, external_id: Optional[str], now: datetime) -> None:
    transition(delivery, S.SENT, now)
    delivery.sent_at = now
    delivery.external_id = external_id
    delivery.failure_reason = None
    delivery.next_retry_at = None


def mark_delivered(delivery, now: datetime) -> None:
    transition(delivery, S.DELIVERED, now)
    delivery.delivered_at = now


def mark_failed(delivery, reason: str, now: datetime, policy: RetryPolicy) -> bool:
    """Record a failed attempt. Returns True when an automatic retry was booked."""
    transition(delivery, S.FAILED, now)
    delivery.failure_reason = reason
    delivery.failed_at = now
    delivery.sent_at = None
    if delivery.retry_count < delivery.max_retries:
        delivery.retry_count += 1
    if delivery.retry_count < delivery.max_retries and policy.is_retryable(reason):
        delay = backoff_seconds(delivery.retry_count, policy.base_seconds, policy.max_seconds)
        delivery.next_retry_at = now + timedelta(seconds=delay)
        return True
    delivery.next_retry_at = None
    return False


def requeue(delivery, now: datetime) -> None:
    """SCHEDULED whose send time arrived, or FAILED whose retry is due, back to PENDING."""
    attempted = delivery.status == S.FAILED.value
    transition(delivery, S.PENDING, now)
    delivery.next_retry_at = None
    if attempted:
        # expiry only covers deliveries that were never attempted
        delivery.expires_at = None


def manual_retry(delivery, now: datetime) -> None:
    """Operator retry of an exhausted delivery; does not touch ``retry_count``."""
    if not (delivery.status == S.FAILED.value and delivery.next_retry_at is None):
        raise IllegalTransitionError(delivery.status, "PENDING (manual retry)")
    transition(delivery, S.PENDING, now)
    delivery.failure_reason = None
    delivery.failed_at = None
    delivery.expires_at = None
