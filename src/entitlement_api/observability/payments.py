"""In-memory counters for checkout, push notification, reconciliation and grant flows."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class CheckoutEventLog:
    last_success_at: datetime | None = None
    last_success_order_id: str | None = None
    last_failure_at: datetime | None = None
    last_failure_reason: str | None = None


@dataclass
class NotificationEventLog:
    last_event_at: datetime | None = None
    last_event_topic: str | None = None
    last_event_payment_id: str | None = None
    last_failure_at: datetime | None = None
    last_failure_topic: str | None = None
    last_failure_reason: str | None = None


@dataclass
class InconsistencyEventLog:
    last_detected_at: datetime | None = None
    last_order_id: str | None = None


@dataclass
class PaymentObservabilitySnapshot:
    checkout_totals: Dict[str, int]
    notification_totals: Dict[str, Dict[str, int]]
    reconciliation_totals: Dict[str, int]
    grant_totals: Dict[str, int]
    inconsistency_total: int
    checkout_events: CheckoutEventLog
    notification_events: NotificationEventLog
    inconsistency_events: InconsistencyEventLog

    def as_dict(self) -> Dict[str, object]:
        return {
            "checkout": {
                "totals": self.checkout_totals,
                "events": {
                    "last_success_at": _iso(self.checkout_events.last_success_at),
                    "last_success_order_id": self.checkout_events.last_success_order_id,
                    "last_failure_at": _iso(self.checkout_events.last_failure_at),
                    "last_failure_reason": self.checkout_events.last_failure_reason,
                },
            },
            "notifications": {
                "totals": self.notification_totals,
                "events": {
                    "last_event_at": _iso(self.notification_events.last_event_at),
                    "last_event_topic": self.notification_events.last_event_topic,
                    "last_event_payment_id": self.notification_events.last_event_payment_id,
                    "last_failure_at": _iso(self.notification_events.last_failure_at),
                    "last_failure_topic": self.notification_events.last_failure_topic,
                    "last_failure_reason": self.notification_events.last_failure_reason,
                },
            },
            "reconciliation": {"totals": self.reconciliation_totals},
            "grants": {"totals": self.grant_totals},
            "inconsistencies": {
                "total": self.inconsistency_total,
                "last_detected_at": _iso(self.inconsistency_events.last_detected_at),
                "last_order_id": self.inconsistency_events.last_order_id,
            },
        }


_NOTIFICATION_BUCKETS = ("processed", "unmatched", "ignored", "failed")


@dataclass
class PaymentObservabilityStore:
    _lock: Lock = field(default_factory=Lock)
    _checkout_totals: Counter = field(default_factory=Counter)
    _checkout_events: CheckoutEventLog = field(default_factory=CheckoutEventLog)
    _notification_totals: Dict[str, Counter] = field(
        default_factory=lambda: {bucket: Counter() for bucket in _NOTIFICATION_BUCKETS}
    )
    _notification_events: NotificationEventLog = field(default_factory=NotificationEventLog)
    _reconciliation_totals: Counter = field(default_factory=Counter)
    _grant_totals: Counter = field(default_factory=Counter)
    _inconsistency_total: int = 0
    _inconsistency_events: InconsistencyEventLog = field(default_factory=InconsistencyEventLog)

    def record_checkout(self, outcome: str, order_id: str | None) -> None:
        with self._lock:
            self._checkout_totals[outcome] += 1
            self._checkout_events.last_success_at = _utcnow()
            self._checkout_events.last_success_order_id = order_id

    def record_checkout_failure(self, reason: str) -> None:
        with self._lock:
            self._checkout_totals["failed"] += 1
            self._checkout_events.last_failure_at = _utcnow()
            self._checkout_events.last_failure_reason = reason

    def record_notification(
        self,
        topic: str | None,
        bucket: str,
        payment_id: str | None,
        error: str | None = None,
    ) -> None:
        if bucket not in _NOTIFICATION_BUCKETS:
            raise ValueError(f"Unknown notification bucket: {bucket}")
        label = topic or "unknown"
        with self._lock:
            self._notification_totals[bucket][label] += 1
            now = _utcnow()
            self._notification_events.last_event_at = now
            self._notification_events.last_event_topic = label
            self._notification_events.last_event_payment_id = payment_id
            if bucket == "failed":
                self._notification_events.last_failure_at = now
                self._notification_events.last_failure_topic = label
                self._notification_events.last_failure_reason = error

    def record_reconciliation(self, outcome: str) -> None:
        with self._lock:
            self._reconciliation_totals[outcome] += 1

    def record_grant(self, success: bool) -> None:
        with self._lock:
            self._grant_totals["issued" if success else "failed"] += 1

    def record_inconsistency(self, order_id: str | None) -> None:
        with self._lock:
            self._inconsistency_total += 1
            self._inconsistency_events.last_detected_at = _utcnow()
            self._inconsistency_events.last_order_id = order_id

    def snapshot(self) -> PaymentObservabilitySnapshot:
        with self._lock:
            return PaymentObservabilitySnapshot(
                checkout_totals=dict(self._checkout_totals),
                notification_totals={
                    bucket: dict(counter) for bucket, counter in self._notification_totals.items()
                },
                reconciliation_totals=dict(self._reconciliation_totals),
                grant_totals=dict(self._grant_totals),
                inconsistency_total=self._inconsistency_total,
                checkout_events=CheckoutEventLog(**vars(self._checkout_events)),
                notification_events=NotificationEventLog(**vars(self._notification_events)),
                inconsistency_events=InconsistencyEventLog(**vars(self._inconsistency_events)),
            )

    def reset(self) -> None:
        with self._lock:
            self._checkout_totals.clear()
            for counter in self._notification_totals.values():
                counter.clear()
            self._reconciliation_totals.clear()
            self._grant_totals.clear()
            self._inconsistency_total = 0
            self._checkout_events = CheckoutEventLog()
            self._notification_events = NotificationEventLog()
            self._inconsistency_events = InconsistencyEventLog()


_PAYMENT_STORE = PaymentObservabilityStore()


def get_payment_store() -> PaymentObservabilityStore:
    return _PAYMENT_STORE
