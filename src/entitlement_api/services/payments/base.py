"""Provider-agnostic payment contracts."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Protocol, Sequence
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

from entitlement_api.services.orders.state_machine import PaymentSignal, normalize_provider_status


@dataclass(slots=True)
class CheckoutSession:
    """Hosted checkout created at the provider for one order."""

    checkout_url: str
    external_reference: str
    checkout_id: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PaymentAttempt:
    """A concrete payment attempt as reported by the provider.

    ``status`` is already expressed in the internal provider-status
    vocabulary (approved, pending, in_process, rejected, cancelled, ...).
    """

    payment_id: str
    status: str
    external_reference: str | None = None
    created_at: datetime | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    def to_signal(self) -> PaymentSignal:
        return PaymentSignal(
            provider_status=normalize_provider_status(self.status),
            provider_payment_id=self.payment_id,
            raw_payload=dict(self.raw) if self.raw else None,
        )


@dataclass(slots=True)
class PaymentNotification:
    """Normalised push delivery.

    Providers that push the full payment carry it in ``attempt``; providers
    that push only an id leave ``attempt`` empty and the receiver fetches it.
    """

    provider: str
    topic: str | None
    payment_id: str | None = None
    attempt: PaymentAttempt | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def actionable(self) -> bool:
        return self.attempt is not None or bool(self.payment_id)


class PaymentProvider(Protocol):
    name: str

    async def create_checkout(
        self,
        *,
        order_id: str,
        buyer_identity: str,
        amount: Decimal,
        buyer_name: str | None = None,
        payment_method: str | None = None,
    ) -> CheckoutSession:
        ...

    async def find_payments_by_external_ref(self, external_reference: str) -> list[PaymentAttempt]:
        ...

    async def find_payment_by_id(self, payment_id: str) -> PaymentAttempt | None:
        ...

    async def aclose(self) -> None:
        ...


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

# Checkouts opened without an explicit method are card-only.
DEFAULT_PAYMENT_METHOD = "card"


def _sort_key(created_at: datetime | None) -> datetime:
    if created_at is None:
        return _EPOCH
    if created_at.tzinfo is None:
        return created_at.replace(tzinfo=timezone.utc)
    return created_at


def select_latest_attempt(attempts: Sequence[PaymentAttempt]) -> PaymentAttempt | None:
    """Pick the most recently created attempt.

    Ties (including attempts without a timestamp) go to the one the provider
    listed first.
    """

    latest: PaymentAttempt | None = None
    for attempt in attempts:
        if latest is None or _sort_key(attempt.created_at) > _sort_key(latest.created_at):
            latest = attempt
    return latest


def build_access_url(base_url: str, *, order_id: str, buyer_identity: str) -> str:
    """Append the order id and buyer identity to the buyer-facing access page."""

    parts = urlsplit(base_url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend([("email", buyer_identity), ("order_id", order_id)])
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or a unix epoch into an aware datetime."""

    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_plain_payload(value: Any) -> dict[str, Any]:
    """Return a JSON-safe copy of a provider payload for persistence."""

    if not isinstance(value, Mapping):
        return {}
    return json.loads(json.dumps(value, default=str))


__all__ = [
    "DEFAULT_PAYMENT_METHOD",
    "CheckoutSession",
    "PaymentAttempt",
    "PaymentNotification",
    "PaymentProvider",
    "build_access_url",
    "parse_timestamp",
    "select_latest_attempt",
    "to_plain_payload",
]
