"""Normalisation of the identifiers buyers send us."""

from __future__ import annotations

import re
from uuid import UUID

from entitlement_api.services.errors import EntitlementValidationError

_IDENTITY_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+$")


def normalize_buyer_identity(value: object) -> str:
    """Return the canonical (trimmed, lower-cased) buyer contact identifier."""

    if value is None:
        raise EntitlementValidationError("Buyer identity is required", field="email")
    identity = str(value).strip().lower()
    if not identity:
        raise EntitlementValidationError("Buyer identity is required", field="email")
    if len(identity) > 320 or not _IDENTITY_PATTERN.match(identity):
        raise EntitlementValidationError("Buyer identity is malformed", field="email")
    return identity


def parse_order_id(value: object) -> UUID:
    if isinstance(value, UUID):
        return value
    if value is None or not str(value).strip():
        raise EntitlementValidationError("Order id is required", field="order_id")
    try:
        return UUID(str(value).strip())
    except ValueError as error:
        raise EntitlementValidationError("Order id is malformed", field="order_id") from error
