#!/usr/bin/env python3
"""Threshold check for the entitlement API payments snapshot.

Usage:
    python tooling/scripts/check_observability.py \
        --base-url https://staging-api.example.com \
        --api-key "$OPERATOR_API_KEY"

Fails (exit code 1) when checkout failures, failed push notifications,
provider outages seen by reconciliation, failed access grants or stored
invariant violations exceed their thresholds.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Dict, Optional

import httpx


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Entitlement API observability checker")
    parser.add_argument("--base-url", default="http://localhost:8000", help="Base URL of the API service.")
    parser.add_argument("--api-key", default=None, help="Operator API key sent as X-API-Key.")
    parser.add_argument("--max-checkout-failures", type=int, default=0)
    parser.add_argument("--max-notification-failures", type=int, default=0)
    parser.add_argument(
        "--max-upstream-unavailable",
        type=int,
        default=5,
        help="Maximum reconciliations that found the provider unavailable (default: 5).",
    )
    parser.add_argument("--max-grant-failures", type=int, default=0)
    parser.add_argument("--timeout", type=float, default=10.0, help="HTTP request timeout in seconds.")
    return parser.parse_args()


async def _get_json(
    client: httpx.AsyncClient,
    path: str,
    *,
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    response = await client.get(path, headers=headers)
    response.raise_for_status()
    return response.json()


def _fail(message: str) -> None:
    print(f"[check-observability] FAIL {message}")
    sys.exit(1)


def _log_ok(message: str) -> None:
    print(f"[check-observability] OK {message}")


def evaluate(payload: Dict[str, Any], args: argparse.Namespace) -> list[str]:
    """Return one message per threshold the snapshot breaches."""

    breaches: list[str] = []
    checkout_failures = int(payload.get("checkout", {}).get("totals", {}).get("failed", 0))
    failed_by_topic = payload.get("notifications", {}).get("totals", {}).get("failed", {}) or {}
    notification_failures = sum(int(value) for value in failed_by_topic.values())
    upstream_unavailable = int(
        payload.get("reconciliation", {}).get("totals", {}).get("upstream_unavailable", 0)
    )
    grant_failures = int(payload.get("grants", {}).get("totals", {}).get("failed", 0))
    inconsistencies = int(payload.get("inconsistencies", {}).get("total", 0))

    if checkout_failures > args.max_checkout_failures:
        breaches.append(f"Checkout failures {checkout_failures} exceed {args.max_checkout_failures}")
    if notification_failures > args.max_notification_failures:
        breaches.append(
            f"Notification failures {notification_failures} exceed {args.max_notification_failures}"
        )
    if upstream_unavailable > args.max_upstream_unavailable:
        breaches.append(
            f"Provider outages during reconciliation {upstream_unavailable} exceed {args.max_upstream_unavailable}"
        )
    if grant_failures > args.max_grant_failures:
        breaches.append(f"Access grant failures {grant_failures} exceed {args.max_grant_failures}")
    if inconsistencies:
        breaches.append(f"{inconsistencies} orders violate the entitlement invariant")
    return breaches


async def main() -> None:
    args = parse_args()
    headers = {"X-API-Key": args.api_key} if args.api_key else None

    async with httpx.AsyncClient(base_url=args.base_url, timeout=args.timeout) as client:
        health = await _get_json(client, "/healthz")
        _log_ok(f"API healthy (environment={health.get('environment')}, version={health.get('version')})")
        payload = await _get_json(client, "/api/v1/observability/payments", headers=headers)

    breaches = evaluate(payload, args)
    if breaches:
        _fail("; ".join(breaches))
    _log_ok("Payments observability within thresholds")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except httpx.HTTPStatusError as exc:
        _fail(f"HTTP {exc.response.status_code} while calling {exc.request.url}")
    except httpx.HTTPError as exc:
        _fail(f"Request failed: {exc}")
