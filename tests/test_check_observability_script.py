import argparse
import importlib.util
from pathlib import Path

SCRIPT = Path(__file__).resolve().parents[1] / "tooling" / "scripts" / "check_observability.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("check_observability", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _thresholds(**overrides) -> argparse.Namespace:
    values = {
        "max_checkout_failures": 0,
        "max_notification_failures": 0,
        "max_upstream_unavailable": 5,
        "max_grant_failures": 0,
    }
    values.update(overrides)
    return argparse.Namespace(**values)


def test_clean_snapshot_has_no_breaches():
    script = _load_script()
    payload = {
        "checkout": {"totals": {"created": 4, "reused": 1}},
        "notifications": {"totals": {"processed": {"payment": 3}, "failed": {}}},
        "reconciliation": {"totals": {"applied": 2, "upstream_unavailable": 1}},
        "grants": {"totals": {"issued": 2}},
        "inconsistencies": {"total": 0},
    }

    assert script.evaluate(payload, _thresholds()) == []


def test_breaches_are_reported_per_threshold():
    script = _load_script()
    payload = {
        "checkout": {"totals": {"failed": 2}},
        "notifications": {"totals": {"failed": {"payment": 1, "unknown": 1}}},
        "reconciliation": {"totals": {"upstream_unavailable": 9}},
        "grants": {"totals": {"failed": 1}},
        "inconsistencies": {"total": 1},
    }

    breaches = script.evaluate(payload, _thresholds(max_checkout_failures=2))

    assert len(breaches) == 4
    assert breaches[0] == "Notification failures 2 exceed 0"
    assert any("invariant" in message for message in breaches)
