import json

from loguru import logger

from entitlement_api.core.logging import configure_logging
from entitlement_api.observability.tracing import build_tracer_provider


def test_tracer_provider_carries_service_resource():
    provider = build_tracer_provider(service_name="entitlement-api", service_version="0.1.0", environment="test")

    attributes = provider.resource.attributes
    assert attributes["service.name"] == "entitlement-api"
    assert attributes["service.version"] == "0.1.0"
    assert attributes["deployment.environment"] == "test"


def test_log_lines_inside_a_span_carry_trace_ids(capsys):
    configure_logging(service_name="entitlement-api", environment="test", version="0.1.0")
    provider = build_tracer_provider(service_name="entitlement-api", service_version="0.1.0", environment="test")
    tracer = provider.get_tracer("tests")

    with tracer.start_as_current_span("reconcile") as span:
        logger.info("Reconciling order", order_id="abc")
        context = span.get_span_context()

    payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert payload["trace_id"] == f"{context.trace_id:032x}"
    assert payload["span_id"] == f"{context.span_id:016x}"
