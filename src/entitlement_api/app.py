from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from entitlement_api.core.settings import settings
from entitlement_api.db.session import async_session
from .api.dependencies.services import close_cached_clients, get_optional_payment_provider
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .workers import PendingOrderReconciliationWorker


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


def _provider_factory():
    provider = get_optional_payment_provider()
    if provider is None:
        raise RuntimeError(f"Payment provider {settings.payment_provider} is not configured")
    return provider


@asynccontextmanager
async def lifespan(app: FastAPI):
    provider = get_optional_payment_provider()
    if provider is not None:
        logger.info("Payment provider ready", provider=provider.name)

    reconciliation_worker = PendingOrderReconciliationWorker(
        session_factory=_session_factory,
        provider_factory=_provider_factory,
        interval_seconds=settings.pending_reconciliation_interval_seconds,
        batch_size=settings.pending_reconciliation_batch_size,
        min_age_seconds=settings.pending_reconciliation_min_age_seconds,
    )
    app.state.pending_reconciliation_worker = reconciliation_worker

    reconciliation_enabled = settings.pending_reconciliation_worker_enabled
    if reconciliation_enabled:
        reconciliation_worker.start()
        logger.info(
            "Pending order reconciliation worker enabled",
            interval_seconds=reconciliation_worker.interval_seconds,
            batch_size=settings.pending_reconciliation_batch_size,
        )
    else:
        logger.info(
            "Pending order reconciliation worker disabled",
            reason="pending_reconciliation_worker_enabled is false",
        )

    try:
        yield
    finally:
        if reconciliation_enabled and reconciliation_worker.is_running:
            await reconciliation_worker.stop()
        await close_cached_clients()


def create_app() -> FastAPI:
    """Application factory for the entitlement API service."""
    configure_logging(
        service_name="entitlement-api",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
    )

    app = FastAPI(
        title="Entitlement API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if settings.tracing_enabled:
        configure_tracing(
            app,
            service_name="entitlement-api",
            service_version=APP_VERSION,
            environment=settings.environment,
            exporter_endpoint=settings.otel_exporter_otlp_endpoint,
        )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
