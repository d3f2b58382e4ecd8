from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from salesfunnel.api.deps import install_error_handlers
from salesfunnel.api.routes import router as api_router
from salesfunnel.core.config import get_settings
from salesfunnel.core.events import InternalEvent, event_bus
from salesfunnel.logging import configure_logging
from salesfunnel.middleware.request_context import RequestContextMiddleware
from salesfunnel.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("salesfunnel.lifecycle")
_subscriptions_registered = False

_logged_event_types = [
    "crm.customer.claimed",
    "crm.customer.released",
    "crm.customer.deleted",
    "crm.opportunity.stage_changed",
    "revenue.quote.approved",
    "revenue.quote.rejected",
    "revenue.quote.escalated",
    "revenue.quote.converted",
]


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


def _on_funnel_event(event: InternalEvent) -> None:
    payload = event.payload.get("payload", {}) if isinstance(event.payload, dict) else {}
    logger.info(
        "funnel_event",
        extra={
            "event_name": event.name,
            "customer_id": payload.get("customer_id"),
            "opportunity_id": payload.get("opportunity_id"),
            "quote_id": payload.get("quote_id"),
            "order_id": payload.get("order_id"),
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        for event_name in _logged_event_types:
            event_bus.subscribe(event_name, _on_funnel_event)
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": "api"})
    yield


settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestContextMiddleware)
app.include_router(api_router)
install_error_handlers(app)

if settings.otel_enabled:
    setup_otel("salesfunnel-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
