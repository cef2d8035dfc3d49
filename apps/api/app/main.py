from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.errors import http_exception_handler
from app.api.routes import router as api_router
from app.core.config import get_settings
from app.events import InternalEvent, event_bus
from app.logging import configure_logging
from app.middleware.rate_limit import MutationRateLimitMiddleware
from app.middleware.request_context import RequestContextMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware
from app.otel import SERVICE_NAME, get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("app.lifecycle")
_subscriptions_registered = False


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system_event", extra={"event_name": event.name})


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _subscriptions_registered
    if not _subscriptions_registered:
        event_bus.subscribe("system.started", _on_system_started)
        _subscriptions_registered = True
    event_bus.publish("system.started", {"service": SERVICE_NAME})
    yield


settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
# Added last runs first: the correlation id is bound before logging and rate limiting see the request.
app.add_middleware(MutationRateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestContextMiddleware)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel(SERVICE_NAME, True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
