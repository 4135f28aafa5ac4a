from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from hookbridge.api.routes import router as api_router
from hookbridge.core.config import get_settings
from hookbridge.logging import configure_logging
from hookbridge.middleware.correlation_id import CorrelationIdMiddleware
from hookbridge.middleware.request_logging import RequestLoggingMiddleware
from hookbridge.otel import correlation_id_request_hook, setup_otel


configure_logging()

settings = get_settings()

app = FastAPI(title=settings.app_name, version=settings.app_version)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)

if settings.otel_enabled:
    setup_otel(settings.app_name)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=correlation_id_request_hook())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("hookbridge.main:app", host="0.0.0.0", port=settings.api_port)
