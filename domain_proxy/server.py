import logging
from typing import Sequence

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from domain_proxy.errors import ProxyError, RouteError
from domain_proxy.models import ErrorResponse
from domain_proxy.proxy import router
from domain_proxy.proxy.route import get_proxy_origin
from domain_proxy.utils.exception_logging import format_exception_message
from domain_proxy.vars import CORS_ALLOW_ORIGINS, OTLP_ENDPOINT, OTLP_HEADERS, SERVICE_NAME

logger = logging.getLogger("uvicorn.error")

# Docs routes are disabled so that no path is shadowed from the catch-all proxy
app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
instrumentator = Instrumentator()

instrumentator.instrument(app).expose(app)


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans from streamed responses.
    Passthrough of large upstream bodies would otherwise emit one span per chunk.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def cors_options(setting: str) -> dict:
    """Translate CORS_ALLOW_ORIGINS into CORSMiddleware origin arguments."""
    if setting.lower() == "reflect":
        return {"allow_origin_regex": ".*"}
    origins = [o.strip() for o in setting.split(",") if o.strip()]
    if not origins or "*" in origins:
        return {"allow_origins": ["*"]}
    return {"allow_origins": origins}


app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    **cors_options(CORS_ALLOW_ORIGINS),
)


def error_cors_headers(request: Request) -> dict:
    """Same CORS headers the proxied responses carry, for the JSON error bodies."""
    return {
        "access-control-allow-origin": get_proxy_origin(request),
        "access-control-allow-credentials": "true",
    }


async def route_error_handler(request: Request, exc: RouteError) -> JSONResponse:
    body = ErrorResponse(message=str(exc))
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(exclude_none=True),
        headers=error_cors_headers(request),
    )


async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    body = ErrorResponse(
        message=exc.message,
        error=format_exception_message(exc.cause or exc),
        tip=exc.tip,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(),
        headers=error_cors_headers(request),
    )


app.add_exception_handler(RouteError, route_error_handler)
app.add_exception_handler(ProxyError, proxy_error_handler)


trace.set_tracer_provider(
    TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
)
tracer_provider = trace.get_tracer_provider()
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=OTLP_HEADERS or None,
    )
    tracer_provider.add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )

FastAPIInstrumentor.instrument_app(app)

# Add app_name to the metrics
app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})

app.include_router(router)
