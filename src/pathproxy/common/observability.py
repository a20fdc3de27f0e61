"""Structured logging and tracing for the proxy, driven by :class:`ProxySettings`."""

from __future__ import annotations

import logging

import httpx
import structlog
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from .settings import ProxySettings

SERVICE_NAME = "pathproxy"

# Management calls are rare and not worth a trace of their own.
UNTRACED_PATHS = "invalidate-cache,cleanup-cache"


def configure_logging(settings: ProxySettings) -> None:
    """Route structlog events through stdlib logging as one JSON object per line."""
    level = logging.getLevelName(settings.log_level)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format="%(message)s")
    root.setLevel(level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.dict_tracebacks,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service=SERVICE_NAME)


def build_tracer_provider(settings: ProxySettings) -> TracerProvider:
    sampler = ParentBased(TraceIdRatioBased(settings.otel_sampler_ratio))
    provider = TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}), sampler=sampler)
    if settings.otel_exporter_endpoint:
        exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_endpoint, headers=settings.otlp_headers)
        provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def configure_tracing(settings: ProxySettings) -> TracerProvider:
    """Install the process-wide tracer provider, keeping one that is already installed."""
    current = trace.get_tracer_provider()
    if isinstance(current, TracerProvider):
        return current
    provider = build_tracer_provider(settings)
    trace.set_tracer_provider(provider)
    return provider


def instrument_app(app: FastAPI, provider: TracerProvider) -> None:
    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider, excluded_urls=UNTRACED_PATHS)


def instrument_upstream_client(client: httpx.AsyncClient, provider: TracerProvider) -> None:
    """Trace outbound fetches on ``client`` only, leaving other httpx clients alone."""
    HTTPXClientInstrumentor.instrument_client(client, tracer_provider=provider)
