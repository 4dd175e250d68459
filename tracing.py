"""Tracing: OpenTelemetry span export for lightweight performance profiling."""

from __future__ import annotations

import functools
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

SERVICE_NAME = "video-enhancer"

_provider: Optional[TracerProvider] = None


def init_tracing(endpoint: Optional[str]) -> bool:
    """Export spans to an OTLP/HTTP endpoint; no-op when none is configured."""
    global _provider
    if not endpoint or _provider is not None:
        return _provider is not None

    resource = Resource.create({"service.name": SERVICE_NAME})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    _provider = provider
    return True


def shutdown_tracing() -> None:
    global _provider
    if _provider is not None:
        _provider.shutdown()
        _provider = None


def traced(func):
    """Wrap a call in a span named after the function."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        tracer = trace.get_tracer(func.__module__)
        with tracer.start_as_current_span(func.__qualname__):
            return func(*args, **kwargs)

    return wrapper
