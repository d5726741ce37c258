"""OpenTelemetry tracing for gateway operations.

Every contract operation runs inside a ``payment_gateway.<operation>`` span
so that a slow or failing provider call can be followed from the caller's
request into the adapter. Until ``setup_tracing`` is called the global
no-op tracer is used.
"""

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional

from opentelemetry import trace
from opentelemetry.propagate import set_global_textmap
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, SpanKind, Status, StatusCode
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

logger = logging.getLogger(__name__)

_tracer: Optional[trace.Tracer] = None
_provider: Optional[TracerProvider] = None


def setup_tracing(
    service_name: str,
    service_version: str,
    environment: str = "development",
    otlp_endpoint: Optional[str] = None,
    enable_console_export: bool = False,
) -> trace.Tracer:
    """Install a tracer provider for this process.

    Args:
        service_name: Reported as ``service.name``
        service_version: Reported as ``service.version``
        environment: Reported as ``deployment.environment``
        otlp_endpoint: gRPC collector endpoint; needs the ``otlp`` extra
        enable_console_export: Also print finished spans to stdout

    Returns:
        The tracer used by ``create_span``
    """
    global _tracer, _provider

    provider = TracerProvider(resource=Resource.create({
        SERVICE_NAME: service_name,
        SERVICE_VERSION: service_version,
        "deployment.environment": environment,
    }))

    if otlp_endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        except ImportError:
            logger.warning("OTLP exporter not installed, spans will not be exported")
        else:
            provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
            logger.info(f"Exporting spans to {otlp_endpoint}")

    if enable_console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    set_global_textmap(TraceContextTextMapPropagator())

    _provider = provider
    _tracer = provider.get_tracer(service_name, service_version)
    logger.info(f"Tracing initialized for {service_name} {service_version} ({environment})")
    return _tracer


def get_tracer() -> trace.Tracer:
    if _tracer is None:
        return trace.get_tracer(__name__)
    return _tracer


def _current_context() -> Optional[trace.SpanContext]:
    context = trace.get_current_span().get_span_context()
    return context if context.is_valid else None


def get_trace_id() -> Optional[str]:
    """Hex trace id of the active span, if any."""
    context = _current_context()
    return format(context.trace_id, "032x") if context else None


def get_span_id() -> Optional[str]:
    """Hex span id of the active span, if any."""
    context = _current_context()
    return format(context.span_id, "016x") if context else None


@contextmanager
def create_span(
    name: str,
    attributes: Optional[Mapping[str, Any]] = None,
    kind: SpanKind = SpanKind.INTERNAL,
) -> Iterator[Span]:
    """Start a span as the current span.

    Attributes whose value is None are left out, so callers can pass
    optional identifiers without checking them first.
    """
    present = {key: value for key, value in (attributes or {}).items() if value is not None}
    with get_tracer().start_as_current_span(name, kind=kind, attributes=present) as span:
        yield span


def record_exception(exception: BaseException, attributes: Optional[Mapping[str, Any]] = None) -> None:
    """Attach an exception to the active span and mark the span failed."""
    span = trace.get_current_span()
    if not span.is_recording():
        return
    span.record_exception(exception, attributes=attributes)
    span.set_status(Status(StatusCode.ERROR, str(exception)))


def shutdown_tracing() -> None:
    """Flush pending spans and forget the installed provider."""
    global _provider, _tracer
    if _provider is None:
        return
    _provider.shutdown()
    _provider = None
    _tracer = None
    logger.info("Tracing shut down")
