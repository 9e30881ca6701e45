"""OpenTelemetry setup and the per-cycle reconcile span."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

from timeline_sync.core.logging import bind_cycle

logger = logging.getLogger(__name__)

TRACER_NAME = "timeline_sync"
RECONCILE_SPAN_NAME = "timeline_sync.reconcile"

_tracer_provider_installed: bool = False


def init_telemetry(
    service_name: str = "timeline-sync", endpoint: str | None = None
) -> trace.Tracer:
    """Install an OTLP-exporting TracerProvider once per process.

    *endpoint* defaults to ``OTEL_EXPORTER_OTLP_ENDPOINT``. Without one,
    nothing is installed and spans stay no-ops. The OTLP exporter comes from
    the ``otlp`` extra and is only imported when an endpoint is configured.
    """
    global _tracer_provider_installed

    endpoint = endpoint or os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        logger.info("No OTLP endpoint configured; reconcile spans are not exported")
        return trace.get_tracer(TRACER_NAME)
    if _tracer_provider_installed:
        logger.debug("TracerProvider already installed; reusing it for %s", service_name)
        return trace.get_tracer(TRACER_NAME)

    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    _tracer_provider_installed = True
    logger.info("Telemetry initialized: endpoint=%s", endpoint)
    return trace.get_tracer(TRACER_NAME)


def get_tracer(name: str = TRACER_NAME) -> trace.Tracer:
    return trace.get_tracer(name)


def tag_cycle_span(span: trace.Span, *, token: int, from_day: str, to_day: str) -> None:
    span.set_attribute("timeline.generation", token)
    span.set_attribute("timeline.window.from", from_day)
    span.set_attribute("timeline.window.to", to_day)


@contextmanager
def cycle_span(tracer: trace.Tracer, token: int) -> Iterator[trace.Span]:
    """Open the reconcile span for cycle *token* and bind it for logging."""
    with tracer.start_as_current_span(RECONCILE_SPAN_NAME) as span, bind_cycle(token):
        span.set_attribute("timeline.generation", token)
        yield span
