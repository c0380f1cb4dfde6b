"""Structured logging and tracing setup.

Library code only calls ``structlog.get_logger`` and
``opentelemetry.trace.get_tracer``; both are no-ops until an application
calls the functions below.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.sdk.trace.sampling import ParentBasedTraceIdRatio, TraceIdRatioBased

from panel_cohort_audit import __version__

logger = structlog.get_logger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def configure_logging(level: str | int = "INFO", stream: TextIO | None = None) -> None:
    """Render structlog events as JSON lines on stderr.

    stdout is left alone so CLI output stays machine-readable.

    Raises
    ------
    ValueError
        If ``level`` is not a standard logging level name.
    """
    if isinstance(level, str):
        if level.upper() not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {level!r}")
        level = getattr(logging, level.upper())
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.WriteLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=False,
    )
    logging.basicConfig(level=level, stream=stream or sys.stderr)


def _create_sampler(sampling_rate: float):
    if sampling_rate >= 1.0:
        return ParentBasedTraceIdRatio(1.0)
    if sampling_rate <= 0.0:
        return TraceIdRatioBased(0.0)
    return ParentBasedTraceIdRatio(sampling_rate)


def configure_observability(
    service_name: str = "panel-cohort-audit",
    environment: str = "development",
    exporter: SpanExporter | None = None,
    sampling_rate: float = 1.0,
    batch: bool = True,
) -> TracerProvider:
    """Install an OpenTelemetry SDK tracer provider.

    Parameters
    ----------
    service_name:
        ``service.name`` resource attribute.
    environment:
        ``deployment.environment`` resource attribute.
    exporter:
        Span exporter; defaults to printing spans on the console. Pass an OTLP
        exporter in production or an in-memory exporter in tests.
    sampling_rate:
        Fraction of traces sampled (0.0-1.0).
    batch:
        Use a batching span processor; ``False`` exports each span as it ends.

    Returns
    -------
    TracerProvider
        The provider that was installed globally.
    """
    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": __version__,
            "deployment.environment": environment,
        }
    )
    provider = TracerProvider(resource=resource, sampler=_create_sampler(sampling_rate))
    exporter = exporter or ConsoleSpanExporter()
    processor = BatchSpanProcessor(exporter) if batch else SimpleSpanProcessor(exporter)
    provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)

    logger.info(
        "observability_configured",
        service_name=service_name,
        environment=environment,
        exporter=type(exporter).__name__,
        sampling_rate=sampling_rate,
    )
    return provider
