"""OpenTelemetry bootstrap: traces and logs.

Both signals are opt-in: nothing is exported unless ``OTLP_ENDPOINT`` (or
``OTLP_LOGS_ENDPOINT`` for logs alone) is configured.  Without a provider,
``get_tracer()`` hands out the global no-op tracer, so spans around expiry
runs cost nothing in development and tests.

Configuration (env vars or :class:`~tcbf.config.Settings`):
    ``OTLP_ENDPOINT``
        Base OTLP HTTP collector endpoint, e.g. ``http://localhost:4318``.
        ``/v1/traces`` and ``/v1/logs`` are appended; a full signal URL is
        normalised first.
    ``OTLP_LOGS_ENDPOINT``
        Optional override for the logs endpoint.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = logging.getLogger("tcbf.tracing")

_tracer_provider: TracerProvider | None = None
_logger_provider: Any | None = None


def _resolve_endpoint(base: str | None, signal: str) -> str | None:
    """``http://collector:4318`` or ``http://collector:4318/v1/traces`` → ``.../v1/{signal}``."""
    if not base:
        return None
    clean = re.sub(r"/v1/[^/]+$", "", base.rstrip("/"))
    return f"{clean}/v1/{signal}"


def _setup_traces(resource: Resource, endpoint: str, app=None) -> TracerProvider | None:
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

    try:
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(provider)
        if app is not None:
            from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
            FastAPIInstrumentor.instrument_app(app)
    except Exception as exc:  # pragma: no cover
        logger.warning("OTEL traces setup failed: %s", exc)
        return None
    logger.info("OTEL traces → %s", endpoint)
    return provider


def _setup_logs(resource: Resource, endpoint: str) -> Any | None:
    from opentelemetry._logs import set_logger_provider
    from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
    from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
    from opentelemetry.sdk._logs.export import BatchLogRecordProcessor

    try:
        provider = LoggerProvider(resource=resource)
        provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter(endpoint=endpoint)))
        set_logger_provider(provider)
        # Expiry events are plain logging records, so this ships them too.
        logging.getLogger().addHandler(LoggingHandler(level=logging.NOTSET, logger_provider=provider))
    except Exception as exc:  # pragma: no cover
        logger.warning("OTEL logs setup failed: %s", exc)
        return None
    logger.info("OTEL logs → %s", endpoint)
    return provider


def setup_telemetry(
    app=None,
    otlp_endpoint: str | None = None,
    otlp_logs_endpoint: str | None = None,
    service_name: str = "tcbf-backend",
    service_version: str = "0.1.0",
    environment: str = "development",
) -> dict[str, Any]:
    """Initialise OTEL traces and logs.

    A failure in one signal does not affect the other.  Returns a dict with
    ``tracer_provider`` and ``logger_provider``, each ``None`` when disabled.
    """
    global _tracer_provider, _logger_provider

    traces_ep = _resolve_endpoint(otlp_endpoint, "traces")
    logs_ep = otlp_logs_endpoint or _resolve_endpoint(otlp_endpoint, "logs")
    if not (traces_ep or logs_ep):
        logger.info("OpenTelemetry disabled: no OTLP endpoint configured.")
        return {"tracer_provider": None, "logger_provider": None}

    resource = Resource.create({
        "service.name": service_name,
        "service.version": service_version,
        "deployment.environment": environment,
    })
    if traces_ep:
        _tracer_provider = _setup_traces(resource, traces_ep, app)
    if logs_ep:
        _logger_provider = _setup_logs(resource, logs_ep)
    return {
        "tracer_provider": _tracer_provider if traces_ep else None,
        "logger_provider": _logger_provider if logs_ep else None,
    }


def get_tracer(name: str):
    """Tracer for *name*; the no-op tracer until a provider is configured."""
    return trace.get_tracer(name)
