"""Tracing and metrics for recomputation runs, exported over OTLP."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from sqlalchemy.ext.asyncio import AsyncEngine

from basket_performance.config import AppSettings

logger = logging.getLogger(__name__)

METRIC_EXPORT_INTERVAL_MS = 30_000

tracer = trace.get_tracer("basket_performance")
recompute_counter = metrics.get_meter("basket_performance").create_counter(
    "basket_recompute_total",
    unit="1",
    description="Basket recomputations grouped by outcome",
)

_instrumented = False


def _exporter_kwargs(settings: AppSettings) -> dict[str, object]:
    kwargs: dict[str, object] = {"insecure": settings.telemetry_otlp_insecure}
    if settings.telemetry_otlp_endpoint:
        kwargs["endpoint"] = settings.telemetry_otlp_endpoint
    return kwargs


def build_providers(settings: AppSettings) -> tuple[TracerProvider, MeterProvider]:
    """Create OTLP-backed tracer and meter providers for ``settings``."""

    resource = Resource.create({SERVICE_NAME: settings.telemetry_service_name or settings.app_name})
    kwargs = _exporter_kwargs(settings)

    tracer_provider = TracerProvider(
        resource=resource,
        sampler=ParentBased(TraceIdRatioBased(settings.telemetry_sample_ratio)),
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**kwargs)))

    reader = PeriodicExportingMetricReader(OTLPMetricExporter(**kwargs), export_interval_millis=METRIC_EXPORT_INTERVAL_MS)
    return tracer_provider, MeterProvider(resource=resource, metric_readers=[reader])


def setup_telemetry(app: FastAPI, settings: AppSettings, engine: AsyncEngine | None = None) -> bool:
    """Install providers and instrument the app once per process.

    Returns ``True`` when instrumentation is active after the call.
    """

    global _instrumented
    if _instrumented:
        return True
    if not settings.telemetry_enabled:
        logger.info("Telemetry disabled")
        return False

    tracer_provider, meter_provider = build_providers(settings)
    trace.set_tracer_provider(tracer_provider)
    metrics.set_meter_provider(meter_provider)

    FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider, meter_provider=meter_provider)
    HTTPXClientInstrumentor().instrument(tracer_provider=tracer_provider)
    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=tracer_provider)

    _instrumented = True
    logger.info("Telemetry exporting to %s", settings.telemetry_otlp_endpoint or "the default OTLP endpoint")
    return True


__all__ = ["build_providers", "recompute_counter", "setup_telemetry", "tracer"]
