"""Logging configuration and Prometheus metrics."""

from __future__ import annotations

import logging

import structlog
from prometheus_client import REGISTRY, Counter, Histogram


def configure_logging(level: str = "INFO") -> None:
    """Configure stdlib logging and structlog to emit JSON lines."""

    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _get_or_create_metric(metric_cls, name: str, documentation: str, labelnames):
    existing = REGISTRY._names_to_collectors.get(name)
    if existing is not None:
        return existing
    return metric_cls(name, documentation, labelnames=labelnames)


HTTP_REQUESTS = _get_or_create_metric(
    Counter,
    "clinicdesk_http_requests_total",
    "HTTP requests handled",
    ["method", "route", "status"],
)
HTTP_LATENCY = _get_or_create_metric(
    Histogram,
    "clinicdesk_http_request_seconds",
    "HTTP request latency in seconds",
    ["method", "route"],
)
JOB_TRANSITIONS = _get_or_create_metric(
    Counter,
    "clinicdesk_job_transitions_total",
    "Background job status transitions",
    ["kind", "status"],
)


__all__ = ["HTTP_LATENCY", "HTTP_REQUESTS", "JOB_TRANSITIONS", "configure_logging"]
