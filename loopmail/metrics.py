# loopmail/metrics.py
from __future__ import annotations
from prometheus_client import (
    Counter, Histogram,
    generate_latest, CONTENT_TYPE_LATEST, REGISTRY,
)

# Dispatch outcomes
MAILS_TOTAL = Counter(
    "loopmail_mails_total",
    "Mail dispatch attempts",
    ["outcome"]  # sent|failed
)

SMTP_LATENCY_SECONDS = Histogram(
    "loopmail_smtp_latency_seconds",
    "Duration of one SMTP round-trip in seconds",
    ["transport"]  # starttls|plain
)

AUDIT_FAILURES_TOTAL = Counter(
    "loopmail_audit_failures_total",
    "Audit rows that could not be written",
)

def render_prometheus() -> bytes:
    """
    Use this in FastAPI to render /metrics.
    """
    return generate_latest(REGISTRY)

def content_type() -> str:
    return CONTENT_TYPE_LATEST

# HTTP surface
API_REQS = Counter(
    "loopmail_api_requests_total",
    "API requests",
    ["endpoint"]
)
