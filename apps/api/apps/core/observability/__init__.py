"""
Observability for the API and the migration workers.

Structured logging with PHI/PII redaction, Prometheus metrics,
OpenTelemetry spans, per-request and per-job correlation, and the
health endpoints.
"""
from .correlation import job_context
from .events import log_domain_event
from .logging import get_sanitized_logger
from .metrics import metrics
from .tracing import trace_span

__all__ = ['metrics', 'log_domain_event', 'get_sanitized_logger', 'job_context', 'trace_span']
