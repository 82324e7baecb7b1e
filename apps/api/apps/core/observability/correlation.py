"""
Correlation context for requests and background jobs.

Every log line carries request_id, trace_id, user and clinic. HTTP
requests get them from RequestCorrelationMiddleware (X-Request-ID,
X-Trace-ID, X-Clinic-ID headers); Celery workers bind them per job with
job_context(), so a job's worker logs read like a request's.
"""
import logging
import time
import uuid
from contextlib import contextmanager
from threading import local

from django.utils.deprecation import MiddlewareMixin

from .metrics import metrics

_context = local()

CONTEXT_ATTRS = ('request_id', 'trace_id', 'span_id', 'user_id', 'user_roles', 'clinic_id')
_UNSET = object()

logger = logging.getLogger(__name__)


def get_request_id():
    return getattr(_context, 'request_id', None)


def get_trace_id():
    return getattr(_context, 'trace_id', None)


def get_user_id():
    return getattr(_context, 'user_id', None)


def get_user_roles():
    return getattr(_context, 'user_roles', [])


def get_clinic_id():
    """Clinic (tenant) the current request or job acts on, if known."""
    return getattr(_context, 'clinic_id', None)


def bind_context(**values):
    """Set correlation fields for the current thread; returns the previous values."""
    previous = {attr: getattr(_context, attr, _UNSET) for attr in CONTEXT_ATTRS}
    for attr, value in values.items():
        if attr not in CONTEXT_ATTRS:
            raise ValueError(f'Unknown correlation field: {attr}')
        setattr(_context, attr, value)
    return previous


def restore_context(previous):
    for attr, value in previous.items():
        if value is _UNSET:
            if hasattr(_context, attr):
                delattr(_context, attr)
        else:
            setattr(_context, attr, value)


def clear_request_context():
    """Drop every correlation field (tests and worker shutdown)."""
    restore_context(dict.fromkeys(CONTEXT_ATTRS, _UNSET))


@contextmanager
def job_context(job_id, clinic_id=None, task_id=None):
    """
    Correlation context for one background job run.

    Logs inside carry request_id 'job-<id>', the Celery task id as
    trace_id and the job's clinic. The outer context is restored on exit.

    Usage:
        with job_context(job.id, clinic_id=job.clinic_id, task_id=self.request.id):
            orchestrator.run(job.id)
    """
    previous = bind_context(
        request_id=f'job-{job_id}',
        trace_id=task_id,
        span_id=None,
        user_id=None,
        user_roles=[],
        clinic_id=str(clinic_id) if clinic_id else None,
    )
    try:
        yield
    finally:
        restore_context(previous)


class RequestCorrelationMiddleware(MiddlewareMixin):
    """
    Binds correlation context for each HTTP request.

    - Propagates X-Request-ID (or generates one) and X-Trace-ID
    - Records the X-Clinic-ID header as the log clinic
    - Echoes both ids on the response
    - Counts requests and logs their duration
    """

    REQUEST_ID_HEADER = 'HTTP_X_REQUEST_ID'
    TRACE_ID_HEADER = 'HTTP_X_TRACE_ID'
    SPAN_ID_HEADER = 'HTTP_X_SPAN_ID'
    CLINIC_ID_HEADER = 'HTTP_X_CLINIC_ID'

    def process_request(self, request):
        request.request_id = request.META.get(self.REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.trace_id = request.META.get(self.TRACE_ID_HEADER)
        request.span_id = request.META.get(self.SPAN_ID_HEADER)
        request.start_time = time.time()

        # Session users only; JWT users are authenticated later, inside DRF
        user = getattr(request, 'user', None)
        if user is not None and user.is_authenticated:
            user_id = str(user.id)
            user_roles = list(user.groups.values_list('name', flat=True))
        else:
            user_id, user_roles = None, []

        bind_context(
            request_id=request.request_id,
            trace_id=request.trace_id,
            span_id=request.span_id,
            user_id=user_id,
            user_roles=user_roles,
            clinic_id=request.META.get(self.CLINIC_ID_HEADER),
        )

    def process_response(self, request, response):
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        if getattr(request, 'trace_id', None):
            response['X-Trace-ID'] = request.trace_id

        match = getattr(request, 'resolver_match', None)
        metrics.http_requests_total.labels(
            path=match.route if match else 'unmatched',
            method=request.method,
            status=str(response.status_code),
        ).inc()

        if hasattr(request, 'start_time'):
            logger.info(
                'Request completed',
                extra={
                    'event': 'http_request_completed',
                    'path': request.path,
                    'method': request.method,
                    'status_code': response.status_code,
                    'duration_ms': self._elapsed_ms(request),
                }
            )
        return response

    def process_exception(self, request, exception):
        metrics.exceptions_total.labels(
            exception_type=exception.__class__.__name__,
            location='http_request',
        ).inc()
        logger.error(
            f'Request failed: {exception.__class__.__name__}',
            exc_info=True,
            extra={
                'event': 'http_request_exception',
                'path': request.path,
                'method': request.method,
                'exception_type': exception.__class__.__name__,
                'duration_ms': self._elapsed_ms(request),
            }
        )

    @staticmethod
    def _elapsed_ms(request):
        if not hasattr(request, 'start_time'):
            return 0
        return round((time.time() - request.start_time) * 1000, 2)
