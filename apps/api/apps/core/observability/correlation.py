"""
Per-request correlation context for HMIS logs.

Every request carries an X-Request-ID (taken from the caller or minted
here) and, when present, an upstream X-Trace-ID. Both are echoed on the
response and exposed to the log formatter together with the acting
user's id and role.
"""
import logging
import time
import uuid
from threading import local

from .metrics import metrics

logger = logging.getLogger(__name__)

_CONTEXT_FIELDS = ('request_id', 'trace_id', 'user_id', 'user_role')

_context = local()


def _get(field):
    return getattr(_context, field, None)


def get_request_id():
    return _get('request_id')


def get_trace_id():
    return _get('trace_id')


def get_user_id():
    return _get('user_id')


def get_user_role():
    return _get('user_role')


def bind_user(user):
    """
    Record the acting user on the current request context.

    Anonymous or missing users leave the context untouched. JWT
    authentication happens inside DRF, after this middleware has run,
    so the API views bind the user again from ``initial()``.
    """
    if user is None or not getattr(user, 'is_authenticated', False):
        return
    _context.user_id = str(user.id)
    _context.user_role = getattr(user, 'role', None)


def clear_request_context():
    for field in _CONTEXT_FIELDS:
        if hasattr(_context, field):
            delattr(_context, field)


class RequestCorrelationMiddleware:
    """
    Binds request ids to the log context and records HTTP metrics.

    The context is reset at the start of each request rather than at the
    end, so log lines emitted while the response streams out still carry
    the request id.
    """

    request_id_header = 'X-Request-ID'
    trace_id_header = 'X-Trace-ID'

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        self._start(request)
        response = self.get_response(request)
        self._finish(request, response)
        return response

    def _start(self, request):
        clear_request_context()
        request.request_id = request.headers.get(self.request_id_header) or str(uuid.uuid4())
        request.trace_id = request.headers.get(self.trace_id_header)
        request.started_at = time.monotonic()

        _context.request_id = request.request_id
        _context.trace_id = request.trace_id
        bind_user(getattr(request, 'user', None))

    def _finish(self, request, response):
        response[self.request_id_header] = request.request_id
        if request.trace_id:
            response[self.trace_id_header] = request.trace_id

        elapsed = time.monotonic() - request.started_at
        metrics.http_requests_total.labels(
            method=request.method,
            status=str(response.status_code),
        ).inc()
        metrics.http_request_duration_seconds.labels(method=request.method).observe(elapsed)

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            '%s %s -> %s',
            request.method, request.path, response.status_code,
            extra={
                'event': 'http_request_completed',
                'method': request.method,
                'path': request.path,
                'status_code': response.status_code,
                'duration_ms': round(elapsed * 1000, 2),
            },
        )

    def process_exception(self, request, exception):
        name = type(exception).__name__
        metrics.exceptions_total.labels(exception_type=name, location='middleware').inc()
        logger.error(
            'Unhandled %s on %s %s', name, request.method, request.path,
            exc_info=True,
            extra={
                'event': 'http_request_exception',
                'method': request.method,
                'path': request.path,
                'exception_type': name,
            },
        )
