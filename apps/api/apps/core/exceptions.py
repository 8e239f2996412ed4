"""
Error taxonomy and the DRF exception handler.

Services raise ``HMISError`` subclasses; ``hmis_exception_handler`` turns
them (and DRF/Django errors) into the response envelope:

    {"success": false, "message": "...", "errors": [{"field": ..., "message": ...}]}
"""
import logging

from django.db import DatabaseError
from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler

from apps.core.observability import metrics

logger = logging.getLogger(__name__)


class HMISError(Exception):
    """Base class for errors surfaced to API clients."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = 'Internal server error'
    code = 'error'

    def __init__(self, message=None, errors=None):
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class ValidationFailed(HMISError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Validation failed'
    code = 'validation_error'


class NotFoundError(HMISError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Resource not found'
    code = 'not_found'

    def __init__(self, resource=None, message=None):
        if message is None and resource:
            message = f'{resource} not found'
        super().__init__(message)
        self.resource = resource


class ConflictError(HMISError):
    status_code = status.HTTP_409_CONFLICT
    default_message = 'Resource already exists'
    code = 'conflict'


class InvalidTransition(ConflictError):
    code = 'invalid_transition'

    def __init__(self, from_status, to_status, entity='appointment'):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Cannot change {entity} status from '{from_status}' to '{to_status}'"
        )


def flatten_errors(detail, field=None):
    """
    Flatten DRF error detail into ``[{'field': ..., 'message': ...}]``.

    Nested serializer errors use dotted field names.
    """
    errors = []
    if isinstance(detail, dict):
        for key, value in detail.items():
            name = key if field is None else f'{field}.{key}'
            errors.extend(flatten_errors(value, name))
    elif isinstance(detail, (list, tuple)):
        for item in detail:
            errors.extend(flatten_errors(item, field))
    else:
        errors.append({'field': field, 'message': str(detail)})
    return errors


def _envelope(message, errors=None, status_code=400):
    body = {'success': False, 'message': message}
    if errors:
        body['errors'] = errors
    return Response(body, status=status_code)


def _log(exc, status_code, context):
    view = context.get('view')
    extra = {
        'event': 'api_error',
        'exception_type': exc.__class__.__name__,
        'status_code': status_code,
        'view': view.__class__.__name__ if view is not None else None,
    }
    if status_code >= 500:
        metrics.exceptions_total.labels(
            exception_type=exc.__class__.__name__, location='api'
        ).inc()
        logger.error('Unhandled API error', exc_info=exc, extra=extra)
    else:
        logger.warning(str(exc) or exc.__class__.__name__, extra=extra)


def hmis_exception_handler(exc, context):
    """
    DRF ``EXCEPTION_HANDLER``.

    Domain errors keep their status. Persistence failures become a generic
    500 with the details kept in the server log.
    """
    if isinstance(exc, HMISError):
        _log(exc, exc.status_code, context)
        return _envelope(exc.message, exc.errors, exc.status_code)

    if isinstance(exc, DatabaseError):
        _log(exc, status.HTTP_500_INTERNAL_SERVER_ERROR, context)
        return _envelope('Internal server error', status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    response = exception_handler(exc, context)
    if response is None:
        return None

    _log(exc, response.status_code, context)

    if isinstance(exc, ValidationError):
        return _envelope('Validation failed', flatten_errors(response.data), response.status_code)

    data = response.data
    message = data.get('detail') if isinstance(data, dict) else None
    new_response = _envelope(str(message or 'Request failed'), status_code=response.status_code)
    # Keep WWW-Authenticate, Retry-After and friends
    for header, value in response.items():
        new_response[header] = value
    return new_response
