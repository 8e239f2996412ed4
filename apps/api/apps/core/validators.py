"""
Query-parameter parsing shared by list endpoints.
"""
import uuid

from django.utils import timezone
from django.utils.dateparse import parse_date

from apps.core.exceptions import ValidationFailed


def _invalid(name, message):
    return ValidationFailed(errors=[{'field': name, 'message': message}])


def parse_date_param(request, name, default='today'):
    """
    Parse ``?<name>=YYYY-MM-DD``.

    Returns ``default`` when the parameter is absent; ``'today'`` means the
    server-local current date.
    """
    raw = request.query_params.get(name)
    if not raw:
        return timezone.localdate() if default == 'today' else default
    try:
        value = parse_date(raw)
    except ValueError:
        value = None
    if value is None:
        raise _invalid(name, f'{name} must be a valid date (YYYY-MM-DD)')
    return value


def parse_uuid_param(request, name):
    """Parse ``?<name>=<uuid>``; ``None`` when absent."""
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        raise _invalid(name, f'{name} must be a valid id')


def parse_choice_param(request, name, choices):
    """Parse ``?<name>=`` restricted to ``choices``; ``None`` when absent."""
    raw = request.query_params.get(name)
    if not raw:
        return None
    if raw not in choices:
        raise _invalid(name, f"{name} must be one of: {', '.join(choices)}")
    return raw
