"""
JSON log output for the HMIS API.

Patient and staff records are PHI. Any ``extra`` key naming personal or
clinical data is replaced with ``[REDACTED]`` before the record is
serialized, so handlers never see the raw value.
"""
import json
import logging
from datetime import datetime, timezone

from .correlation import get_request_id, get_trace_id, get_user_id, get_user_role

REDACTED = '[REDACTED]'

# Compared case-insensitively
SENSITIVE_FIELDS = frozenset({
    # credentials
    'password', 'password_hash', 'old_password', 'new_password',
    'token', 'access', 'refresh', 'secret', 'api_key',
    # identity
    'first_name', 'last_name', 'email', 'phone', 'address', 'date_of_birth',
    'emergency_contact_name', 'emergency_contact_phone',
    # clinical
    'allergies', 'medical_history', 'insurance_number', 'notes', 'reason',
})

# Attributes every LogRecord has; anything else came from ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {'message', 'asctime', 'taskName'}

_CONTEXT_KEYS = ('request_id', 'trace_id', 'user_id', 'user_role')


def _is_sensitive(key):
    return str(key).lower() in SENSITIVE_FIELDS


def _redact(value):
    if isinstance(value, dict):
        return sanitize_dict(value)
    if isinstance(value, (list, tuple)):
        return [_redact(item) for item in value]
    return value


def sanitize_dict(data):
    """Copy of ``data`` with sensitive keys redacted at any depth."""
    if not isinstance(data, dict):
        return data
    return {
        key: REDACTED if _is_sensitive(key) else _redact(value)
        for key, value in data.items()
    }


class CorrelationFilter(logging.Filter):
    """Stamps the request context onto each record, ``-`` when unset."""

    _getters = {
        'request_id': get_request_id,
        'trace_id': get_trace_id,
        'user_id': get_user_id,
        'user_role': get_user_role,
    }

    def filter(self, record):
        for attr, getter in self._getters.items():
            setattr(record, attr, getter() or '-')
        return True


class SanitizedJSONFormatter(logging.Formatter):

    def format(self, record):
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for key in _CONTEXT_KEYS:
            entry[key] = getattr(record, key, '-')

        for key, value in vars(record).items():
            if key in entry or key in _RECORD_ATTRS or key.startswith('_'):
                continue
            entry[key] = REDACTED if _is_sensitive(key) else _redact(value)

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def get_sanitized_logger(name):
    """``logging.getLogger`` with a CorrelationFilter attached once."""
    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationFilter) for f in logger.filters):
        logger.addFilter(CorrelationFilter())
    return logger
