"""
Transaction-safe identifier generation.
"""
from .models import IdentifierSequence


def format_identifier(prefix, value, width=6):
    return f'{prefix}{value:0{width}d}'


def next_value(gateway, name, seed=None):
    """
    Increment and return the counter ``name``.

    Must be called inside ``gateway.transaction``: the row stays locked
    until the caller commits or rolls back, and a rollback also undoes the
    increment. ``seed`` is a callable returning the starting value used
    when the counter does not exist yet.
    """
    manager = gateway.objects(IdentifierSequence)

    sequence = manager.select_for_update().filter(name=name).first()
    if sequence is None:
        start = seed() if seed is not None else 0
        manager.get_or_create(name=name, defaults={'last_value': start})
        sequence = manager.select_for_update().get(name=name)

    sequence.last_value += 1
    sequence.save(using=gateway.alias, update_fields=['last_value', 'updated_at'])
    return sequence.last_value


def next_identifier(gateway, name, prefix, width=6, seed=None):
    """``next_value`` formatted as ``<prefix><zero-padded value>``."""
    return format_identifier(prefix, next_value(gateway, name, seed=seed), width)
