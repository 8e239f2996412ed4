"""
Persistence gateway.

Uniform query/transaction interface over one Django database alias.
Services receive a gateway in their constructor instead of reaching for
the global ``django.db.connection``, so tests and alternative deployments
can point them at a different alias.
"""
import logging
import time
from contextlib import contextmanager

from django.conf import settings
from django.db import connections, transaction as db_transaction

from apps.core.observability import metrics

logger = logging.getLogger(__name__)


class QueryResult:
    """Rows returned by ``DatabaseGateway.query`` as a list of dicts."""

    def __init__(self, rows, rowcount):
        self.rows = rows
        self.rowcount = rowcount

    def __iter__(self):
        return iter(self.rows)

    def __len__(self):
        return len(self.rows)

    def first(self):
        return self.rows[0] if self.rows else None


class DatabaseGateway:
    """
    Gateway over a single database alias.

    - ``query(sql, params)``: parameterized raw SQL, rows as dicts
    - ``get_client()``: context manager yielding a connection inside a transaction
    - ``transaction(fn)``: run ``fn(gateway)`` atomically, commit or roll back
    - ``objects(model)``: model manager bound to this alias
    """

    def __init__(self, alias=None):
        self.alias = alias or getattr(settings, 'HMIS_GATEWAY_DATABASE_ALIAS', 'default')

    def __repr__(self):
        return f'<DatabaseGateway alias={self.alias!r}>'

    @property
    def connection(self):
        return connections[self.alias]

    @property
    def vendor(self):
        return self.connection.vendor

    def query(self, sql, params=None):
        """Execute parameterized SQL. Never interpolate user input into ``sql``."""
        start = time.time()
        try:
            with self.connection.cursor() as cursor:
                cursor.execute(sql, params or [])
                if cursor.description is None:
                    return QueryResult([], cursor.rowcount)
                columns = [col[0] for col in cursor.description]
                rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
                return QueryResult(rows, cursor.rowcount)
        finally:
            metrics.gateway_query_duration_seconds.observe(time.time() - start)

    @contextmanager
    def get_client(self):
        """
        Yield a connection with an open transaction.

        The transaction commits when the block exits normally and rolls back
        when it raises. Django returns the connection to its per-thread
        handle on every exit path.
        """
        with db_transaction.atomic(using=self.alias):
            yield self.connection

    def atomic(self):
        return db_transaction.atomic(using=self.alias)

    def transaction(self, fn):
        """
        Run ``fn(self)`` in a transaction and return its result.

        Any exception raised by ``fn`` rolls the transaction back and is
        re-raised unchanged.
        """
        try:
            with db_transaction.atomic(using=self.alias):
                result = fn(self)
        except Exception:
            metrics.gateway_transactions_total.labels(result='rollback').inc()
            logger.debug('Gateway transaction rolled back', extra={'alias': self.alias})
            raise
        metrics.gateway_transactions_total.labels(result='commit').inc()
        return result

    def objects(self, model):
        return model._default_manager.db_manager(self.alias)

    def in_transaction(self):
        return self.connection.in_atomic_block


def get_gateway(alias=None):
    """Build a gateway for ``alias`` (defaults to ``HMIS_GATEWAY_DATABASE_ALIAS``)."""
    return DatabaseGateway(alias)
