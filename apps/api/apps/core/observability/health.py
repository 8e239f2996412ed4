"""
Liveness and readiness probes.

/healthz answers as long as the process runs; /readyz answers 200 only
when the gateway's database is reachable and fully migrated.
"""
import logging
import time

from django.conf import settings
from django.db import DatabaseError
from django.db.migrations.executor import MigrationExecutor
from django.http import JsonResponse
from django.views import View

from apps.core.gateway import get_gateway

logger = logging.getLogger(__name__)


class HealthzView(View):

    def get(self, request):
        body = {
            'status': 'ok',
            'service': 'hmis-api',
            'version': getattr(settings, 'VERSION', 'unknown'),
        }
        commit_hash = getattr(settings, 'COMMIT_HASH', None)
        if commit_hash:
            body['commit'] = commit_hash
        return JsonResponse(body)


class ReadyzView(View):
    """
    Readiness probe.

    ``checks`` maps each dependency to a boolean; any False yields 503 so
    the load balancer stops routing traffic here.
    """

    def get(self, request):
        gateway = get_gateway()
        checks = {'database': self._check_database(gateway)}
        if checks['database']:
            checks['migrations'] = self._check_migrations(gateway)

        ready = all(checks.values())
        body = {
            'status': 'ready' if ready else 'not_ready',
            'database_alias': gateway.alias,
            'checks': checks,
        }
        return JsonResponse(body, status=200 if ready else 503)

    def _check_database(self, gateway):
        start = time.time()
        try:
            gateway.query('SELECT 1')
        except DatabaseError as e:
            self._log_failure('database', e)
            return False
        logger.debug(
            'Database reachable',
            extra={'event': 'health_check', 'check': 'database',
                   'duration_ms': round((time.time() - start) * 1000, 2)},
        )
        return True

    def _check_migrations(self, gateway):
        try:
            executor = MigrationExecutor(gateway.connection)
            pending = executor.migration_plan(executor.loader.graph.leaf_nodes())
        except DatabaseError as e:
            self._log_failure('migrations', e)
            return False
        if pending:
            logger.warning(
                'Unapplied migrations',
                extra={'event': 'health_check_failed', 'check': 'migrations',
                       'pending': [f'{m.app_label}.{m.name}' for m, _ in pending]},
            )
        return not pending

    def _log_failure(self, check, error):
        logger.error(
            'Health check failed',
            extra={'event': 'health_check_failed', 'check': check, 'error': str(error)},
        )
