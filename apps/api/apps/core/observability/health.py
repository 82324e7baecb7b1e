"""
Liveness and readiness endpoints.

/healthz answers as long as the process serves requests.
/readyz checks what a migration job needs: the database, the storage
backend holding uploaded sources and, unless jobs run inline, the
Celery broker.
"""
import logging

from django.conf import settings
from django.core.files.storage import default_storage
from django.db import connection
from django.http import JsonResponse
from django.views import View

logger = logging.getLogger(__name__)


def check_database():
    with connection.cursor() as cursor:
        cursor.execute('SELECT 1')


def check_storage():
    default_storage.exists('migration/.readyz')


def check_broker():
    from config.celery import app

    with app.connection_for_write() as conn:
        conn.ensure_connection(max_retries=1)


def readiness_checks():
    checks = {
        'database': check_database,
        'storage': check_storage,
    }
    if not getattr(settings, 'MIGRATION_EXECUTE_INLINE', False):
        checks['broker'] = check_broker
    return checks


class HealthzView(View):
    """Process is up. No dependency is touched."""

    def get(self, request):
        data = {
            'status': 'ok',
            'version': getattr(settings, 'VERSION', 'unknown'),
        }
        commit_hash = getattr(settings, 'COMMIT_HASH', None)
        if commit_hash:
            data['commit'] = commit_hash
        return JsonResponse(data)


class ReadyzView(View):
    """200 when every dependency answers, 503 otherwise."""

    def get(self, request):
        results = {name: self._run(name, check) for name, check in readiness_checks().items()}
        ready = all(results.values())
        return JsonResponse(
            {'status': 'ready' if ready else 'not_ready', 'checks': results},
            status=200 if ready else 503,
        )

    def _run(self, name, check):
        try:
            check()
        except Exception as e:
            logger.error(
                f'Readiness check failed: {name}',
                extra={'event': 'health_check_failed', 'check': name, 'error': str(e)}
            )
            return False
        return True
