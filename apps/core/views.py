"""
Core API views.
"""
import logging

from django.core.cache import cache
from django.db import connection
from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

logger = logging.getLogger(__name__)


def _check_database():
    with connection.cursor() as cursor:
        cursor.execute("SELECT 1")


def _check_cache():
    cache.set('health_check', 'ok', timeout=10)
    if cache.get('health_check') != 'ok':
        raise RuntimeError('Unable to read test key')


def _check_broker():
    from config.celery import app as celery_app

    with celery_app.connection_for_write() as conn:
        conn.ensure_connection(max_retries=1)


HEALTH_CHECKS = [
    ('database', _check_database),
    ('cache', _check_cache),
    ('broker', _check_broker),
]


class HealthCheckView(APIView):
    """
    GET /v1/health/

    Returns 200 if every dependency answers, 503 otherwise.
    """
    authentication_classes = []
    permission_classes = []

    @extend_schema(
        tags=['Health'],
        summary="Health check",
        description="Check the database, the cache and the Celery broker",
        responses={200: dict, 503: dict},
    )
    def get(self, request):
        health_status = {'status': 'healthy'}
        errors = []

        for name, check in HEALTH_CHECKS:
            try:
                check()
            except Exception as e:
                health_status[name] = 'unhealthy'
                errors.append(f"{name}: {e}")
                logger.error(f"{name} health check failed", exc_info=True)
            else:
                health_status[name] = 'healthy'

        if errors:
            health_status['status'] = 'unhealthy'
            health_status['errors'] = errors
            return Response(health_status, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response(health_status)
