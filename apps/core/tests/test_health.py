"""
Tests for the health check endpoint and request tracking.
"""
import pytest
from django.urls import reverse

from apps.core import views


def _failing():
    raise RuntimeError('connection refused')


@pytest.mark.django_db
class TestHealthCheckView:

    def test_healthy_when_every_check_passes(self, api_client, monkeypatch):
        monkeypatch.setattr(views, 'HEALTH_CHECKS', [('database', views._check_database), ('cache', lambda: None)])

        response = api_client.get(reverse('health-check'))

        assert response.status_code == 200
        assert response.data == {'status': 'healthy', 'database': 'healthy', 'cache': 'healthy'}

    def test_unhealthy_dependency_returns_503(self, api_client, monkeypatch):
        monkeypatch.setattr(views, 'HEALTH_CHECKS', [('database', views._check_database), ('broker', _failing)])

        response = api_client.get(reverse('health-check'))

        assert response.status_code == 503
        assert response.data['status'] == 'unhealthy'
        assert response.data['database'] == 'healthy'
        assert response.data['broker'] == 'unhealthy'
        assert response.data['errors'] == ['broker: connection refused']

    def test_request_id_is_echoed(self, api_client, monkeypatch):
        monkeypatch.setattr(views, 'HEALTH_CHECKS', [])

        response = api_client.get(reverse('health-check'), HTTP_X_REQUEST_ID='abc123')

        assert response['X-Request-ID'] == 'abc123'


class TestClientIp:

    def test_forwarded_for_wins(self, rf):
        from apps.core.middleware.request_tracking import get_client_ip

        request = rf.get('/', HTTP_X_FORWARDED_FOR='10.0.0.1, 10.0.0.2', REMOTE_ADDR='127.0.0.1')

        assert get_client_ip(request) == '10.0.0.1'

    def test_falls_back_to_remote_addr(self, rf):
        from apps.core.middleware.request_tracking import get_client_ip

        assert get_client_ip(rf.get('/', REMOTE_ADDR='192.168.1.9')) == '192.168.1.9'
        assert get_client_ip(None) is None
