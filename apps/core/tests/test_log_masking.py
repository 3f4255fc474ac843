"""
Tests for PII masking, the JSON formatter and the security logger.
"""
import json
import logging

from apps.core.logging import JSONFormatter, PIIMasker, SecurityLogger


class TestPIIMasker:

    def test_mask_email(self):
        assert PIIMasker.mask_email('Invite sent to jane.doe@plant.test') == 'Invite sent to j*******@plant.test'

    def test_mask_secrets(self):
        masked = PIIMasker.mask_secrets('token=abc123 password: hunter2')

        assert 'abc123' not in masked
        assert 'hunter2' not in masked

    def test_mask_dict_hides_sensitive_fields(self):
        masked = PIIMasker.mask_dict({
            'email': 'jane@plant.test',
            'token': 'f' * 64,
            'context': {'password': 'secret', 'note': 'mail jane@plant.test'},
            'names': ['areas.view', 'bob@plant.test'],
            'count': 3,
        })

        assert masked['email'] == '********'
        assert masked['token'] == '********'
        assert masked['context']['password'] == '********'
        assert masked['context']['note'] == 'mail j***@plant.test'
        assert masked['names'] == ['areas.view', 'b**@plant.test']
        assert masked['count'] == 3

    def test_non_strings_pass_through(self):
        assert PIIMasker.mask_text(None) is None
        assert PIIMasker.mask_dict(['a']) == ['a']


class TestJSONFormatter:

    def _record(self, msg, **extra):
        record = logging.LogRecord('apps.rbac', logging.INFO, __file__, 1, msg, None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_formats_masked_json(self):
        record = self._record(
            'Invitation created for new@plant.test',
            request_id='req-1',
            invitation_id='42',
            email='new@plant.test',
        )

        data = json.loads(JSONFormatter().format(record))

        assert data['level'] == 'INFO'
        assert data['logger'] == 'apps.rbac'
        assert data['message'] == 'Invitation created for n**@plant.test'
        assert data['request_id'] == 'req-1'
        assert data['invitation_id'] == '42'
        assert data['email'] == '********'

    def test_unserializable_extra_is_stringified(self):
        data = json.loads(JSONFormatter().format(self._record('x', scopes={('plant', 1)})))

        assert data['scopes'] == "{('plant', 1)}"


class TestSecurityLogger:

    def test_critical_events_are_raised_to_error(self, monkeypatch):
        calls = []
        security = logging.getLogger('security')
        monkeypatch.setattr(security, 'error', lambda msg, extra=None: calls.append(('error', msg, extra)))
        monkeypatch.setattr(security, 'warning', lambda msg, extra=None: calls.append(('warning', msg, extra)))

        SecurityLogger.log_event('escalation_attempt', level='info', actor_id='1')
        SecurityLogger.log_event('authorization_denied', ability='audit.view')

        assert [(level, msg) for level, msg, _ in calls] == [
            ('error', 'Security event: escalation_attempt'),
            ('warning', 'Security event: authorization_denied'),
        ]
        assert calls[1][2]['ability'] == 'audit.view'

    def test_context_is_masked(self, monkeypatch):
        calls = []
        security = logging.getLogger('security')
        monkeypatch.setattr(security, 'warning', lambda msg, extra=None: calls.append(extra))

        SecurityLogger.log_rate_limit_exceeded('/v1/rbac/invitations/accept', ip_address='10.0.0.1', limit='10/min')
        SecurityLogger.log_event('invitation_lookup', email='someone@plant.test')

        assert calls[0]['endpoint'] == '/v1/rbac/invitations/accept'
        assert calls[1]['email'] == '********'
