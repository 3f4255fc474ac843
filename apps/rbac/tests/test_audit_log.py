"""
Tests for the permission audit trail: immutability, queries, CSV export
and retention cleanup.
"""
import csv
import io
from datetime import timedelta

import pytest
from django.test import RequestFactory, override_settings
from django.utils import timezone

from apps.core.exceptions import ImmutableAuditLogError, ValidationError
from apps.rbac.models import PermissionAuditLog, User
from apps.rbac.services import audit_service
from apps.rbac.services.audit_service import CSV_COLUMNS, AuditService


def old_entry(days, event_type='permission.granted', **extra):
    return PermissionAuditLog.objects.create(
        event_type=event_type,
        event_action=event_type.rsplit('.', 1)[-1],
        created_at=timezone.now() - timedelta(days=days),
        **extra,
    )


@pytest.mark.django_db
class TestRecord:

    def test_record_captures_request_context(self, admin_user, make_user, make_permission):
        target = make_user()
        permission = make_permission('plants.view')
        request = RequestFactory().post(
            '/v1/rbac/users/x/permissions/grant',
            HTTP_X_FORWARDED_FOR='10.1.2.3, 172.16.0.1',
            HTTP_USER_AGENT='pytest-agent',
        )
        request.request_id = 'req-123'

        entry = AuditService.record(
            'permission.granted',
            actor=admin_user,
            affected_user=target,
            auditable=permission,
            new_values={'permission': 'plants.view'},
            request=request,
        )

        assert entry.event_action == 'granted'
        assert entry.ip_address == '10.1.2.3'
        assert entry.user_agent == 'pytest-agent'
        assert entry.request_id == 'req-123'
        assert entry.auditable == permission
        assert entry.created_at is not None

    def test_anonymous_actor_is_stored_as_none(self):
        from django.contrib.auth.models import AnonymousUser

        entry = AuditService.record('audit.cleanup', actor=AnonymousUser())

        assert entry.actor_id is None

    def test_description_mentions_permission_and_user(self):
        entry = AuditService.record(
            'permission.revoked',
            metadata={'permission': 'areas.view.plant.3', 'affected_user_email': 'op@plant.test'},
        )

        assert entry.description == 'Permission Revoked - areas.view.plant.3 - for op@plant.test'


@pytest.mark.django_db
class TestImmutability:

    def test_instance_cannot_be_saved_again(self):
        entry = AuditService.record('role.created')
        entry.event_type = 'role.deleted'

        with pytest.raises(ImmutableAuditLogError):
            entry.save()

    def test_instance_cannot_be_deleted(self):
        entry = AuditService.record('role.created')

        with pytest.raises(ImmutableAuditLogError):
            entry.delete()

        assert PermissionAuditLog.objects.filter(pk=entry.pk).exists()

    def test_queryset_update_and_delete_are_refused(self):
        AuditService.record('role.created')

        with pytest.raises(ImmutableAuditLogError):
            PermissionAuditLog.objects.all().update(event_type='tampered')
        with pytest.raises(ImmutableAuditLogError):
            PermissionAuditLog.objects.filter(event_type='role.created').delete()

        assert PermissionAuditLog.objects.get().event_type == 'role.created'

    def test_failed_audit_write_rolls_back_the_mutation(self, admin_user, make_user, make_permission, monkeypatch):
        from apps.rbac.models import UserPermission
        from apps.rbac.services.user_access_service import UserAccessService

        target = make_user()
        make_permission('plants.view')

        def broken_record(*args, **kwargs):
            raise RuntimeError('audit store unavailable')

        monkeypatch.setattr(AuditService, 'record', broken_record)

        with pytest.raises(RuntimeError):
            UserAccessService.grant_permissions(admin_user, target, ['plants.view'])

        assert not UserPermission.objects.filter(user=target).exists()


@pytest.mark.django_db
class TestQuery:

    def test_newest_first(self):
        old_entry(3, 'role.created')
        old_entry(1, 'role.updated')
        old_entry(2, 'role.deleted')

        page = AuditService.query()

        assert [entry.event_type for entry in page] == ['role.updated', 'role.deleted', 'role.created']

    def test_filters(self, make_user):
        actor = make_user(email='actor@plant.test', name='Dana Actor')
        target = make_user()
        AuditService.record('permission.granted', actor=actor, affected_user=target)
        AuditService.record('role.created', actor=target)

        assert AuditService.filtered({'event_type': 'role.created'}).count() == 1
        assert AuditService.filtered({'user_id': str(actor.pk)}).count() == 1
        assert AuditService.filtered({'affected_user_id': str(target.pk)}).count() == 1
        assert AuditService.filtered({'search': 'Dana'}).count() == 1

    def test_date_range_is_inclusive(self):
        old_entry(10)
        old_entry(5)
        old_entry(0)
        today = timezone.localdate()

        qs = AuditService.filtered({
            'date_from': (today - timedelta(days=5)).isoformat(),
            'date_to': today.isoformat(),
        })

        assert qs.count() == 2

    def test_bad_filters_are_validation_errors(self):
        with pytest.raises(ValidationError):
            AuditService.filtered({'date_from': 'yesterday'})
        with pytest.raises(ValidationError):
            AuditService.filtered({'user_id': 'not-a-uuid'})
        with pytest.raises(ValidationError):
            AuditService.filtered({'date_from': '2024-02-01', 'date_to': '2024-01-01'})

    def test_pagination(self):
        for _ in range(5):
            AuditService.record('role.updated')

        page = AuditService.query(page=2, page_size=2)

        assert len(page.object_list) == 2
        assert page.paginator.count == 5

    def test_history_for_user_only_has_access_events(self, make_user):
        target = make_user()
        AuditService.record('permission.granted', affected_user=target)
        AuditService.record('role.assigned', affected_user=target)
        AuditService.record('user.deleted', affected_user=target)

        history = AuditService.history_for_user(target)

        assert sorted(entry.event_type for entry in history) == ['permission.granted', 'role.assigned']


@pytest.mark.django_db
class TestExport:

    def test_export_has_fixed_columns_and_is_not_paginated(self, admin_user, make_permission):
        permission = make_permission('plants.view')
        for _ in range(60):
            AuditService.record(
                'permission.created', actor=admin_user, auditable=permission,
                metadata={'permission': 'plants.view'},
            )

        rows = list(csv.reader(io.StringIO(''.join(AuditService.export_csv()))))

        assert rows[0] == CSV_COLUMNS
        assert rows[0] == [
            'Date', 'Time', 'Event Type', 'Action', 'Description',
            'User', 'Impersonator', 'IP Address', 'Entity Type', 'Entity ID',
        ]
        assert len(rows) == 61
        assert rows[1][2] == 'permission.created'
        assert rows[1][5] == 'Admin'
        assert rows[1][8] == 'Permission'
        assert rows[1][9] == str(permission.pk)

    def test_export_respects_filters(self):
        AuditService.record('role.created')
        AuditService.record('role.deleted')

        rows = list(AuditService.export_rows({'event_type': 'role.deleted'}))

        assert len(rows) == 2

    def test_export_reads_rows_and_users_chunk_by_chunk(self, monkeypatch, make_user):
        monkeypatch.setattr(audit_service, 'EXPORT_CHUNK_SIZE', 2)
        actors = [make_user() for _ in range(5)]
        for actor in actors:
            AuditService.record('role.created', actor=actor)

        lookups = []
        in_bulk = User.objects_with_deleted.in_bulk

        def counting_in_bulk(ids):
            lookups.append(set(ids))
            return in_bulk(ids)

        monkeypatch.setattr(User.objects_with_deleted, 'in_bulk', counting_in_bulk)

        rows = AuditService.export_rows()
        next(rows)
        next(rows)
        assert len(lookups) == 1

        remaining = list(rows)

        assert len(remaining) == 4
        assert [len(ids) for ids in lookups] == [2, 2, 1]
        assert set().union(*lookups) == {actor.pk for actor in actors}

    def test_filename(self):
        assert AuditService.export_filename().startswith('audit-logs-')
        assert AuditService.export_filename().endswith('.csv')


@pytest.mark.django_db
class TestCleanup:

    def test_only_rows_older_than_cutoff_are_removed(self, admin_user):
        old_entry(400)
        old_entry(366)
        keep = [old_entry(364), old_entry(30), old_entry(0)]

        deleted = AuditService.cleanup(365, actor=admin_user)

        assert deleted == 2
        remaining = set(PermissionAuditLog.objects.exclude(event_type='audit.cleanup').values_list('pk', flat=True))
        assert remaining == {entry.pk for entry in keep}

    def test_cleanup_is_itself_audited(self, admin_user):
        old_entry(100)

        AuditService.cleanup(30, actor=admin_user)

        entry = PermissionAuditLog.objects.get(event_type='audit.cleanup')
        assert entry.metadata['deleted_count'] == 1
        assert entry.metadata['keep_days'] == 30

    @pytest.mark.parametrize('keep_days', [0, 29, 3651, 'forever', None])
    def test_keep_days_out_of_bounds(self, keep_days):
        old_entry(5000)

        with pytest.raises(ValidationError):
            AuditService.cleanup(keep_days)

        assert PermissionAuditLog.objects.count() == 1

    @override_settings(AUDIT_LOG_KEEP_DAYS_MIN=7)
    def test_bounds_come_from_settings(self):
        old_entry(10)

        assert AuditService.cleanup(7) == 1


@pytest.mark.django_db
class TestStatistics:

    def test_counts_by_family(self, make_user):
        actor = make_user(name='Busy')
        AuditService.record('permission.granted', actor=actor)
        AuditService.record('permissions.copied', actor=actor)
        AuditService.record('role.created', actor=actor)
        AuditService.record('invitation.sent')
        old_entry(90, 'user.deleted')

        stats = AuditService.statistics(days=30)

        assert stats['total_events'] == 4
        assert stats['permission_changes'] == 2
        assert stats['role_changes'] == 1
        assert stats['invitation_events'] == 1
        assert stats['user_changes'] == 0
        assert stats['top_users'] == [{'user_id': str(actor.pk), 'name': 'Busy', 'count': 3}]
