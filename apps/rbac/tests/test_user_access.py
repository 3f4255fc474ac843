"""
Tests for UserAccessService: grants, roles and account lifecycle.
"""
import pytest

from apps.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from apps.rbac.models import PermissionAuditLog, Role, RolePermission, User, UserPermission, UserRole
from apps.rbac.services.user_access_service import UserAccessService


def event_types():
    return list(PermissionAuditLog.objects.order_by('created_at', 'id').values_list('event_type', flat=True))


@pytest.mark.django_db
class TestGrantAndRevoke:

    def test_grant_writes_one_row_per_permission(self, admin_user, make_user, make_permission):
        target = make_user()
        make_permission('plants.view')
        make_permission('areas.view')

        validation = UserAccessService.grant_permissions(admin_user, target, ['plants.view', 'areas.view'])

        assert sorted(validation.valid) == ['areas.view', 'plants.view']
        rows = PermissionAuditLog.objects.filter(event_type='permission.granted')
        assert rows.count() == 2
        row = rows.get(metadata__permission='plants.view')
        assert row.actor_id == admin_user.pk
        assert row.affected_user_id == target.pk
        assert row.metadata['affected_user_email'] == target.email

    def test_revoke_removes_direct_permission(self, admin_user, make_user):
        target = make_user(permissions=['plants.view'])

        validation = UserAccessService.revoke_permissions(admin_user, target, ['plants.view'])

        assert validation.valid == ['plants.view']
        assert not UserPermission.objects.filter(user=target).exists()
        assert event_types() == ['permission.revoked']

    def test_bulk_update_applies_both_sides(self, admin_user, make_user, make_permission):
        target = make_user(permissions=['plants.view'])
        make_permission('areas.view')

        granted, revoked = UserAccessService.bulk_update(
            admin_user, target, grant=['areas.view', 'ghost.view'], revoke=['plants.view']
        )

        assert granted.valid == ['areas.view']
        assert granted.errors == ['ghost.view']
        assert revoked.valid == ['plants.view']
        assert list(target.direct_permissions.values_list('name', flat=True)) == ['areas.view']


@pytest.mark.django_db
class TestCopyPermissions:

    def test_replace_mode_makes_target_match_source(self, admin_user, make_user):
        source = make_user(permissions=['plants.view', 'areas.view'])
        target = make_user(permissions=['areas.view', 'assets.view'])

        UserAccessService.copy_permissions(admin_user, source, target)

        assert set(target.direct_permissions.values_list('name', flat=True)) == {'plants.view', 'areas.view'}
        copied = PermissionAuditLog.objects.get(event_type='permissions.copied')
        assert copied.metadata['granted'] == ['plants.view']
        assert copied.metadata['revoked'] == ['assets.view']
        assert copied.metadata['merge_mode'] is False

    def test_merge_mode_keeps_target_extras(self, admin_user, make_user):
        source = make_user(permissions=['plants.view'])
        target = make_user(permissions=['assets.view'])

        UserAccessService.copy_permissions(admin_user, source, target, merge=True)

        assert set(target.direct_permissions.values_list('name', flat=True)) == {'plants.view', 'assets.view'}

    def test_copy_is_subject_to_escalation_checks(self, make_user, plant, other_plant):
        actor = make_user(permissions=[f'areas.manage.plant.{plant.pk}'])
        source = make_user(permissions=[f'areas.view.plant.{plant.pk}', f'areas.manage.plant.{plant.pk}'])
        target = make_user(permissions=[f'assets.view.plant.{plant.pk}'])
        UserPermission.objects.create(user=actor, permission=source.direct_permissions.get(name__startswith='areas.view'))

        result = UserAccessService.copy_permissions(actor, source, target, merge=True)

        assert sorted(result.valid) == sorted([f'areas.view.plant.{plant.pk}', f'areas.manage.plant.{plant.pk}'])

    def test_copy_rejects_unheld_permissions(self, make_user, plant):
        actor = make_user(permissions=[f'areas.view.plant.{plant.pk}'])
        source = make_user(permissions=[f'areas.view.plant.{plant.pk}', f'assets.manage.plant.{plant.pk}'])
        target = make_user(permissions=[f'sectors.view.plant.{plant.pk}'])

        result = UserAccessService.copy_permissions(actor, source, target, merge=True)

        assert result.valid == [f'areas.view.plant.{plant.pk}']
        assert result.errors == [f'assets.manage.plant.{plant.pk}']

    def test_copy_from_self_is_rejected(self, admin_user, make_user):
        user = make_user()

        with pytest.raises(ValidationError):
            UserAccessService.copy_permissions(admin_user, user, user)


@pytest.mark.django_db
class TestRoles:

    def test_assign_and_remove_role(self, admin_user, make_user):
        target = make_user()
        role = Role.objects.create(name='Technician')

        UserAccessService.assign_role(admin_user, target, role)
        assert target.has_role('Technician')

        UserAccessService.remove_role(admin_user, target, role)
        assert not target.has_role('Technician')
        assert event_types() == ['role.assigned', 'role.removed']

    def test_assigning_held_role_is_rejected(self, admin_user, make_user):
        role = Role.objects.create(name='Technician')
        target = make_user(roles=[role])

        with pytest.raises(ValidationError):
            UserAccessService.assign_role(admin_user, target, role)

    def test_removing_missing_role(self, admin_user, make_user):
        with pytest.raises(NotFoundError):
            UserAccessService.remove_role(admin_user, make_user(), Role.objects.create(name='Planner'))

    def test_non_administrator_cannot_assign_administrator_role(self, make_user, admin_role, plant):
        actor = make_user(permissions=[f'areas.manage.plant.{plant.pk}'])
        target = make_user(permissions=[f'areas.view.plant.{plant.pk}'])

        with pytest.raises(AuthorizationError):
            UserAccessService.assign_role(actor, target, admin_role)

        assert not target.has_role(admin_role.name)

    def test_role_with_unheld_permissions_cannot_be_assigned(self, make_user, make_permission, plant):
        role = Role.objects.create(name='Global Asset Manager')
        RolePermission.objects.create(role=role, permission=make_permission('assets.manage'))
        actor = make_user(permissions=[f'areas.manage.plant.{plant.pk}'])
        target = make_user(permissions=[f'areas.view.plant.{plant.pk}'])

        assert not UserAccessService.can_assign_role(actor, role)
        with pytest.raises(AuthorizationError):
            UserAccessService.assign_role(actor, target, role)


@pytest.mark.django_db
class TestLifecycle:

    def test_soft_delete_clears_access_and_snapshots_it(self, admin_user, make_user):
        role = Role.objects.create(name='Technician')
        target = make_user(permissions=['plants.view'], roles=[role])

        UserAccessService.delete_user(admin_user, target)

        assert not User.objects.filter(pk=target.pk).exists()
        assert not UserPermission.objects.filter(user=target).exists()
        assert not UserRole.objects.filter(user=target).exists()
        row = PermissionAuditLog.objects.get(event_type='user.deleted')
        assert row.old_values['permissions'] == ['plants.view']
        assert row.old_values['roles'] == ['Technician']

    def test_cannot_delete_self(self, admin_user):
        with pytest.raises(ValidationError):
            UserAccessService.delete_user(admin_user, admin_user)

    def test_restore(self, admin_user, make_user):
        target = make_user()
        UserAccessService.delete_user(admin_user, target)
        target = UserAccessService.get_user(target.pk, include_deleted=True)

        UserAccessService.restore_user(admin_user, target)

        assert User.objects.filter(pk=target.pk).exists()
        assert 'user.restored' in event_types()

    def test_restore_requires_administrator(self, make_user, plant):
        actor = make_user(permissions=[f'areas.manage.plant.{plant.pk}'])
        target = make_user(permissions=[f'areas.view.plant.{plant.pk}'])
        target.delete()

        with pytest.raises(AuthorizationError):
            UserAccessService.restore_user(actor, target)

    def test_restore_of_live_user_is_rejected(self, admin_user, make_user):
        with pytest.raises(ValidationError):
            UserAccessService.restore_user(admin_user, make_user())

    def test_force_delete_keeps_audit_history(self, admin_user, make_user, make_permission):
        target = make_user()
        make_permission('plants.view')
        UserAccessService.grant_permissions(admin_user, target, ['plants.view'])
        target_id = target.pk

        UserAccessService.force_delete_user(admin_user, target)

        assert not User.objects_with_deleted.filter(pk=target_id).exists()
        assert PermissionAuditLog.objects.filter(affected_user_id=target_id).count() == 2
        final = PermissionAuditLog.objects.get(event_type='user.permanently_deleted')
        assert final.metadata['deleted_user_id'] == str(target_id)
        assert final.metadata['affected_user_email'] == target.email

    def test_get_user_not_found(self, db):
        import uuid

        with pytest.raises(NotFoundError):
            UserAccessService.get_user(uuid.uuid4())

    def test_grantable_permissions_excludes_held(self, make_user, plant):
        actor = make_user(permissions=[f'areas.manage.plant.{plant.pk}', f'areas.view.plant.{plant.pk}'])
        target = make_user(permissions=[f'areas.view.plant.{plant.pk}'])

        names = [p.name for p in UserAccessService.grantable_permissions(actor, target)]

        assert names == [f'areas.manage.plant.{plant.pk}']
