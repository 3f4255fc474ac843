"""
Tests for super-admin grants, revocations and their ledger.
"""
import pytest

from apps.core.exceptions import AuthorizationError, InvariantViolation, ValidationError
from apps.rbac.models import PermissionAuditLog, SuperAdminGrant
from apps.rbac.services.super_admin_service import SuperAdminService


@pytest.mark.django_db
class TestGrant:

    def test_grant_flips_flag_and_appends_ledger(self, super_admin, make_user):
        target = make_user()

        entry = SuperAdminService.grant(target, super_admin, reason='On-call lead')

        target.refresh_from_db()
        assert target.is_super_admin
        assert entry.granted_to_id == target.pk
        assert entry.granted_by_id == super_admin.pk
        assert entry.reason == 'On-call lead'
        assert not entry.is_revocation
        assert PermissionAuditLog.objects.filter(event_type='user.super_admin.granted', affected_user=target).exists()

    def test_grant_to_super_admin_fails(self, super_admin, make_user):
        other = make_user(is_super_admin=True)

        with pytest.raises(ValidationError):
            SuperAdminService.grant(other, super_admin)

        assert not SuperAdminGrant.objects.exists()

    def test_only_super_admins_grant(self, admin_user, make_user):
        with pytest.raises(AuthorizationError):
            SuperAdminService.grant(make_user(), admin_user)


@pytest.mark.django_db
class TestRevoke:

    def test_revoke_closes_the_last_grant(self, super_admin, make_user):
        target = make_user()
        grant = SuperAdminService.grant(target, super_admin)

        entry = SuperAdminService.revoke(target, super_admin, reason='Rotation ended')

        target.refresh_from_db()
        assert not target.is_super_admin
        assert entry.is_revocation
        assert entry.revoked_by_id == super_admin.pk
        assert entry.granted_by_id == grant.granted_by_id
        assert entry.granted_at == grant.granted_at
        assert [row.is_revocation for row in SuperAdminService.history(target)] == [True, False]

    def test_revoke_non_super_admin_fails(self, super_admin, make_user):
        with pytest.raises(ValidationError):
            SuperAdminService.revoke(make_user(), super_admin)

    def test_revoking_the_only_administrator_is_refused(self, super_admin):
        with pytest.raises(InvariantViolation):
            SuperAdminService.revoke(super_admin, super_admin)

        super_admin.refresh_from_db()
        assert super_admin.is_super_admin
        assert not SuperAdminGrant.objects.exists()
        assert not PermissionAuditLog.objects.exists()

    def test_revoke_allowed_when_role_administrator_remains(self, super_admin, admin_user):
        SuperAdminService.revoke(super_admin, super_admin)

        super_admin.refresh_from_db()
        assert not super_admin.is_super_admin
