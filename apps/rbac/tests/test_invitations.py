"""
Tests for the invitation lifecycle and the invitation email task.
"""
from datetime import timedelta

import pytest
from django.core import mail
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.core.exceptions import InvitationStateError, NotFoundError, ValidationError
from apps.rbac.models import PermissionAuditLog, Role, User, UserInvitation, UserInvitationQuerySet
from apps.rbac.services.invitation_service import InvitationService
from apps.rbac.tasks import invitation_url, send_invitation_email


@pytest.fixture
def invitation(admin_user, queued_emails):
    return InvitationService.create('new.tech@plant.test', admin_user, initial_permissions=['plants.view'])


@pytest.mark.django_db
class TestCreate:

    def test_create_queues_email_after_commit(self, admin_user, queued_emails, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            invitation = InvitationService.create('New.Tech@Plant.test', admin_user, message='Welcome aboard')

        assert invitation.email == 'new.tech@plant.test'
        assert invitation.status == UserInvitation.STATUS_PENDING
        assert len(invitation.token) == 64
        assert queued_emails == [str(invitation.pk)]
        assert PermissionAuditLog.objects.filter(event_type='invitation.sent').count() == 1

    def test_email_of_existing_user_is_rejected(self, admin_user, make_user, queued_emails):
        make_user(email='taken@plant.test')

        with pytest.raises(ValidationError) as exc_info:
            InvitationService.create('taken@plant.test', admin_user)

        assert 'email' in exc_info.value.details

    def test_email_of_deleted_user_is_rejected(self, admin_user, make_user, queued_emails):
        make_user(email='gone@plant.test').delete()

        with pytest.raises(ValidationError):
            InvitationService.create('gone@plant.test', admin_user)

    def test_second_pending_invitation_is_rejected(self, admin_user, invitation):
        with pytest.raises(ValidationError):
            InvitationService.create(invitation.email, admin_user)

    def test_expired_invitation_does_not_block_a_new_one(self, admin_user, invitation):
        UserInvitation.objects.filter(pk=invitation.pk).update(expires_at=timezone.now() - timedelta(days=1))

        again = InvitationService.create(invitation.email, admin_user)

        assert again.pk != invitation.pk
        invitation.refresh_from_db()
        assert invitation.status == UserInvitation.STATUS_REVOKED
        assert invitation.revoked_by == admin_user
        assert UserInvitation.objects.filter(email=invitation.email, revoked_at__isnull=True).count() == 1

    def test_database_allows_one_open_invitation_per_email(self, admin_user, invitation):
        with pytest.raises(IntegrityError), transaction.atomic():
            UserInvitation.objects.create(email=invitation.email, invited_by=admin_user)

        InvitationService.revoke(invitation, admin_user)
        UserInvitation.objects.create(email=invitation.email, invited_by=admin_user)

    def test_concurrent_create_loses_cleanly(self, admin_user, invitation, monkeypatch):
        # The other request's row is invisible to the pending check but not to the constraint
        monkeypatch.setattr(UserInvitationQuerySet, 'pending', lambda self: self.none())

        with pytest.raises(ValidationError) as exc_info:
            InvitationService.create(invitation.email, admin_user)

        assert 'email' in exc_info.value.details
        assert UserInvitation.objects.filter(email=invitation.email).count() == 1
        assert PermissionAuditLog.objects.filter(event_type='invitation.sent').count() == 1

    def test_unknown_role_and_permissions(self, admin_user, queued_emails):
        with pytest.raises(ValidationError) as exc_info:
            InvitationService.create(
                'x@plant.test', admin_user, initial_role='Wizard', initial_permissions=['ghost.view']
            )

        assert set(exc_info.value.details) == {'initial_role', 'initial_permissions'}
        assert not UserInvitation.objects.exists()

    def test_inviter_cannot_hand_out_unheld_permissions(self, make_user, plant, other_plant, queued_emails,
                                                       make_permission):
        inviter = make_user(permissions=[f'areas.manage.plant.{plant.pk}'])
        make_permission(f'areas.manage.plant.{other_plant.pk}')

        with pytest.raises(ValidationError) as exc_info:
            InvitationService.create(
                'x@plant.test', inviter, initial_permissions=[f'areas.manage.plant.{other_plant.pk}']
            )

        assert 'initial_permissions' in exc_info.value.details

    def test_only_administrators_invite_administrators(self, make_user, admin_role, queued_emails):
        with pytest.raises(ValidationError) as exc_info:
            InvitationService.create('x@plant.test', make_user(), initial_role=admin_role.name)

        assert 'initial_role' in exc_info.value.details


@pytest.mark.django_db
class TestAccept:

    def test_accept_creates_verified_user_with_initial_access(self, admin_user, queued_emails):
        role = Role.objects.create(name='Technician')
        invitation = InvitationService.create(
            'new.tech@plant.test', admin_user, initial_role='Technician', initial_permissions=['plants.view']
        )

        user = InvitationService.accept(invitation.token, 'New Tech', 'Str0ng-pass!')

        assert user.email == 'new.tech@plant.test'
        assert user.email_verified
        assert user.check_password('Str0ng-pass!')
        assert user.has_role(role.name)
        assert list(user.direct_permissions.values_list('name', flat=True)) == ['plants.view']
        invitation.refresh_from_db()
        assert invitation.status == UserInvitation.STATUS_ACCEPTED
        assert invitation.accepted_by == user
        entry = PermissionAuditLog.objects.get(event_type='invitation.accepted')
        assert entry.actor_id == user.pk

    def test_second_accept_fails_and_creates_no_user(self, invitation):
        InvitationService.accept(invitation.token, 'New Tech', 'Str0ng-pass!')

        with pytest.raises(InvitationStateError):
            InvitationService.accept(invitation.token, 'Someone Else', 'Str0ng-pass!')

        assert User.objects.filter(email=invitation.email).count() == 1

    def test_expired_invitation_cannot_be_accepted(self, invitation):
        UserInvitation.objects.filter(pk=invitation.pk).update(expires_at=timezone.now() - timedelta(seconds=1))

        with pytest.raises(InvitationStateError) as exc_info:
            InvitationService.accept(invitation.token, 'New Tech', 'Str0ng-pass!')

        assert exc_info.value.details == {'status': UserInvitation.STATUS_EXPIRED}
        assert not User.objects.filter(email=invitation.email).exists()

    def test_revoked_invitation_cannot_be_accepted(self, admin_user, invitation):
        InvitationService.revoke(invitation, admin_user)

        with pytest.raises(InvitationStateError):
            InvitationService.accept(invitation.token, 'New Tech', 'Str0ng-pass!')

    def test_unknown_token(self, db):
        with pytest.raises(NotFoundError):
            InvitationService.accept('nope', 'New Tech', 'Str0ng-pass!')

    def test_blank_name_is_rejected(self, invitation):
        with pytest.raises(ValidationError):
            InvitationService.accept(invitation.token, '   ', 'Str0ng-pass!')


@pytest.mark.django_db
class TestRevokeAndResend:

    def test_revoke_records_reason(self, admin_user, invitation):
        InvitationService.revoke(invitation, admin_user, reason='Hired elsewhere')

        invitation.refresh_from_db()
        assert invitation.status == UserInvitation.STATUS_REVOKED
        assert invitation.revoke_reason == 'Hired elsewhere'
        assert invitation.revoked_by == admin_user

    def test_revoke_twice_fails(self, admin_user, invitation):
        InvitationService.revoke(invitation, admin_user)

        with pytest.raises(InvitationStateError) as exc_info:
            InvitationService.revoke(invitation, admin_user)

        assert exc_info.value.status_code == 410
        assert exc_info.value.details == {'status': UserInvitation.STATUS_REVOKED}

    def test_revoked_invitation_cannot_be_resent(self, admin_user, invitation):
        InvitationService.revoke(invitation, admin_user)

        with pytest.raises(InvitationStateError):
            InvitationService.resend(invitation, admin_user)

    def test_accepted_invitation_cannot_be_revoked_or_resent(self, admin_user, invitation):
        InvitationService.accept(invitation.token, 'New Tech', 'Str0ng-pass!')

        with pytest.raises(InvitationStateError) as exc_info:
            InvitationService.revoke(invitation, admin_user)
        assert exc_info.value.details == {'status': UserInvitation.STATUS_ACCEPTED}
        with pytest.raises(InvitationStateError):
            InvitationService.resend(invitation, admin_user)

    def test_resend_extends_expired_invitation(self, admin_user, invitation, queued_emails,
                                               django_capture_on_commit_callbacks):
        UserInvitation.objects.filter(pk=invitation.pk).update(expires_at=timezone.now() - timedelta(days=2))

        with django_capture_on_commit_callbacks(execute=True):
            InvitationService.resend(invitation, admin_user)

        invitation.refresh_from_db()
        assert invitation.status == UserInvitation.STATUS_PENDING
        assert invitation.expires_at > timezone.now() + timedelta(days=6)
        assert queued_emails[-1] == str(invitation.pk)
        assert PermissionAuditLog.objects.filter(event_type='invitation.resent').count() == 1


@pytest.mark.django_db
class TestListing:

    def test_filter_by_status_and_search(self, admin_user, queued_emails):
        pending = InvitationService.create('pending@plant.test', admin_user)
        revoked = InvitationService.create('revoked@plant.test', admin_user)
        InvitationService.revoke(revoked, admin_user)

        assert list(InvitationService.listing(status='pending')) == [pending]
        assert list(InvitationService.listing(status='revoked')) == [revoked]
        assert list(InvitationService.listing(search='REVOKED')) == [revoked]

    def test_unknown_status(self, db):
        with pytest.raises(ValidationError):
            InvitationService.listing(status='archived')


@pytest.mark.django_db
class TestEmailTask:

    def test_sends_invitation_email(self, invitation):
        result = send_invitation_email.apply(args=[str(invitation.pk)]).get()

        assert result['status'] == 'sent'
        assert len(mail.outbox) == 1
        message = mail.outbox[0]
        assert message.to == [invitation.email]
        assert invitation_url(invitation.token) in message.body

    def test_skips_invalid_invitation(self, admin_user, invitation):
        InvitationService.revoke(invitation, admin_user)

        result = send_invitation_email.apply(args=[str(invitation.pk)]).get()

        assert result['status'] == 'skipped'
        assert not mail.outbox

    def test_missing_invitation(self, db):
        import uuid

        result = send_invitation_email.apply(args=[str(uuid.uuid4())]).get()

        assert result['status'] == 'missing'
