"""
Invitation lifecycle: create, accept, revoke and resend.

An invitation is pending until it is accepted or revoked; expiry is
derived from ``expires_at``. The invitation email is queued only after
the creating transaction commits.
"""
import logging
from datetime import timedelta
from typing import Iterable, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.core.exceptions import InvitationStateError, NotFoundError, ValidationError
from apps.core.logging import PIIMasker
from apps.rbac.models import Permission, Role, User, UserInvitation, UserPermission, UserRole
from apps.rbac.services.access_control import AccessControlGuard
from apps.rbac.services.audit_service import AuditService
from apps.rbac.services.hierarchy_service import HierarchyResolver

logger = logging.getLogger(__name__)


def _dispatch_email(invitation: UserInvitation):
    from apps.rbac.tasks import send_invitation_email

    invitation_id = str(invitation.pk)
    transaction.on_commit(lambda: send_invitation_email.delay(invitation_id))


class InvitationService:

    @classmethod
    def create(cls, email: str, invited_by: User, initial_role: Optional[str] = None,
               initial_permissions: Optional[Iterable[str]] = None, message: Optional[str] = None,
               request=None) -> UserInvitation:
        """
        Invite ``email`` with an optional role and permissions applied on
        acceptance.

        The inviter must hold every initial permission itself, and only an
        Administrator may invite into the Administrator role.

        Raises:
            ValidationError: Field errors keyed by ``email``,
                ``initial_role`` and ``initial_permissions``
        """
        email = (email or '').strip().lower()
        initial_permissions = list(dict.fromkeys(initial_permissions or []))
        errors = {}

        if not email:
            errors['email'] = ['This field is required.']
        elif User.objects_with_deleted.filter(email__iexact=email).exists():
            errors['email'] = ['A user with this email already exists.']
        elif UserInvitation.objects.pending().filter(email__iexact=email).exists():
            errors['email'] = ['A pending invitation for this email already exists.']

        if initial_role:
            role = Role.objects.filter(name=initial_role).first()
            if role is None:
                errors['initial_role'] = [f"Role '{initial_role}' does not exist."]
            elif role.is_administrator and not AccessControlGuard.is_administrator(invited_by):
                errors['initial_role'] = ['Only administrators can invite administrators.']

        if initial_permissions:
            known = set(Permission.objects.by_names(initial_permissions).values_list('name', flat=True))
            unknown = [name for name in initial_permissions if name not in known]
            if unknown:
                errors['initial_permissions'] = [f"Permission '{name}' does not exist." for name in unknown]
            else:
                effective = HierarchyResolver.resolve_effective(invited_by)
                not_held = [
                    name for name in initial_permissions
                    if not HierarchyResolver.holds(invited_by, name, effective=effective)
                ]
                if not_held:
                    errors['initial_permissions'] = [
                        f"You cannot grant '{name}' because you do not hold it." for name in not_held
                    ]

        if errors:
            raise ValidationError('The invitation could not be created.', errors)

        try:
            with transaction.atomic():
                cls._supersede_expired(email, invited_by, request=request)
                invitation = UserInvitation.objects.create(
                    email=email,
                    invited_by=invited_by,
                    initial_role=initial_role or None,
                    initial_permissions=initial_permissions,
                    message=message or None,
                )
                AuditService.record(
                    'invitation.sent',
                    actor=invited_by,
                    auditable=invitation,
                    new_values={
                        'email': invitation.email,
                        'initial_role': invitation.initial_role,
                        'initial_permissions': invitation.initial_permissions,
                        'expires_at': invitation.expires_at.isoformat(),
                    },
                    metadata={'invited_by': invited_by.get_full_name()},
                    request=request,
                )
                _dispatch_email(invitation)
        except IntegrityError:
            # Another request opened an invitation for this email first
            raise ValidationError(
                'The invitation could not be created.',
                {'email': ['A pending invitation for this email already exists.']}
            )

        logger.info(
            f"Invitation created for {PIIMasker.mask_email(email)}",
            extra={'invitation_id': str(invitation.pk), 'invited_by': str(invited_by.pk)}
        )
        return invitation

    @classmethod
    def _supersede_expired(cls, email: str, by: User, request=None):
        """Close expired invitations for ``email`` so only one stays open."""
        stale = UserInvitation.objects.select_for_update().expired().alive().filter(email=email)
        for invitation in stale:
            invitation.revoked_at = timezone.now()
            invitation.revoked_by = by
            invitation.revoke_reason = 'Superseded by a new invitation.'
            invitation.save(update_fields=['revoked_at', 'revoked_by', 'revoke_reason', 'updated_at'])
            AuditService.record(
                'invitation.revoked',
                actor=by,
                auditable=invitation,
                new_values={'revoked_at': invitation.revoked_at.isoformat()},
                metadata={'email': invitation.email, 'reason': invitation.revoke_reason},
                request=request,
            )

    @classmethod
    def get_by_token(cls, token: str) -> UserInvitation:
        invitation = UserInvitation.objects.select_related('invited_by').filter(token=token).first()
        if invitation is None:
            raise NotFoundError('Invitation not found.')
        return invitation

    @classmethod
    def accept(cls, token: str, name: str, password: str, request=None) -> User:
        """
        Create the invited user and apply the invitation's role and
        permissions. The invitation row is locked for the duration, so a
        token can be accepted once.

        Raises:
            NotFoundError: Unknown token
            InvitationStateError: Accepted, revoked or expired invitation
        """
        name = (name or '').strip()
        if not name:
            raise ValidationError('Name is required.', {'name': ['This field is required.']})
        if not password:
            raise ValidationError('Password is required.', {'password': ['This field is required.']})

        with transaction.atomic():
            invitation = UserInvitation.objects.select_for_update().filter(token=token).first()
            if invitation is None:
                raise NotFoundError('Invitation not found.')
            if not invitation.is_valid():
                raise InvitationStateError(
                    'This invitation is no longer valid.',
                    {'status': invitation.status}
                )
            if User.objects_with_deleted.filter(email__iexact=invitation.email).exists():
                raise ValidationError(
                    'A user with this email already exists.',
                    {'email': ['A user with this email already exists.']}
                )

            user = User.objects.create_user(
                email=invitation.email,
                password=password,
                name=name,
                email_verified_at=timezone.now(),
            )

            granted_role = None
            if invitation.initial_role:
                role = Role.objects.filter(name=invitation.initial_role).first()
                if role is not None:
                    UserRole.objects.create(user=user, role=role, assigned_by=invitation.invited_by)
                    granted_role = role.name

            permissions = list(Permission.objects.by_names(invitation.initial_permissions or []))
            UserPermission.objects.bulk_create([
                UserPermission(user=user, permission=permission, granted_by=invitation.invited_by)
                for permission in permissions
            ])

            invitation.accepted_at = timezone.now()
            invitation.accepted_by = user
            invitation.save(update_fields=['accepted_at', 'accepted_by', 'updated_at'])

            AuditService.record(
                'invitation.accepted',
                actor=user,
                affected_user=user,
                auditable=invitation,
                new_values={
                    'role': granted_role,
                    'permissions': sorted(p.name for p in permissions),
                },
                metadata={
                    'email': invitation.email,
                    'invited_by_id': str(invitation.invited_by_id) if invitation.invited_by_id else None,
                },
                request=request,
            )

        logger.info(
            "Invitation accepted",
            extra={'invitation_id': str(invitation.pk), 'user_id': str(user.pk)}
        )
        return user

    @classmethod
    def revoke(cls, invitation: UserInvitation, by: User, reason: Optional[str] = None,
               request=None) -> UserInvitation:
        with transaction.atomic():
            invitation = UserInvitation.objects.select_for_update().get(pk=invitation.pk)
            if invitation.is_accepted:
                raise InvitationStateError('Cannot revoke an accepted invitation.', {'status': invitation.status})
            if invitation.is_revoked:
                raise InvitationStateError('Invitation is already revoked.', {'status': invitation.status})

            invitation.revoked_at = timezone.now()
            invitation.revoked_by = by
            invitation.revoke_reason = reason or None
            invitation.save(update_fields=['revoked_at', 'revoked_by', 'revoke_reason', 'updated_at'])

            AuditService.record(
                'invitation.revoked',
                actor=by,
                auditable=invitation,
                new_values={'revoked_at': invitation.revoked_at.isoformat()},
                metadata={'email': invitation.email, 'reason': reason},
                request=request,
            )
        return invitation

    @classmethod
    def resend(cls, invitation: UserInvitation, by: Optional[User] = None, request=None) -> UserInvitation:
        """
        Extend a pending or expired invitation by the configured expiry
        and send the email again.
        """
        with transaction.atomic():
            invitation = UserInvitation.objects.select_for_update().get(pk=invitation.pk)
            if invitation.is_accepted:
                raise InvitationStateError('Cannot resend an accepted invitation.', {'status': invitation.status})
            if invitation.is_revoked:
                raise InvitationStateError('Cannot resend a revoked invitation.', {'status': invitation.status})

            old_expiry = invitation.expires_at
            invitation.expires_at = timezone.now() + timedelta(days=settings.INVITATION_EXPIRY_DAYS)
            invitation.save(update_fields=['expires_at', 'updated_at'])

            AuditService.record(
                'invitation.resent',
                actor=by,
                auditable=invitation,
                old_values={'expires_at': old_expiry.isoformat()},
                new_values={'expires_at': invitation.expires_at.isoformat()},
                metadata={'email': invitation.email},
                request=request,
            )
            _dispatch_email(invitation)

        return invitation

    @classmethod
    def listing(cls, status: Optional[str] = None, search: Optional[str] = None):
        invitations = UserInvitation.objects.select_related('invited_by', 'accepted_by', 'revoked_by')
        if status:
            if status not in UserInvitation.STATUSES:
                raise ValidationError(
                    f"Unknown status '{status}'.",
                    {'status': [f"Must be one of {', '.join(UserInvitation.STATUSES)}"]}
                )
            invitations = invitations.with_status(status)
        if search:
            invitations = invitations.filter(email__icontains=search.strip())
        return invitations.order_by('-created_at')
