"""
Super-admin grants and revocations.

Every flip of ``User.is_super_admin`` appends a ``SuperAdminGrant`` row in
the same transaction.
"""
import logging
from typing import Optional

from django.db import transaction
from django.utils import timezone

from apps.core.exceptions import AuthorizationError, ValidationError
from apps.core.logging import SecurityLogger
from apps.rbac.models import SuperAdminGrant, User
from apps.rbac.services.admin_protection import AdminProtectionService, OP_REVOKE_SUPER_ADMIN
from apps.rbac.services.audit_service import AuditService

logger = logging.getLogger(__name__)


class SuperAdminService:

    @classmethod
    def _require_super_admin(cls, grantor: User):
        if grantor is None or not grantor.is_super_admin:
            raise AuthorizationError('Only super admins can manage super admin access.')

    @classmethod
    def grant(cls, target: User, grantor: User, reason: Optional[str] = None, request=None) -> SuperAdminGrant:
        cls._require_super_admin(grantor)
        if target.is_super_admin:
            raise ValidationError('User is already a super admin.', {'user_id': ['Already super admin']})

        now = timezone.now()
        with transaction.atomic():
            entry = SuperAdminGrant.objects.create(
                granted_to=target,
                granted_by=grantor,
                granted_at=now,
                reason=reason or None,
            )
            target.is_super_admin = True
            target.save(update_fields=['is_super_admin', 'updated_at'])
            AuditService.record(
                'user.super_admin.granted',
                actor=grantor,
                affected_user=target,
                auditable=target,
                old_values={'is_super_admin': False},
                new_values={'is_super_admin': True},
                metadata={'reason': reason, 'affected_user_email': target.email},
                request=request,
            )

        SecurityLogger.log_event(
            'super_admin_granted',
            level='warning',
            actor_id=str(grantor.pk),
            target_id=str(target.pk),
        )
        return entry

    @classmethod
    def revoke(cls, target: User, grantor: User, reason: Optional[str] = None, request=None) -> SuperAdminGrant:
        """
        Raises:
            AuthorizationError: If ``grantor`` is not a super admin
            ValidationError: If ``target`` is not a super admin
            InvariantViolation: If no administrator would remain
        """
        cls._require_super_admin(grantor)
        if not target.is_super_admin:
            raise ValidationError('User is not a super admin.', {'user_id': ['Not super admin']})

        with AdminProtectionService.guard(target, OP_REVOKE_SUPER_ADMIN):
            last_grant = (
                SuperAdminGrant.objects.filter(granted_to=target, revoked_at__isnull=True)
                .order_by('-granted_at')
                .first()
            )
            now = timezone.now()
            entry = SuperAdminGrant.objects.create(
                granted_to=target,
                granted_by=last_grant.granted_by if last_grant else None,
                granted_at=last_grant.granted_at if last_grant else now,
                revoked_by=grantor,
                revoked_at=now,
                reason=reason or None,
            )
            target.is_super_admin = False
            target.save(update_fields=['is_super_admin', 'updated_at'])
            AuditService.record(
                'user.super_admin.revoked',
                actor=grantor,
                affected_user=target,
                auditable=target,
                old_values={'is_super_admin': True},
                new_values={'is_super_admin': False},
                metadata={'reason': reason, 'affected_user_email': target.email},
                request=request,
            )

        SecurityLogger.log_event(
            'super_admin_revoked',
            level='warning',
            actor_id=str(grantor.pk),
            target_id=str(target.pk),
        )
        return entry

    @classmethod
    def history(cls, user: User):
        return SuperAdminGrant.objects.filter(granted_to=user).order_by('-created_at', '-id')
