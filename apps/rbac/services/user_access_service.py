"""
Mutations of a user's access: direct grants, roles and account lifecycle.

Every mutation runs in one transaction together with its audit rows.
Batch operations are validated before the transaction starts mutating.
"""
import logging
from typing import Iterable, Optional

from django.db import transaction
from django.utils import timezone

from apps.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from apps.rbac.models import Role, User, UserPermission, UserRole
from apps.rbac.services.access_control import AccessControlGuard
from apps.rbac.services.admin_protection import (
    AdminProtectionService, OP_DELETE, OP_FORCE_DELETE, OP_REMOVE_ROLE,
)
from apps.rbac.services.audit_service import AuditService
from apps.rbac.services.grant_validator import GrantValidation, GrantValidator
from apps.rbac.services.hierarchy_service import HierarchyResolver

logger = logging.getLogger(__name__)


class UserAccessService:

    @classmethod
    def _apply_grants(cls, actor, target, validation: GrantValidation, request=None):
        for name in validation.valid:
            permission = validation.permissions[name]
            UserPermission.objects.create(user=target, permission=permission, granted_by=actor)
            AuditService.record(
                'permission.granted',
                actor=actor,
                affected_user=target,
                auditable=permission,
                new_values={'permission': name},
                metadata={'permission': name, 'affected_user_email': target.email},
                request=request,
            )

    @classmethod
    def _apply_revokes(cls, actor, target, validation: GrantValidation, request=None):
        for name in validation.valid:
            permission = validation.permissions[name]
            UserPermission.objects.filter(user=target, permission=permission).delete()
            AuditService.record(
                'permission.revoked',
                actor=actor,
                affected_user=target,
                auditable=permission,
                old_values={'permission': name},
                metadata={'permission': name, 'affected_user_email': target.email},
                request=request,
            )

    @classmethod
    def grant_permissions(cls, actor: User, target: User, names: Iterable[str], request=None) -> GrantValidation:
        """
        Grant every valid name in ``names`` to ``target``.

        Rejected names are returned in ``errors`` and leave no trace;
        each applied grant writes one ``permission.granted`` row.
        """
        AccessControlGuard.authorize_manage_user(actor, target)
        validation = GrantValidator.validate_grant(actor, target, names)

        if validation.valid:
            with transaction.atomic():
                cls._apply_grants(actor, target, validation, request)

        logger.info(
            f"Granted {len(validation.valid)} permission(s), rejected {len(validation.errors)}",
            extra={'actor_id': str(actor.pk), 'target_id': str(target.pk), 'rejected': validation.errors}
        )
        return validation

    @classmethod
    def revoke_permissions(cls, actor: User, target: User, names: Iterable[str], request=None) -> GrantValidation:
        AccessControlGuard.authorize_manage_user(actor, target)
        validation = GrantValidator.validate_revoke(actor, target, names)

        if validation.valid:
            with transaction.atomic():
                cls._apply_revokes(actor, target, validation, request)

        logger.info(
            f"Revoked {len(validation.valid)} permission(s), rejected {len(validation.errors)}",
            extra={'actor_id': str(actor.pk), 'target_id': str(target.pk), 'rejected': validation.errors}
        )
        return validation

    @classmethod
    def bulk_update(cls, actor: User, target: User, grant: Iterable[str] = (), revoke: Iterable[str] = (),
                    request=None):
        """
        Mixed grant and revoke. Both splits are computed first, then all
        valid items are applied in a single transaction.
        """
        AccessControlGuard.authorize_manage_user(actor, target)
        grant_validation = GrantValidator.validate_grant(actor, target, grant or [])
        revoke_validation = GrantValidator.validate_revoke(actor, target, revoke or [])

        if grant_validation.valid or revoke_validation.valid:
            with transaction.atomic():
                cls._apply_grants(actor, target, grant_validation, request)
                cls._apply_revokes(actor, target, revoke_validation, request)

        return grant_validation, revoke_validation

    @classmethod
    def copy_permissions(cls, actor: User, source: User, target: User, merge: bool = False,
                         request=None) -> GrantValidation:
        """
        Copy ``source``'s direct permissions onto ``target``.

        Names the target already holds are left alone. Without ``merge``
        the target's direct permissions missing from the source are
        revoked. The actor must be able to manage both users and the
        grant part goes through the escalation checks.
        """
        AccessControlGuard.authorize_manage_user(actor, target)
        if not AccessControlGuard.can_manage_user(actor, source):
            raise AuthorizationError('You are not allowed to copy from this user.', {'user_id': str(source.pk)})
        if source.pk == target.pk:
            raise ValidationError('Source and target must be different users.', {'source_user_id': ['Same as target']})

        source_names = set(HierarchyResolver.direct_permissions(source).values_list('name', flat=True))
        target_names = set(HierarchyResolver.direct_permissions(target).values_list('name', flat=True))

        grant_validation = GrantValidator.validate_grant(actor, target, sorted(source_names - target_names))
        revoke_validation = GrantValidation()
        if not merge:
            revoke_validation = GrantValidator.validate_revoke(actor, target, sorted(target_names - source_names))

        with transaction.atomic():
            cls._apply_grants(actor, target, grant_validation, request)
            cls._apply_revokes(actor, target, revoke_validation, request)
            AuditService.record(
                'permissions.copied',
                actor=actor,
                affected_user=target,
                auditable=target,
                metadata={
                    'source_user_id': str(source.pk),
                    'affected_user_email': target.email,
                    'merge_mode': merge,
                    'permissions_count': len(grant_validation.valid),
                    'granted': grant_validation.valid,
                    'revoked': revoke_validation.valid,
                    'rejected': grant_validation.errors + revoke_validation.errors,
                },
                request=request,
            )

        return grant_validation

    @classmethod
    def can_assign_role(cls, actor: User, role: Role) -> bool:
        """
        Administrators assign any role. Others never assign the
        Administrator role and must themselves hold every permission the
        role carries.
        """
        if AccessControlGuard.is_administrator(actor):
            return True
        if role.is_administrator:
            return False
        effective = HierarchyResolver.resolve_effective(actor)
        return all(
            HierarchyResolver.holds(actor, name, effective=effective)
            for name in role.permissions.values_list('name', flat=True)
        )

    @classmethod
    def assign_role(cls, actor: User, target: User, role: Role, request=None) -> UserRole:
        AccessControlGuard.authorize_manage_user(actor, target)
        if not cls.can_assign_role(actor, role):
            raise AuthorizationError('You are not allowed to assign this role.', {'role': role.name})
        if UserRole.objects.filter(user=target, role=role).exists():
            raise ValidationError(f"User already has the role '{role.name}'.", {'role_id': ['Already assigned']})

        with transaction.atomic():
            user_role = UserRole.objects.create(user=target, role=role, assigned_by=actor)
            AuditService.record(
                'role.assigned',
                actor=actor,
                affected_user=target,
                auditable=role,
                new_values={'role': role.name},
                metadata={'role': role.name, 'affected_user_email': target.email},
                request=request,
            )
        return user_role

    @classmethod
    def remove_role(cls, actor: User, target: User, role: Role, request=None):
        """
        Remove ``role`` from ``target``; removing the Administrator role
        is subject to the last-administrator check.
        """
        AccessControlGuard.authorize_manage_user(actor, target)
        if not UserRole.objects.filter(user=target, role=role).exists():
            raise NotFoundError(f"User does not have the role '{role.name}'.", {'role_id': str(role.pk)})

        def mutate():
            UserRole.objects.filter(user=target, role=role).delete()
            AuditService.record(
                'role.removed',
                actor=actor,
                affected_user=target,
                auditable=role,
                old_values={'role': role.name},
                metadata={'role': role.name, 'affected_user_email': target.email},
                request=request,
            )

        if role.is_administrator:
            with AdminProtectionService.guard(target, OP_REMOVE_ROLE):
                mutate()
        else:
            with transaction.atomic():
                mutate()

    @classmethod
    def _snapshot(cls, user: User):
        return {
            'email': user.email,
            'name': user.name,
            'is_super_admin': user.is_super_admin,
            'permissions': sorted(HierarchyResolver.direct_permissions(user).values_list('name', flat=True)),
            'roles': sorted(user.roles.values_list('name', flat=True)),
        }

    @classmethod
    def delete_user(cls, actor: User, target: User, request=None):
        """
        Soft delete ``target``. Its direct permissions and roles are
        cleared and recorded in the audit row.
        """
        AccessControlGuard.authorize_manage_user(actor, target)
        if actor.pk == target.pk:
            raise ValidationError('You cannot delete your own account.', {'user_id': ['Self deletion']})

        with AdminProtectionService.guard(target, OP_DELETE):
            snapshot = cls._snapshot(target)
            UserPermission.objects.filter(user=target).delete()
            UserRole.objects.filter(user=target).delete()
            target.delete()
            AuditService.record(
                'user.deleted',
                actor=actor,
                affected_user=target,
                auditable=target,
                old_values=snapshot,
                new_values={'deleted_at': target.deleted_at.isoformat()},
                metadata={'affected_user_email': target.email},
                request=request,
            )

        logger.info(f"User soft deleted", extra={'actor_id': str(actor.pk), 'target_id': str(target.pk)})

    @classmethod
    def restore_user(cls, actor: User, target: User, request=None) -> User:
        AccessControlGuard.authorize_administrator(actor, 'restore users')
        if not target.is_deleted:
            raise ValidationError('User is not deleted.', {'user_id': ['Not deleted']})

        with transaction.atomic():
            deleted_at = target.deleted_at
            target.restore()
            AuditService.record(
                'user.restored',
                actor=actor,
                affected_user=target,
                auditable=target,
                old_values={'deleted_at': deleted_at.isoformat()},
                new_values={'deleted_at': None},
                metadata={'affected_user_email': target.email},
                request=request,
            )
        return target

    @classmethod
    def force_delete_user(cls, actor: User, target: User, request=None):
        """
        Permanently remove ``target``. The audit row is written first and
        keeps the user's identity in its metadata.
        """
        AccessControlGuard.authorize_administrator(actor, 'permanently delete users')
        if actor.pk == target.pk:
            raise ValidationError('You cannot delete your own account.', {'user_id': ['Self deletion']})

        with AdminProtectionService.guard(target, OP_FORCE_DELETE):
            AuditService.record(
                'user.permanently_deleted',
                actor=actor,
                affected_user=target,
                old_values=cls._snapshot(target),
                metadata={
                    'deleted_user_id': str(target.pk),
                    'affected_user_email': target.email,
                    'deleted_at': timezone.now().isoformat(),
                },
                request=request,
            )
            target.hard_delete()

    @classmethod
    def get_user(cls, user_id, include_deleted: bool = False) -> User:
        manager = User.objects_with_deleted if include_deleted else User.objects
        user = manager.filter(pk=user_id).first()
        if user is None:
            raise NotFoundError('User not found.', {'user_id': str(user_id)})
        return user

    @classmethod
    def grantable_permissions(cls, actor: User, target: Optional[User] = None):
        """Permissions ``actor`` could grant, minus those ``target`` holds directly."""
        from apps.rbac.models import Permission

        effective = HierarchyResolver.resolve_effective(actor)
        permissions = Permission.objects.all()
        if not effective.is_universal:
            permissions = [p for p in permissions if HierarchyResolver.holds(actor, p.name, effective=effective)]
        if target is not None:
            held = set(HierarchyResolver.direct_permissions(target).values_list('name', flat=True))
            permissions = [p for p in permissions if p.name not in held]
        return list(permissions)
