"""
Escalation checks for grant, revoke and copy operations.

Validation never raises for individual names: every requested name ends
up either in ``valid`` or in ``errors`` (with its reason), so callers can
apply the valid part of a batch and report the rest.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from apps.core.exceptions import PermissionGrantRejected
from apps.core.logging import SecurityLogger
from apps.rbac.models import Permission, User
from apps.rbac.permission_names import PermissionName
from apps.rbac.services.access_control import AccessControlGuard
from apps.rbac.services.hierarchy_service import HierarchyResolver

logger = logging.getLogger(__name__)


REASON_CANNOT_MANAGE = 'You are not allowed to manage this user.'
REASON_NOT_HELD = 'You cannot grant a permission you do not hold.'
REASON_ALREADY_HELD = 'The user already has this permission.'
REASON_NOT_HELD_BY_TARGET = 'The user does not have this permission.'
REASON_UNKNOWN = 'Unknown permission.'
REASON_DUPLICATE = 'Permission requested more than once.'
REASON_MALFORMED = 'Malformed permission name.'


@dataclass
class GrantValidation:
    valid: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    reasons: Dict[str, str] = field(default_factory=dict)
    permissions: Dict[str, Permission] = field(default_factory=dict)

    def reject(self, name: str, reason: str):
        self.errors.append(name)
        self.reasons[name] = reason

    def accept(self, permission: Permission):
        self.valid.append(permission.name)
        self.permissions[permission.name] = permission

    @property
    def rejections(self) -> List[PermissionGrantRejected]:
        return [PermissionGrantRejected(name, self.reasons[name]) for name in self.errors]

    def as_dict(self):
        return {
            'valid': list(self.valid),
            'errors': list(self.errors),
            'reasons': dict(self.reasons),
        }


def _normalise(requested_names: Iterable) -> List[str]:
    return [str(name).strip() for name in requested_names or []]


class GrantValidator:

    @classmethod
    def _prepare(cls, names, result: GrantValidation):
        """Reject malformed, duplicate and unknown names; return the known Permission rows."""
        seen = set()
        candidates = []
        for name in names:
            if name in seen:
                result.reject(name, REASON_DUPLICATE)
                continue
            seen.add(name)
            if not PermissionName.is_valid(name):
                result.reject(name, REASON_MALFORMED)
                continue
            candidates.append(name)

        known = Permission.objects.in_bulk(candidates, field_name='name')
        ordered = []
        for name in candidates:
            permission = known.get(name)
            if permission is None:
                result.reject(name, REASON_UNKNOWN)
            else:
                ordered.append(permission)
        return ordered

    @classmethod
    def validate_grant(cls, actor: User, target: User, requested_names) -> GrantValidation:
        """
        Split ``requested_names`` into grantable and rejected names.

        A name is grantable only if the actor can manage the target, the
        actor itself effectively holds the permission (directly, through a
        role, or through scope inheritance) and the target does not hold it
        directly yet.
        """
        names = _normalise(requested_names)
        result = GrantValidation()

        if not AccessControlGuard.can_manage_user(actor, target):
            for name in dict.fromkeys(names):
                result.reject(name, REASON_CANNOT_MANAGE)
            return result

        permissions = cls._prepare(names, result)
        actor_effective = HierarchyResolver.resolve_effective(actor)
        target_direct = set(
            HierarchyResolver.direct_permissions(target).values_list('name', flat=True)
        )

        escalations = []
        for permission in permissions:
            if not HierarchyResolver.holds(actor, permission.name, effective=actor_effective):
                result.reject(permission.name, REASON_NOT_HELD)
                escalations.append(permission.name)
            elif permission.name in target_direct:
                result.reject(permission.name, REASON_ALREADY_HELD)
            else:
                result.accept(permission)

        if escalations:
            SecurityLogger.log_escalation_attempt(actor, target, escalations)

        return result

    @classmethod
    def validate_revoke(cls, actor: User, target: User, requested_names) -> GrantValidation:
        """
        Split ``requested_names`` into revocable and rejected names: the
        actor must manage the target and the target must hold the
        permission directly.
        """
        names = _normalise(requested_names)
        result = GrantValidation()

        if not AccessControlGuard.can_manage_user(actor, target):
            for name in dict.fromkeys(names):
                result.reject(name, REASON_CANNOT_MANAGE)
            return result

        permissions = cls._prepare(names, result)
        target_direct = set(
            HierarchyResolver.direct_permissions(target).values_list('name', flat=True)
        )

        for permission in permissions:
            if permission.name in target_direct:
                result.accept(permission)
            else:
                result.reject(permission.name, REASON_NOT_HELD_BY_TARGET)

        return result
