"""
Effective permission resolution and scope-aware checks.

Effective permissions are recomputed on every call; nothing here is
cached, so a grant or revoke is visible to the very next check.
"""
import logging
from typing import FrozenSet, Optional, Set, Tuple

from django.db.models import Q

from apps.hierarchy.models import SCOPES
from apps.hierarchy.services import HierarchyService
from apps.rbac.models import Permission, User
from apps.rbac.permission_names import PermissionName

logger = logging.getLogger(__name__)


class EffectivePermissions:
    """
    A user's effective permission set.

    The super-admin set is a sentinel that contains every name and is
    never enumerated.
    """

    def __init__(self, permissions=(), universal: bool = False):
        self.is_universal = universal
        self._permissions = tuple(permissions)
        self.names: FrozenSet[str] = frozenset(p.name for p in self._permissions)

    @classmethod
    def universal(cls) -> 'EffectivePermissions':
        return cls(universal=True)

    def __contains__(self, name) -> bool:
        return self.is_universal or str(name) in self.names

    def __iter__(self):
        if self.is_universal:
            raise TypeError('The universal permission set cannot be enumerated')
        return iter(self._permissions)

    def __len__(self):
        if self.is_universal:
            raise TypeError('The universal permission set has no size')
        return len(self._permissions)

    def scoped(self):
        return [p for p in self._permissions if p.scope is not None]

    def scopes(self) -> Set[Tuple[str, int]]:
        return {(p.scope, p.scope_id) for p in self.scoped()}

    def grants_anywhere(self, ability: str) -> bool:
        """True if ``ability`` is held globally or at any scope."""
        if ability in self:
            return True
        return any(p.name.rsplit('.', 2)[0] == ability for p in self.scoped())


def _resource_chain(resource):
    """Scope chain for a hierarchy node instance or a ``(scope, id)`` pair."""
    if resource is None:
        return []
    if hasattr(resource, 'scope_chain'):
        return resource.scope_chain()
    if isinstance(resource, (tuple, list)) and len(resource) == 2:
        return HierarchyService.scope_chain(resource[0], int(resource[1]))
    raise TypeError(f"Cannot derive a scope chain from {type(resource).__name__}")


class HierarchyResolver:
    """
    Computes effective permission sets and answers scope-aware checks.
    """

    @classmethod
    def direct_permissions(cls, user: User):
        return Permission.objects.filter(user_permissions__user=user)

    @classmethod
    def role_permissions(cls, user: User):
        return Permission.objects.filter(role_permissions__role__user_roles__user=user)

    @classmethod
    def resolve_effective(cls, user: User) -> EffectivePermissions:
        """
        Union of the user's direct permissions and the permissions of every
        role it holds; the universal set for super admins.
        """
        if user is None or not getattr(user, 'is_authenticated', False):
            return EffectivePermissions()
        if user.is_super_admin:
            return EffectivePermissions.universal()

        permissions = Permission.objects.filter(
            Q(user_permissions__user=user) |
            Q(role_permissions__role__user_roles__user=user)
        ).distinct()
        return EffectivePermissions(permissions)

    @classmethod
    def check(cls, user: User, ability: str, resource=None,
              effective: Optional[EffectivePermissions] = None) -> bool:
        """
        True if ``user`` may perform ``ability``, optionally on ``resource``.

        Super admins pass immediately. Otherwise an exact name match wins;
        failing that, every level of the resource's scope chain (the node
        itself, then its ancestors up to the plant) is tried as
        ``ability.<scope>.<id>``. Grants never flow upwards.
        """
        if user is None or not getattr(user, 'is_authenticated', False):
            return False
        if user.is_super_admin:
            return True

        effective = effective if effective is not None else cls.resolve_effective(user)
        if ability in effective:
            return True

        if resource is None:
            return False

        for scope, scope_id in _resource_chain(resource):
            if f"{ability}.{scope}.{scope_id}" in effective:
                logger.debug(
                    f"Permission {ability} inherited from {scope}.{scope_id}",
                    extra={'user_id': str(user.pk), 'ability': ability}
                )
                return True
        return False

    @classmethod
    def check_anywhere(cls, user: User, ability: str,
                       effective: Optional[EffectivePermissions] = None) -> bool:
        """True if ``user`` holds ``ability`` globally or on at least one node."""
        if user is None or not getattr(user, 'is_authenticated', False):
            return False
        if user.is_super_admin:
            return True
        effective = effective if effective is not None else cls.resolve_effective(user)
        return effective.grants_anywhere(ability)

    @classmethod
    def holds(cls, user: User, permission_name, effective: Optional[EffectivePermissions] = None) -> bool:
        """
        True if ``user`` effectively holds ``permission_name``.

        A scoped name is held through an exact grant, through the global
        ``resource.action`` permission, or through the same permission on
        any ancestor of the named node.
        """
        if user is None:
            return False
        if user.is_super_admin:
            return True

        parsed = PermissionName.parse(permission_name)
        effective = effective if effective is not None else cls.resolve_effective(user)

        if str(parsed) in effective:
            return True
        if not parsed.is_scoped:
            return False
        if parsed.base in effective:
            return True

        for scope, scope_id in HierarchyService.ancestors(parsed.scope, parsed.scope_id):
            if str(parsed.for_scope(scope, scope_id)) in effective:
                return True
        return False

    @classmethod
    def scopes_of(cls, user: User, effective: Optional[EffectivePermissions] = None) -> Set[Tuple[str, int]]:
        """
        ``(scope, id)`` pairs the user is bound to through its own scoped
        permissions and those of its roles.
        """
        effective = effective if effective is not None else cls.resolve_effective(user)
        if effective.is_universal:
            return set()
        return effective.scopes()

    @classmethod
    def covers_scope(cls, user: User, scope: str, scope_id: int,
                     effective: Optional[EffectivePermissions] = None) -> bool:
        """
        True if the user holds some scoped permission on the node or on one
        of its ancestors.
        """
        if user.is_super_admin:
            return True
        own_scopes = cls.scopes_of(user, effective)
        if not own_scopes:
            return False
        return any(level in own_scopes for level in HierarchyService.scope_chain(scope, scope_id))

    @classmethod
    def accessible_entities(cls, user: User, resource: str, action: str) -> dict:
        """
        Hierarchy ids on which ``resource.action`` is granted, for list
        filtering. ``{'all': True}`` for super admins and global holders.
        """
        base = f"{resource}.{action}"
        effective = cls.resolve_effective(user)
        if effective.is_universal or base in effective:
            return {'all': True}

        accessible = {scope: [] for scope in SCOPES}
        for permission in effective.scoped():
            if permission.base_name == base:
                accessible[permission.scope].append(permission.scope_id)
        for scope in accessible:
            accessible[scope] = sorted(set(accessible[scope]))
        accessible['all'] = False
        return accessible
