"""
Permission and role registry.

Implements:
- Permission CRUD with name validation and structured columns
- Role CRUD, duplication and permission sync (single role or matrix)
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from django.db import transaction

from apps.core.exceptions import NotFoundError, ValidationError
from apps.rbac.models import Permission, Role, RolePermission
from apps.rbac.permission_names import PermissionName
from apps.rbac.services.audit_service import AuditService

logger = logging.getLogger(__name__)


@dataclass
class SyncDelta:
    role_id: Optional[str] = None
    attached: List[str] = field(default_factory=list)
    detached: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.attached or self.detached)

    def as_dict(self):
        return {
            'role_id': self.role_id,
            'attached': list(self.attached),
            'detached': list(self.detached),
        }


def _ids(values) -> List[str]:
    return sorted(str(value) for value in values)


def _split_uuids(values):
    """Return ``(valid, invalid)`` sets of id strings; invalid ones can never match a row."""
    valid, invalid = set(), set()
    for value in values or []:
        try:
            valid.add(str(uuid.UUID(str(value))))
        except ValueError:
            invalid.add(str(value))
    return valid, invalid


class RegistryService:
    """
    Service for permission and role reference data.
    """

    @classmethod
    def create_permission(cls, name: str, display_name: str = '', description: str = '',
                          sort_order: int = 0, actor=None, request=None) -> Permission:
        """
        Register a new permission.

        Args:
            name: Permission name, ``resource.action`` or ``resource.action.scope.id``
            display_name: Human-readable label
            description: Free text
            sort_order: Ordering hint for listings
            actor: User performing the change
            request: Current request, for audit context

        Returns:
            Permission instance

        Raises:
            ValidationError: If the name is malformed or already registered
        """
        parsed = PermissionName.parse(name)

        if Permission.objects.filter(name=name).exists():
            raise ValidationError(
                f"Permission '{name}' already exists.",
                {'name': ['A permission with this name already exists.']}
            )

        with transaction.atomic():
            permission = Permission.objects.create(
                name=name,
                display_name=display_name or '',
                description=description or '',
                sort_order=sort_order or 0,
            )
            AuditService.record(
                'permission.created',
                actor=actor,
                auditable=permission,
                new_values={
                    'name': permission.name,
                    'display_name': permission.display_name,
                    'scope': parsed.scope,
                    'scope_id': parsed.scope_id,
                },
                request=request,
            )

        logger.info(f"Permission created: {name}", extra={'permission_id': str(permission.pk)})
        return permission

    @classmethod
    def update_permission(cls, permission: Permission, actor=None, request=None, **changes) -> Permission:
        """
        Update the descriptive fields of a permission. The name is immutable.
        """
        if 'name' in changes and changes['name'] != permission.name:
            raise ValidationError(
                'Permission names cannot be changed.',
                {'name': ['This field is immutable.']}
            )

        editable = ('display_name', 'description', 'sort_order')
        old_values, new_values = {}, {}
        for key in editable:
            if key in changes and changes[key] != getattr(permission, key):
                old_values[key] = getattr(permission, key)
                new_values[key] = changes[key]
                setattr(permission, key, changes[key])

        if not new_values:
            return permission

        with transaction.atomic():
            permission.save(update_fields=list(new_values) + ['updated_at'])
            AuditService.record(
                'permission.updated',
                actor=actor,
                auditable=permission,
                old_values=old_values,
                new_values=new_values,
                request=request,
            )
        return permission

    @classmethod
    def delete_permission(cls, permission: Permission, actor=None, request=None):
        """
        Remove a permission that is attached to no role and no user.

        Raises:
            ValidationError: If the permission is still in use
        """
        if permission.is_in_use():
            raise ValidationError(
                f"Permission '{permission.name}' is assigned to roles or users and cannot be deleted.",
                {'permission_id': ['Permission in use']}
            )

        with transaction.atomic():
            AuditService.record(
                'permission.deleted',
                actor=actor,
                auditable=permission,
                old_values={'name': permission.name, 'display_name': permission.display_name},
                request=request,
            )
            permission.hard_delete()

        logger.info(f"Permission deleted: {permission.name}")

    @classmethod
    def _permissions_for_ids(cls, permission_ids: Iterable) -> Dict[str, Permission]:
        wanted, invalid = _split_uuids(permission_ids)
        found = {str(p.pk): p for p in Permission.objects.filter(pk__in=wanted)}
        missing = (wanted - set(found)) | invalid
        if missing:
            raise NotFoundError(
                'One or more permissions do not exist.',
                {'permission_ids': sorted(missing)}
            )
        return found

    @classmethod
    def create_role(cls, name: str, description: str = '', is_system: bool = False,
                    permission_ids: Iterable = (), actor=None, request=None) -> Role:
        """
        Create a role and attach the given permissions.

        Raises:
            ValidationError: If the name is blank or taken
            NotFoundError: If a permission id is unknown
        """
        name = (name or '').strip()
        if not name:
            raise ValidationError('Role name is required.', {'name': ['This field is required.']})
        if Role.objects.filter(name=name).exists():
            raise ValidationError(
                f"Role '{name}' already exists.",
                {'name': ['A role with this name already exists.']}
            )
        permissions = cls._permissions_for_ids(permission_ids)

        with transaction.atomic():
            role = Role.objects.create(name=name, description=description or '', is_system=is_system)
            RolePermission.objects.bulk_create(
                [RolePermission(role=role, permission=p) for p in permissions.values()]
            )
            AuditService.record(
                'role.created',
                actor=actor,
                auditable=role,
                new_values={
                    'name': role.name,
                    'description': role.description,
                    'is_system': role.is_system,
                    'permission_ids': _ids(permissions),
                },
                request=request,
            )

        logger.info(f"Role created: {name}", extra={'role_id': str(role.pk)})
        return role

    @classmethod
    def update_role(cls, role: Role, name: Optional[str] = None, description: Optional[str] = None,
                    permission_ids: Optional[Iterable] = None, actor=None, request=None) -> Role:
        """
        Rename or describe a role and, if ``permission_ids`` is given,
        sync its permissions. System roles keep their name.
        """
        old_values, new_values = {}, {}
        if name is not None:
            name = name.strip()
            if name != role.name:
                if role.is_system:
                    raise ValidationError('System roles cannot be renamed.', {'name': ['System role']})
                if not name:
                    raise ValidationError('Role name is required.', {'name': ['This field is required.']})
                if Role.objects.filter(name=name).exclude(pk=role.pk).exists():
                    raise ValidationError(
                        f"Role '{name}' already exists.",
                        {'name': ['A role with this name already exists.']}
                    )
                old_values['name'], new_values['name'] = role.name, name
        if description is not None and description != role.description:
            old_values['description'], new_values['description'] = role.description, description

        if permission_ids is not None:
            cls._permissions_for_ids(permission_ids)

        with transaction.atomic():
            if new_values:
                for key, value in new_values.items():
                    setattr(role, key, value)
                role.save(update_fields=list(new_values) + ['updated_at'])
                AuditService.record(
                    'role.updated',
                    actor=actor,
                    auditable=role,
                    old_values=old_values,
                    new_values=new_values,
                    request=request,
                )
            if permission_ids is not None:
                cls._apply_sync(role, permission_ids, actor, request)

        return role

    @classmethod
    def delete_role(cls, role: Role, actor=None, request=None):
        """
        Raises:
            ValidationError: For system roles and roles still assigned to users
        """
        if role.is_system:
            raise ValidationError(
                f"System role '{role.name}' cannot be deleted.",
                {'role_id': ['System role']}
            )
        if role.user_roles.exists():
            raise ValidationError(
                f"Role '{role.name}' is assigned to users and cannot be deleted.",
                {'role_id': ['Role in use']}
            )

        with transaction.atomic():
            AuditService.record(
                'role.deleted',
                actor=actor,
                auditable=role,
                old_values={
                    'name': role.name,
                    'description': role.description,
                    'permission_ids': _ids(role.permissions.values_list('pk', flat=True)),
                },
                request=request,
            )
            role.hard_delete()

        logger.info(f"Role deleted: {role.name}")

    @classmethod
    def duplicate_role(cls, role: Role, name: Optional[str] = None, actor=None, request=None) -> Role:
        """
        Copy ``role`` and its permissions into a new non-system role named
        ``"<name> (Copy)"`` unless a name is given.
        """
        name = name or f"{role.name} (Copy)"
        permission_ids = list(role.permissions.values_list('pk', flat=True))
        copy = cls.create_role(
            name=name,
            description=role.description,
            is_system=False,
            permission_ids=permission_ids,
            actor=actor,
            request=request,
        )
        logger.info(f"Role duplicated: {role.name} -> {copy.name}", extra={'role_id': str(copy.pk)})
        return copy

    @classmethod
    def _apply_sync(cls, role: Role, permission_ids: Iterable, actor=None, request=None) -> SyncDelta:
        current = {str(pk) for pk in RolePermission.objects.filter(role=role).values_list('permission_id', flat=True)}
        wanted = {str(uuid.UUID(str(pk))) for pk in permission_ids}

        delta = SyncDelta(
            role_id=str(role.pk),
            attached=sorted(wanted - current),
            detached=sorted(current - wanted),
        )
        if not delta.changed:
            return delta

        RolePermission.objects.filter(role=role, permission_id__in=delta.detached).delete()
        RolePermission.objects.bulk_create(
            [RolePermission(role=role, permission_id=pk) for pk in delta.attached]
        )
        AuditService.record(
            'role.permissions_synced',
            actor=actor,
            auditable=role,
            old_values={'permission_ids': sorted(current)},
            new_values={'permission_ids': sorted(wanted)},
            metadata={'role': role.name, 'attached': delta.attached, 'detached': delta.detached},
            request=request,
        )
        return delta

    @classmethod
    def sync_permissions(cls, role: Role, permission_ids: Iterable, actor=None, request=None) -> SyncDelta:
        """
        Make ``role``'s permission set exactly ``permission_ids``.

        Only the difference is written: rows for attached ids are inserted
        and rows for detached ids are deleted.

        Raises:
            NotFoundError: If a permission id is unknown
        """
        permission_ids = list(permission_ids or [])
        cls._permissions_for_ids(permission_ids)
        with transaction.atomic():
            return cls._apply_sync(role, permission_ids, actor, request)

    @classmethod
    def sync_matrix(cls, changes: Dict, actor=None, request=None) -> List[SyncDelta]:
        """
        Sync several roles at once from ``{role_id: [permission_id, ...]}``.

        Every role and permission id is checked before anything is written;
        all deltas are then applied in one transaction.
        """
        role_ids, invalid = _split_uuids(changes)
        roles = {str(role.pk): role for role in Role.objects.filter(pk__in=role_ids)}
        missing_roles = (role_ids - set(roles)) | invalid
        if missing_roles:
            raise NotFoundError('One or more roles do not exist.', {'role_ids': sorted(missing_roles)})

        all_permission_ids = set()
        for permission_ids in changes.values():
            all_permission_ids.update(str(pk) for pk in permission_ids or [])
        cls._permissions_for_ids(all_permission_ids)

        deltas = []
        with transaction.atomic():
            for role_id, permission_ids in changes.items():
                role = roles[str(uuid.UUID(str(role_id)))]
                deltas.append(cls._apply_sync(role, permission_ids or [], actor, request))

        logger.info(
            f"Permission matrix synced for {len(deltas)} role(s)",
            extra={'changed_roles': [d.role_id for d in deltas if d.changed]}
        )
        return deltas

    @classmethod
    def matrix(cls):
        """Roles with their permission ids, for the permission matrix view."""
        roles = Role.objects.prefetch_related('permissions').order_by('name')
        return [
            {
                'role_id': str(role.pk),
                'role': role.name,
                'is_system': role.is_system,
                'permission_ids': _ids(p.pk for p in role.permissions.all()),
            }
            for role in roles
        ]
