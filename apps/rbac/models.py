"""
RBAC models for scope-aware access control.

Implements:
- User (AUTH_USER_MODEL) with the super-admin flag and soft delete
- Permission, parsed into typed resource/action/scope/scope_id columns
- Role with its permission set
- UserPermission / UserRole / RolePermission join rows
- UserInvitation (token-based onboarding)
- PermissionAuditLog (immutable audit trail)
- SuperAdminGrant (ledger of super-admin flag changes)
"""
import logging
import secrets
from datetime import timedelta

from django.conf import settings
from django.contrib.auth.base_user import AbstractBaseUser, BaseUserManager
from django.contrib.contenttypes.fields import GenericForeignKey
from django.contrib.contenttypes.models import ContentType
from django.db import models
from django.utils import timezone

from apps.core.exceptions import ImmutableAuditLogError
from apps.core.models import BaseModel, BaseModelQuerySet
from apps.rbac.permission_names import PermissionName, MAX_NAME_LENGTH
from apps.hierarchy.models import SCOPES

logger = logging.getLogger(__name__)


def administrator_role_name():
    return getattr(settings, 'ADMINISTRATOR_ROLE_NAME', 'Administrator')


class UserManager(BaseUserManager.from_queryset(BaseModelQuerySet)):
    """
    Manager for User queries. Soft-deleted users are invisible here,
    which also keeps them from authenticating.
    """

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)

    def active(self):
        return self.filter(is_active=True)

    def administrators(self):
        """Active users holding the super-admin flag or the Administrator role."""
        role_holders = UserRole.objects.filter(role__name=administrator_role_name()).values('user_id')
        return self.active().filter(
            models.Q(is_super_admin=True) | models.Q(pk__in=role_holders)
        )

    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError('Email address is required')

        email = self.normalize_email(email)
        extra_fields.setdefault('is_active', True)

        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """Used by ``createsuperuser``; the result is a super admin with a verified email."""
        extra_fields.setdefault('is_super_admin', True)
        extra_fields.setdefault('email_verified_at', timezone.now())

        if extra_fields.get('is_super_admin') is not True:
            raise ValueError('Superuser must have is_super_admin=True')

        return self.create_user(email, password, **extra_fields)


class User(AbstractBaseUser, BaseModel):
    """
    Platform user.

    ``is_super_admin`` implies every permission and is never materialized
    as permission rows. Effective permissions are the union of direct
    permissions and the permissions of every held role.
    """

    email = models.EmailField(unique=True, help_text="User email address")
    name = models.CharField(max_length=255, blank=True, default='')
    is_active = models.BooleanField(default=True, db_index=True)
    is_super_admin = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Holds every permission; changes are recorded in the super-admin ledger"
    )
    email_verified_at = models.DateTimeField(null=True, blank=True)

    direct_permissions = models.ManyToManyField(
        'Permission',
        through='UserPermission',
        through_fields=('user', 'permission'),
        related_name='users',
        blank=True,
    )
    roles = models.ManyToManyField(
        'Role',
        through='UserRole',
        through_fields=('user', 'role'),
        related_name='users',
        blank=True,
    )

    USERNAME_FIELD = 'email'
    EMAIL_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        db_table = 'users'
        ordering = ['name', 'email']
        indexes = [
            models.Index(fields=['is_active', 'deleted_at'], name='users_active_idx'),
        ]

    def __str__(self):
        return self.email

    def get_full_name(self):
        return self.name or self.email

    def get_short_name(self):
        return self.name or self.email

    @property
    def email_verified(self):
        return self.email_verified_at is not None

    @property
    def is_staff(self):
        """Django admin access."""
        return self.is_super_admin

    def has_perm(self, perm, obj=None):
        return self.is_active and self.is_super_admin

    def has_perms(self, perm_list, obj=None):
        return all(self.has_perm(perm, obj) for perm in perm_list)

    def has_module_perms(self, app_label):
        return self.is_active and self.is_super_admin

    def has_role(self, role_name):
        return self.user_roles.filter(role__name=role_name).exists()


class PermissionManager(models.Manager.from_queryset(BaseModelQuerySet)):

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)

    def global_permissions(self):
        return self.filter(scope__isnull=True)

    def scoped(self, scope=None, scope_id=None):
        qs = self.filter(scope__isnull=False)
        if scope:
            qs = qs.filter(scope=scope)
        if scope_id is not None:
            qs = qs.filter(scope_id=scope_id)
        return qs

    def by_names(self, names):
        return self.filter(name__in=list(names))


class Permission(BaseModel):
    """
    A named capability.

    ``resource``, ``action``, ``scope`` and ``scope_id`` are derived from
    ``name`` on save and never edited independently.
    """

    SCOPE_CHOICES = [(scope, scope.title()) for scope in SCOPES]

    name = models.CharField(max_length=MAX_NAME_LENGTH, unique=True)
    display_name = models.CharField(max_length=255, blank=True, default='')
    description = models.TextField(blank=True, default='')
    sort_order = models.IntegerField(default=0)

    resource = models.CharField(max_length=100, db_index=True, editable=False)
    action = models.CharField(max_length=100, editable=False)
    scope = models.CharField(max_length=20, choices=SCOPE_CHOICES, null=True, blank=True, editable=False)
    scope_id = models.PositiveBigIntegerField(null=True, blank=True, editable=False)

    objects = PermissionManager()

    class Meta:
        db_table = 'permissions'
        ordering = ['sort_order', 'name']
        indexes = [
            models.Index(fields=['resource', 'action'], name='permissions_base_idx'),
            models.Index(fields=['scope', 'scope_id'], name='permissions_scope_idx'),
        ]

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        parsed = PermissionName.parse(self.name)
        self.resource = parsed.resource
        self.action = parsed.action
        self.scope = parsed.scope
        self.scope_id = parsed.scope_id
        super().save(*args, **kwargs)

    @property
    def parsed(self) -> PermissionName:
        return PermissionName(self.resource, self.action, self.scope, self.scope_id)

    @property
    def base_name(self):
        return f"{self.resource}.{self.action}"

    @property
    def is_scoped(self):
        return self.scope is not None

    def is_in_use(self):
        return self.role_permissions.exists() or self.user_permissions.exists()


class RoleManager(models.Manager.from_queryset(BaseModelQuerySet)):

    def get_queryset(self):
        return super().get_queryset().filter(deleted_at__isnull=True)

    def system_roles(self):
        return self.filter(is_system=True)

    def administrator(self):
        return self.filter(name=administrator_role_name()).first()


class Role(BaseModel):
    """A named set of permissions. System roles cannot be deleted."""

    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True, default='')
    is_system = models.BooleanField(default=False, db_index=True)

    permissions = models.ManyToManyField(
        Permission,
        through='RolePermission',
        related_name='roles',
        blank=True,
    )

    objects = RoleManager()

    class Meta:
        db_table = 'roles'
        ordering = ['name']

    def __str__(self):
        return self.name

    @property
    def is_administrator(self):
        return self.name == administrator_role_name()


class RolePermission(models.Model):
    role = models.ForeignKey(Role, on_delete=models.CASCADE, related_name='role_permissions')
    permission = models.ForeignKey(Permission, on_delete=models.CASCADE, related_name='role_permissions')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'role_permissions'
        constraints = [
            models.UniqueConstraint(fields=['role', 'permission'], name='unique_role_permission'),
        ]

    def __str__(self):
        return f"{self.role.name} → {self.permission.name}"


class UserRole(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='user_roles')
    role = models.ForeignKey(Role, on_delete=models.CASCADE, related_name='user_roles')
    assigned_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    assigned_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'user_roles'
        constraints = [
            models.UniqueConstraint(fields=['user', 'role'], name='unique_user_role'),
        ]

    def __str__(self):
        return f"{self.user.email} → {self.role.name}"


class UserPermission(models.Model):
    """A permission granted directly to a user."""

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='user_permissions')
    permission = models.ForeignKey(Permission, on_delete=models.CASCADE, related_name='user_permissions')
    granted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    granted_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'user_permissions'
        constraints = [
            models.UniqueConstraint(fields=['user', 'permission'], name='unique_user_permission'),
        ]

    def __str__(self):
        return f"{self.user.email} → {self.permission.name}"


def generate_invitation_token():
    # token_urlsafe(48) encodes to exactly 64 characters
    return secrets.token_urlsafe(48)


def default_invitation_expiry():
    return timezone.now() + timedelta(days=getattr(settings, 'INVITATION_EXPIRY_DAYS', 7))


class UserInvitationQuerySet(BaseModelQuerySet):

    def pending(self):
        """Unaccepted, unrevoked and unexpired."""
        return self.filter(
            accepted_at__isnull=True,
            revoked_at__isnull=True,
            expires_at__gt=timezone.now(),
        )

    def expired(self):
        return self.filter(
            accepted_at__isnull=True,
            revoked_at__isnull=True,
            expires_at__lte=timezone.now(),
        )

    def accepted(self):
        return self.filter(accepted_at__isnull=False)

    def revoked(self):
        return self.filter(revoked_at__isnull=False)

    def with_status(self, status):
        return {
            UserInvitation.STATUS_PENDING: self.pending,
            UserInvitation.STATUS_EXPIRED: self.expired,
            UserInvitation.STATUS_ACCEPTED: self.accepted,
            UserInvitation.STATUS_REVOKED: self.revoked,
        }[status]()


class UserInvitation(BaseModel):
    """
    Invitation to join the platform.

    Pending until accepted or revoked; expiry is derived from
    ``expires_at`` and never stored.
    """

    STATUS_PENDING = 'pending'
    STATUS_ACCEPTED = 'accepted'
    STATUS_REVOKED = 'revoked'
    STATUS_EXPIRED = 'expired'
    STATUSES = [STATUS_PENDING, STATUS_ACCEPTED, STATUS_REVOKED, STATUS_EXPIRED]

    email = models.EmailField(db_index=True)
    token = models.CharField(max_length=64, unique=True, default=generate_invitation_token, editable=False)
    invited_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        related_name='sent_invitations',
    )
    initial_role = models.CharField(max_length=100, null=True, blank=True)
    initial_permissions = models.JSONField(default=list, blank=True)
    message = models.TextField(null=True, blank=True)
    expires_at = models.DateTimeField(default=default_invitation_expiry, db_index=True)

    accepted_at = models.DateTimeField(null=True, blank=True)
    accepted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='accepted_invitations',
    )
    revoked_at = models.DateTimeField(null=True, blank=True)
    revoked_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='revoked_invitations',
    )
    revoke_reason = models.TextField(null=True, blank=True)

    objects = models.Manager.from_queryset(UserInvitationQuerySet)()

    class Meta:
        db_table = 'user_invitations'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['email', 'accepted_at', 'revoked_at'], name='invitations_email_state_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['email'],
                condition=models.Q(accepted_at__isnull=True, revoked_at__isnull=True, deleted_at__isnull=True),
                name='unique_open_invitation_email',
            ),
        ]

    def __str__(self):
        return f"Invitation for {self.email} ({self.status})"

    @property
    def is_accepted(self):
        return self.accepted_at is not None

    @property
    def is_revoked(self):
        return self.revoked_at is not None

    @property
    def is_expired(self):
        return self.expires_at <= timezone.now()

    def is_valid(self):
        return not self.is_accepted and not self.is_revoked and not self.is_expired

    @property
    def status(self):
        if self.is_accepted:
            return self.STATUS_ACCEPTED
        if self.is_revoked:
            return self.STATUS_REVOKED
        if self.is_expired:
            return self.STATUS_EXPIRED
        return self.STATUS_PENDING


class PermissionAuditLogQuerySet(models.QuerySet):
    """Audit rows cannot be bulk-updated or bulk-deleted."""

    def update(self, **kwargs):
        raise ImmutableAuditLogError('Audit log entries cannot be modified')

    def delete(self):
        raise ImmutableAuditLogError('Audit log entries can only be removed by retention cleanup')

    def _purge_older_than(self, cutoff):
        """Retention cleanup; the only deletion path."""
        return models.QuerySet.delete(self.filter(created_at__lt=cutoff))

    def for_user(self, user):
        """Events performed by or affecting ``user``."""
        return self.filter(models.Q(actor=user) | models.Q(affected_user=user))

    def by_event_type(self, event_type):
        return self.filter(event_type=event_type)

    def recent(self, days=30):
        return self.filter(created_at__gte=timezone.now() - timedelta(days=days))

    def permission_events(self):
        return self.filter(
            models.Q(event_type__startswith='permission') |
            models.Q(event_type__startswith='role') |
            models.Q(event_type__startswith='user.super_admin')
        )


class PermissionAuditLog(models.Model):
    """
    Immutable record of a permission-affecting event.

    User references are not enforced by the database so that removing a
    user never rewrites history; identities are copied into ``metadata``
    where they matter.
    """

    EVENT_TYPES = {
        'permission.created': 'Permission Created',
        'permission.updated': 'Permission Updated',
        'permission.deleted': 'Permission Deleted',
        'permission.granted': 'Permission Granted',
        'permission.revoked': 'Permission Revoked',
        'permissions.copied': 'Permissions Copied',
        'permissions.bulk_updated': 'Permissions Bulk Updated',
        'role.created': 'Role Created',
        'role.updated': 'Role Updated',
        'role.deleted': 'Role Deleted',
        'role.duplicated': 'Role Duplicated',
        'role.assigned': 'Role Assigned',
        'role.removed': 'Role Removed',
        'role.permissions_synced': 'Role Permissions Synced',
        'user.created': 'User Created',
        'user.deleted': 'User Deleted',
        'user.restored': 'User Restored',
        'user.permanently_deleted': 'User Permanently Deleted',
        'user.super_admin.granted': 'Super Admin Granted',
        'user.super_admin.revoked': 'Super Admin Revoked',
        'invitation.sent': 'Invitation Sent',
        'invitation.accepted': 'Invitation Accepted',
        'invitation.revoked': 'Invitation Revoked',
        'invitation.resent': 'Invitation Resent',
        'audit.cleanup': 'Audit Log Cleanup',
    }

    event_type = models.CharField(max_length=100, db_index=True)
    event_action = models.CharField(max_length=50)

    actor = models.ForeignKey(
        User,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        null=True,
        blank=True,
        related_name='+',
    )
    affected_user = models.ForeignKey(
        User,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        null=True,
        blank=True,
        related_name='+',
    )
    impersonator = models.ForeignKey(
        User,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        null=True,
        blank=True,
        related_name='+',
    )

    auditable_type = models.ForeignKey(
        ContentType,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
    )
    auditable_id = models.CharField(max_length=64, null=True, blank=True)
    auditable = GenericForeignKey('auditable_type', 'auditable_id')

    old_values = models.JSONField(default=dict, blank=True)
    new_values = models.JSONField(default=dict, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True, default='')
    request_id = models.CharField(max_length=64, blank=True, default='')
    created_at = models.DateTimeField(default=timezone.now, db_index=True, editable=False)

    objects = models.Manager.from_queryset(PermissionAuditLogQuerySet)()

    class Meta:
        db_table = 'permission_audit_logs'
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['event_type', 'created_at'], name='audit_event_created_idx'),
            models.Index(fields=['actor', 'created_at'], name='audit_actor_created_idx'),
            models.Index(fields=['affected_user', 'created_at'], name='audit_affected_created_idx'),
            models.Index(fields=['auditable_type', 'auditable_id'], name='audit_auditable_idx'),
        ]

    def __str__(self):
        return f"{self.created_at:%Y-%m-%d %H:%M:%S} {self.event_type}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableAuditLogError('Audit log entries cannot be modified')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableAuditLogError('Audit log entries can only be removed by retention cleanup')

    @property
    def event_label(self):
        return self.EVENT_TYPES.get(self.event_type, self.event_type.replace('.', ' ').replace('_', ' ').title())

    @property
    def changed_fields(self):
        keys = set(self.old_values) | set(self.new_values)
        return sorted(key for key in keys if self.old_values.get(key) != self.new_values.get(key))

    @property
    def description(self):
        """One-line human readable summary used by listings and CSV export."""
        parts = [self.event_label]
        permission = self.metadata.get('permission') or self.new_values.get('permission') or self.old_values.get('permission')
        if permission:
            parts.append(str(permission))
        role = self.metadata.get('role')
        if role:
            parts.append(f"role {role}")
        affected = self.metadata.get('affected_user_email')
        if affected:
            parts.append(f"for {affected}")
        return ' - '.join(parts)


class SuperAdminGrant(models.Model):
    """
    Append-only ledger paired with every ``is_super_admin`` flip.

    A grant row has ``revoked_at`` empty; a revocation row carries
    ``revoked_by``/``revoked_at`` together with the grant it closes.
    """

    granted_to = models.ForeignKey(
        User,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name='super_admin_ledger',
    )
    granted_by = models.ForeignKey(
        User,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        null=True,
        related_name='+',
    )
    granted_at = models.DateTimeField()
    revoked_by = models.ForeignKey(
        User,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        null=True,
        blank=True,
        related_name='+',
    )
    revoked_at = models.DateTimeField(null=True, blank=True)
    reason = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True, editable=False)

    class Meta:
        db_table = 'super_admin_grants'
        ordering = ['-created_at', '-id']

    def __str__(self):
        verb = 'revoked' if self.revoked_at else 'granted'
        return f"Super admin {verb} for {self.granted_to_id}"

    @property
    def is_revocation(self):
        return self.revoked_at is not None


def content_type_for(instance):
    return ContentType.objects.get_for_model(instance) if instance is not None else None
