"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Permissions, roles and the permission matrix
- Users, their effective permissions and grant/revoke requests
- Invitations and invitation acceptance
- Audit log entries and the super-admin ledger
"""
from django.conf import settings
from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers

from apps.rbac.models import (
    Permission, PermissionAuditLog, Role, SuperAdminGrant, User, UserInvitation,
)
from apps.rbac.permission_names import MAX_NAME_LENGTH


# ===== PERMISSIONS AND ROLES =====

class PermissionSerializer(serializers.ModelSerializer):
    """Serializer for Permission model."""

    is_scoped = serializers.BooleanField(read_only=True)

    class Meta:
        model = Permission
        fields = [
            'id', 'name', 'display_name', 'description', 'sort_order',
            'resource', 'action', 'scope', 'scope_id', 'is_scoped',
            'created_at', 'updated_at',
        ]
        read_only_fields = fields


class PermissionCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=MAX_NAME_LENGTH, trim_whitespace=False)
    display_name = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    description = serializers.CharField(required=False, allow_blank=True, default='')
    sort_order = serializers.IntegerField(required=False, default=0)


class PermissionUpdateSerializer(serializers.Serializer):
    display_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    sort_order = serializers.IntegerField(required=False)


class RoleSerializer(serializers.ModelSerializer):
    """Serializer for Role model with permission and user counts."""

    permissions_count = serializers.SerializerMethodField()
    users_count = serializers.SerializerMethodField()
    is_administrator = serializers.BooleanField(read_only=True)

    class Meta:
        model = Role
        fields = [
            'id', 'name', 'description', 'is_system', 'is_administrator',
            'permissions_count', 'users_count', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_permissions_count(self, obj):
        return obj.role_permissions.count()

    def get_users_count(self, obj):
        return obj.user_roles.count()


class RoleDetailSerializer(RoleSerializer):
    permissions = PermissionSerializer(many=True, read_only=True)

    class Meta(RoleSerializer.Meta):
        fields = RoleSerializer.Meta.fields + ['permissions']
        read_only_fields = fields


class RoleCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    permission_ids = serializers.ListField(child=serializers.UUIDField(), required=False, default=list)


class RoleUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    permission_ids = serializers.ListField(child=serializers.UUIDField(), required=False)


class RoleDuplicateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100, required=False)


class PermissionMatrixSerializer(serializers.Serializer):
    """``{"roles": {"<role_id>": ["<permission_id>", ...]}}``"""

    roles = serializers.DictField(
        child=serializers.ListField(child=serializers.UUIDField(), allow_empty=True),
        allow_empty=False,
    )


# ===== USERS =====

class UserSerializer(serializers.ModelSerializer):
    """Serializer for User model (excludes sensitive fields)."""

    roles = serializers.SlugRelatedField(many=True, read_only=True, slug_field='name')

    class Meta:
        model = User
        fields = [
            'id', 'email', 'name', 'is_active', 'is_super_admin',
            'email_verified_at', 'roles', 'created_at', 'deleted_at',
        ]
        read_only_fields = fields


class PermissionNamesSerializer(serializers.Serializer):
    permissions = serializers.ListField(
        child=serializers.CharField(max_length=MAX_NAME_LENGTH),
        allow_empty=False,
    )


class BulkPermissionUpdateSerializer(serializers.Serializer):
    grant = serializers.ListField(child=serializers.CharField(max_length=MAX_NAME_LENGTH), required=False, default=list)
    revoke = serializers.ListField(child=serializers.CharField(max_length=MAX_NAME_LENGTH), required=False, default=list)

    def validate(self, attrs):
        if not attrs['grant'] and not attrs['revoke']:
            raise serializers.ValidationError('Provide at least one permission to grant or revoke.')
        return attrs


class CopyPermissionsSerializer(serializers.Serializer):
    source_user_id = serializers.UUIDField()
    merge = serializers.BooleanField(required=False, default=False)


class RoleAssignSerializer(serializers.Serializer):
    role_id = serializers.UUIDField()


class SuperAdminChangeSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=1000)


class GrantValidationSerializer(serializers.Serializer):
    """Serializes the valid/errors split of a grant or revoke."""

    valid = serializers.ListField(child=serializers.CharField())
    errors = serializers.ListField(child=serializers.CharField())
    reasons = serializers.DictField(child=serializers.CharField())


class PermissionCheckSerializer(serializers.Serializer):
    permission = serializers.CharField(max_length=MAX_NAME_LENGTH)
    scope = serializers.ChoiceField(choices=['plant', 'area', 'sector', 'asset'], required=False)
    scope_id = serializers.IntegerField(min_value=1, required=False)

    def validate(self, attrs):
        if ('scope' in attrs) != ('scope_id' in attrs):
            raise serializers.ValidationError('scope and scope_id must be given together.')
        return attrs


class BulkPermissionCheckSerializer(serializers.Serializer):
    permissions = serializers.ListField(
        child=serializers.CharField(max_length=MAX_NAME_LENGTH),
        allow_empty=False,
        max_length=100,
    )


class SuperAdminGrantSerializer(serializers.ModelSerializer):
    is_revocation = serializers.BooleanField(read_only=True)

    class Meta:
        model = SuperAdminGrant
        fields = [
            'id', 'granted_to_id', 'granted_by_id', 'granted_at',
            'revoked_by_id', 'revoked_at', 'reason', 'is_revocation', 'created_at',
        ]
        read_only_fields = fields


# ===== INVITATIONS =====

class UserInvitationSerializer(serializers.ModelSerializer):
    """Serializer for UserInvitation; the token is never exposed."""

    status = serializers.CharField(read_only=True)
    invited_by = serializers.SerializerMethodField()

    class Meta:
        model = UserInvitation
        fields = [
            'id', 'email', 'status', 'invited_by', 'initial_role', 'initial_permissions',
            'message', 'expires_at', 'accepted_at', 'revoked_at', 'revoke_reason', 'created_at',
        ]
        read_only_fields = fields

    def get_invited_by(self, obj):
        if obj.invited_by is None:
            return None
        return {'id': str(obj.invited_by.pk), 'name': obj.invited_by.get_full_name()}


class InvitationCreateSerializer(serializers.Serializer):
    email = serializers.EmailField(max_length=255)
    initial_role = serializers.CharField(max_length=100, required=False, allow_null=True, allow_blank=True)
    initial_permissions = serializers.ListField(
        child=serializers.CharField(max_length=MAX_NAME_LENGTH),
        required=False,
        default=list,
    )
    message = serializers.CharField(max_length=1000, required=False, allow_null=True, allow_blank=True)


class InvitationRevokeSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500, required=False, allow_null=True, allow_blank=True)


class InvitationAcceptSerializer(serializers.Serializer):
    token = serializers.CharField(max_length=64)
    name = serializers.CharField(max_length=255)
    password = serializers.CharField(write_only=True, min_length=8, style={'input_type': 'password'})
    password_confirmation = serializers.CharField(write_only=True, style={'input_type': 'password'})

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError('Name cannot be empty.')
        return value.strip()

    def validate(self, attrs):
        if attrs['password'] != attrs['password_confirmation']:
            raise serializers.ValidationError({'password_confirmation': 'Passwords do not match.'})
        validate_password(attrs['password'])
        return attrs


class InvitationPublicSerializer(serializers.ModelSerializer):
    """What the invitee sees before accepting."""

    invited_by = serializers.SerializerMethodField()
    platform = serializers.SerializerMethodField()

    class Meta:
        model = UserInvitation
        fields = ['email', 'invited_by', 'initial_role', 'message', 'expires_at', 'platform']
        read_only_fields = fields

    def get_invited_by(self, obj):
        return {'name': obj.invited_by.get_full_name()} if obj.invited_by else None

    def get_platform(self, obj):
        return settings.PLATFORM_NAME


# ===== AUDIT =====

class AuditLogSerializer(serializers.ModelSerializer):
    """Serializer for PermissionAuditLog entries."""

    description = serializers.CharField(read_only=True)
    event_label = serializers.CharField(read_only=True)
    entity_type = serializers.SerializerMethodField()

    class Meta:
        model = PermissionAuditLog
        fields = [
            'id', 'event_type', 'event_action', 'event_label', 'description',
            'actor_id', 'affected_user_id', 'impersonator_id',
            'entity_type', 'auditable_id',
            'old_values', 'new_values', 'metadata',
            'ip_address', 'user_agent', 'request_id', 'created_at',
        ]
        read_only_fields = fields

    def get_entity_type(self, obj):
        if not obj.auditable_type_id:
            return None
        model = obj.auditable_type.model_class()
        return model.__name__ if model is not None else obj.auditable_type.model


class AuditCleanupSerializer(serializers.Serializer):
    keep_days = serializers.IntegerField(
        min_value=settings.AUDIT_LOG_KEEP_DAYS_MIN,
        max_value=settings.AUDIT_LOG_KEEP_DAYS_MAX,
    )
