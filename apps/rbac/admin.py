"""
Django admin configuration for RBAC app.

Access changes that must be audited or protected (grants, role
assignments, deletions, super admin) go through the API; the admin shows
them read-only.
"""
from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import (
    Permission,
    PermissionAuditLog,
    Role,
    SuperAdminGrant,
    User,
    UserInvitation,
)


class ReadOnlyAdmin(admin.ModelAdmin):

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(User)
class CustomUserAdmin(BaseUserAdmin):
    """
    Admin for the email-based User model.
    """
    list_display = ['email', 'name', 'is_active', 'is_super_admin', 'email_verified', 'created_at']
    list_filter = ['is_active', 'is_super_admin', 'created_at']
    search_fields = ['email', 'name']
    ordering = ['-created_at']

    fieldsets = (
        (None, {
            'fields': ('email', 'password')
        }),
        ('Personal Info', {
            'fields': ('name',)
        }),
        ('Status', {
            'fields': ('is_active', 'is_super_admin', 'email_verified_at')
        }),
        ('Activity', {
            'fields': ('last_login', 'created_at', 'updated_at', 'deleted_at')
        }),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': ('email', 'name', 'password1', 'password2'),
        }),
    )

    readonly_fields = ['is_super_admin', 'created_at', 'updated_at', 'deleted_at', 'last_login']
    filter_horizontal = ()

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Permission)
class PermissionAdmin(ReadOnlyAdmin):
    list_display = ['name', 'display_name', 'resource', 'action', 'scope', 'scope_id']
    list_filter = ['scope', 'resource']
    search_fields = ['name', 'display_name']


@admin.register(Role)
class RoleAdmin(ReadOnlyAdmin):
    list_display = ['name', 'is_system', 'created_at']
    list_filter = ['is_system']
    search_fields = ['name']


@admin.register(UserInvitation)
class UserInvitationAdmin(ReadOnlyAdmin):
    list_display = ['email', 'status', 'invited_by', 'initial_role', 'expires_at', 'created_at']
    search_fields = ['email']
    exclude = ['token']


@admin.register(PermissionAuditLog)
class PermissionAuditLogAdmin(ReadOnlyAdmin):
    list_display = ['created_at', 'event_type', 'actor_id', 'affected_user_id', 'ip_address']
    list_filter = ['event_type']
    search_fields = ['event_type', 'event_action']
    date_hierarchy = 'created_at'


@admin.register(SuperAdminGrant)
class SuperAdminGrantAdmin(ReadOnlyAdmin):
    list_display = ['granted_to_id', 'granted_by_id', 'granted_at', 'revoked_by_id', 'revoked_at']
