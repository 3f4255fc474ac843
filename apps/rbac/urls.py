"""
RBAC API URLs.

Provides endpoints for:
- Permission registry and permission checks
- Role management and the permission matrix
- User access management and super admin
- Invitations
- Audit log viewing
"""
from django.urls import path
from apps.rbac.views import (
    AccessibleEntitiesView,
    AuditLogCleanupView,
    AuditLogExportView,
    AuditLogListView,
    AuditLogStatsView,
    InvitationAcceptView,
    InvitationListView,
    InvitationResendView,
    InvitationRevokeView,
    InvitationShowView,
    PermissionBulkCheckView,
    PermissionCheckView,
    PermissionDetailView,
    PermissionListView,
    PermissionMatrixView,
    RoleDetailView,
    RoleDuplicateView,
    RoleListView,
    RolePermissionsSyncView,
    UserDeleteView,
    UserForceDeleteView,
    UserGrantablePermissionsView,
    UserHistoryView,
    UserPermissionBulkView,
    UserPermissionCopyView,
    UserPermissionGrantView,
    UserPermissionRevokeView,
    UserPermissionsView,
    UserRestoreView,
    UserRoleAssignView,
    UserRoleRemoveView,
    UserSuperAdminView,
)

app_name = 'rbac'

urlpatterns = [
    # Permission endpoints
    path('permissions', PermissionListView.as_view(), name='permission-list'),
    path('permissions/check', PermissionCheckView.as_view(), name='permission-check'),
    path('permissions/check-bulk', PermissionBulkCheckView.as_view(), name='permission-check-bulk'),
    path('permissions/<uuid:permission_id>', PermissionDetailView.as_view(), name='permission-detail'),

    # Role endpoints
    path('roles', RoleListView.as_view(), name='role-list'),
    path('roles/matrix', PermissionMatrixView.as_view(), name='role-matrix'),
    path('roles/<uuid:role_id>', RoleDetailView.as_view(), name='role-detail'),
    path('roles/<uuid:role_id>/duplicate', RoleDuplicateView.as_view(), name='role-duplicate'),
    path('roles/<uuid:role_id>/permissions', RolePermissionsSyncView.as_view(), name='role-permissions'),

    # User access endpoints
    path('me/accessible', AccessibleEntitiesView.as_view(), name='accessible-entities'),
    path('users/<uuid:user_id>', UserDeleteView.as_view(), name='user-delete'),
    path('users/<uuid:user_id>/restore', UserRestoreView.as_view(), name='user-restore'),
    path('users/<uuid:user_id>/force', UserForceDeleteView.as_view(), name='user-force-delete'),
    path('users/<uuid:user_id>/permissions', UserPermissionsView.as_view(), name='user-permissions'),
    path('users/<uuid:user_id>/permissions/grantable', UserGrantablePermissionsView.as_view(), name='user-permissions-grantable'),
    path('users/<uuid:user_id>/permissions/grant', UserPermissionGrantView.as_view(), name='user-permissions-grant'),
    path('users/<uuid:user_id>/permissions/revoke', UserPermissionRevokeView.as_view(), name='user-permissions-revoke'),
    path('users/<uuid:user_id>/permissions/bulk', UserPermissionBulkView.as_view(), name='user-permissions-bulk'),
    path('users/<uuid:user_id>/permissions/copy', UserPermissionCopyView.as_view(), name='user-permissions-copy'),
    path('users/<uuid:user_id>/history', UserHistoryView.as_view(), name='user-history'),
    path('users/<uuid:user_id>/roles', UserRoleAssignView.as_view(), name='user-role-assign'),
    path('users/<uuid:user_id>/roles/<uuid:role_id>', UserRoleRemoveView.as_view(), name='user-role-remove'),
    path('users/<uuid:user_id>/super-admin', UserSuperAdminView.as_view(), name='user-super-admin'),

    # Invitation endpoints
    path('invitations', InvitationListView.as_view(), name='invitation-list'),
    path('invitations/accept', InvitationAcceptView.as_view(), name='invitation-accept'),
    path('invitations/accept/<str:token>', InvitationShowView.as_view(), name='invitation-show'),
    path('invitations/<uuid:invitation_id>/revoke', InvitationRevokeView.as_view(), name='invitation-revoke'),
    path('invitations/<uuid:invitation_id>/resend', InvitationResendView.as_view(), name='invitation-resend'),

    # Audit log endpoints
    path('audit-logs', AuditLogListView.as_view(), name='audit-log-list'),
    path('audit-logs/export', AuditLogExportView.as_view(), name='audit-log-export'),
    path('audit-logs/cleanup', AuditLogCleanupView.as_view(), name='audit-log-cleanup'),
    path('audit-logs/stats', AuditLogStatsView.as_view(), name='audit-log-stats'),
]
