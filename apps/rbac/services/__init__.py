"""
Access management services.

Implements:
- RegistryService: permission and role reference data
- HierarchyResolver: effective permissions and scope-aware checks
- AccessControlGuard: authorization entry point
- AdminProtectionService: the last-administrator invariant
- GrantValidator: escalation checks for grants and revokes
- AuditService: append-only audit trail
- InvitationService, SuperAdminService, UserAccessService
"""
from apps.rbac.services.access_control import AccessControlGuard
from apps.rbac.services.admin_protection import AdminProtectionService, ProtectionResult
from apps.rbac.services.audit_service import AuditService
from apps.rbac.services.grant_validator import GrantValidation, GrantValidator
from apps.rbac.services.hierarchy_service import EffectivePermissions, HierarchyResolver
from apps.rbac.services.invitation_service import InvitationService
from apps.rbac.services.registry_service import RegistryService, SyncDelta
from apps.rbac.services.super_admin_service import SuperAdminService
from apps.rbac.services.user_access_service import UserAccessService

__all__ = [
    'AccessControlGuard',
    'AdminProtectionService',
    'AuditService',
    'EffectivePermissions',
    'GrantValidation',
    'GrantValidator',
    'HierarchyResolver',
    'InvitationService',
    'ProtectionResult',
    'RegistryService',
    'SuperAdminService',
    'SyncDelta',
    'UserAccessService',
]
