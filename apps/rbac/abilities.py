"""
Canonical global permissions used by the access management API.

``seed_permissions`` registers all of them and gives them to the system
Administrator role.
"""

PERMISSIONS_VIEW = 'permissions.viewAny'
PERMISSIONS_MANAGE = 'permissions.manage'

ROLES_VIEW = 'roles.viewAny'
ROLES_CREATE = 'roles.create'
ROLES_UPDATE = 'roles.update'
ROLES_DELETE = 'roles.delete'

USERS_VIEW = 'users.view'
USERS_MANAGE_PERMISSIONS = 'users.manage-permissions'
USERS_MANAGE_ROLES = 'users.manage-roles'
USERS_DELETE = 'users.delete'

INVITATIONS_VIEW = 'invitations.viewAny'
INVITATIONS_CREATE = 'invitations.create'
INVITATIONS_REVOKE = 'invitations.revoke'
INVITATIONS_RESEND = 'invitations.resend'

AUDIT_VIEW = 'audit.view'
AUDIT_EXPORT = 'audit.export'
AUDIT_CLEANUP = 'audit.cleanup'


CORE_PERMISSIONS = [
    (PERMISSIONS_VIEW, 'View permissions', 'List and inspect registered permissions'),
    (PERMISSIONS_MANAGE, 'Manage permissions', 'Create, update and delete permissions'),
    (ROLES_VIEW, 'View roles', 'List roles and the permission matrix'),
    (ROLES_CREATE, 'Create roles', 'Create and duplicate roles'),
    (ROLES_UPDATE, 'Update roles', 'Rename roles and sync their permissions'),
    (ROLES_DELETE, 'Delete roles', 'Delete non-system roles without users'),
    (USERS_VIEW, 'View users', "View users' effective permissions and history"),
    (USERS_MANAGE_PERMISSIONS, 'Manage user permissions', 'Grant and revoke direct permissions'),
    (USERS_MANAGE_ROLES, 'Manage user roles', 'Assign and remove roles'),
    (USERS_DELETE, 'Delete users', 'Soft delete users'),
    (INVITATIONS_VIEW, 'View invitations', 'List invitations'),
    (INVITATIONS_CREATE, 'Create invitations', 'Invite new users'),
    (INVITATIONS_REVOKE, 'Revoke invitations', 'Revoke pending invitations'),
    (INVITATIONS_RESEND, 'Resend invitations', 'Resend and extend invitations'),
    (AUDIT_VIEW, 'View audit log', 'Browse the permission audit log'),
    (AUDIT_EXPORT, 'Export audit log', 'Download the audit log as CSV'),
    (AUDIT_CLEANUP, 'Clean up audit log', 'Delete audit entries past retention'),
    ('plants.viewAny', 'View plants', 'List plants'),
    ('plants.view', 'View plant', 'View a plant'),
    ('plants.update', 'Update plants', 'Update plants'),
    ('areas.viewAny', 'View areas', 'List areas'),
    ('areas.view', 'View area', 'View an area'),
    ('areas.manage', 'Manage areas', 'Create, update and delete areas'),
    ('sectors.viewAny', 'View sectors', 'List sectors'),
    ('sectors.view', 'View sector', 'View a sector'),
    ('sectors.manage', 'Manage sectors', 'Create, update and delete sectors'),
    ('assets.viewAny', 'View assets', 'List assets'),
    ('assets.view', 'View asset', 'View an asset'),
    ('assets.manage', 'Manage assets', 'Create, update and delete assets'),
]
