"""
RBAC (Role-Based Access Control) application.

Provides hierarchy-scoped access control with:
- Global and plant/area/sector/asset scoped permissions
- Roles with permission matrix sync
- Escalation-proof grants and last-administrator protection
- Invitations and a super-admin ledger
- Append-only permission audit trail
"""
