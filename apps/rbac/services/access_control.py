"""
AccessControlGuard: the single entry point for authorization decisions.

Collaborators call ``authorize``/``allows``/``can_manage_user`` and never
read permission rows themselves. The super-admin bypass lives in the
resolver and is reached only through here.
"""
import logging

from apps.core.exceptions import AuthorizationError
from apps.core.logging import SecurityLogger
from apps.core.middleware.request_tracking import get_client_ip
from apps.rbac.models import User, administrator_role_name
from apps.rbac.services.hierarchy_service import HierarchyResolver

logger = logging.getLogger(__name__)


class AccessControlGuard:

    @classmethod
    def allows(cls, user, ability: str, resource=None) -> bool:
        if user is None or not getattr(user, 'is_authenticated', False):
            return False
        if not user.is_active or user.is_deleted:
            return False
        return HierarchyResolver.check(user, ability, resource)

    @classmethod
    def allows_anywhere(cls, user, ability: str) -> bool:
        """
        Non-final check for requests about one hierarchy node: the user
        holds ``ability`` globally or on some node. The node itself must
        still pass ``allows(user, ability, node)``.
        """
        if user is None or not getattr(user, 'is_authenticated', False):
            return False
        if not user.is_active or user.is_deleted:
            return False
        return HierarchyResolver.check_anywhere(user, ability)

    @classmethod
    def authorize(cls, user, ability: str, resource=None, request=None) -> bool:
        """
        Return True or raise AuthorizationError.

        Denials are logged to the security log with the ability and the
        resource they were asked for.
        """
        if cls.allows(user, ability, resource):
            return True

        SecurityLogger.log_authorization_denied(
            user if getattr(user, 'is_authenticated', False) else None,
            ability,
            resource=resource if hasattr(resource, 'pk') else None,
            ip_address=get_client_ip(request) if request is not None else None,
        )
        raise AuthorizationError(
            'You are not allowed to perform this action.',
            {'ability': ability}
        )

    @classmethod
    def is_administrator(cls, user) -> bool:
        """Super admin or holder of the system Administrator role."""
        if user is None or not getattr(user, 'is_authenticated', False):
            return False
        if user.is_super_admin:
            return True
        return user.has_role(administrator_role_name())

    @classmethod
    def can_manage_user(cls, actor: User, target: User) -> bool:
        """
        True if ``actor`` may manage ``target``'s access.

        Administrators manage everyone. Anyone else must cover every scope
        the target is bound to (its own scoped permissions and those of its
        roles), a target with no scopes being out of reach.
        """
        if actor is None or not getattr(actor, 'is_authenticated', False):
            return False
        if cls.is_administrator(actor):
            return True

        target_scopes = HierarchyResolver.scopes_of(target)
        if not target_scopes:
            logger.debug(
                "Target has no discoverable scope; only administrators may manage it",
                extra={'actor_id': str(actor.pk), 'target_id': str(target.pk)}
            )
            return False

        actor_effective = HierarchyResolver.resolve_effective(actor)
        return all(
            HierarchyResolver.covers_scope(actor, scope, scope_id, effective=actor_effective)
            for scope, scope_id in target_scopes
        )

    @classmethod
    def authorize_manage_user(cls, actor: User, target: User):
        if not cls.can_manage_user(actor, target):
            raise AuthorizationError(
                'You are not allowed to manage this user.',
                {'user_id': str(target.pk)}
            )
        return True

    @classmethod
    def authorize_administrator(cls, actor: User, action: str = 'perform this action'):
        if not cls.is_administrator(actor):
            raise AuthorizationError(f'Only administrators can {action}.')
        return True
