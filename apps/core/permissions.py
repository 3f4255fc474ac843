"""
DRF permission class and decorator for ability enforcement.

This module provides:
- HasAbility: DRF permission class that asks AccessControlGuard
- @requires_ability: Decorator to declare required abilities on views
"""
import logging
from functools import wraps

from rest_framework.permissions import BasePermission

logger = logging.getLogger(__name__)


def _required_abilities(request, view):
    handler = getattr(view, request.method.lower(), None)
    abilities = getattr(handler, 'required_abilities', None)
    if abilities is None:
        abilities = getattr(view, 'required_abilities', None)
    if isinstance(abilities, str):
        abilities = {abilities}
    return set(abilities or ())


class HasAbility(BasePermission):
    """
    DRF permission class that enforces ability requirements on API endpoints.

    Abilities are read from the handler method first, then from the view
    class. Each one is checked through ``AccessControlGuard.allows`` so the
    super-admin bypass and scope inheritance apply.

    Usage in views:
        class RoleListView(APIView):
            permission_classes = [HasAbility]
            required_abilities = ['roles.viewAny']

    Or per method:
        class RoleListView(APIView):
            permission_classes = [HasAbility]

            @requires_ability('roles.create')
            def post(self, request):
                pass

    Views that act on one hierarchy node set ``ability_checked_on_object``.
    The request-level check then only requires the ability at some scope,
    and the decision is made when the view calls
    ``check_object_permissions(request, node)`` (``get_object()`` does this
    for generic views), where grants on the node's ancestors count:

        class AreaDetailView(RetrieveAPIView):
            permission_classes = [HasAbility]
            required_abilities = ['areas.view']
            ability_checked_on_object = True
    """

    message = 'You are not allowed to perform this action.'

    def has_permission(self, request, view):
        from apps.rbac.services.access_control import AccessControlGuard

        user = getattr(request, 'user', None)
        if user is None or not user.is_authenticated:
            return False

        required = _required_abilities(request, view)
        if not required:
            return True

        if getattr(view, 'ability_checked_on_object', False):
            allows = AccessControlGuard.allows_anywhere
        else:
            allows = AccessControlGuard.allows

        missing = {ability for ability in required if not allows(user, ability)}
        if missing:
            logger.warning(
                f"Permission denied: User {user.pk} missing abilities: {sorted(missing)}",
                extra={
                    'user_id': str(user.pk),
                    'required_abilities': sorted(required),
                    'missing_abilities': sorted(missing),
                    'view': view.__class__.__name__,
                    'method': request.method,
                    'path': request.path,
                    'request_id': getattr(request, 'request_id', None),
                }
            )
            return False

        return True

    def has_object_permission(self, request, view, obj):
        """
        Re-check the abilities against ``obj`` when it sits in the
        hierarchy, so scoped grants on its ancestors count.

        On views with ``ability_checked_on_object`` an object outside the
        hierarchy needs the abilities globally.
        """
        from apps.rbac.services.access_control import AccessControlGuard

        resource = obj if hasattr(obj, 'scope_chain') else None
        if resource is None and not getattr(view, 'ability_checked_on_object', False):
            return True
        return all(
            AccessControlGuard.allows(request.user, ability, resource)
            for ability in _required_abilities(request, view)
        )


def requires_ability(*abilities):
    """
    Decorator to declare required abilities on view classes or methods.

    Sets ``required_abilities``, which HasAbility reads before the handler
    runs.

    Args:
        *abilities: Ability names required for access

    Returns:
        Decorator function that sets required_abilities attribute
    """
    def decorator(view_or_method):
        if isinstance(view_or_method, type):
            view_or_method.required_abilities = set(abilities)
            return view_or_method

        @wraps(view_or_method)
        def wrapped(self, request, *args, **kwargs):
            return view_or_method(self, request, *args, **kwargs)

        wrapped.required_abilities = set(abilities)
        return wrapped

    return decorator
