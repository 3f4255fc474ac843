"""
Protection of the "at least one administrator" invariant.

An administrator is an active, non-deleted user that carries the
super-admin flag or holds the system Administrator role. Counts are taken
on locked rows inside the caller's transaction, and ``guard`` counts again
after the mutation has been applied so that concurrent removals cannot
both succeed.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass

from django.db import transaction

from apps.core.exceptions import InvariantViolation
from apps.core.logging import SecurityLogger
from apps.rbac.models import User, UserRole, administrator_role_name

logger = logging.getLogger(__name__)


OP_DELETE = 'delete'
OP_FORCE_DELETE = 'forceDelete'
OP_REMOVE_ROLE = 'removeRole'
OP_REVOKE_SUPER_ADMIN = 'revokeSuperAdmin'

OPERATIONS = (OP_DELETE, OP_FORCE_DELETE, OP_REMOVE_ROLE, OP_REVOKE_SUPER_ADMIN)


@dataclass(frozen=True)
class ProtectionResult:
    allowed: bool
    message: str = ''
    administrators_before: int = 0
    administrators_after: int = 0


def _protection_message(user: User, operation: str) -> str:
    who = f"'{user.get_full_name()}' (ID: {user.pk})"
    if operation == OP_REMOVE_ROLE:
        return (
            f"Cannot remove the Administrator role from user {who} because they are the last "
            "administrator in the system. The system must always have at least one active "
            "administrator. Please assign the administrator role to another user before "
            "removing it from this one."
        )
    if operation == OP_REVOKE_SUPER_ADMIN:
        return (
            f"Cannot revoke super admin from user {who} because they are the last "
            "administrator in the system. The system must always have at least one active "
            "administrator. Please grant administrator access to another user first."
        )
    if operation == OP_FORCE_DELETE:
        return (
            f"Cannot permanently delete user {who} because they are the last administrator "
            "in the system. The system must always have at least one administrator. Please "
            "assign the administrator role to another user before permanently deleting this one."
        )
    return (
        f"Cannot delete user {who} because they are the last active administrator in the "
        "system. The system must always have at least one active administrator. Please "
        "assign the administrator role to another user before deleting this one."
    )


class AdminProtectionService:

    @classmethod
    def _locked_administrators(cls):
        """``{user_id: is_super_admin}`` for every administrator, rows locked."""
        return dict(
            User.objects.administrators()
            .select_for_update()
            .values_list('pk', 'is_super_admin')
        )

    @classmethod
    def administrator_count(cls, exclude: User = None) -> int:
        with transaction.atomic():
            administrators = cls._locked_administrators()
        if exclude is not None:
            administrators.pop(exclude.pk, None)
        return len(administrators)

    @classmethod
    def is_in_critical_state(cls) -> bool:
        """True when one administrator or none is left."""
        return cls.administrator_count() <= 1

    @classmethod
    def can_perform_operation(cls, target: User, operation: str) -> ProtectionResult:
        """
        Decide whether ``operation`` on ``target`` leaves an administrator.

        Operations that do not take administrator status away from the
        target are always allowed.
        """
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown protected operation: {operation}")

        with transaction.atomic():
            administrators = cls._locked_administrators()
            before = len(administrators)

            if target.pk not in administrators:
                return ProtectionResult(True, '', before, before)

            if operation in (OP_DELETE, OP_FORCE_DELETE):
                keeps_status = False
            elif operation == OP_REMOVE_ROLE:
                keeps_status = administrators[target.pk]
            else:
                keeps_status = UserRole.objects.filter(
                    user=target, role__name=administrator_role_name()
                ).exists()

            after = before - (0 if keeps_status else 1)

        if after == 0:
            message = _protection_message(target, operation)
            logger.warning(
                f"Blocked {operation} of last administrator",
                extra={'target_id': str(target.pk), 'operation': operation}
            )
            return ProtectionResult(False, message, before, after)

        return ProtectionResult(True, '', before, after)

    @classmethod
    @contextmanager
    def guard(cls, target: User, operation: str):
        """
        Run a mutation under the invariant.

        Opens a transaction, refuses up front when the operation would
        leave no administrator, yields for the mutation, then recounts the
        locked administrator rows and rolls everything back if none remain.
        """
        with transaction.atomic():
            result = cls.can_perform_operation(target, operation)
            if not result.allowed:
                SecurityLogger.log_administrator_protection(target, operation, result.message)
                raise InvariantViolation(result.message, {'operation': operation, 'user_id': str(target.pk)})

            yield result

            if result.administrators_before > 0:
                remaining = len(cls._locked_administrators())
                if remaining == 0:
                    message = _protection_message(target, operation)
                    SecurityLogger.log_administrator_protection(target, operation, message)
                    raise InvariantViolation(message, {'operation': operation, 'user_id': str(target.pk)})
