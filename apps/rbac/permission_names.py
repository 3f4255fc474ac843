"""
Permission name grammar.

A permission name is either global, ``resource.action``, or scoped to one
node of the hierarchy, ``resource.action.scope.scope_id``. Names are parsed
once when a permission is written and the parts are stored in typed
columns; checks never re-parse names.
"""
import re
from dataclasses import dataclass
from typing import Optional

from apps.core.exceptions import ValidationError
from apps.hierarchy.models import SCOPES

MAX_NAME_LENGTH = 255

RESOURCE_RE = re.compile(r'[a-z][a-z0-9_-]*')
ACTION_RE = re.compile(r'[a-zA-Z][a-zA-Z0-9_-]*')
SCOPE_ID_RE = re.compile(r'[1-9][0-9]*')


@dataclass(frozen=True)
class PermissionName:
    resource: str
    action: str
    scope: Optional[str] = None
    scope_id: Optional[int] = None

    @classmethod
    def parse(cls, name) -> 'PermissionName':
        """
        Parse and validate a permission name.

        Raises ValidationError with a ``name`` field error when the name
        does not follow the grammar.
        """
        if isinstance(name, PermissionName):
            return name

        def invalid(reason):
            return ValidationError(
                f"Invalid permission name '{name}': {reason}",
                {'name': [reason]}
            )

        if not isinstance(name, str) or not name:
            raise invalid('a non-empty string is required')
        if len(name) > MAX_NAME_LENGTH:
            raise invalid(f'must be at most {MAX_NAME_LENGTH} characters')

        tokens = name.split('.')
        if len(tokens) not in (2, 4):
            raise invalid('expected resource.action or resource.action.scope.scope_id')

        resource, action = tokens[0], tokens[1]
        if not RESOURCE_RE.fullmatch(resource):
            raise invalid(f"resource '{resource}' must be lowercase letters, digits, '-' or '_'")
        if not ACTION_RE.fullmatch(action):
            raise invalid(f"action '{action}' must be letters, digits, '-' or '_'")

        if len(tokens) == 2:
            return cls(resource=resource, action=action)

        scope, scope_id = tokens[2], tokens[3]
        if scope not in SCOPES:
            raise invalid(f"scope '{scope}' must be one of {', '.join(SCOPES)}")
        if not SCOPE_ID_RE.fullmatch(scope_id):
            raise invalid(f"scope id '{scope_id}' must be a positive integer")

        return cls(resource=resource, action=action, scope=scope, scope_id=int(scope_id))

    @classmethod
    def is_valid(cls, name) -> bool:
        try:
            cls.parse(name)
        except ValidationError:
            return False
        return True

    @property
    def is_scoped(self) -> bool:
        return self.scope is not None

    @property
    def base(self) -> str:
        return f"{self.resource}.{self.action}"

    def for_scope(self, scope: str, scope_id: int) -> 'PermissionName':
        return PermissionName(self.resource, self.action, scope, int(scope_id))

    def __str__(self):
        if self.is_scoped:
            return f"{self.base}.{self.scope}.{self.scope_id}"
        return self.base

