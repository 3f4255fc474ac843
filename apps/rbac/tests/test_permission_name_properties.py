"""
Property-based tests for the permission name grammar and scope inheritance.

Property: a scoped grant covers the node it names and every node below it,
and never a node above it or on another branch.
"""
from types import SimpleNamespace

from hypothesis import given, strategies as st

from apps.core.exceptions import ValidationError
from apps.hierarchy.models import SCOPES
from apps.rbac.permission_names import PermissionName
from apps.rbac.services.hierarchy_service import EffectivePermissions, HierarchyResolver


resources = st.from_regex(r'\A[a-z][a-z0-9_-]{0,15}\Z')
actions = st.from_regex(r'\A[a-zA-Z][a-zA-Z0-9_-]{0,15}\Z')
scope_ids = st.integers(min_value=1, max_value=10 ** 9)


@st.composite
def chains(draw):
    """Scope chain of an asset, bottom-up: asset, sector, area, plant."""
    ids = draw(st.lists(scope_ids, min_size=4, max_size=4))
    return list(zip(reversed(SCOPES), ids))


class _Node:
    def __init__(self, chain):
        self._chain = chain

    def scope_chain(self):
        return list(self._chain)


def _user():
    return SimpleNamespace(pk=1, is_authenticated=True, is_super_admin=False)


def _holding(*names):
    permissions = []
    for name in names:
        parsed = PermissionName.parse(name)
        permissions.append(SimpleNamespace(name=name, scope=parsed.scope, scope_id=parsed.scope_id))
    return EffectivePermissions(permissions)


class TestGrammarProperties:

    @given(resources, actions, st.sampled_from(SCOPES), scope_ids)
    def test_scoped_names_are_canonical(self, resource, action, scope, scope_id):
        name = f'{resource}.{action}.{scope}.{scope_id}'

        parsed = PermissionName.parse(name)

        assert str(parsed) == name
        assert parsed.base == f'{resource}.{action}'

    @given(st.text(max_size=60))
    def test_arbitrary_text_parses_verbatim_or_fails(self, raw):
        try:
            parsed = PermissionName.parse(raw)
        except ValidationError as exc:
            assert 'name' in exc.details
        else:
            assert str(parsed) == raw


class TestInheritanceProperties:

    @given(chains(), st.integers(min_value=0, max_value=3), st.integers(min_value=0, max_value=3))
    def test_grants_flow_down_never_up(self, chain, granted_level, checked_level):
        scope, scope_id = chain[granted_level]
        effective = _holding(f'assets.view.{scope}.{scope_id}')
        node = _Node(chain[checked_level:])

        allowed = HierarchyResolver.check(_user(), 'assets.view', node, effective=effective)

        # chain is bottom-up, so ancestors have higher indexes
        assert allowed == (granted_level >= checked_level)

    @given(chains(), chains())
    def test_grant_on_other_plant_never_applies(self, chain, other):
        plant_scope, plant_id = chain[-1]
        other_chain = other[:-1] + [(plant_scope, plant_id + 1)]
        effective = _holding(f'assets.view.{plant_scope}.{plant_id}')

        assert not HierarchyResolver.check(_user(), 'assets.view', _Node(other_chain), effective=effective)

    @given(chains())
    def test_global_grant_covers_every_node(self, chain):
        effective = _holding('assets.view')

        assert HierarchyResolver.check(_user(), 'assets.view', _Node(chain), effective=effective)
