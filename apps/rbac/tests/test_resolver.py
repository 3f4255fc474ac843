"""
Tests for effective permission resolution and scope inheritance.
"""
import pytest

from apps.hierarchy.models import Area, Asset
from apps.rbac.models import Role, RolePermission, UserPermission
from apps.rbac.services.hierarchy_service import EffectivePermissions, HierarchyResolver


@pytest.mark.django_db
class TestResolveEffective:

    def test_union_of_direct_and_role_permissions(self, make_user, make_permission):
        role = Role.objects.create(name='Planner')
        RolePermission.objects.create(role=role, permission=make_permission('assets.view'))
        RolePermission.objects.create(role=role, permission=make_permission('areas.view'))
        user = make_user(permissions=['plants.view', 'areas.view'], roles=[role])

        effective = HierarchyResolver.resolve_effective(user)

        assert effective.names == {'plants.view', 'areas.view', 'assets.view'}
        assert len(effective) == 3

    def test_super_admin_gets_universal_sentinel(self, super_admin):
        effective = HierarchyResolver.resolve_effective(super_admin)

        assert effective.is_universal
        assert 'anything.at-all' in effective
        with pytest.raises(TypeError):
            list(effective)

    def test_no_permission_rows_for_super_admin(self, super_admin):
        assert not UserPermission.objects.filter(user=super_admin).exists()

    def test_grant_is_visible_to_next_check(self, make_user, make_permission):
        user = make_user()
        assert not HierarchyResolver.check(user, 'plants.view')

        UserPermission.objects.create(user=user, permission=make_permission('plants.view'))

        assert HierarchyResolver.check(user, 'plants.view')

    def test_anonymous_user_has_nothing(self):
        from django.contrib.auth.models import AnonymousUser

        assert not HierarchyResolver.resolve_effective(AnonymousUser()).names


@pytest.mark.django_db
class TestCheck:

    def test_super_admin_passes_every_check(self, super_admin, asset):
        assert HierarchyResolver.check(super_admin, 'assets.manage')
        assert HierarchyResolver.check(super_admin, 'made.up', asset)

    def test_exact_global_match(self, make_user):
        user = make_user(permissions=['areas.view'])

        assert HierarchyResolver.check(user, 'areas.view')
        assert not HierarchyResolver.check(user, 'areas.manage')

    def test_plant_grant_is_inherited_by_areas_of_that_plant(self, make_user, plant, other_plant, area):
        user = make_user(permissions=[f'areas.view.plant.{plant.pk}'])
        foreign_area = Area.objects.create(name='Boilers', plant=other_plant)

        assert HierarchyResolver.check(user, 'areas.view', area)
        assert not HierarchyResolver.check(user, 'areas.view', foreign_area)

    def test_plant_grant_reaches_assets_deep_in_the_tree(self, make_user, plant, asset):
        user = make_user(permissions=[f'assets.manage.plant.{plant.pk}'])

        assert HierarchyResolver.check(user, 'assets.manage', asset)

    def test_sector_grant_does_not_reach_parent_plant(self, make_user, sector, plant):
        user = make_user(permissions=[f'plants.view.sector.{sector.pk}'])

        assert not HierarchyResolver.check(user, 'plants.view', plant)

    def test_sector_grant_does_not_reach_sibling_asset(self, make_user, sector, area, plant):
        user = make_user(permissions=[f'assets.view.sector.{sector.pk}'])
        sibling = Asset.objects.create(name='Pump', plant=plant, area=area)

        assert not HierarchyResolver.check(user, 'assets.view', sibling)

    def test_scoped_grant_without_resource_is_not_global(self, make_user, plant):
        user = make_user(permissions=[f'areas.view.plant.{plant.pk}'])

        assert not HierarchyResolver.check(user, 'areas.view')

    def test_resource_given_as_scope_pair(self, make_user, plant, area):
        user = make_user(permissions=[f'areas.view.plant.{plant.pk}'])

        assert HierarchyResolver.check(user, 'areas.view', ('area', area.pk))

    def test_role_derived_scoped_grant_is_inherited(self, make_user, make_permission, plant, sector):
        role = Role.objects.create(name='Plant Lead')
        RolePermission.objects.create(role=role, permission=make_permission(f'sectors.manage.plant.{plant.pk}'))
        user = make_user(roles=[role])

        assert HierarchyResolver.check(user, 'sectors.manage', sector)


@pytest.mark.django_db
class TestHolds:

    def test_global_holder_holds_every_scoped_variant(self, make_user, plant):
        user = make_user(permissions=['areas.manage'])

        assert HierarchyResolver.holds(user, f'areas.manage.plant.{plant.pk}')

    def test_ancestor_grant_holds_descendant_name(self, make_user, plant, area):
        user = make_user(permissions=[f'sectors.manage.plant.{plant.pk}'])

        assert HierarchyResolver.holds(user, f'sectors.manage.area.{area.pk}')

    def test_descendant_grant_does_not_hold_ancestor_name(self, make_user, plant, area):
        user = make_user(permissions=[f'sectors.manage.area.{area.pk}'])

        assert not HierarchyResolver.holds(user, f'sectors.manage.plant.{plant.pk}')

    def test_scoped_grant_does_not_hold_global_name(self, make_user, plant):
        user = make_user(permissions=[f'areas.manage.plant.{plant.pk}'])

        assert not HierarchyResolver.holds(user, 'areas.manage')


@pytest.mark.django_db
class TestScopes:

    def test_scopes_of_collects_direct_and_role_scopes(self, make_user, make_permission, plant, area):
        role = Role.objects.create(name='Area Tech')
        RolePermission.objects.create(role=role, permission=make_permission(f'assets.view.area.{area.pk}'))
        user = make_user(permissions=[f'areas.view.plant.{plant.pk}', 'plants.viewAny'], roles=[role])

        assert HierarchyResolver.scopes_of(user) == {('plant', plant.pk), ('area', area.pk)}

    def test_covers_scope_through_ancestor(self, make_user, plant, sector):
        user = make_user(permissions=[f'areas.view.plant.{plant.pk}'])

        assert HierarchyResolver.covers_scope(user, 'sector', sector.pk)

    def test_accessible_entities_lists_scoped_ids(self, make_user, plant, other_plant):
        user = make_user(permissions=[f'areas.view.plant.{plant.pk}', f'areas.view.plant.{other_plant.pk}'])

        accessible = HierarchyResolver.accessible_entities(user, 'areas', 'view')

        assert accessible['all'] is False
        assert accessible['plant'] == sorted([plant.pk, other_plant.pk])
        assert accessible['area'] == []

    def test_accessible_entities_for_global_holder(self, make_user):
        user = make_user(permissions=['areas.view'])

        assert HierarchyResolver.accessible_entities(user, 'areas', 'view') == {'all': True}


class TestEffectivePermissions:

    def test_plain_set_membership(self):
        effective = EffectivePermissions()

        assert 'areas.view' not in effective
        assert len(effective) == 0
        assert effective.scopes() == set()
