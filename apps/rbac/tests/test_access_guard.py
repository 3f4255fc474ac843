"""
Tests for AccessControlGuard: authorize, administrator detection and
user management reach.
"""
import pytest
from django.contrib.auth.models import AnonymousUser

from apps.core.exceptions import AuthorizationError
from apps.hierarchy.models import Area
from apps.rbac.services.access_control import AccessControlGuard


@pytest.mark.django_db
class TestAuthorize:

    def test_allows_held_ability(self, make_user):
        user = make_user(permissions=['plants.view'])

        assert AccessControlGuard.authorize(user, 'plants.view') is True

    def test_raises_for_missing_ability(self, make_user):
        user = make_user()

        with pytest.raises(AuthorizationError) as exc_info:
            AccessControlGuard.authorize(user, 'plants.update')

        assert exc_info.value.status_code == 403
        assert exc_info.value.details == {'ability': 'plants.update'}

    def test_scoped_authorization_on_instance(self, make_user, plant, area):
        user = make_user(permissions=[f'areas.manage.plant.{plant.pk}'])

        assert AccessControlGuard.authorize(user, 'areas.manage', area)
        with pytest.raises(AuthorizationError):
            AccessControlGuard.authorize(user, 'areas.manage')

    def test_super_admin_bypass(self, super_admin, asset):
        assert AccessControlGuard.authorize(super_admin, 'assets.manage', asset)

    def test_anonymous_is_denied(self):
        assert not AccessControlGuard.allows(AnonymousUser(), 'plants.view')

    def test_inactive_user_is_denied(self, make_user):
        user = make_user(permissions=['plants.view'], is_active=False)

        assert not AccessControlGuard.allows(user, 'plants.view')


@pytest.mark.django_db
class TestIsAdministrator:

    def test_super_admin_is_administrator(self, super_admin):
        assert AccessControlGuard.is_administrator(super_admin)

    def test_role_holder_is_administrator(self, admin_user):
        assert AccessControlGuard.is_administrator(admin_user)

    def test_plain_user_is_not(self, make_user):
        assert not AccessControlGuard.is_administrator(make_user(permissions=['users.view']))


@pytest.mark.django_db
class TestCanManageUser:

    def test_administrator_manages_anyone(self, admin_user, make_user, plant):
        assert AccessControlGuard.can_manage_user(admin_user, make_user())
        assert AccessControlGuard.can_manage_user(admin_user, make_user(permissions=[f'areas.view.plant.{plant.pk}']))

    def test_actor_covering_every_target_scope(self, make_user, plant, area, sector):
        actor = make_user(permissions=[f'areas.manage.plant.{plant.pk}'])
        target = make_user(permissions=[f'assets.view.area.{area.pk}', f'assets.view.sector.{sector.pk}'])

        assert AccessControlGuard.can_manage_user(actor, target)

    def test_actor_missing_one_target_scope(self, make_user, plant, other_plant):
        actor = make_user(permissions=[f'areas.manage.plant.{plant.pk}'])
        target = make_user(permissions=[
            f'areas.view.plant.{plant.pk}',
            f'areas.view.plant.{other_plant.pk}',
        ])

        assert not AccessControlGuard.can_manage_user(actor, target)

    def test_narrower_actor_cannot_manage_wider_target(self, make_user, plant, area):
        actor = make_user(permissions=[f'areas.manage.area.{area.pk}'])
        target = make_user(permissions=[f'areas.view.plant.{plant.pk}'])

        assert not AccessControlGuard.can_manage_user(actor, target)

    def test_target_without_scope_is_out_of_reach(self, make_user, plant):
        actor = make_user(permissions=[f'areas.manage.plant.{plant.pk}'])
        target = make_user(permissions=['plants.viewAny'])

        assert not AccessControlGuard.can_manage_user(actor, target)

    def test_role_scopes_count_for_the_target(self, make_user, make_permission, plant, other_plant):
        from apps.rbac.models import Role, RolePermission

        role = Role.objects.create(name='South Operators')
        RolePermission.objects.create(role=role, permission=make_permission(f'assets.view.plant.{other_plant.pk}'))
        actor = make_user(permissions=[f'areas.manage.plant.{plant.pk}'])
        target = make_user(permissions=[f'areas.view.plant.{plant.pk}'], roles=[role])

        assert not AccessControlGuard.can_manage_user(actor, target)

    def test_anonymous_actor(self, make_user):
        assert not AccessControlGuard.can_manage_user(AnonymousUser(), make_user())

    def test_authorize_manage_user_raises(self, make_user):
        with pytest.raises(AuthorizationError):
            AccessControlGuard.authorize_manage_user(make_user(), make_user())

    def test_area_under_other_plant_is_not_covered(self, make_user, plant, other_plant):
        foreign_area = Area.objects.create(name='Warehouse', plant=other_plant)
        actor = make_user(permissions=[f'areas.manage.plant.{plant.pk}'])
        target = make_user(permissions=[f'assets.view.area.{foreign_area.pk}'])

        assert not AccessControlGuard.can_manage_user(actor, target)
