"""
Pytest configuration and fixtures.
"""
from io import StringIO

import pytest
from django.conf import settings
import django
from django.core.management import call_command


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
    settings.RATELIMIT_ENABLE = False
    settings.EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database with migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def queued_emails(monkeypatch):
    """Capture invitation ids handed to the email task instead of hitting the broker."""
    from apps.rbac.tasks import send_invitation_email

    queued = []
    monkeypatch.setattr(send_invitation_email, 'delay', lambda invitation_id: queued.append(invitation_id))
    return queued


@pytest.fixture
def make_permission(db):
    """Return a factory that gets or creates a permission by name."""
    from apps.rbac.models import Permission

    def factory(name, **extra):
        permission = Permission.objects.filter(name=name).first()
        if permission is None:
            permission = Permission.objects.create(name=name, display_name=extra.pop('display_name', name), **extra)
        return permission

    return factory


@pytest.fixture
def make_user(db):
    """Return a factory that creates users with direct permissions and roles."""
    from apps.rbac.models import Permission, User, UserPermission, UserRole

    counter = {'n': 0}

    def factory(email=None, permissions=(), roles=(), **extra):
        counter['n'] += 1
        email = email or f"user{counter['n']}@plant.test"
        extra.setdefault('name', email.split('@')[0].title())
        user = User.objects.create_user(email=email, password='Str0ng-pass!', **extra)
        for name in permissions:
            permission = Permission.objects.filter(name=name).first()
            if permission is None:
                permission = Permission.objects.create(name=name)
            UserPermission.objects.create(user=user, permission=permission)
        for role in roles:
            UserRole.objects.create(user=user, role=role)
        return user

    return factory


@pytest.fixture
def seeded(db):
    """Canonical permissions and the system Administrator role."""
    call_command('seed_permissions', verbosity=0, stdout=StringIO())


@pytest.fixture
def admin_role(seeded):
    from apps.rbac.models import Role
    return Role.objects.administrator()


@pytest.fixture
def admin_user(make_user, admin_role):
    """Administrator through the system role."""
    return make_user(email='admin@plant.test', name='Admin', roles=[admin_role])


@pytest.fixture
def super_admin(make_user):
    return make_user(email='root@plant.test', name='Root', is_super_admin=True)


@pytest.fixture
def plant(db):
    from apps.hierarchy.models import Plant
    return Plant.objects.create(name='North Plant')


@pytest.fixture
def other_plant(db):
    from apps.hierarchy.models import Plant
    return Plant.objects.create(name='South Plant')


@pytest.fixture
def area(plant):
    from apps.hierarchy.models import Area
    return Area.objects.create(name='Packaging', plant=plant)


@pytest.fixture
def sector(area):
    from apps.hierarchy.models import Sector
    return Sector.objects.create(name='Line 1', area=area)


@pytest.fixture
def asset(sector):
    from apps.hierarchy.models import Asset
    return Asset.objects.create(name='Filler', tag='FL-01', plant=sector.area.plant, area=sector.area, sector=sector)
