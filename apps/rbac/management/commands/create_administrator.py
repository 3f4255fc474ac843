"""
Management command to bootstrap an administrator.

Creates the user if needed and assigns the system Administrator role, or
the super-admin flag with ``--super-admin``. Run ``seed_permissions``
first so the role exists.
"""
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.utils import timezone

from apps.rbac.models import Role, SuperAdminGrant, User, UserRole, administrator_role_name
from apps.rbac.services.audit_service import AuditService


class Command(BaseCommand):
    help = 'Create or promote an administrator'

    def add_arguments(self, parser):
        parser.add_argument('--email', type=str, required=True, help='User email address')
        parser.add_argument('--password', type=str, help='Password for a new user')
        parser.add_argument('--name', type=str, default='', help='Display name for a new user')
        parser.add_argument(
            '--super-admin',
            action='store_true',
            help='Set the super-admin flag instead of assigning the Administrator role',
        )

    def handle(self, *args, **options):
        email = options['email'].strip().lower()
        password = options.get('password')

        user = User.objects.filter(email__iexact=email).first()
        if user is None:
            if not password:
                raise CommandError('--password is required when the user does not exist')
            user = User.objects.create_user(
                email=email,
                password=password,
                name=options['name'],
                email_verified_at=timezone.now(),
            )
            self.stdout.write(self.style.SUCCESS(f'✓ Created user: {email}'))
        else:
            self.stdout.write(f'  Using existing user: {email}')

        if options['super_admin']:
            self._make_super_admin(user)
        else:
            self._assign_administrator_role(user)

    def _assign_administrator_role(self, user):
        role = Role.objects.filter(name=administrator_role_name()).first()
        if role is None:
            raise CommandError(f"Role '{administrator_role_name()}' does not exist. Run seed_permissions first.")

        if UserRole.objects.filter(user=user, role=role).exists():
            self.stdout.write(self.style.WARNING(f'↻ {user.email} already has the {role.name} role'))
            return

        with transaction.atomic():
            UserRole.objects.create(user=user, role=role)
            AuditService.record(
                'role.assigned',
                affected_user=user,
                auditable=role,
                new_values={'role': role.name},
                metadata={'role': role.name, 'affected_user_email': user.email, 'source': 'command'},
            )
        self.stdout.write(self.style.SUCCESS(f'✓ Assigned {role.name} role to {user.email}'))

    def _make_super_admin(self, user):
        if user.is_super_admin:
            self.stdout.write(self.style.WARNING(f'↻ {user.email} is already a super admin'))
            return

        with transaction.atomic():
            SuperAdminGrant.objects.create(
                granted_to=user,
                granted_at=timezone.now(),
                reason='Granted from the command line',
            )
            user.is_super_admin = True
            user.save(update_fields=['is_super_admin', 'updated_at'])
            AuditService.record(
                'user.super_admin.granted',
                affected_user=user,
                auditable=user,
                old_values={'is_super_admin': False},
                new_values={'is_super_admin': True},
                metadata={'affected_user_email': user.email, 'source': 'command'},
            )
        self.stdout.write(self.style.SUCCESS(f'✓ {user.email} is now a super admin'))
