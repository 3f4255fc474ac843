"""
Management command to seed canonical permissions.

Creates the global Permission records used by the access management API
and the system Administrator role holding all of them. This command is
idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from apps.rbac.abilities import CORE_PERMISSIONS
from apps.rbac.models import Permission, Role, RolePermission, administrator_role_name


class Command(BaseCommand):
    help = 'Seed canonical permissions and the Administrator role (idempotent)'

    def handle(self, *args, **options):
        """Create or update all canonical permissions."""

        created_count = 0
        updated_count = 0

        self.stdout.write('Seeding canonical permissions...\n')

        with transaction.atomic():
            for sort_order, (name, display_name, description) in enumerate(CORE_PERMISSIONS):
                permission = Permission.objects_with_deleted.filter(name=name).first()

                if permission is None:
                    Permission.objects.create(
                        name=name,
                        display_name=display_name,
                        description=description,
                        sort_order=sort_order,
                    )
                    created_count += 1
                    self.stdout.write(self.style.SUCCESS(f'✓ Created: {name}'))
                    continue

                changed = (
                    permission.display_name != display_name
                    or permission.description != description
                    or permission.is_deleted
                )
                if changed:
                    permission.display_name = display_name
                    permission.description = description
                    permission.deleted_at = None
                    permission.save()
                    updated_count += 1
                    self.stdout.write(self.style.WARNING(f'↻ Updated: {name}'))
                else:
                    self.stdout.write(self.style.HTTP_INFO(f'  Exists: {name}'))

            role, role_created = Role.objects.get_or_create(
                name=administrator_role_name(),
                defaults={
                    'description': 'Full access to every global permission',
                    'is_system': True,
                },
            )
            if not role.is_system:
                role.is_system = True
                role.save(update_fields=['is_system', 'updated_at'])

            held = set(role.role_permissions.values_list('permission_id', flat=True))
            missing = [
                RolePermission(role=role, permission=permission)
                for permission in Permission.objects.global_permissions()
                if permission.pk not in held
            ]
            RolePermission.objects.bulk_create(missing)

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {created_count} created, {updated_count} updated, '
                f'{len(CORE_PERMISSIONS) - created_count - updated_count} unchanged'
            )
        )
        verb = 'Created' if role_created else 'Updated'
        self.stdout.write(
            self.style.SUCCESS(f'✓ {verb} role {role.name}: {len(missing)} permission(s) attached')
        )
        self.stdout.write(f'\nTotal permissions: {Permission.objects.count()}')
