"""
Management command to delete audit log entries past retention.

Intended for cron; the same bounds as the API apply to ``--keep-days``.
"""
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from apps.core.exceptions import ValidationError
from apps.rbac.services.audit_service import AuditService


class Command(BaseCommand):
    help = 'Delete permission audit log entries older than --keep-days days'

    def add_arguments(self, parser):
        parser.add_argument(
            '--keep-days',
            type=int,
            default=365,
            help=(
                f'Days of history to keep '
                f'({settings.AUDIT_LOG_KEEP_DAYS_MIN}-{settings.AUDIT_LOG_KEEP_DAYS_MAX})'
            ),
        )

    def handle(self, *args, **options):
        try:
            deleted = AuditService.cleanup(options['keep_days'])
        except ValidationError as exc:
            raise CommandError(exc.message)

        self.stdout.write(self.style.SUCCESS(f'✓ Removed {deleted} audit log entries'))
