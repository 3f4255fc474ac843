"""
Audit trail for permission-affecting events.

``record`` is always called inside the transaction of the mutation it
describes; any failure propagates so the mutation rolls back with it.
"""
import csv
import logging
import uuid
from datetime import date, timedelta
from itertools import islice
from typing import Optional, Dict, Any, Iterable, Iterator

from django.conf import settings
from django.core.paginator import Paginator
from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone
from django.utils.dateparse import parse_date

from apps.core.exceptions import ValidationError
from apps.core.middleware.request_tracking import get_client_ip
from apps.rbac.models import PermissionAuditLog, User, content_type_for

logger = logging.getLogger(__name__)

EXPORT_CHUNK_SIZE = 1000


CSV_COLUMNS = [
    'Date',
    'Time',
    'Event Type',
    'Action',
    'Description',
    'User',
    'Impersonator',
    'IP Address',
    'Entity Type',
    'Entity ID',
]


class _Echo:
    """Pseudo-buffer whose write returns the value, for streaming csv.writer output."""

    def write(self, value):
        return value


def _user_label(user_id, users_by_id):
    user = users_by_id.get(user_id)
    if user is None:
        return ''
    return user.name or user.email


def _entity_type(entry):
    if not entry.auditable_type_id:
        return ''
    model = entry.auditable_type.model_class()
    return model.__name__ if model is not None else entry.auditable_type.model


class AuditService:
    """
    Append-only audit trail with query, export and bounded cleanup.
    """

    @classmethod
    def record(
        cls,
        event_type: str,
        actor: Optional[User] = None,
        affected_user: Optional[User] = None,
        auditable=None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        request=None,
        event_action: Optional[str] = None,
    ) -> PermissionAuditLog:
        """
        Append one immutable audit row.

        The timestamp is assigned here; IP address, user agent, request id
        and impersonator are taken from ``request`` when one is given.
        """
        if actor is not None and not getattr(actor, 'is_authenticated', False):
            actor = None

        entry = PermissionAuditLog(
            event_type=event_type,
            event_action=event_action or event_type.rsplit('.', 1)[-1],
            actor=actor,
            affected_user=affected_user,
            old_values=old_values or {},
            new_values=new_values or {},
            metadata=metadata or {},
            created_at=timezone.now(),
        )

        if auditable is not None:
            entry.auditable_type = content_type_for(auditable)
            entry.auditable_id = str(auditable.pk)

        if request is not None:
            entry.ip_address = get_client_ip(request)
            entry.user_agent = request.META.get('HTTP_USER_AGENT', '')
            entry.request_id = getattr(request, 'request_id', None) or ''
            session = getattr(request, 'session', None)
            if session is not None:
                entry.impersonator_id = session.get('impersonator_id')

        entry.save()

        logger.info(
            f"Audit event recorded: {event_type}",
            extra={
                'audit_id': entry.pk,
                'event_type': event_type,
                'actor_id': str(actor.pk) if actor else None,
                'affected_user_id': str(affected_user.pk) if affected_user else None,
                'request_id': entry.request_id or None,
            }
        )
        return entry

    @staticmethod
    def _parse_day(value, field):
        if value in (None, ''):
            return None
        if isinstance(value, date):
            return value
        parsed = parse_date(str(value))
        if parsed is None:
            raise ValidationError(f"Invalid date for {field}: {value}", {field: ['Use YYYY-MM-DD']})
        return parsed

    @staticmethod
    def _parse_uuid(value, field):
        try:
            return uuid.UUID(str(value))
        except ValueError:
            raise ValidationError(f"Invalid id for {field}: {value}", {field: ['Must be a UUID']})

    @classmethod
    def filtered(cls, filters: Optional[Dict[str, Any]] = None):
        """
        Build the newest-first queryset for ``filters``.

        Supported keys: ``search``, ``event_type``, ``user_id`` (actor),
        ``affected_user_id``, ``date_from`` and ``date_to`` (whole days,
        inclusive).
        """
        filters = filters or {}
        qs = PermissionAuditLog.objects.all()

        search = filters.get('search')
        if search:
            matching_users = User.objects_with_deleted.filter(
                Q(name__icontains=search) | Q(email__icontains=search)
            ).values('pk')
            qs = qs.filter(
                Q(event_type__icontains=search) |
                Q(event_action__icontains=search) |
                Q(actor_id__in=matching_users) |
                Q(affected_user_id__in=matching_users) |
                Q(metadata__icontains=search)
            )

        if filters.get('event_type'):
            qs = qs.filter(event_type=filters['event_type'])

        if filters.get('user_id'):
            qs = qs.filter(actor_id=cls._parse_uuid(filters['user_id'], 'user_id'))

        if filters.get('affected_user_id'):
            qs = qs.filter(affected_user_id=cls._parse_uuid(filters['affected_user_id'], 'affected_user_id'))

        date_from = cls._parse_day(filters.get('date_from'), 'date_from')
        date_to = cls._parse_day(filters.get('date_to'), 'date_to')
        if date_from and date_to and date_from > date_to:
            raise ValidationError('date_from must not be after date_to', {'date_from': ['After date_to']})
        if date_from:
            qs = qs.filter(created_at__date__gte=date_from)
        if date_to:
            qs = qs.filter(created_at__date__lte=date_to)

        return qs.order_by('-created_at', '-id')

    @classmethod
    def query(cls, filters: Optional[Dict[str, Any]] = None, page: int = 1, page_size: Optional[int] = None):
        """Return one page of matching rows, newest first."""
        page_size = page_size or settings.AUDIT_LOG_PAGE_SIZE
        paginator = Paginator(
            cls.filtered(filters).select_related('actor', 'affected_user', 'impersonator', 'auditable_type'),
            page_size,
        )
        return paginator.get_page(page)

    @classmethod
    def history_for_user(cls, user: User, page: int = 1, page_size: int = 20):
        """Permission and role events affecting one user."""
        qs = PermissionAuditLog.objects.filter(affected_user=user).permission_events()
        return Paginator(qs.select_related('actor').order_by('-created_at', '-id'), page_size).get_page(page)

    @classmethod
    def export_rows(cls, filters: Optional[Dict[str, Any]] = None) -> Iterator[list]:
        """
        Yield the CSV header and then one row per matching entry.

        Not paginated: every matching row is exported. Rows are read in
        chunks of ``EXPORT_CHUNK_SIZE`` and user labels are looked up one
        chunk at a time.
        """
        yield list(CSV_COLUMNS)

        entries = cls.filtered(filters).select_related('auditable_type').iterator(chunk_size=EXPORT_CHUNK_SIZE)
        while True:
            chunk = list(islice(entries, EXPORT_CHUNK_SIZE))
            if not chunk:
                break

            user_ids = {entry.actor_id for entry in chunk} | {entry.impersonator_id for entry in chunk}
            user_ids.discard(None)
            users_by_id = User.objects_with_deleted.in_bulk(list(user_ids)) if user_ids else {}

            for entry in chunk:
                created = timezone.localtime(entry.created_at)
                yield [
                    created.strftime('%Y-%m-%d'),
                    created.strftime('%H:%M:%S'),
                    entry.event_type,
                    entry.event_action,
                    entry.description,
                    _user_label(entry.actor_id, users_by_id),
                    _user_label(entry.impersonator_id, users_by_id),
                    entry.ip_address or '',
                    _entity_type(entry),
                    entry.auditable_id or '',
                ]

    @classmethod
    def export_csv(cls, filters: Optional[Dict[str, Any]] = None) -> Iterable[str]:
        """CSV lines for ``StreamingHttpResponse``."""
        writer = csv.writer(_Echo())
        return (writer.writerow(row) for row in cls.export_rows(filters))

    @classmethod
    def export_filename(cls):
        return f"audit-logs-{timezone.now():%Y-%m-%d-%H-%M-%S}.csv"

    @classmethod
    def cleanup(cls, keep_days: int, actor: Optional[User] = None, request=None) -> int:
        """
        Delete rows older than ``keep_days`` days and return how many went.

        ``keep_days`` must lie within the configured bounds; rows younger
        than the cutoff are never touched.
        """
        minimum = settings.AUDIT_LOG_KEEP_DAYS_MIN
        maximum = settings.AUDIT_LOG_KEEP_DAYS_MAX
        try:
            keep_days = int(keep_days)
        except (TypeError, ValueError):
            raise ValidationError('keep_days must be an integer', {'keep_days': ['Must be an integer']})
        if keep_days < minimum or keep_days > maximum:
            raise ValidationError(
                f"keep_days must be between {minimum} and {maximum}",
                {'keep_days': [f'Must be between {minimum} and {maximum}']}
            )

        cutoff = timezone.now() - timedelta(days=keep_days)

        with transaction.atomic():
            deleted, _ = PermissionAuditLog.objects.all()._purge_older_than(cutoff)
            cls.record(
                'audit.cleanup',
                actor=actor,
                metadata={
                    'keep_days': keep_days,
                    'cutoff': cutoff.isoformat(),
                    'deleted_count': deleted,
                },
                request=request,
            )

        logger.info(
            f"Audit log cleanup removed {deleted} entries",
            extra={'keep_days': keep_days, 'deleted_count': deleted}
        )
        return deleted

    @classmethod
    def statistics(cls, days: int = 30) -> Dict[str, Any]:
        start = timezone.now() - timedelta(days=days)
        qs = PermissionAuditLog.objects.filter(created_at__gte=start)

        top = list(
            qs.exclude(actor__isnull=True)
            .values('actor_id')
            .annotate(count=Count('id'))
            .order_by('-count')[:5]
        )
        users_by_id = User.objects_with_deleted.in_bulk([row['actor_id'] for row in top])

        return {
            'days': days,
            'total_events': qs.count(),
            'user_changes': qs.filter(event_type__startswith='user.').count(),
            'permission_changes': qs.filter(
                Q(event_type__startswith='permission.') | Q(event_type__startswith='permissions.')
            ).count(),
            'role_changes': qs.filter(event_type__startswith='role.').count(),
            'invitation_events': qs.filter(event_type__startswith='invitation.').count(),
            'top_users': [
                {
                    'user_id': str(row['actor_id']),
                    'name': _user_label(row['actor_id'], users_by_id),
                    'count': row['count'],
                }
                for row in top
            ],
        }
