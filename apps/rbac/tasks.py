"""
Celery tasks for access management notifications.
"""
import logging

from celery import shared_task
from django.conf import settings

from apps.core.services.email_service import EmailServiceError, send_invitation_email as deliver_invitation
from apps.core.tasks import LoggedTask

logger = logging.getLogger(__name__)


def invitation_url(token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}{settings.INVITATION_ACCEPT_PATH}?token={token}"


@shared_task(bind=True, base=LoggedTask, max_retries=3, default_retry_delay=60)
def send_invitation_email(self, invitation_id: str):
    """
    Email an invitation link to the invitee.

    Skips invitations that are no longer valid by the time the task runs;
    retries on mail backend failures.

    Returns:
        dict: Delivery status
    """
    from apps.rbac.models import UserInvitation

    invitation = UserInvitation.objects.select_related('invited_by').filter(pk=invitation_id).first()
    if invitation is None:
        logger.warning("Invitation not found for email dispatch", extra={'invitation_id': invitation_id})
        return {'status': 'missing', 'invitation_id': invitation_id}

    if not invitation.is_valid():
        logger.info(
            f"Skipping email for {invitation.status} invitation",
            extra={'invitation_id': invitation_id}
        )
        return {'status': 'skipped', 'invitation_id': invitation_id}

    inviter = invitation.invited_by
    try:
        deliver_invitation(
            invitee_email=invitation.email,
            inviter_name=inviter.get_full_name() if inviter else settings.PLATFORM_NAME,
            invitation_url=invitation_url(invitation.token),
            expires_at=invitation.expires_at.strftime('%Y-%m-%d %H:%M %Z'),
            message=invitation.message,
            role_name=invitation.initial_role,
        )
    except EmailServiceError as exc:
        raise self.retry(exc=exc)

    return {'status': 'sent', 'invitation_id': invitation_id}
