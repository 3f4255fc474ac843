"""
Platform email service on top of Django's mail backend.
"""
import logging
from typing import List, Optional

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.utils.html import strip_tags

logger = logging.getLogger(__name__)


class EmailServiceError(Exception):
    """Raised when an email cannot be handed to the mail backend."""
    pass


class EmailService:
    """
    Sends plain-text (optionally HTML) email through the configured
    ``EMAIL_BACKEND``.
    """

    @classmethod
    def send_email(
        cls,
        to_emails: List[str],
        subject: str,
        text_content: Optional[str] = None,
        html_content: Optional[str] = None,
        from_email: Optional[str] = None,
        reply_to: Optional[str] = None,
    ) -> bool:
        """
        Send an email.

        Args:
            to_emails: List of recipient email addresses
            subject: Email subject line
            text_content: Plain text body
            html_content: HTML body, also used to derive the text body
            from_email: Sender email (uses DEFAULT_FROM_EMAIL if not provided)
            reply_to: Reply-to email address

        Returns:
            True if the backend accepted the message

        Raises:
            EmailServiceError: If no content is given or the backend fails
        """
        if not html_content and not text_content:
            raise EmailServiceError("Either text_content or html_content must be provided")
        if html_content and not text_content:
            text_content = strip_tags(html_content)

        message = EmailMultiAlternatives(
            subject=subject,
            body=text_content,
            from_email=from_email or settings.DEFAULT_FROM_EMAIL,
            to=list(to_emails),
            reply_to=[reply_to] if reply_to else None,
        )
        if html_content:
            message.attach_alternative(html_content, 'text/html')

        try:
            sent = message.send(fail_silently=False)
        except Exception as e:
            logger.error(f"Failed to send email: {e}", extra={'subject': subject})
            raise EmailServiceError(f"Email sending failed: {e}") from e

        logger.info(f"Email sent: {subject}", extra={'recipients': len(to_emails)})
        return sent > 0


def send_invitation_email(
    invitee_email: str,
    inviter_name: str,
    invitation_url: str,
    expires_at: str,
    message: Optional[str] = None,
    role_name: Optional[str] = None,
) -> bool:
    """Send a platform invitation email."""
    lines = [
        f"{inviter_name} has invited you to join {settings.PLATFORM_NAME}.",
    ]
    if role_name:
        lines.append(f"You will be added with the role: {role_name}.")
    if message:
        lines.extend(['', message])
    lines.extend([
        '',
        f"Accept the invitation: {invitation_url}",
        f"This invitation expires on {expires_at}.",
    ])

    return EmailService.send_email(
        to_emails=[invitee_email],
        subject=f"You have been invited to {settings.PLATFORM_NAME}",
        text_content='\n'.join(lines),
    )
