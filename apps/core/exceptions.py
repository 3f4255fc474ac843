"""
Domain exceptions and the DRF exception handler.

Every domain error carries an HTTP ``status_code`` and a stable ``code``;
``custom_exception_handler`` renders them into one response shape:
``{'error', 'code', 'details', 'request_id'}``.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django_ratelimit.exceptions import Ratelimited
from django.http import JsonResponse

from apps.core.logging import SecurityLogger

logger = logging.getLogger(__name__)

RATE_LIMIT_RETRY_AFTER = 60


class AccessCoreError(Exception):
    """Base exception for access-control errors."""

    status_code = 400
    code = 'ERROR'

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AccessCoreError):
    """Malformed input; rejected before any mutation."""
    status_code = 400
    code = 'VALIDATION_ERROR'


class AuthorizationError(AccessCoreError):
    """The actor may not perform the requested action."""
    status_code = 403
    code = 'FORBIDDEN'


class NotFoundError(AccessCoreError):
    status_code = 404
    code = 'NOT_FOUND'


class InvariantViolation(AccessCoreError):
    """The operation would leave the system without an administrator."""
    status_code = 409
    code = 'INVARIANT_VIOLATION'


class InvitationStateError(AccessCoreError):
    """The invitation is expired, revoked or already accepted."""
    status_code = 410
    code = 'INVITATION_INVALID'


class PermissionGrantRejected(AccessCoreError):
    """
    A single permission in a grant/revoke batch was refused.

    Batch operations report these per name instead of raising; the class
    exists so single-item callers get the same status and code.
    """
    status_code = 422
    code = 'GRANT_REJECTED'

    def __init__(self, permission_name, reason):
        self.permission_name = permission_name
        super().__init__(reason, {'permission': permission_name})


class ImmutableAuditLogError(AccessCoreError):
    """Raised on any attempt to update or delete an audit row outside cleanup."""
    status_code = 405
    code = 'AUDIT_IMMUTABLE'


def ratelimit_view(request, exception):
    """
    View for django-ratelimit to return 429 instead of 403.
    """
    from apps.core.middleware.request_tracking import get_client_ip

    ip_address = get_client_ip(request) or 'unknown'
    SecurityLogger.log_rate_limit_exceeded(endpoint=request.path, ip_address=ip_address)

    response = JsonResponse(
        {
            'error': 'Rate limit exceeded. Please try again later.',
            'code': 'RATE_LIMIT_EXCEEDED',
            'request_id': getattr(request, 'request_id', None),
            'retry_after': RATE_LIMIT_RETRY_AFTER,
        },
        status=429
    )
    response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
    return response


def custom_exception_handler(exc, context):
    """
    Exception handler that logs errors and returns a consistent format.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None
    log_extra = {
        'exception': str(exc),
        'request_id': request_id,
        'path': request.path if request else None,
        'method': request.method if request else None,
        'view': context['view'].__class__.__name__ if context.get('view') else None,
    }

    if isinstance(exc, Ratelimited):
        ip_address = request.META.get('REMOTE_ADDR', 'unknown') if request else 'unknown'
        SecurityLogger.log_rate_limit_exceeded(
            endpoint=request.path if request else 'unknown',
            ip_address=ip_address,
        )
        response = Response(
            {
                'error': 'Rate limit exceeded. Please try again later.',
                'code': 'RATE_LIMIT_EXCEEDED',
                'request_id': request_id,
                'retry_after': RATE_LIMIT_RETRY_AFTER,
            },
            status=status.HTTP_429_TOO_MANY_REQUESTS
        )
        response['Retry-After'] = str(RATE_LIMIT_RETRY_AFTER)
        return response

    if isinstance(exc, AccessCoreError):
        log_method = logger.error if exc.status_code >= 500 else logger.warning
        log_method(f"API error: {exc.__class__.__name__}: {exc.message}", extra=log_extra)
        return Response(
            {
                'error': exc.message,
                'code': exc.code,
                'details': exc.details,
                'request_id': request_id,
            },
            status=exc.status_code
        )

    response = exception_handler(exc, context)

    if response is None:
        logger.error(f"API Exception: {exc.__class__.__name__}", extra=log_extra, exc_info=True)
        return Response(
            {
                'error': 'Internal server error',
                'code': 'INTERNAL_ERROR',
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    logger.warning(f"API Exception: {exc.__class__.__name__}", extra=log_extra)

    if isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
