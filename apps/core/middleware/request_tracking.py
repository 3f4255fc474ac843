"""
Request ID tracking middleware.

Every request gets a request id that is echoed back in ``X-Request-ID``
and stamped onto audit rows written while serving it.
"""
import uuid
import logging
import time
from typing import Optional
from django.utils.deprecation import MiddlewareMixin
from django.http import HttpRequest, HttpResponse

from apps.core.logging import PIIMasker


def get_client_ip(request: HttpRequest) -> Optional[str]:
    """
    Get client IP address from request headers.

    The first hop of ``X-Forwarded-For`` wins, then ``X-Real-IP``,
    then ``REMOTE_ADDR``.
    """
    if request is None:
        return None

    forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()

    real_ip = request.META.get('HTTP_X_REAL_IP')
    if real_ip:
        return real_ip

    return request.META.get('REMOTE_ADDR')


class RequestTrackingMiddleware(MiddlewareMixin):
    """
    Middleware to track request IDs and log request lifecycle.
    """

    def __init__(self, get_response=None):
        super().__init__(get_response)
        self.logger = logging.getLogger('apps.core.request_tracking')

    def process_request(self, request: HttpRequest) -> Optional[HttpResponse]:
        request.request_id = request.META.get('HTTP_X_REQUEST_ID') or uuid.uuid4().hex
        request.start_time = time.time()

        self.logger.info(
            f"Request started: {request.method} {request.path}",
            extra={
                'request_id': request.request_id,
                'method': request.method,
                'path': request.path,
                'ip_address': get_client_ip(request),
                'user_agent': PIIMasker.mask_text(request.META.get('HTTP_USER_AGENT', '')),
                'event_type': 'request_start',
            }
        )
        return None

    def process_response(self, request: HttpRequest, response: HttpResponse) -> HttpResponse:
        duration = time.time() - getattr(request, 'start_time', time.time())

        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id

        status_code = response.status_code
        if status_code >= 500:
            log_method = self.logger.error
        elif status_code >= 400:
            log_method = self.logger.warning
        else:
            log_method = self.logger.info

        log_method(
            f"Request completed: {request.method} {request.path} - {status_code} in {duration:.3f}s",
            extra={
                'request_id': getattr(request, 'request_id', None),
                'method': request.method,
                'path': request.path,
                'status_code': status_code,
                'duration_ms': round(duration * 1000, 2),
                'event_type': 'request_completion',
            }
        )
        return response

    def process_exception(self, request: HttpRequest, exception: Exception) -> Optional[HttpResponse]:
        duration = time.time() - getattr(request, 'start_time', time.time())

        self.logger.error(
            f"Request failed: {request.method} {request.path} - {type(exception).__name__}",
            extra={
                'request_id': getattr(request, 'request_id', None),
                'method': request.method,
                'path': request.path,
                'duration_ms': round(duration * 1000, 2),
                'exception_type': type(exception).__name__,
                'exception_message': PIIMasker.mask_text(str(exception)),
                'event_type': 'request_exception',
            },
            exc_info=exception
        )
        return None
