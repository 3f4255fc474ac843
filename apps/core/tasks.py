"""
Base Celery task class with logging.
"""
import logging

from celery import Task

logger = logging.getLogger(__name__)


class LoggedTask(Task):
    """
    Base task class with enhanced logging.

    This task class automatically:
    - Logs task start with parameters
    - Logs task completion with result summary
    - Logs task failures with error details
    - Logs retry attempts with reason
    """

    def __call__(self, *args, **kwargs):
        task_id = self.request.id
        task_name = self.name

        logger.info(
            f"Task started: {task_name}",
            extra={
                'task_id': task_id,
                'task_name': task_name,
                'args': self._sanitize_args(args),
                'kwargs': self._sanitize_kwargs(kwargs),
            }
        )

        try:
            result = super().__call__(*args, **kwargs)
        except Exception as exc:
            logger.error(
                f"Task failed: {task_name}",
                extra={
                    'task_id': task_id,
                    'task_name': task_name,
                    'exception': str(exc),
                    'args': self._sanitize_args(args),
                    'kwargs': self._sanitize_kwargs(kwargs),
                },
                exc_info=True
            )
            raise

        logger.info(
            f"Task completed: {task_name}",
            extra={
                'task_id': task_id,
                'task_name': task_name,
                'result': self._sanitize_result(result),
            }
        )
        return result

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.warning(
            f"Task retry: {self.name} (attempt {self.request.retries}/{self.max_retries})",
            extra={
                'task_id': task_id,
                'task_name': self.name,
                'retry_count': self.request.retries,
                'max_retries': self.max_retries,
                'exception': str(exc),
            }
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def _sanitize_args(self, args):
        if not args:
            return []

        sanitized = list(args)
        if len(sanitized) > 10:
            sanitized = sanitized[:10] + ['... (truncated)']
        return sanitized

    def _sanitize_kwargs(self, kwargs):
        """
        Mask values whose key looks sensitive.
        """
        if not kwargs:
            return {}

        sensitive_keys = {'password', 'token', 'secret', 'email'}
        return {
            key: '********' if any(s in key.lower() for s in sensitive_keys) else value
            for key, value in kwargs.items()
        }

    def _sanitize_result(self, result):
        if result is None:
            return None

        result_str = str(result)
        if len(result_str) > 200:
            return result_str[:200] + '... (truncated)'
        return result_str
