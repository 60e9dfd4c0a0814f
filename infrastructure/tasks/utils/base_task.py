"""Common base task for Celery jobs"""
from __future__ import annotations

from celery import Task
from core.logging_config import get_logger

logger = get_logger(__name__)


class BaseTask(Task):
    """Unified task lifecycle logging keyed by the payment session id."""

    @staticmethod
    def _correlation_id(args, kwargs):
        if kwargs and kwargs.get("correlation_id"):
            return kwargs["correlation_id"]
        return args[0] if args else None

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            correlation_id=self._correlation_id(args, kwargs),
            exc=str(exc),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "celery_task_retry",
            task_id=task_id,
            task_name=self.name,
            correlation_id=self._correlation_id(args, kwargs),
            exc=str(exc),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info(
            "celery_task_success",
            task_id=task_id,
            task_name=self.name,
            correlation_id=self._correlation_id(args, kwargs),
        )
        super().on_success(retval, task_id, args, kwargs)
