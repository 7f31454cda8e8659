"""Celery application configuration."""

import json
import logging
import sys
from datetime import datetime, timezone

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from stackdrift.config import get_settings

settings = get_settings()


class JsonFormatter(logging.Formatter):
    """One JSON object per log line, so log platforms can read levels and extras."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Attached by LoggingNotificationDispatcher
        notification = getattr(record, "notification", None)
        if notification is not None:
            log_data["notification"] = notification

        return json.dumps(log_data, default=str)


@setup_logging.connect
def configure_logging(**kwargs):
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)

    for name in ("celery", "stackdrift"):
        named_logger = logging.getLogger(name)
        named_logger.handlers.clear()
        named_logger.addHandler(handler)
        named_logger.setLevel(logging.INFO)
        named_logger.propagate = False


celery_app = Celery(
    "stackdrift",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["stackdrift.workers.tasks"],
)

celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task execution
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=1,  # One batch at a time; documents are processed sequentially
    worker_hijack_root_logger=False,
    worker_redirect_stdouts=True,
    worker_redirect_stdouts_level="INFO",
    # Result backend
    result_expires=3600,
    beat_schedule={
        "check-documents-for-changes": {
            "task": "stackdrift.workers.tasks.check_documents_for_changes",
            "schedule": crontab(minute=0, hour=settings.check_schedule_hour),
        },
    },
)
