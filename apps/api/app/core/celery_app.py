from __future__ import annotations

from typing import Any

from celery import Celery
from celery.signals import worker_process_init

from app.core.config import get_settings

settings = get_settings()

celery_app = Celery("crm_api", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.update(task_serializer="json", accept_content=["json"], task_ignore_result=True)


@worker_process_init.connect
def _configure_worker(**_: Any) -> None:
    from app.logging import configure_logging
    from app.platform.activity.sinks import configure_audit_sink

    configure_logging()
    configure_audit_sink(settings.activity_sink, settings.app_env)


@celery_app.task(name="crm.activity.record")
def record_activity_task(payload: dict[str, Any]) -> None:
    """Persist one serialized activity entry off the request path."""
    from app.context import correlation_scope
    from app.platform.activity.entries import ActivityEntry
    from app.platform.activity.service import activity_recorder

    entry = ActivityEntry.from_dict(payload)
    # Worker log lines join the originating request's trail.
    with correlation_scope(entry.correlation_id):
        activity_recorder.record(entry)
