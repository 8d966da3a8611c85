"""
Celery application: broker and result backend from settings.
Tasks are in academy_gate.workers.tasks (expiry notices, guild reconciliation).
"""
from datetime import timedelta

from celery import Celery
from celery.signals import setup_logging

from academy_gate.core.config import settings
from academy_gate.core.logging import configure_logging

celery_app = Celery(
    "academy_gate",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "academy_gate.workers.tasks.membership",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=300,
    result_expires=86400,
    task_always_eager=settings.celery_task_always_eager,
    beat_schedule={
        "sync-guild-presence": {
            "task": "academy_gate.workers.tasks.membership.sync_linked_members",
            "schedule": timedelta(minutes=settings.guild_presence_sync_minutes),
        },
    },
)


@setup_logging.connect
def _configure_worker_logging(**_) -> None:
    configure_logging()
