import logging

import redis
from celery import Celery

from interlink.core.config import settings

logger = logging.getLogger(__name__)


def get_celery_app() -> Celery:
    broker_url = settings.REDIS_URL or "memory://"

    app = Celery(
        "interlink_tasks",
        broker=broker_url,
        backend=settings.REDIS_URL or "cache+memory://",
        include=["interlink.tasks"],
    )

    app.conf.update(
        result_expires=86400, # 24 hours
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        # Don't ack until the task finishes; a lost worker re-queues the task
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        broker_transport_options={"visibility_timeout": 600},
        # Periodic Scheduler tick. Each run is stateless; the Job Store carries all state.
        beat_schedule={
            "scheduler-tick": {
                "task": "interlink.tasks.run_scheduler_tick",
                "schedule": float(settings.SCHEDULER_INTERVAL_SECONDS),
            },
        },
    )

    # Without a reachable Redis we run tasks inline (task_always_eager) so the
    # API keeps working in development.
    redis_ok = False
    if settings.REDIS_URL:
        try:
            redis.from_url(settings.REDIS_URL, socket_connect_timeout=1).ping()
            redis_ok = True
            logger.info(f"[Celery] Connected to Redis at {settings.REDIS_URL}")
        except redis.RedisError as e:
            logger.warning(f"[Celery] Redis not available ({e}). Running in SYNC mode (task_always_eager=True).")
    if not redis_ok:
        app.conf.update(
            task_always_eager=True,
            task_eager_propagates=True
        )

    return app

celery_app = get_celery_app()
