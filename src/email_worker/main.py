"""Celery application for the cart recovery worker."""

from datetime import timedelta

import structlog
from celery import Celery
from celery.signals import worker_ready

from cart_recovery_service.config import get_settings
from cart_recovery_service.log_config import configure_logging

settings = get_settings()
configure_logging(settings)

logger = structlog.get_logger()

PROCESS_TASK = "email_worker.tasks.cart_abandonment.process_abandoned_carts"

# Create Celery app
app = Celery(
    "email_worker",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=[
        "email_worker.tasks.cart_abandonment",
    ],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    task_soft_time_limit=240,  # 4 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue="email",
    task_routes={
        "email_worker.tasks.*": {"queue": "email"},
    },
)

# Beat schedule for periodic tasks
app.conf.beat_schedule = {
    "process-abandoned-carts": {
        "task": PROCESS_TASK,
        "schedule": timedelta(minutes=max(1, settings.scheduler_interval_minutes)),
    },
}


@worker_ready.connect
def schedule_first_run(sender=None, **kwargs) -> None:
    """Queue a delayed first pass so a fresh deploy settles before carts are swept."""
    delay_minutes = settings.scheduler_start_delay_minutes
    app.send_task(PROCESS_TASK, countdown=delay_minutes * 60)
    logger.info("First abandoned cart run queued", delay_minutes=delay_minutes)


def run() -> None:
    """Run the Celery worker with an embedded beat scheduler."""
    app.worker_main(["worker", "--beat", "--loglevel=info", "-Q", "email"])


if __name__ == "__main__":
    run()
