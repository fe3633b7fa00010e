from celery import Celery
from kombu import Queue

from app.platform.config import settings


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Queue Structure:
    - scan.accessibility: one task per submitted scan (browser + both engines)

    A scan task owns its browser for its whole lifetime, so workers should run
    with low concurrency and prefetch of 1.
    """
    celery_app = Celery(
        "a11y_scan_service",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
    )

    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer=settings.CELERY_RESULT_SERIALIZER,
        accept_content=[settings.CELERY_ACCEPT_CONTENT],
        timezone="UTC",
        enable_utc=True,
        task_track_started=settings.CELERY_TASK_TRACK_STARTED,
        task_time_limit=settings.CELERY_TASK_TIME_LIMIT,
        task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,

        result_expires=3600,

        task_routes={
            "app.features.scan.workers.tasks.run_accessibility_scan": {"queue": "scan.accessibility"},
        },
        task_queues=(
            Queue("default"),
            Queue("scan.accessibility"),
        ),
        task_default_queue="default",

        worker_prefetch_multiplier=1,

        # A scan writes its own terminal status; never redeliver a half-run scan
        task_acks_late=False,
    )

    celery_app.autodiscover_tasks(["app.features.scan.workers"])

    return celery_app


celery_app = create_celery_app()
