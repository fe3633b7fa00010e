"""Celery workers module - imports task modules for autodiscovery."""

from app.features.scan.workers import tasks  # noqa: F401
