"""Celery app for background message ingestion. Uses Redis; DB session per task."""
import logging

from celery import Celery
from celery.signals import after_setup_logger

from .config import settings

celery_app = Celery(
    "jobtrack",
    broker=settings.celery_broker,
    backend=settings.redis_url,
    include=["jobtrack.tasks"],
)
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)


@after_setup_logger.connect
def _configure_logging(logger, **kwargs):
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
