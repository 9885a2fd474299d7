"""Celery tasks: batch ingestion and re-inference. DB session per task; retried on transient store errors."""
import asyncio
import logging
from typing import Any

from celery import shared_task

from .database import SessionLocal
from .schemas import MessageIn, summarize_process_result
from .services.pipeline import IngestionPipeline
from .services.store import SqlAlchemyStore, TransientStoreError

logger = logging.getLogger(__name__)

MAX_RETRIES = 5


def _retry_countdown(retries: int) -> int:
    return min(2 ** retries, 60)


@shared_task(bind=True, name="jobtrack.tasks.process_messages", max_retries=MAX_RETRIES)
def process_messages(self, user_id: int, messages: list[dict[str, Any]]):
    """
    Run the ingestion pipeline over a batch of messages for one user.
    messages: MessageIn-shaped dicts (id, sender, subject, snippet, body_text, received_at).
    """
    inbound = [MessageIn.model_validate(m).to_message() for m in messages]
    db = SessionLocal()
    try:
        pipeline = IngestionPipeline(SqlAlchemyStore(db), user_id)
        results = asyncio.run(pipeline.process_messages(inbound))
    except TransientStoreError as e:
        logger.warning(f"Transient store error for user {user_id} (attempt {self.request.retries + 1}): {e}")
        raise self.retry(exc=e, countdown=_retry_countdown(self.request.retries))
    finally:
        db.close()
    logger.info(f"Processed {len(results)}/{len(inbound)} messages for user {user_id}")
    return {
        "user_id": user_id,
        "received": len(inbound),
        "processed": len(results),
        "results": [summarize_process_result(r) for r in results],
    }


@shared_task(bind=True, name="jobtrack.tasks.reinfer_application", max_retries=MAX_RETRIES)
def reinfer_application(self, user_id: int, application_id: int):
    db = SessionLocal()
    try:
        pipeline = IngestionPipeline(SqlAlchemyStore(db), user_id)
        result = asyncio.run(pipeline.reinfer_application(application_id))
    except TransientStoreError as e:
        logger.warning(f"Transient store error re-inferring application {application_id}: {e}")
        raise self.retry(exc=e, countdown=_retry_countdown(self.request.retries))
    finally:
        db.close()
    return {
        "status": result.status,
        "application_id": result.application_id,
        "inferred_status": result.inferred_status.value if result.inferred_status else None,
        "applied": result.applied,
        "suggested": result.suggested,
        "blocked": result.blocked.value if result.blocked else None,
    }
