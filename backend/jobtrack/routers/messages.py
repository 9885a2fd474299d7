"""Messages API: run the ingestion pipeline, enqueue batches, classify preview, triage list."""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..email_classifier import classify
from ..identity_extraction import extract_identity
from ..schemas import (
    BatchOut,
    ClassifyIn,
    ClassifyOut,
    EnqueueOut,
    EventOut,
    MessageBatchIn,
    MessageIn,
    ProcessOut,
)
from ..services.pipeline import IngestionPipeline
from ..services.store import AsyncSqlAlchemyStore

router = APIRouter(prefix="/api", tags=["messages"])


def get_store(db: AsyncSession = Depends(get_db)) -> AsyncSqlAlchemyStore:
    return AsyncSqlAlchemyStore(db)


@router.post("/users/{user_id}/messages", response_model=ProcessOut)
async def process_message(
    user_id: int,
    body: MessageIn,
    store: AsyncSqlAlchemyStore = Depends(get_store),
):
    """Classify, match and infer for one message; idempotent per message id."""
    pipeline = IngestionPipeline(store, user_id)
    result = await pipeline.process_message(body.to_message())
    return ProcessOut.model_validate(result)


@router.post("/users/{user_id}/messages/batch", response_model=BatchOut)
async def process_batch(
    user_id: int,
    body: MessageBatchIn,
    store: AsyncSqlAlchemyStore = Depends(get_store),
):
    pipeline = IngestionPipeline(store, user_id)
    results = await pipeline.process_messages([m.to_message() for m in body.messages])
    return BatchOut(
        received=len(body.messages),
        processed=len(results),
        results=[ProcessOut.model_validate(r) for r in results],
    )


@router.post("/users/{user_id}/messages/enqueue", response_model=EnqueueOut, status_code=202)
def enqueue_batch(user_id: int, body: MessageBatchIn):
    """Queue a batch for the Celery worker (requires Redis)."""
    from ..tasks import process_messages

    if not body.messages:
        raise HTTPException(status_code=400, detail="No messages to enqueue")
    task = process_messages.delay(user_id, [m.model_dump(mode="json") for m in body.messages])
    return EnqueueOut(task_id=task.id, queued=len(body.messages))


@router.post("/classify", response_model=ClassifyOut)
def classify_preview(body: ClassifyIn):
    """Stateless classification and identity preview; nothing is stored."""
    classification = classify(body.subject, body.snippet, body.sender)
    identity = None
    if classification.is_job_related:
        identity = extract_identity(body.subject, body.sender, body.snippet, body.body_text)
    return ClassifyOut.model_validate({"classification": classification, "identity": identity}, from_attributes=True)


@router.get("/users/{user_id}/events/unassigned", response_model=List[EventOut])
async def list_unassigned_events(
    user_id: int,
    limit: int = Query(100, ge=1, le=500),
    store: AsyncSqlAlchemyStore = Depends(get_store),
):
    """Job-related events with no application, with their reason codes."""
    events = await store.list_unassigned_events(user_id, limit=limit)
    return [EventOut.model_validate(e) for e in events]
