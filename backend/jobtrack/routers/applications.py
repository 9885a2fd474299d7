"""Applications API: list, detail, re-infer, manual status override, merge."""
from fastapi import APIRouter, Depends, HTTPException, Query

from ..domain import ApplicationRecord
from ..schemas import (
    ApplicationDetail,
    ApplicationOut,
    EventOut,
    MergeIn,
    MergeOut,
    OverrideIn,
    OverrideOut,
    PaginatedApplications,
    ReinferOut,
)
from ..services.pipeline import IngestionPipeline
from ..services.store import AsyncSqlAlchemyStore
from .messages import get_store

router = APIRouter(prefix="/api", tags=["applications"])


async def _application_or_404(store: AsyncSqlAlchemyStore, application_id: int) -> ApplicationRecord:
    application = await store.get_application(application_id)
    if application is None:
        raise HTTPException(status_code=404, detail="Application not found")
    return application


@router.get("/users/{user_id}/applications", response_model=PaginatedApplications)
async def list_applications(
    user_id: int,
    include_archived: bool = False,
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    store: AsyncSqlAlchemyStore = Depends(get_store),
):
    items = await store.list_applications(user_id, include_archived=include_archived, limit=limit, offset=offset)
    return PaginatedApplications(
        items=[ApplicationOut.model_validate(a) for a in items],
        offset=offset,
        limit=limit,
    )


@router.get("/applications/{application_id}", response_model=ApplicationDetail)
async def get_application(application_id: int, store: AsyncSqlAlchemyStore = Depends(get_store)):
    application = await _application_or_404(store, application_id)
    events = await store.list_events(application.id)
    return ApplicationDetail(
        **ApplicationOut.model_validate(application).model_dump(),
        events=[EventOut.model_validate(e) for e in events],
    )


@router.post("/applications/{application_id}/reinfer", response_model=ReinferOut)
async def reinfer_application(application_id: int, store: AsyncSqlAlchemyStore = Depends(get_store)):
    application = await _application_or_404(store, application_id)
    result = await IngestionPipeline(store, application.user_id).reinfer_application(application.id)
    return ReinferOut.model_validate(result)


@router.post("/applications/{application_id}/override", response_model=OverrideOut)
async def override_status(
    application_id: int,
    body: OverrideIn,
    store: AsyncSqlAlchemyStore = Depends(get_store),
):
    """Set the status manually; inference leaves it alone until the override is cleared."""
    application = await _application_or_404(store, application_id)
    if application.archived:
        raise HTTPException(status_code=400, detail="Cannot override an archived application")
    pipeline = IngestionPipeline(store, application.user_id)
    result = await pipeline.override_status(application.id, body.status, body.explanation)
    if result.status != "ok":
        raise HTTPException(status_code=404, detail="Application not found")
    return OverrideOut(application=ApplicationOut.model_validate(result.application))


@router.delete("/applications/{application_id}/override", response_model=OverrideOut)
async def clear_override(application_id: int, store: AsyncSqlAlchemyStore = Depends(get_store)):
    application = await _application_or_404(store, application_id)
    if not application.user_override:
        raise HTTPException(status_code=400, detail="Application has no status override")
    pipeline = IngestionPipeline(store, application.user_id)
    result, inference = await pipeline.clear_override(application.id)
    if result.status != "ok":
        raise HTTPException(status_code=404, detail="Application not found")
    refreshed = await store.get_application(application.id)
    return OverrideOut(
        application=ApplicationOut.model_validate(refreshed),
        inference=ReinferOut.model_validate(inference) if inference else None,
    )


@router.post("/users/{user_id}/applications/merge", response_model=MergeOut)
async def merge_applications(
    user_id: int,
    body: MergeIn,
    store: AsyncSqlAlchemyStore = Depends(get_store),
):
    """Move every event of source_id onto target_id and archive the source."""
    result, inference = await IngestionPipeline(store, user_id).merge(body.source_id, body.target_id)
    if result.status == "invalid":
        raise HTTPException(status_code=400, detail="Cannot merge an application into itself")
    if result.status == "not_found":
        raise HTTPException(status_code=404, detail="Application not found")
    return MergeOut(
        status=result.status,
        source_id=result.source_id,
        target_id=result.target_id,
        moved_events=result.moved_events,
        inference=ReinferOut.model_validate(inference) if inference else None,
    )
