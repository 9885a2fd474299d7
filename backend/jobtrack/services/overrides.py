"""
Manual status overrides and application merges.

These issue store calls only; IngestionPipeline wraps them in the per-user
lock and a transaction and re-runs inference where the result depends on it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..domain import ApplicationRecord, ApplicationStatus, utcnow
from .store import ApplicationStore, maybe_await

logger = logging.getLogger(__name__)

STATUS_OVERRIDE = "STATUS_OVERRIDE"
CLEAR_OVERRIDE = "CLEAR_OVERRIDE"
MERGE_APPLICATIONS = "MERGE_APPLICATIONS"


@dataclass(frozen=True)
class OverrideResult:
    status: str  # ok, not_found
    application: Optional[ApplicationRecord] = None


@dataclass(frozen=True)
class MergeResult:
    status: str  # ok, invalid, not_found
    source_id: Optional[int] = None
    target_id: Optional[int] = None
    moved_events: int = 0
    error: Optional[str] = None


async def _owned_application(store: ApplicationStore, user_id: int, application_id: int) -> Optional[ApplicationRecord]:
    application = await maybe_await(store.get_application(application_id))
    if application is None or application.user_id != user_id:
        return None
    return application


async def apply_status_override(
    store: ApplicationStore,
    user_id: int,
    application_id: int,
    status: ApplicationStatus,
    explanation: Optional[str] = None,
) -> OverrideResult:
    application = await _owned_application(store, user_id, application_id)
    if application is None:
        return OverrideResult(status="not_found")

    status = ApplicationStatus(status)
    explanation = (explanation or "").strip() or "User override."
    previous = application.current_status
    updated = await maybe_await(
        store.update_application(
            application.id,
            {
                "current_status": status,
                "status_confidence": 1.0,
                "status_explanation": explanation,
                "status_source": "user",
                "suggested_status": None,
                "suggested_confidence": None,
                "suggested_explanation": None,
                "user_override": True,
            },
        )
    )
    await maybe_await(
        store.log_action(
            user_id,
            application.id,
            STATUS_OVERRIDE,
            {"previous_value": previous.value, "new_value": status.value, "explanation": explanation},
        )
    )
    logger.info(f"User {user_id} set application {application.id} to {status.value} (was {previous.value})")
    return OverrideResult(status="ok", application=updated)


async def clear_status_override(store: ApplicationStore, user_id: int, application_id: int) -> OverrideResult:
    """Unfreeze the status. The caller re-infers afterwards."""
    application = await _owned_application(store, user_id, application_id)
    if application is None:
        return OverrideResult(status="not_found")
    updated = await maybe_await(store.update_application(application.id, {"user_override": False}))
    await maybe_await(
        store.log_action(user_id, application.id, CLEAR_OVERRIDE, {"status": application.current_status.value})
    )
    logger.info(f"User {user_id} cleared override on application {application.id}")
    return OverrideResult(status="ok", application=updated)


def _latest(a, b):
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _earliest(a, b):
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


async def merge_applications(store: ApplicationStore, user_id: int, source_id: int, target_id: int) -> MergeResult:
    """
    Move every event of `source_id` onto `target_id` and archive the source.
    The caller re-infers the target afterwards.
    """
    if source_id == target_id:
        return MergeResult(status="invalid", error="SAME_ID")

    source = await _owned_application(store, user_id, source_id)
    target = await _owned_application(store, user_id, target_id)
    if source is None or target is None:
        return MergeResult(status="not_found", source_id=source_id, target_id=target_id)

    events = await maybe_await(store.list_events(source.id))
    for event in events:
        await maybe_await(store.set_event_application(event.id, target.id))

    await maybe_await(
        store.update_application(
            target.id,
            {
                "last_activity_at": _latest(target.last_activity_at, source.last_activity_at),
                "applied_at": _earliest(target.applied_at, source.applied_at),
                "external_req_id": target.external_req_id or source.external_req_id,
                "updated_at": utcnow(),
            },
        )
    )
    await maybe_await(store.update_application(source.id, {"archived": True, "user_override": True}))
    await maybe_await(
        store.log_action(
            user_id,
            target.id,
            MERGE_APPLICATIONS,
            {"source_id": source.id, "target_id": target.id, "moved_events": len(events)},
        )
    )
    logger.info(f"Merged application {source.id} into {target.id} ({len(events)} events moved)")
    return MergeResult(status="ok", source_id=source.id, target_id=target.id, moved_events=len(events))
