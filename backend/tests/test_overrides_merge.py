import asyncio
from datetime import datetime

from jobtrack.domain import ApplicationStatus, EventType
from jobtrack.models import UserAction
from jobtrack.services.overrides import (
    MERGE_APPLICATIONS,
    STATUS_OVERRIDE,
    apply_status_override,
    clear_status_override,
    merge_applications,
)


def _app(store, user_id=1, **kwargs):
    fields = {"user_id": user_id, "company_name": "Acme", "job_title": "Software Engineer"}
    fields.update(kwargs)
    return store.create_application(fields)


def _event(store, message_id, application_id, user_id=1):
    return store.insert_event(
        {
            "user_id": user_id,
            "message_id": message_id,
            "application_id": application_id,
            "detected_type": EventType.CONFIRMATION,
            "confidence_score": 0.92,
        }
    )


def test_override_freezes_status_and_is_audited(store, db_session):
    application = _app(store, current_status=ApplicationStatus.APPLIED, suggested_status=ApplicationStatus.GHOSTED)
    result = asyncio.run(apply_status_override(store, 1, application.id, ApplicationStatus.OFFER_RECEIVED))

    assert result.status == "ok"
    updated = result.application
    assert updated.current_status == ApplicationStatus.OFFER_RECEIVED
    assert updated.status_confidence == 1.0
    assert updated.status_explanation == "User override."
    assert updated.status_source == "user"
    assert updated.user_override
    assert updated.suggested_status is None

    action = db_session.query(UserAction).filter(UserAction.action_type == STATUS_OVERRIDE).one()
    assert action.action_payload == {
        "previous_value": "APPLIED",
        "new_value": "OFFER_RECEIVED",
        "explanation": "User override.",
    }


def test_override_of_another_users_application_is_not_found(store):
    application = _app(store, user_id=2)
    result = asyncio.run(apply_status_override(store, 1, application.id, ApplicationStatus.REJECTED))
    assert result.status == "not_found"
    assert store.get_application(application.id).current_status == ApplicationStatus.UNKNOWN


def test_clear_override_keeps_status(store):
    application = _app(store)
    asyncio.run(apply_status_override(store, 1, application.id, ApplicationStatus.REJECTED))
    result = asyncio.run(clear_status_override(store, 1, application.id))
    assert result.status == "ok"
    assert not result.application.user_override
    assert result.application.current_status == ApplicationStatus.REJECTED


def test_merge_rejects_same_id(store):
    application = _app(store)
    result = asyncio.run(merge_applications(store, 1, application.id, application.id))
    assert result.status == "invalid"
    assert result.error == "SAME_ID"


def test_merge_requires_both_applications_owned(store):
    mine = _app(store)
    theirs = _app(store, user_id=2)
    assert asyncio.run(merge_applications(store, 1, theirs.id, mine.id)).status == "not_found"
    assert asyncio.run(merge_applications(store, 1, mine.id, 12345)).status == "not_found"


def test_merge_moves_events_and_archives_source(store, db_session):
    source = _app(store, applied_at=datetime(2025, 1, 5), last_activity_at=datetime(2025, 2, 1))
    target = _app(store, applied_at=datetime(2025, 1, 9), last_activity_at=datetime(2025, 1, 20))
    _event(store, "a", source.id)
    _event(store, "b", source.id)
    _event(store, "c", target.id)

    result = asyncio.run(merge_applications(store, 1, source.id, target.id))
    assert result.status == "ok"
    assert result.moved_events == 2

    assert store.list_events(source.id) == []
    assert {e.message_id for e in store.list_events(target.id)} == {"a", "b", "c"}

    archived = store.get_application(source.id)
    assert archived.archived
    assert archived.user_override

    merged = store.get_application(target.id)
    assert merged.applied_at == datetime(2025, 1, 5)
    assert merged.last_activity_at == datetime(2025, 2, 1)

    action = db_session.query(UserAction).filter(UserAction.action_type == MERGE_APPLICATIONS).one()
    assert action.application_id == target.id
    assert action.action_payload["moved_events"] == 2


def test_merge_keeps_target_requisition_id_or_takes_source(store):
    source = _app(store, external_req_id="R-100")
    target = _app(store, job_title="Unknown role")
    asyncio.run(merge_applications(store, 1, source.id, target.id))
    assert store.get_application(target.id).external_req_id == "R-100"

    other = _app(store, external_req_id="R-300")
    asyncio.run(merge_applications(store, 1, other.id, target.id))
    assert store.get_application(target.id).external_req_id == "R-100"
