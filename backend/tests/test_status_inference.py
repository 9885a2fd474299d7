from datetime import datetime, timedelta

import pytest

from jobtrack.domain import (
    ApplicationRecord,
    ApplicationStatus,
    EventRecord,
    EventType,
    InferenceResult,
    ReasonCode,
)
from jobtrack.services.status_inference import (
    InferencePolicy,
    decide_update,
    infer_status,
)

NOW = datetime(2025, 6, 1, 12, 0, 0)
POLICY = InferencePolicy()


def _app(**kwargs) -> ApplicationRecord:
    kwargs.setdefault("current_status", ApplicationStatus.UNKNOWN)
    return ApplicationRecord(id=1, user_id=1, company_name="Acme", **kwargs)


def _event(event_id: int, kind: EventType, confidence: float, subject: str = "Update", days_ago: int = 1) -> EventRecord:
    return EventRecord(
        id=event_id,
        user_id=1,
        message_id=f"m{event_id}",
        detected_type=kind,
        confidence_score=confidence,
        classification_confidence=confidence,
        subject=subject,
        internal_date=NOW - timedelta(days=days_ago),
        application_id=1,
    )


def test_rejection_outranks_confirmation():
    events = [
        _event(1, EventType.CONFIRMATION, 0.92, "Thank you for applying", days_ago=5),
        _event(2, EventType.REJECTION, 0.95, "Unfortunately we are not moving forward", days_ago=1),
    ]
    result = infer_status(_app(current_status=ApplicationStatus.APPLIED), events, policy=POLICY, now=NOW)
    assert result.inferred_status == ApplicationStatus.REJECTED
    assert result.confidence == pytest.approx(0.95)
    assert not result.suggested_only
    assert result.event_ids == (2,)
    assert result.explanation == (
        'Rejection detected. Event 2 ("Unfortunately we are not moving forward", 2025-05-31).'
    )


def test_priority_beats_confidence():
    events = [
        _event(1, EventType.CONFIRMATION, 0.99),
        _event(2, EventType.INTERVIEW, 0.91),
    ]
    result = infer_status(_app(), events, policy=POLICY, now=NOW)
    assert result.inferred_status == ApplicationStatus.INTERVIEW_REQUESTED


def test_interview_completion_phrasing_is_capped():
    events = [_event(1, EventType.INTERVIEW, 0.95, "Thank you for interviewing with us")]
    result = infer_status(_app(), events, policy=POLICY, now=NOW)
    assert result.inferred_status == ApplicationStatus.INTERVIEW_COMPLETED
    assert result.confidence == pytest.approx(0.92)


def test_low_confidence_candidate_is_suggestion_only():
    events = [_event(1, EventType.UNDER_REVIEW, 0.8)]
    result = infer_status(_app(), events, policy=POLICY, now=NOW)
    assert result.inferred_status == ApplicationStatus.UNDER_REVIEW
    assert result.suggested_only


def test_candidates_below_minimum_are_ignored():
    events = [_event(1, EventType.OFFER, 0.65)]
    result = infer_status(_app(), events, policy=POLICY, now=NOW)
    assert result.inferred_status == ApplicationStatus.UNKNOWN
    assert result.confidence == 0.0
    assert result.explanation == "No qualifying events for inference."


def test_non_status_events_produce_no_candidate():
    events = [_event(1, EventType.RECRUITER_OUTREACH, 0.95), _event(2, EventType.OTHER_JOB_RELATED, 0.95)]
    result = infer_status(_app(), events, policy=POLICY, now=NOW)
    assert result.inferred_status == ApplicationStatus.UNKNOWN


def test_ghosted_after_threshold_without_events():
    application = _app(current_status=ApplicationStatus.APPLIED, last_activity_at=NOW - timedelta(days=25))
    result = infer_status(application, [], policy=POLICY, now=NOW)
    assert result.inferred_status == ApplicationStatus.GHOSTED
    assert result.confidence == pytest.approx(0.75)
    assert result.suggested_only


def test_not_ghosted_before_threshold():
    application = _app(current_status=ApplicationStatus.APPLIED, last_activity_at=NOW - timedelta(days=20))
    assert infer_status(application, [], policy=POLICY, now=NOW).inferred_status == ApplicationStatus.UNKNOWN


def test_inference_is_pure():
    application = _app(current_status=ApplicationStatus.APPLIED)
    events = [_event(1, EventType.REJECTION, 0.95)]
    first = infer_status(application, events, policy=POLICY, now=NOW)
    second = infer_status(application, events, policy=POLICY, now=NOW)
    assert first == second
    assert application.current_status == ApplicationStatus.APPLIED


# ----------------------------
# decide_update gating
# ----------------------------

def _result(status, confidence, suggested_only=False):
    return InferenceResult(
        inferred_status=status,
        confidence=confidence,
        explanation="test",
        suggested_only=suggested_only,
    )


def test_auto_apply_sets_status_and_clears_suggestion():
    application = _app(current_status=ApplicationStatus.APPLIED, suggested_status=ApplicationStatus.GHOSTED)
    decision = decide_update(application, _result(ApplicationStatus.REJECTED, 0.95), policy=POLICY, now=NOW)
    assert decision.applied
    assert decision.blocked is None
    assert decision.updates["current_status"] == ApplicationStatus.REJECTED
    assert decision.updates["status_source"] == "inferred"
    assert decision.updates["suggested_status"] is None
    assert decision.updates["inference_updated_at"] == NOW


def test_user_override_blocks_auto_update():
    application = _app(current_status=ApplicationStatus.REJECTED, user_override=True, status_source="user")
    decision = decide_update(application, _result(ApplicationStatus.APPLIED, 0.92), policy=POLICY, now=NOW)
    assert not decision.applied
    assert decision.blocked == ReasonCode.USER_OVERRIDE
    assert "current_status" not in decision.updates


def test_terminal_status_blocks_auto_update():
    application = _app(current_status=ApplicationStatus.REJECTED, status_confidence=0.95)
    decision = decide_update(application, _result(ApplicationStatus.INTERVIEW_REQUESTED, 0.95), policy=POLICY, now=NOW)
    assert decision.blocked == ReasonCode.TERMINAL


def test_offer_can_be_rescinded_with_enough_confidence():
    application = _app(current_status=ApplicationStatus.OFFER_RECEIVED, status_confidence=0.95)
    decision = decide_update(application, _result(ApplicationStatus.REJECTED, 0.98), policy=POLICY, now=NOW)
    assert decision.applied

    weaker = decide_update(application, _result(ApplicationStatus.REJECTED, 0.92), policy=POLICY, now=NOW)
    assert weaker.blocked == ReasonCode.TERMINAL


def test_regression_is_blocked():
    application = _app(current_status=ApplicationStatus.INTERVIEW_REQUESTED)
    decision = decide_update(application, _result(ApplicationStatus.APPLIED, 0.95), policy=POLICY, now=NOW)
    assert decision.blocked == ReasonCode.REGRESSION


def test_suggestion_written_when_not_blocked():
    application = _app(current_status=ApplicationStatus.APPLIED)
    decision = decide_update(application, _result(ApplicationStatus.UNDER_REVIEW, 0.8, True), policy=POLICY, now=NOW)
    assert decision.suggested
    assert decision.updates["suggested_status"] == ApplicationStatus.UNDER_REVIEW
    assert decision.updates["suggested_confidence"] == pytest.approx(0.8)
    assert "current_status" not in decision.updates


def test_ghosted_suggestion_skips_regression_check():
    application = _app(current_status=ApplicationStatus.UNDER_REVIEW)
    decision = decide_update(application, _result(ApplicationStatus.GHOSTED, 0.75, True), policy=POLICY, now=NOW)
    assert decision.suggested
    assert decision.updates["suggested_status"] == ApplicationStatus.GHOSTED


def test_same_status_suggestion_is_blocked():
    application = _app(current_status=ApplicationStatus.UNDER_REVIEW)
    decision = decide_update(application, _result(ApplicationStatus.UNDER_REVIEW, 0.8, True), policy=POLICY, now=NOW)
    assert decision.blocked == ReasonCode.SAME_STATUS


def test_suggestion_on_terminal_is_blocked():
    application = _app(current_status=ApplicationStatus.OFFER_RECEIVED)
    decision = decide_update(application, _result(ApplicationStatus.GHOSTED, 0.75, True), policy=POLICY, now=NOW)
    assert decision.blocked == ReasonCode.TERMINAL


def test_unknown_result_clears_suggestion():
    application = _app(suggested_status=ApplicationStatus.GHOSTED)
    decision = decide_update(application, _result(ApplicationStatus.UNKNOWN, 0.0), policy=POLICY, now=NOW)
    assert not decision.applied and not decision.suggested
    assert decision.updates["suggested_status"] is None
