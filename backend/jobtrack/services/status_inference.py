"""
Status inference: roll an application's events up into one status.

infer_status() is pure: it turns each event into a candidate status, keeps
candidates at or above the policy's minimum confidence and picks the best by
status priority, then confidence. decide_update() gates the result against
the application's current state (manual override, terminal status,
regression) and returns the fields to write.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence

from ..config import settings
from ..domain import (
    ApplicationRecord,
    ApplicationStatus,
    EventRecord,
    EventType,
    InferenceDecision,
    InferenceResult,
    ReasonCode,
    TERMINAL_STATUSES,
    utcnow,
)
from ..text_utils import normalize

logger = logging.getLogger(__name__)

STATUS_PRIORITY = {
    ApplicationStatus.REJECTED: 5,
    ApplicationStatus.OFFER_RECEIVED: 5,
    ApplicationStatus.INTERVIEW_COMPLETED: 4,
    ApplicationStatus.INTERVIEW_REQUESTED: 3,
    ApplicationStatus.UNDER_REVIEW: 2,
    ApplicationStatus.APPLIED: 1,
    ApplicationStatus.GHOSTED: 1,
    ApplicationStatus.UNKNOWN: 0,
}

INTERVIEW_COMPLETED_PATTERNS = [
    r"thank\s+you\s+for\s+interviewing",
    r"thanks\s+for\s+interviewing",
    r"thank\s+you\s+for\s+(?:the\s+)?interview",
    r"interview\s+(?:completed|wrap[-\s]?up)",
]
_INTERVIEW_COMPLETED_RE = [re.compile(p, re.I) for p in INTERVIEW_COMPLETED_PATTERNS]
INTERVIEW_COMPLETED_CONFIDENCE = 0.92

_GHOSTABLE = frozenset({ApplicationStatus.APPLIED, ApplicationStatus.UNDER_REVIEW})


@dataclass(frozen=True)
class InferencePolicy:
    min_confidence: float = 0.7
    auto_apply_confidence: float = 0.9
    ghosted_threshold_days: int = 21
    ghosted_confidence: float = 0.75

    @classmethod
    def from_settings(cls) -> "InferencePolicy":
        return cls(
            min_confidence=settings.inference_min_confidence,
            auto_apply_confidence=settings.inference_auto_apply_confidence,
            ghosted_threshold_days=settings.ghosted_threshold_days,
            ghosted_confidence=settings.ghosted_confidence,
        )


@dataclass(frozen=True)
class _Candidate:
    status: ApplicationStatus
    confidence: float
    explanation: str
    event_id: int


def _event_date(event: EventRecord) -> str:
    when = event.occurred_at
    return when.date().isoformat() if when else "unknown date"


def _explain(prefix: str, event: EventRecord) -> str:
    subject = normalize(event.subject) or normalize(event.snippet) or "No subject"
    return f'{prefix} Event {event.id} ("{subject}", {_event_date(event)}).'


def _interview_completed(event: EventRecord) -> Optional[str]:
    text = f"{normalize(event.subject)} {normalize(event.snippet)}".strip()
    for pattern in _INTERVIEW_COMPLETED_RE:
        if pattern.search(text):
            return pattern.pattern
    return None


def candidate_from_event(event: EventRecord) -> Optional[_Candidate]:
    confidence = event.classification_score
    kind = event.detected_type
    if kind == EventType.CONFIRMATION:
        return _Candidate(ApplicationStatus.APPLIED, confidence, _explain("Application confirmation detected.", event), event.id)
    if kind == EventType.UNDER_REVIEW:
        return _Candidate(ApplicationStatus.UNDER_REVIEW, confidence, _explain("Application under review detected.", event), event.id)
    if kind == EventType.INTERVIEW:
        pattern = _interview_completed(event)
        if pattern:
            return _Candidate(
                ApplicationStatus.INTERVIEW_COMPLETED,
                min(confidence, INTERVIEW_COMPLETED_CONFIDENCE),
                f"Matched interview completed pattern '{pattern}'. " + _explain("Interview completion inferred.", event),
                event.id,
            )
        return _Candidate(ApplicationStatus.INTERVIEW_REQUESTED, confidence, _explain("Interview request detected.", event), event.id)
    if kind == EventType.REJECTION:
        return _Candidate(ApplicationStatus.REJECTED, confidence, _explain("Rejection detected.", event), event.id)
    if kind == EventType.OFFER:
        return _Candidate(ApplicationStatus.OFFER_RECEIVED, confidence, _explain("Offer detected.", event), event.id)
    return None


def _pick_best(candidates: Iterable[_Candidate]) -> Optional[_Candidate]:
    # Highest priority, then highest confidence; event id keeps the choice deterministic.
    return max(
        candidates,
        key=lambda c: (STATUS_PRIORITY.get(c.status, 0), c.confidence, c.event_id),
        default=None,
    )


def _ghosted(application: ApplicationRecord, policy: InferencePolicy, now: datetime) -> Optional[InferenceResult]:
    if application.current_status not in _GHOSTABLE or application.last_activity_at is None:
        return None
    days = (now - application.last_activity_at).days
    if days < policy.ghosted_threshold_days:
        return None
    return InferenceResult(
        inferred_status=ApplicationStatus.GHOSTED,
        confidence=policy.ghosted_confidence,
        explanation=f"No activity for {days} days (threshold {policy.ghosted_threshold_days}).",
        suggested_only=True,
    )


def infer_status(
    application: ApplicationRecord,
    events: Sequence[EventRecord],
    *,
    policy: Optional[InferencePolicy] = None,
    now: Optional[datetime] = None,
) -> InferenceResult:
    """Best status for an application given all of its events."""
    policy = policy or InferencePolicy.from_settings()
    now = now or utcnow()

    candidates = [c for c in map(candidate_from_event, events) if c is not None]
    best = _pick_best(c for c in candidates if c.confidence >= policy.min_confidence)
    if best is not None:
        return InferenceResult(
            inferred_status=best.status,
            confidence=best.confidence,
            explanation=best.explanation,
            suggested_only=best.confidence < policy.auto_apply_confidence,
            event_ids=(best.event_id,),
        )

    ghosted = _ghosted(application, policy, now)
    if ghosted is not None:
        return ghosted

    return InferenceResult(
        inferred_status=ApplicationStatus.UNKNOWN,
        confidence=0.0,
        explanation="No qualifying events for inference.",
        suggested_only=False,
    )


# ----------------------------
# Gating
# ----------------------------

def block_reason_auto(application: ApplicationRecord, next_status: ApplicationStatus, confidence: float) -> Optional[ReasonCode]:
    current = application.current_status or ApplicationStatus.UNKNOWN
    if application.user_override and next_status != current:
        return ReasonCode.USER_OVERRIDE
    if current in TERMINAL_STATUSES and next_status != current:
        # An offer can still be rescinded.
        if (
            current == ApplicationStatus.OFFER_RECEIVED
            and next_status == ApplicationStatus.REJECTED
            and confidence >= (application.status_confidence or 0.0)
        ):
            return None
        return ReasonCode.TERMINAL
    if STATUS_PRIORITY.get(next_status, 0) < STATUS_PRIORITY.get(current, 0):
        return ReasonCode.REGRESSION
    return None


def block_reason_suggestion(application: ApplicationRecord, next_status: ApplicationStatus) -> Optional[ReasonCode]:
    current = application.current_status or ApplicationStatus.UNKNOWN
    if application.user_override and next_status != current:
        return ReasonCode.USER_OVERRIDE
    if current in TERMINAL_STATUSES:
        return ReasonCode.TERMINAL
    if next_status != ApplicationStatus.GHOSTED:
        if STATUS_PRIORITY.get(next_status, 0) < STATUS_PRIORITY.get(current, 0):
            return ReasonCode.REGRESSION
    if next_status == current:
        return ReasonCode.SAME_STATUS
    return None


_CLEAR_SUGGESTION = {
    "suggested_status": None,
    "suggested_confidence": None,
    "suggested_explanation": None,
}


def decide_update(
    application: ApplicationRecord,
    result: InferenceResult,
    *,
    policy: Optional[InferencePolicy] = None,
    now: Optional[datetime] = None,
) -> InferenceDecision:
    """Fields to write for `result`, or the reason it was blocked."""
    policy = policy or InferencePolicy.from_settings()
    updates: dict = {"inference_updated_at": now or utcnow()}

    if result.inferred_status == ApplicationStatus.UNKNOWN:
        updates.update(_CLEAR_SUGGESTION)
        return InferenceDecision(applied=False, suggested=False, blocked=None, updates=updates)

    if result.suggested_only:
        blocked = block_reason_suggestion(application, result.inferred_status)
        if blocked is None:
            updates.update(
                suggested_status=result.inferred_status,
                suggested_confidence=result.confidence,
                suggested_explanation=result.explanation,
            )
        return InferenceDecision(applied=False, suggested=blocked is None, blocked=blocked, updates=updates)

    if result.confidence >= policy.auto_apply_confidence:
        blocked = block_reason_auto(application, result.inferred_status, result.confidence)
        if blocked is None:
            updates.update(
                current_status=result.inferred_status,
                status_confidence=result.confidence,
                status_explanation=result.explanation,
                status_source="inferred",
                **_CLEAR_SUGGESTION,
            )
        return InferenceDecision(applied=blocked is None, suggested=False, blocked=blocked, updates=updates)

    updates.update(_CLEAR_SUGGESTION)
    return InferenceDecision(applied=False, suggested=False, blocked=None, updates=updates)
