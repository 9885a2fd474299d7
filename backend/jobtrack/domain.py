"""
Core pipeline types.

Plain, frozen dataclasses shared by the classifier, identity extractor,
matcher and status inference engine. Store adapters convert ORM rows into
ApplicationRecord / EventRecord so pipeline code sees one shape.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    """Naive UTC timestamp (all DateTime columns hold naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class EventType(str, enum.Enum):
    CONFIRMATION = "confirmation"
    UNDER_REVIEW = "under_review"
    INTERVIEW = "interview"
    REJECTION = "rejection"
    OFFER = "offer"
    RECRUITER_OUTREACH = "recruiter_outreach"
    OTHER_JOB_RELATED = "other_job_related"


class ApplicationStatus(str, enum.Enum):
    UNKNOWN = "UNKNOWN"
    APPLIED = "APPLIED"
    UNDER_REVIEW = "UNDER_REVIEW"
    INTERVIEW_REQUESTED = "INTERVIEW_REQUESTED"
    INTERVIEW_COMPLETED = "INTERVIEW_COMPLETED"
    OFFER_RECEIVED = "OFFER_RECEIVED"
    REJECTED = "REJECTED"
    GHOSTED = "GHOSTED"


class ReasonCode(str, enum.Enum):
    """Stable strings consumed by triage tooling."""

    MISSING_IDENTITY = "missing_identity"
    LOW_CONFIDENCE = "low_confidence"
    NOT_CONFIDENT_FOR_CREATE = "not_confident_for_create"
    AMBIGUOUS_SENDER = "ambiguous_sender"
    AMBIGUOUS_MATCH = "ambiguous_match"
    USER_OVERRIDE = "user_override"
    TERMINAL = "terminal"
    REGRESSION = "regression"
    SAME_STATUS = "same_status"


class MatchAction(str, enum.Enum):
    ATTACHED = "attached"
    CREATED = "created"
    UNASSIGNED = "unassigned"


AUTO_CREATE_TYPES = frozenset(
    {
        EventType.CONFIRMATION,
        EventType.INTERVIEW,
        EventType.OFFER,
        EventType.REJECTION,
        EventType.UNDER_REVIEW,
    }
)

TERMINAL_STATUSES = frozenset({ApplicationStatus.REJECTED, ApplicationStatus.OFFER_RECEIVED})

UNKNOWN_ROLE = "Unknown role"


@dataclass(frozen=True)
class InboundMessage:
    id: str
    sender: str
    subject: str
    snippet: str = ""
    received_at: Optional[datetime] = None
    body_text: Optional[str] = None


@dataclass(frozen=True)
class ClassificationResult:
    is_job_related: bool
    event_type: Optional[EventType]
    confidence_score: float
    explanation: str
    reason: str


@dataclass(frozen=True)
class Identity:
    company_name: Optional[str]
    job_title: Optional[str]
    sender_domain: Optional[str]
    company_confidence: float
    role_confidence: Optional[float]
    domain_confidence: float
    match_confidence: float
    is_ats_domain: bool
    explanation: str
    is_platform_email: bool = False
    body_text_available: bool = False
    external_req_id: Optional[str] = None


@dataclass
class ApplicationRecord:
    id: int
    user_id: int
    company_name: str
    job_title: Optional[str] = None
    source: Optional[str] = None
    external_req_id: Optional[str] = None
    current_status: ApplicationStatus = ApplicationStatus.UNKNOWN
    status_confidence: Optional[float] = None
    status_explanation: Optional[str] = None
    status_source: str = "inferred"
    suggested_status: Optional[ApplicationStatus] = None
    suggested_confidence: Optional[float] = None
    suggested_explanation: Optional[str] = None
    user_override: bool = False
    archived: bool = False
    company_confidence: Optional[float] = None
    company_source: Optional[str] = None
    role_confidence: Optional[float] = None
    role_source: Optional[str] = None
    applied_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    inference_updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class EventRecord:
    id: int
    user_id: int
    message_id: str
    detected_type: Optional[EventType] = None
    confidence_score: Optional[float] = None
    classification_confidence: Optional[float] = None
    explanation: Optional[str] = None
    sender: Optional[str] = None
    subject: Optional[str] = None
    snippet: Optional[str] = None
    internal_date: Optional[datetime] = None
    application_id: Optional[int] = None
    role_title: Optional[str] = None
    role_confidence: Optional[float] = None
    external_req_id: Optional[str] = None
    reason_code: Optional[str] = None
    reason_detail: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def classification_score(self) -> float:
        value = self.classification_confidence
        if value is None:
            value = self.confidence_score
        return float(value or 0.0)

    @property
    def occurred_at(self) -> Optional[datetime]:
        return self.internal_date or self.created_at


@dataclass(frozen=True)
class ApplicationFilters:
    """Store query: non-archived applications of one user for a company."""

    company_name: str
    job_title: Optional[str] = None
    source: Optional[str] = None
    external_req_id: Optional[str] = None
    include_archived: bool = False


@dataclass(frozen=True)
class MatchResult:
    action: MatchAction
    application_id: Optional[int] = None
    reason: Optional[ReasonCode] = None
    detail: Optional[str] = None


@dataclass(frozen=True)
class InferenceResult:
    inferred_status: ApplicationStatus
    confidence: float
    explanation: str
    suggested_only: bool
    event_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class InferenceDecision:
    """What to write back for one inference result."""

    applied: bool
    suggested: bool
    blocked: Optional[ReasonCode]
    updates: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ReinferResult:
    status: str  # ok, not_found, archived
    application_id: int
    inferred_status: Optional[ApplicationStatus] = None
    confidence: float = 0.0
    applied: bool = False
    suggested: bool = False
    blocked: Optional[ReasonCode] = None


@dataclass(frozen=True)
class ProcessResult:
    message_id: str
    classification: ClassificationResult
    identity: Optional[Identity]
    event: Optional[EventRecord]
    match_result: Optional[MatchResult]
    inference: Optional[ReinferResult] = None
