"""Pydantic schemas for API and Celery payloads."""
from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from .domain import (
    ApplicationStatus,
    EventType,
    InboundMessage,
    MatchAction,
    ProcessResult,
    ReasonCode,
)
from .text_utils import parse_received_at


class MessageIn(BaseModel):
    id: str = Field(..., min_length=1)
    sender: str = ""
    subject: str = ""
    snippet: str = ""
    body_text: Optional[str] = None
    # datetime, ISO-8601 string or epoch milliseconds
    received_at: Optional[Union[datetime, int, float, str]] = None

    def to_message(self) -> InboundMessage:
        return InboundMessage(
            id=self.id,
            sender=self.sender,
            subject=self.subject,
            snippet=self.snippet,
            body_text=self.body_text,
            received_at=parse_received_at(self.received_at),
        )


class MessageBatchIn(BaseModel):
    messages: List[MessageIn]


class ClassifyIn(BaseModel):
    sender: str = ""
    subject: str = ""
    snippet: str = ""
    body_text: Optional[str] = None


class ClassificationOut(BaseModel):
    is_job_related: bool
    event_type: Optional[EventType] = None
    confidence_score: float
    explanation: str
    reason: str

    class Config:
        from_attributes = True


class IdentityOut(BaseModel):
    company_name: Optional[str] = None
    job_title: Optional[str] = None
    sender_domain: Optional[str] = None
    company_confidence: float
    role_confidence: Optional[float] = None
    domain_confidence: float
    match_confidence: float
    is_ats_domain: bool
    is_platform_email: bool = False
    external_req_id: Optional[str] = None
    explanation: str

    class Config:
        from_attributes = True


class ClassifyOut(BaseModel):
    classification: ClassificationOut
    identity: Optional[IdentityOut] = None


class EventOut(BaseModel):
    id: int
    message_id: str
    application_id: Optional[int] = None
    detected_type: Optional[EventType] = None
    confidence_score: Optional[float] = None
    classification_confidence: Optional[float] = None
    explanation: Optional[str] = None
    sender: Optional[str] = None
    subject: Optional[str] = None
    snippet: Optional[str] = None
    internal_date: Optional[datetime] = None
    role_title: Optional[str] = None
    role_confidence: Optional[float] = None
    external_req_id: Optional[str] = None
    reason_code: Optional[str] = None
    reason_detail: Optional[str] = None

    class Config:
        from_attributes = True


class MatchOut(BaseModel):
    action: MatchAction
    application_id: Optional[int] = None
    reason: Optional[ReasonCode] = None
    detail: Optional[str] = None

    class Config:
        from_attributes = True


class ReinferOut(BaseModel):
    status: str
    application_id: int
    inferred_status: Optional[ApplicationStatus] = None
    confidence: float = 0.0
    applied: bool = False
    suggested: bool = False
    blocked: Optional[ReasonCode] = None

    class Config:
        from_attributes = True


class ProcessOut(BaseModel):
    message_id: str
    classification: ClassificationOut
    identity: Optional[IdentityOut] = None
    event: Optional[EventOut] = None
    match_result: Optional[MatchOut] = None
    inference: Optional[ReinferOut] = None

    class Config:
        from_attributes = True


class BatchOut(BaseModel):
    received: int
    processed: int
    results: List[ProcessOut]


class EnqueueOut(BaseModel):
    task_id: str
    queued: int


class ApplicationOut(BaseModel):
    id: int
    user_id: int
    company_name: str
    company_confidence: Optional[float] = None
    job_title: Optional[str] = None
    role_confidence: Optional[float] = None
    source: Optional[str] = None
    external_req_id: Optional[str] = None
    current_status: ApplicationStatus
    status_confidence: Optional[float] = None
    status_explanation: Optional[str] = None
    status_source: str
    suggested_status: Optional[ApplicationStatus] = None
    suggested_confidence: Optional[float] = None
    suggested_explanation: Optional[str] = None
    user_override: bool = False
    archived: bool = False
    applied_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    inference_updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ApplicationDetail(ApplicationOut):
    events: List[EventOut] = []


class PaginatedApplications(BaseModel):
    items: List[ApplicationOut]
    offset: int
    limit: int


class OverrideIn(BaseModel):
    status: ApplicationStatus
    explanation: Optional[str] = None


class OverrideOut(BaseModel):
    application: ApplicationOut
    inference: Optional[ReinferOut] = None


class MergeIn(BaseModel):
    source_id: int
    target_id: int


class MergeOut(BaseModel):
    status: str
    source_id: int
    target_id: int
    moved_events: int
    inference: Optional[ReinferOut] = None


def summarize_process_result(result: ProcessResult) -> dict:
    """JSON-safe ProcessResult (Celery results backend)."""
    return ProcessOut.model_validate(result).model_dump(mode="json")
