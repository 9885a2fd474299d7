"""SQLAlchemy models."""
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Text,
    Float,
    Boolean,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import JSON

from .domain import utcnow

Base = declarative_base()


class Application(Base):
    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    company_name = Column(String, nullable=False, index=True)
    company_confidence = Column(Float, nullable=True)
    company_source = Column(String, nullable=True)  # email, manual
    job_title = Column(String, nullable=True, index=True)
    role_confidence = Column(Float, nullable=True)
    role_source = Column(String, nullable=True)  # email, manual
    source = Column(String, nullable=True, index=True)  # sender domain
    external_req_id = Column(String, nullable=True, index=True)  # R-123, job ID
    current_status = Column(String, nullable=False, default="UNKNOWN")
    status_confidence = Column(Float, nullable=True)
    status_explanation = Column(Text, nullable=True)
    status_source = Column(String, nullable=False, default="inferred")  # user, inferred
    suggested_status = Column(String, nullable=True)
    suggested_confidence = Column(Float, nullable=True)
    suggested_explanation = Column(Text, nullable=True)
    user_override = Column(Boolean, nullable=False, default=False)
    archived = Column(Boolean, nullable=False, default=False, index=True)
    applied_at = Column(DateTime, nullable=True)
    last_activity_at = Column(DateTime, nullable=True, index=True)
    inference_updated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    events = relationship("EmailEvent", back_populates="application")

    __table_args__ = (
        Index("ix_applications_user_company", "user_id", "company_name"),
    )


class EmailEvent(Base):
    """One classified inbound message. Attached to at most one application."""

    __tablename__ = "email_events"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    message_id = Column(String, nullable=False)
    application_id = Column(
        Integer, ForeignKey("applications.id", ondelete="SET NULL"), nullable=True, index=True
    )
    detected_type = Column(String, nullable=True, index=True)
    confidence_score = Column(Float, nullable=True)
    classification_confidence = Column(Float, nullable=True)
    explanation = Column(Text, nullable=True)
    sender = Column(String, nullable=True)
    subject = Column(String, nullable=True)
    snippet = Column(Text, nullable=True)
    internal_date = Column(DateTime, nullable=True)
    role_title = Column(String, nullable=True)
    role_confidence = Column(Float, nullable=True)
    external_req_id = Column(String, nullable=True)
    reason_code = Column(String, nullable=True, index=True)
    reason_detail = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    application = relationship("Application", back_populates="events")

    __table_args__ = (
        Index("ix_email_events_user_message", "user_id", "message_id", unique=True),
    )


class UserAction(Base):
    """Audit trail: inference runs, overrides, merges."""

    __tablename__ = "user_actions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    application_id = Column(Integer, nullable=True, index=True)
    action_type = Column(String, nullable=False)  # INFER_STATUS, STATUS_OVERRIDE, ...
    action_payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)
