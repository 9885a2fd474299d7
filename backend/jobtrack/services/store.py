"""
Application store: the read/write interface the pipeline runs against.

Two SQLAlchemy adapters implement it, one over a sync Session (Celery
workers, scripts) and one over an AsyncSession (FastAPI). Both convert ORM
rows to ApplicationRecord / EventRecord, so pipeline code never sees ORM
objects, and both turn connection-level failures into TransientStoreError.
"""

from __future__ import annotations

import enum
import inspect
import logging
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncIterator, Iterator, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from ..domain import (
    ApplicationFilters,
    ApplicationRecord,
    ApplicationStatus,
    EventRecord,
    EventType,
)
from ..models import Application, EmailEvent, UserAction

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for application store failures."""


class TransientStoreError(StoreError):
    """Timeout or lost connection. Safe to retry the whole pipeline operation."""


class RecordNotFoundError(StoreError):
    """An update referenced a row that does not exist."""


class ApplicationStore(Protocol):
    """
    Every method may return its value directly or an awaitable of it; the
    pipeline awaits whatever it gets. transaction() is a context manager
    (sync or async) that commits on success and rolls back otherwise.
    """

    def transaction(self) -> Any: ...

    def find_applications(self, user_id: int, filters: ApplicationFilters) -> Any: ...

    def get_application(self, application_id: int) -> Any: ...

    def create_application(self, fields: dict) -> Any: ...

    def update_application(self, application_id: int, fields: dict) -> Any: ...

    def list_events(self, application_id: int) -> Any: ...

    def insert_event(self, fields: dict) -> Any: ...

    def update_event(self, event_id: int, fields: dict) -> Any: ...

    def find_event_by_message(self, user_id: int, message_id: str) -> Any: ...

    def set_event_application(self, event_id: int, application_id: Optional[int]) -> Any: ...

    def log_action(self, user_id: int, application_id: Optional[int], action_type: str, payload: Optional[dict] = None) -> Any: ...


async def maybe_await(value: Any) -> Any:
    """Await store results from async adapters; pass sync results through."""
    if inspect.isawaitable(value):
        return await value
    return value


# ----------------------------
# Row <-> record conversion
# ----------------------------

def _plain(value: Any) -> Any:
    return value.value if isinstance(value, enum.Enum) else value


def _column_values(model, fields: dict) -> dict:
    columns = model.__table__.columns.keys()
    unknown = set(fields) - set(columns)
    if unknown:
        raise ValueError(f"Unknown {model.__tablename__} fields: {sorted(unknown)}")
    return {k: _plain(v) for k, v in fields.items()}


def _status(value: Optional[str]) -> Optional[ApplicationStatus]:
    if not value:
        return None
    try:
        return ApplicationStatus(value)
    except ValueError:
        logger.warning(f"Unknown application status in store: {value!r}")
        return ApplicationStatus.UNKNOWN


def _event_type(value: Optional[str]) -> Optional[EventType]:
    if not value:
        return None
    try:
        return EventType(value)
    except ValueError:
        return None


def to_application_record(row: Application) -> ApplicationRecord:
    return ApplicationRecord(
        id=row.id,
        user_id=row.user_id,
        company_name=row.company_name,
        job_title=row.job_title,
        source=row.source,
        external_req_id=row.external_req_id,
        current_status=_status(row.current_status) or ApplicationStatus.UNKNOWN,
        status_confidence=row.status_confidence,
        status_explanation=row.status_explanation,
        status_source=row.status_source or "inferred",
        suggested_status=_status(row.suggested_status),
        suggested_confidence=row.suggested_confidence,
        suggested_explanation=row.suggested_explanation,
        user_override=bool(row.user_override),
        archived=bool(row.archived),
        company_confidence=row.company_confidence,
        company_source=row.company_source,
        role_confidence=row.role_confidence,
        role_source=row.role_source,
        applied_at=row.applied_at,
        last_activity_at=row.last_activity_at,
        inference_updated_at=row.inference_updated_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def to_event_record(row: EmailEvent) -> EventRecord:
    return EventRecord(
        id=row.id,
        user_id=row.user_id,
        message_id=row.message_id,
        detected_type=_event_type(row.detected_type),
        confidence_score=row.confidence_score,
        classification_confidence=row.classification_confidence,
        explanation=row.explanation,
        sender=row.sender,
        subject=row.subject,
        snippet=row.snippet,
        internal_date=row.internal_date,
        application_id=row.application_id,
        role_title=row.role_title,
        role_confidence=row.role_confidence,
        external_req_id=row.external_req_id,
        reason_code=row.reason_code,
        reason_detail=row.reason_detail,
        created_at=row.created_at,
    )


# ----------------------------
# Shared statements
# ----------------------------

def _applications_stmt(user_id: int, filters: ApplicationFilters):
    """Most recently active first."""
    stmt = select(Application).where(
        Application.user_id == user_id,
        func.lower(Application.company_name) == filters.company_name.lower(),
    )
    if filters.job_title:
        stmt = stmt.where(func.lower(Application.job_title) == filters.job_title.lower())
    if filters.source:
        stmt = stmt.where(func.lower(Application.source) == filters.source.lower())
    if filters.external_req_id:
        stmt = stmt.where(func.upper(Application.external_req_id) == filters.external_req_id.upper())
    if not filters.include_archived:
        stmt = stmt.where(Application.archived.is_(False))
    activity = func.coalesce(Application.last_activity_at, Application.updated_at, Application.created_at)
    return stmt.order_by(activity.desc(), Application.id.desc())


def _user_applications_stmt(user_id: int, include_archived: bool, limit: int, offset: int):
    stmt = select(Application).where(Application.user_id == user_id)
    if not include_archived:
        stmt = stmt.where(Application.archived.is_(False))
    activity = func.coalesce(Application.last_activity_at, Application.updated_at, Application.created_at)
    return stmt.order_by(activity.desc(), Application.id.desc()).offset(offset).limit(limit)


def _events_stmt(application_id: int):
    return (
        select(EmailEvent)
        .where(EmailEvent.application_id == application_id)
        .order_by(EmailEvent.internal_date.desc(), EmailEvent.id.desc())
    )


def _unassigned_events_stmt(user_id: int, limit: int):
    return (
        select(EmailEvent)
        .where(
            EmailEvent.user_id == user_id,
            EmailEvent.application_id.is_(None),
            EmailEvent.detected_type.is_not(None),
        )
        .order_by(EmailEvent.internal_date.desc(), EmailEvent.id.desc())
        .limit(limit)
    )


def _event_by_message_stmt(user_id: int, message_id: str):
    return select(EmailEvent).where(EmailEvent.user_id == user_id, EmailEvent.message_id == message_id)


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, (OperationalError, PoolTimeoutError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


# ----------------------------
# Sync adapter
# ----------------------------

class SqlAlchemyStore:
    """ApplicationStore over a sync Session. Writes flush; transaction() commits."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def transaction(self) -> Iterator["SqlAlchemyStore"]:
        try:
            yield self
            self.db.commit()
        except BaseException as e:
            self.db.rollback()
            if is_transient_error(e):
                raise TransientStoreError(str(e)) from e
            raise

    def find_applications(self, user_id: int, filters: ApplicationFilters) -> list[ApplicationRecord]:
        rows = self.db.execute(_applications_stmt(user_id, filters)).scalars().all()
        return [to_application_record(r) for r in rows]

    def list_applications(self, user_id: int, *, include_archived: bool = False, limit: int = 100, offset: int = 0) -> list[ApplicationRecord]:
        rows = self.db.execute(_user_applications_stmt(user_id, include_archived, limit, offset)).scalars().all()
        return [to_application_record(r) for r in rows]

    def get_application(self, application_id: int) -> Optional[ApplicationRecord]:
        row = self.db.get(Application, application_id)
        return to_application_record(row) if row else None

    def create_application(self, fields: dict) -> ApplicationRecord:
        row = Application(**_column_values(Application, fields))
        self.db.add(row)
        self.db.flush()
        return to_application_record(row)

    def update_application(self, application_id: int, fields: dict) -> ApplicationRecord:
        row = self.db.get(Application, application_id)
        if row is None:
            raise RecordNotFoundError(f"application {application_id} not found")
        for key, value in _column_values(Application, fields).items():
            setattr(row, key, value)
        self.db.flush()
        return to_application_record(row)

    def list_events(self, application_id: int) -> list[EventRecord]:
        rows = self.db.execute(_events_stmt(application_id)).scalars().all()
        return [to_event_record(r) for r in rows]

    def list_unassigned_events(self, user_id: int, limit: int = 100) -> list[EventRecord]:
        rows = self.db.execute(_unassigned_events_stmt(user_id, limit)).scalars().all()
        return [to_event_record(r) for r in rows]

    def insert_event(self, fields: dict) -> EventRecord:
        row = EmailEvent(**_column_values(EmailEvent, fields))
        self.db.add(row)
        self.db.flush()
        return to_event_record(row)

    def update_event(self, event_id: int, fields: dict) -> EventRecord:
        row = self.db.get(EmailEvent, event_id)
        if row is None:
            raise RecordNotFoundError(f"event {event_id} not found")
        for key, value in _column_values(EmailEvent, fields).items():
            setattr(row, key, value)
        self.db.flush()
        return to_event_record(row)

    def find_event_by_message(self, user_id: int, message_id: str) -> Optional[EventRecord]:
        row = self.db.execute(_event_by_message_stmt(user_id, message_id)).scalars().first()
        return to_event_record(row) if row else None

    def set_event_application(self, event_id: int, application_id: Optional[int]) -> EventRecord:
        return self.update_event(event_id, {"application_id": application_id})

    def log_action(self, user_id: int, application_id: Optional[int], action_type: str, payload: Optional[dict] = None) -> None:
        self.db.add(
            UserAction(
                user_id=user_id,
                application_id=application_id,
                action_type=action_type,
                action_payload=payload,
            )
        )
        self.db.flush()


# ----------------------------
# Async adapter
# ----------------------------

class AsyncSqlAlchemyStore:
    """ApplicationStore over an AsyncSession (API request handlers)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["AsyncSqlAlchemyStore"]:
        try:
            yield self
            await self.db.commit()
        except BaseException as e:
            await self.db.rollback()
            if is_transient_error(e):
                raise TransientStoreError(str(e)) from e
            raise

    async def find_applications(self, user_id: int, filters: ApplicationFilters) -> list[ApplicationRecord]:
        rows = (await self.db.execute(_applications_stmt(user_id, filters))).scalars().all()
        return [to_application_record(r) for r in rows]

    async def list_applications(self, user_id: int, *, include_archived: bool = False, limit: int = 100, offset: int = 0) -> list[ApplicationRecord]:
        rows = (await self.db.execute(_user_applications_stmt(user_id, include_archived, limit, offset))).scalars().all()
        return [to_application_record(r) for r in rows]

    async def get_application(self, application_id: int) -> Optional[ApplicationRecord]:
        row = await self.db.get(Application, application_id)
        return to_application_record(row) if row else None

    async def create_application(self, fields: dict) -> ApplicationRecord:
        row = Application(**_column_values(Application, fields))
        self.db.add(row)
        await self.db.flush()
        await self.db.refresh(row)
        return to_application_record(row)

    async def update_application(self, application_id: int, fields: dict) -> ApplicationRecord:
        row = await self.db.get(Application, application_id)
        if row is None:
            raise RecordNotFoundError(f"application {application_id} not found")
        for key, value in _column_values(Application, fields).items():
            setattr(row, key, value)
        await self.db.flush()
        await self.db.refresh(row)
        return to_application_record(row)

    async def list_events(self, application_id: int) -> list[EventRecord]:
        rows = (await self.db.execute(_events_stmt(application_id))).scalars().all()
        return [to_event_record(r) for r in rows]

    async def list_unassigned_events(self, user_id: int, limit: int = 100) -> list[EventRecord]:
        rows = (await self.db.execute(_unassigned_events_stmt(user_id, limit))).scalars().all()
        return [to_event_record(r) for r in rows]

    async def insert_event(self, fields: dict) -> EventRecord:
        row = EmailEvent(**_column_values(EmailEvent, fields))
        self.db.add(row)
        await self.db.flush()
        await self.db.refresh(row)
        return to_event_record(row)

    async def update_event(self, event_id: int, fields: dict) -> EventRecord:
        row = await self.db.get(EmailEvent, event_id)
        if row is None:
            raise RecordNotFoundError(f"event {event_id} not found")
        for key, value in _column_values(EmailEvent, fields).items():
            setattr(row, key, value)
        await self.db.flush()
        await self.db.refresh(row)
        return to_event_record(row)

    async def find_event_by_message(self, user_id: int, message_id: str) -> Optional[EventRecord]:
        row = (await self.db.execute(_event_by_message_stmt(user_id, message_id))).scalars().first()
        return to_event_record(row) if row else None

    async def set_event_application(self, event_id: int, application_id: Optional[int]) -> EventRecord:
        return await self.update_event(event_id, {"application_id": application_id})

    async def log_action(self, user_id: int, application_id: Optional[int], action_type: str, payload: Optional[dict] = None) -> None:
        self.db.add(
            UserAction(
                user_id=user_id,
                application_id=application_id,
                action_type=action_type,
                action_payload=payload,
            )
        )
        await self.db.flush()
