"""
Ingestion pipeline: classifier -> identity extractor -> matcher -> status inference.

One IngestionPipeline serves one user against one store. Every public
operation runs inside the user's lock and a single store transaction, bounded
by settings.store_timeout_s, so an inserted event is never visible without
its application's recomputed status.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from contextlib import AsyncExitStack, asynccontextmanager
from contextvars import ContextVar
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from ..config import settings
from ..domain import (
    ApplicationStatus,
    ClassificationResult,
    EventRecord,
    Identity,
    InboundMessage,
    MatchAction,
    MatchResult,
    ProcessResult,
    ReinferResult,
    utcnow,
)
from ..email_classifier import Classifier
from ..identity_extraction import IdentityEnricher, extract_identity
from ..identity_patterns import DEFAULT_PATTERNS, IdentityPatterns
from ..text_utils import parse_received_at
from .locks import get_lock_registry
from .matching import MatchThresholds, attach_updates, match_event
from .overrides import (
    MergeResult,
    OverrideResult,
    apply_status_override,
    clear_status_override,
    merge_applications,
)
from .status_inference import InferencePolicy, decide_update, infer_status
from .store import ApplicationStore, TransientStoreError, maybe_await

logger = logging.getLogger(__name__)

T = TypeVar("T")

INFER_STATUS = "INFER_STATUS"


class PipelineIntegrityError(Exception):
    """Stored rows contradict each other (e.g. an event points at a missing application)."""


# Monotonic deadline of the operation running in the current task.
_deadline: ContextVar[Optional[float]] = ContextVar("store_deadline", default=None)


class _DeadlineStore:
    """
    Store wrapper that fails any sync call returning after the operation
    deadline. wait_for cannot interrupt a blocking call, so the check runs
    once the call returns and the open transaction rolls back.
    """

    def __init__(self, store: ApplicationStore):
        self._store = store

    def transaction(self):
        return self._store.transaction()

    def __getattr__(self, name):
        attr = getattr(self._store, name)
        if not callable(attr):
            return attr

        def call(*args, **kwargs):
            value = attr(*args, **kwargs)
            if not inspect.isawaitable(value):
                deadline = _deadline.get()
                if deadline is not None and time.monotonic() > deadline:
                    raise TransientStoreError(f"store call {name} finished past the operation deadline")
            return value

        return call


class IngestionPipeline:
    def __init__(
        self,
        store: ApplicationStore,
        user_id: int,
        *,
        classifier: Optional[Classifier] = None,
        patterns: IdentityPatterns = DEFAULT_PATTERNS,
        thresholds: Optional[MatchThresholds] = None,
        policy: Optional[InferencePolicy] = None,
        locks=None,
        enricher: Optional[IdentityEnricher] = None,
        timeout_s: Optional[float] = None,
    ):
        self.store = _DeadlineStore(store)
        self.user_id = user_id
        self.classifier = classifier or Classifier()
        self.patterns = patterns
        self.thresholds = thresholds or MatchThresholds.from_settings()
        self.policy = policy or InferencePolicy.from_settings()
        self.locks = locks or get_lock_registry()
        self.enricher = enricher
        self.timeout_s = settings.store_timeout_s if timeout_s is None else timeout_s

    # ----------------------------
    # Critical section
    # ----------------------------

    @property
    def lock_key(self) -> str:
        return f"user:{self.user_id}"

    @asynccontextmanager
    async def _critical_section(self):
        async with AsyncExitStack() as stack:
            await stack.enter_async_context(self.locks.hold_async(self.lock_key))
            tx = self.store.transaction()
            if hasattr(tx, "__aenter__"):
                await stack.enter_async_context(tx)
            else:
                stack.enter_context(tx)
            yield

    async def _run(self, operation: Callable[[], Awaitable[T]]) -> T:
        bounded = bool(self.timeout_s) and self.timeout_s > 0

        async def guarded() -> T:
            token = _deadline.set(time.monotonic() + self.timeout_s if bounded else None)
            try:
                async with self._critical_section():
                    return await operation()
            finally:
                _deadline.reset(token)

        if not bounded:
            return await guarded()
        try:
            return await asyncio.wait_for(guarded(), self.timeout_s)
        except asyncio.TimeoutError as e:
            raise TransientStoreError(f"store operation exceeded {self.timeout_s}s for user {self.user_id}") from e

    # ----------------------------
    # Public operations
    # ----------------------------

    async def process_message(self, message: InboundMessage) -> ProcessResult:
        return await self._run(lambda: self._process_message(message))

    async def process_messages(self, messages: Iterable[InboundMessage]) -> list[ProcessResult]:
        """Process a batch; messages that hit an integrity error are logged and skipped."""
        results = []
        for message in messages:
            try:
                results.append(await self.process_message(message))
            except PipelineIntegrityError as e:
                logger.warning(f"Skipping message {message.id} for user {self.user_id}: {e}")
        return results

    async def reinfer_application(self, application_id: int) -> ReinferResult:
        return await self._run(lambda: self._reinfer(application_id))

    async def override_status(
        self, application_id: int, status: ApplicationStatus, explanation: Optional[str] = None
    ) -> OverrideResult:
        return await self._run(
            lambda: apply_status_override(self.store, self.user_id, application_id, status, explanation)
        )

    async def clear_override(self, application_id: int) -> tuple[OverrideResult, Optional[ReinferResult]]:
        async def operation():
            result = await clear_status_override(self.store, self.user_id, application_id)
            if result.status != "ok":
                return result, None
            return result, await self._reinfer(application_id)

        return await self._run(operation)

    async def merge(self, source_id: int, target_id: int) -> tuple[MergeResult, Optional[ReinferResult]]:
        async def operation():
            result = await merge_applications(self.store, self.user_id, source_id, target_id)
            if result.status != "ok":
                return result, None
            return result, await self._reinfer(target_id)

        return await self._run(operation)

    # ----------------------------
    # Steps
    # ----------------------------

    def classify(self, message: InboundMessage) -> ClassificationResult:
        return self.classifier.classify(message.subject, message.snippet, message.sender)

    def identify(self, message: InboundMessage) -> Identity:
        return extract_identity(
            message.subject,
            message.sender,
            message.snippet,
            message.body_text,
            patterns=self.patterns,
            enricher=self.enricher,
        )

    def _event_fields(self, message: InboundMessage, classification: ClassificationResult, identity: Identity) -> dict:
        return {
            "detected_type": classification.event_type,
            "confidence_score": classification.confidence_score,
            "classification_confidence": classification.confidence_score,
            "explanation": classification.explanation,
            "sender": message.sender,
            "subject": message.subject,
            "snippet": message.snippet,
            "internal_date": parse_received_at(message.received_at) or utcnow(),
            "role_title": identity.job_title,
            "role_confidence": identity.role_confidence,
            "external_req_id": identity.external_req_id,
        }

    async def _process_message(self, message: InboundMessage) -> ProcessResult:
        store = self.store
        classification = self.classify(message)
        existing: Optional[EventRecord] = await maybe_await(store.find_event_by_message(self.user_id, message.id))

        if not classification.is_job_related:
            if existing is None:
                logger.debug(f"Message {message.id} not job related ({classification.reason})")
                return ProcessResult(message.id, classification, None, None, None)
            # Re-classified away from job related: keep the row, drop its type.
            event = await maybe_await(
                store.update_event(
                    existing.id,
                    {
                        "detected_type": None,
                        "confidence_score": classification.confidence_score,
                        "classification_confidence": classification.confidence_score,
                        "explanation": classification.explanation,
                    },
                )
            )
            inference = None
            if event.application_id is not None:
                await self._require_application(event)
                inference = await self._reinfer(event.application_id)
            logger.info(f"Message {message.id} re-classified as not job related; event {event.id} kept")
            return ProcessResult(message.id, classification, None, event, None, inference)

        identity = self.identify(message)
        fields = self._event_fields(message, classification, identity)
        if existing is None:
            event = await maybe_await(
                store.insert_event({"user_id": self.user_id, "message_id": message.id, **fields})
            )
        else:
            event = await maybe_await(store.update_event(existing.id, fields))
            logger.info(f"Message {message.id} re-processed into existing event {event.id}")

        if event.application_id is not None:
            # Already attached; only merge moves it. Refresh activity and identity.
            application = await self._require_application(event)
            updates = attach_updates(application, event, identity)
            if updates:
                await maybe_await(store.update_application(application.id, updates))
            match = MatchResult(action=MatchAction.ATTACHED, application_id=application.id)
        else:
            match = await match_event(event, identity, store, self.user_id, self.thresholds)

        event = await maybe_await(
            store.update_event(
                event.id,
                {
                    "reason_code": match.reason.value if match.reason else None,
                    "reason_detail": match.detail,
                },
            )
        )

        inference = None
        if match.application_id is not None:
            inference = await self._reinfer(match.application_id)
        return ProcessResult(message.id, classification, identity, event, match, inference)

    async def _require_application(self, event: EventRecord):
        application = await maybe_await(self.store.get_application(event.application_id))
        if application is None:
            raise PipelineIntegrityError(
                f"event {event.id} references missing application {event.application_id}"
            )
        return application

    async def _reinfer(self, application_id: int) -> ReinferResult:
        store = self.store
        application = await maybe_await(store.get_application(application_id))
        if application is None or application.user_id != self.user_id:
            return ReinferResult(status="not_found", application_id=application_id)
        if application.archived:
            return ReinferResult(status="archived", application_id=application_id)

        events = await maybe_await(store.list_events(application.id))
        now = utcnow()
        result = infer_status(application, events, policy=self.policy, now=now)
        logger.info(
            f"Inference for application {application.id}: {result.inferred_status.value} "
            f"({result.confidence:.2f}, suggested_only={result.suggested_only}, events={list(result.event_ids)})"
        )
        await maybe_await(
            store.log_action(
                self.user_id,
                application.id,
                INFER_STATUS,
                {
                    "inferred_status": result.inferred_status.value,
                    "confidence": result.confidence,
                    "suggested_only": result.suggested_only,
                    "explanation": result.explanation,
                    "event_ids": list(result.event_ids),
                },
            )
        )

        decision = decide_update(application, result, policy=self.policy, now=now)
        if decision.blocked is not None:
            logger.info(
                f"Inference blocked for application {application.id}: "
                f"{result.inferred_status.value} ({decision.blocked.value})"
            )
        await maybe_await(store.update_application(application.id, decision.updates))
        return ReinferResult(
            status="ok",
            application_id=application.id,
            inferred_status=result.inferred_status,
            confidence=result.confidence,
            applied=decision.applied,
            suggested=decision.suggested,
            blocked=decision.blocked,
        )
