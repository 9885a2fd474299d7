"""
Matcher / deduplicator: attach an event to an application, create one, or
leave the event unassigned with a reason code.

Every lookup goes through _lookup(), which reports a unique application,
an ambiguous result (several candidates) or nothing. Ambiguity never
auto-attaches.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..config import settings
from ..domain import (
    AUTO_CREATE_TYPES,
    UNKNOWN_ROLE,
    ApplicationFilters,
    ApplicationRecord,
    ApplicationStatus,
    EventRecord,
    EventType,
    Identity,
    MatchAction,
    MatchResult,
    ReasonCode,
    utcnow,
)
from ..identity_extraction import is_invalid_company_candidate, is_provider_name
from ..text_utils import format_confidence
from .store import ApplicationStore, maybe_await

logger = logging.getLogger(__name__)

CONFIDENT_CONFIRMATION = 0.9
UPGRADE_MARGIN = 0.05


@dataclass(frozen=True)
class MatchThresholds:
    min_company_confidence: float = 0.85
    min_classification_confidence: float = 0.85
    min_match_confidence: float = 0.85
    min_domain_confidence: float = 0.4

    @classmethod
    def from_settings(cls) -> "MatchThresholds":
        return cls(
            min_company_confidence=settings.min_company_confidence,
            min_classification_confidence=settings.min_classification_confidence,
            min_match_confidence=settings.min_match_confidence,
            min_domain_confidence=settings.min_domain_confidence,
        )


@dataclass(frozen=True)
class _Lookup:
    application: Optional[ApplicationRecord] = None
    ambiguous: bool = False

    @property
    def found(self) -> bool:
        return self.application is not None or self.ambiguous


async def _lookup(store: ApplicationStore, user_id: int, filters: ApplicationFilters) -> _Lookup:
    candidates = await maybe_await(store.find_applications(user_id, filters))
    if not candidates:
        return _Lookup()
    if len(candidates) > 1:
        logger.warning(
            f"{len(candidates)} applications match company={filters.company_name!r} "
            f"role={filters.job_title!r} source={filters.source!r} req={filters.external_req_id!r} for user {user_id}"
        )
        return _Lookup(ambiguous=True)
    return _Lookup(application=candidates[0])


# ----------------------------
# Gates
# ----------------------------

def _eligible_type(event: EventRecord) -> bool:
    return event.detected_type in AUTO_CREATE_TYPES


def _loose_eligible(event: EventRecord, identity: Identity, thresholds: MatchThresholds) -> bool:
    return (
        _eligible_type(event)
        and bool(identity.company_name)
        and identity.company_confidence >= thresholds.min_company_confidence
        and event.classification_score >= thresholds.min_classification_confidence
    )


def should_auto_create(event: EventRecord, identity: Identity, thresholds: Optional[MatchThresholds] = None) -> bool:
    thresholds = thresholds or MatchThresholds.from_settings()
    if not _loose_eligible(event, identity, thresholds):
        return False
    if not identity.is_ats_domain and identity.domain_confidence < thresholds.min_domain_confidence:
        return False
    return True


def build_unassigned_reason(
    event: EventRecord, identity: Identity, thresholds: Optional[MatchThresholds] = None
) -> tuple[ReasonCode, str]:
    """First missed gate, as (reason code, human readable detail)."""
    thresholds = thresholds or MatchThresholds.from_settings()
    if not identity.company_name:
        if identity.is_platform_email:
            if identity.body_text_available:
                return ReasonCode.MISSING_IDENTITY, "Missing company (platform sender, signature/body parse failed)."
            return ReasonCode.MISSING_IDENTITY, "Missing company (platform sender, body unavailable)."
        return ReasonCode.MISSING_IDENTITY, "Missing company."
    if identity.company_confidence < thresholds.min_company_confidence:
        return ReasonCode.LOW_CONFIDENCE, (
            f"Company confidence {format_confidence(identity.company_confidence)} "
            f"(< {format_confidence(thresholds.min_company_confidence)})."
        )
    if event.classification_score < thresholds.min_classification_confidence:
        return ReasonCode.NOT_CONFIDENT_FOR_CREATE, (
            f"Classification confidence {format_confidence(event.classification_score)} "
            f"(< {format_confidence(thresholds.min_classification_confidence)})."
        )
    if not identity.is_ats_domain and identity.domain_confidence < thresholds.min_domain_confidence:
        return ReasonCode.AMBIGUOUS_SENDER, "Ambiguous sender domain."
    if identity.match_confidence < thresholds.min_match_confidence:
        return ReasonCode.LOW_CONFIDENCE, (
            f"Identity confidence {format_confidence(identity.match_confidence)} "
            f"(< {format_confidence(thresholds.min_match_confidence)})."
        )
    if not _eligible_type(event):
        kind = event.detected_type.value if event.detected_type else "unknown"
        return ReasonCode.NOT_CONFIDENT_FOR_CREATE, f"Event type {kind} not eligible for auto-create."
    return ReasonCode.NOT_CONFIDENT_FOR_CREATE, "Not confident enough to auto-create."


def infer_initial_status(event: EventRecord) -> tuple[ApplicationStatus, Optional[float]]:
    if event.detected_type == EventType.CONFIRMATION and event.classification_score >= CONFIDENT_CONFIRMATION:
        return ApplicationStatus.APPLIED, event.classification_score
    return ApplicationStatus.UNKNOWN, None


# ----------------------------
# Lookups
# ----------------------------

async def _find_for_rejection(store, user_id: int, identity: Identity) -> _Lookup:
    """Requisition ID, role, company + sender domain, then company; first non-empty tier decides."""
    tiers = []
    if identity.external_req_id:
        tiers.append(ApplicationFilters(company_name=identity.company_name, external_req_id=identity.external_req_id))
    if identity.job_title:
        tiers.append(ApplicationFilters(company_name=identity.company_name, job_title=identity.job_title))
    if identity.sender_domain:
        tiers.append(ApplicationFilters(company_name=identity.company_name, source=identity.sender_domain))
    tiers.append(ApplicationFilters(company_name=identity.company_name))
    for filters in tiers:
        found = await _lookup(store, user_id, filters)
        if found.found:
            return found
    return _Lookup()


async def _find_exact(store, user_id: int, identity: Identity) -> _Lookup:
    if identity.external_req_id:
        return await _lookup(
            store,
            user_id,
            ApplicationFilters(company_name=identity.company_name, external_req_id=identity.external_req_id),
        )
    return await _lookup(
        store,
        user_id,
        ApplicationFilters(
            company_name=identity.company_name,
            job_title=identity.job_title or None,
            source=identity.sender_domain or None,
        ),
    )


async def _find_loose(store, user_id: int, identity: Identity) -> _Lookup:
    return await _lookup(
        store,
        user_id,
        ApplicationFilters(company_name=identity.company_name, job_title=identity.job_title or None),
    )


# ----------------------------
# Attach / create
# ----------------------------

def _should_upgrade(current: Optional[str], current_conf: Optional[float], new: str, new_conf: Optional[float], invalid: bool) -> bool:
    if invalid:
        return True
    new_conf = new_conf or 0.0
    current_conf = current_conf or 0.0
    if new == current:
        return new_conf > current_conf
    return new_conf > current_conf + UPGRADE_MARGIN


def attach_updates(application: ApplicationRecord, event: EventRecord, identity: Identity) -> dict:
    """Activity, applied date, requisition ID and company/role upgrades for an attach."""
    updates: dict = {}
    when = event.occurred_at
    if when is not None:
        if application.last_activity_at is None or when > application.last_activity_at:
            updates["last_activity_at"] = when
        if (
            event.detected_type == EventType.CONFIRMATION
            and event.classification_score >= CONFIDENT_CONFIRMATION
            and (application.applied_at is None or when < application.applied_at)
        ):
            updates["applied_at"] = when

    if identity.company_name and application.company_source != "manual":
        current = application.company_name
        invalid = not current or is_provider_name(current) or is_invalid_company_candidate(current)
        if _should_upgrade(current, application.company_confidence, identity.company_name, identity.company_confidence, invalid):
            updates.update(
                company_name=identity.company_name,
                company_confidence=identity.company_confidence,
                company_source="email",
            )

    if identity.external_req_id and not application.external_req_id:
        updates["external_req_id"] = identity.external_req_id

    if identity.job_title and application.role_source != "manual":
        current = application.job_title
        invalid = not current or current == UNKNOWN_ROLE
        if _should_upgrade(current, application.role_confidence, identity.job_title, identity.role_confidence, invalid):
            updates.update(
                job_title=identity.job_title,
                role_confidence=identity.role_confidence,
                role_source="email",
            )
    return updates


async def _attach(store, application: ApplicationRecord, event: EventRecord, identity: Identity) -> MatchResult:
    await maybe_await(store.set_event_application(event.id, application.id))
    updates = attach_updates(application, event, identity)
    if updates:
        await maybe_await(store.update_application(application.id, updates))
    logger.info(f"Event {event.id} attached to application {application.id} ({application.company_name})")
    return MatchResult(action=MatchAction.ATTACHED, application_id=application.id)


async def _create(store, user_id: int, event: EventRecord, identity: Identity) -> MatchResult:
    status, status_confidence = infer_initial_status(event)
    when = event.occurred_at or utcnow()
    if status == ApplicationStatus.APPLIED:
        explanation = f"Auto-applied from confirmation event {event.id}."
    else:
        explanation = "Auto-created with unknown status."
    application = await maybe_await(
        store.create_application(
            {
                "user_id": user_id,
                "company_name": identity.company_name,
                "company_confidence": identity.company_confidence,
                "company_source": "email",
                "job_title": identity.job_title or UNKNOWN_ROLE,
                "role_confidence": identity.role_confidence if identity.job_title else None,
                "role_source": "email" if identity.job_title else None,
                "source": identity.sender_domain,
                "external_req_id": identity.external_req_id,
                "current_status": status,
                "status_confidence": status_confidence,
                "status_explanation": explanation,
                "status_source": "inferred",
                "applied_at": when if status == ApplicationStatus.APPLIED else None,
                "last_activity_at": when,
            }
        )
    )
    await maybe_await(store.set_event_application(event.id, application.id))
    logger.info(
        f"Created application {application.id} for {identity.company_name!r} "
        f"({application.job_title}) from event {event.id}"
    )
    return MatchResult(action=MatchAction.CREATED, application_id=application.id)


def _unassigned(event: EventRecord, reason: ReasonCode, detail: str) -> MatchResult:
    logger.info(f"Event {event.id} left unassigned: {reason.value} ({detail})")
    return MatchResult(action=MatchAction.UNASSIGNED, reason=reason, detail=detail)


async def match_event(
    event: EventRecord,
    identity: Identity,
    store: ApplicationStore,
    user_id: int,
    thresholds: Optional[MatchThresholds] = None,
) -> MatchResult:
    """
    Attach `event` to an existing application, create one for it, or leave it
    unassigned. The caller owns the transaction; this only issues store calls.
    """
    thresholds = thresholds or MatchThresholds.from_settings()

    if not identity.company_name:
        return _unassigned(event, *build_unassigned_reason(event, identity, thresholds))

    found = _Lookup()
    if event.detected_type == EventType.REJECTION:
        found = await _find_for_rejection(store, user_id, identity)
        if found.ambiguous:
            return _unassigned(event, ReasonCode.AMBIGUOUS_MATCH, "Multiple applications match this rejection email.")

    if not found.found and identity.match_confidence >= thresholds.min_match_confidence:
        found = await _find_exact(store, user_id, identity)
        if found.ambiguous:
            return _unassigned(event, ReasonCode.AMBIGUOUS_MATCH, "Multiple applications match this company and role.")

    # Loose lookup only without a requisition ID.
    if not found.found and not identity.external_req_id and _loose_eligible(event, identity, thresholds):
        found = await _find_loose(store, user_id, identity)
        if found.ambiguous:
            return _unassigned(event, ReasonCode.AMBIGUOUS_MATCH, "Multiple applications match this company.")

    if found.application is not None:
        return await _attach(store, found.application, event, identity)

    if should_auto_create(event, identity, thresholds):
        return await _create(store, user_id, event, identity)

    return _unassigned(event, *build_unassigned_reason(event, identity, thresholds))
