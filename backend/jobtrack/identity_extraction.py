"""
Company / role / sender-domain identity extraction.

extract_identity() never raises: a missing signal is None with confidence 0.
Company sources are tried in order and the first usable one wins:

1. structured subject templates ("for ROLE at COMPANY"), then company-only
   subject/snippet phrases ("thank you for applying to X");
2. the sender (display-name templates, a plain non-generic display name,
   known ATS aliases, the sender domain's base label);
3. the body (signature block, then body phrases).

match_confidence is the minimum of company, domain and (when present) role
confidence, so one weak signal caps the whole identity.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from .config import settings
from .domain import Identity
from .identity_patterns import (
    COMPANY_AT_ATS,
    DEFAULT_PATTERNS,
    DOMAIN_COMPANY_CONFIDENCE,
    LOCALPART_CONFIDENCE,
    LOCALPART_CONFIRMED_CONFIDENCE,
    SENDER_DISPLAY_NAME_CONFIDENCE,
    SIGNATURE_COMPANY_CONFIDENCE,
    IdentityPatterns,
)
from .job_title_extraction import extract_job_title
from .text_utils import (
    base_domain,
    extract_sender_domain,
    extract_sender_local_part,
    extract_sender_name,
    normalize,
    slugify,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompanyCandidate:
    name: str
    confidence: float
    explanation: str


@dataclass(frozen=True)
class EnrichmentHint:
    """Corroborating identity fields from an optional enrichment step."""

    company_name: Optional[str] = None
    job_title: Optional[str] = None
    confidence: float = 0.0


# (subject, sender, snippet, body_text) -> EnrichmentHint | None
IdentityEnricher = Callable[[str, str, str, Optional[str]], Optional[EnrichmentHint]]

MIN_ENRICHMENT_CONFIDENCE = 0.85


# ----------------------------
# Company sanitation
# ----------------------------

def is_provider_name(name: Optional[str], patterns: IdentityPatterns = DEFAULT_PATTERNS) -> bool:
    """Whole-word match: 'Lever Hire' is a provider, 'Cleveland Clinic' is not."""
    slug = slugify(name)
    if not slug:
        return False
    words = {slugify(w) for w in re.split(r"[\s,;:/|()\[\]]+", normalize(name)) if w}
    words.add(slug)
    return any(slugify(provider) in words for provider in patterns.provider_display_names)


def is_invalid_company_candidate(value: Optional[str], patterns: IdentityPatterns = DEFAULT_PATTERNS) -> bool:
    text = normalize(value)
    if len(text) < 3:
        return True
    if not re.search(r"[A-Za-z]", text):
        return True
    lower = text.lower()
    if re.match(r"^(?:hi|hello|dear|hey)\b", lower):
        return True
    if re.match(r"^(?:thanks|thank you)\b", lower):
        return True
    if re.search(r"unsubscribe|view in browser", lower):
        return True
    if lower in patterns.invalid_company_terms:
        return True
    words = lower.split()
    return bool(words) and all(w in patterns.invalid_company_terms for w in words)


def _clean_entity(value: str) -> str:
    s = normalize(value)
    s = re.sub(r"\s+-\s+.*$", "", s)
    s = re.sub(r"\s+\(.*\)$", "", s)
    s = re.sub(r"\s+\[.*\]$", "", s)
    return s.strip()


def clean_company_candidate(value: Optional[str], patterns: IdentityPatterns = DEFAULT_PATTERNS) -> Optional[str]:
    """Strip legal suffixes, team words and no-reply prefixes; None when unusable."""
    if not value:
        return None
    s = _clean_entity(value)
    s = re.sub(r"\b(?:and|&)\s+its\s+affiliates\b", "", s, flags=re.I).strip()
    s = re.sub(r",?\s+(?:inc|llc|ltd|corp|corporation|co)\.?$", "", s, flags=re.I)
    s = re.sub(r"\s+for\s+.*$", "", s, flags=re.I)
    s = re.sub(
        r"\s+(?:careers|jobs|recruiting|hiring|hiring team|talent acquisition|talent team|hr|human resources|applications?)$",
        "",
        s,
        flags=re.I,
    )
    s = re.sub(r"^(?:no[-\s]?reply|noreply|do not reply)\b[:\s]*", "", s, flags=re.I)
    s = re.sub(r"[,:;|]+$", "", s).strip()
    if not s or is_provider_name(s, patterns) or is_invalid_company_candidate(s, patterns):
        return None
    return s


def _candidate(value: Optional[str], confidence: float, explanation: str, patterns: IdentityPatterns) -> Optional[CompanyCandidate]:
    name = clean_company_candidate(value, patterns)
    if not name:
        return None
    return CompanyCandidate(name=name, confidence=confidence, explanation=explanation)


# ----------------------------
# Company sources
# ----------------------------

def extract_company_role_from_subject(
    subject: Optional[str], patterns: IdentityPatterns = DEFAULT_PATTERNS
) -> tuple[Optional[CompanyCandidate], Optional[str]]:
    """Structured "for ROLE at COMPANY" style subjects. Returns (company, role)."""
    text = normalize(subject)
    for rule in patterns.role_company_patterns:
        m = rule.regex.search(text)
        if not m:
            continue
        role = _clean_entity(m.group(1))
        company = _candidate(m.group(2), rule.confidence, f"Matched {rule.name} pattern.", patterns)
        if role and company:
            return company, role
    return None, None


def extract_company_from_text(text: Optional[str], patterns: IdentityPatterns = DEFAULT_PATTERNS) -> Optional[CompanyCandidate]:
    text = normalize(text)
    if not text:
        return None
    for rule in patterns.company_only_patterns:
        m = rule.regex.search(text)
        if not m:
            continue
        company = _candidate(m.group(1), rule.confidence, f"Matched {rule.name} pattern.", patterns)
        if company:
            return company
    return None


def _is_generic_sender_name(name: str, patterns: IdentityPatterns) -> bool:
    text = normalize(name).lower()
    if not text:
        return True
    return any(text == term or text.startswith(f"{term} ") for term in patterns.generic_sender_names)


def extract_company_from_sender(sender: Optional[str], patterns: IdentityPatterns = DEFAULT_PATTERNS) -> Optional[CompanyCandidate]:
    name = extract_sender_name(sender)
    if not name:
        return None
    for rule in patterns.sender_company_patterns:
        m = rule.regex.search(name)
        if not m:
            continue
        if rule.name == COMPANY_AT_ATS.name:
            # "Acme via Greenhouse" only when the suffix really is an ATS.
            provider = (m.group(2) or "").lower().split(".")[0]
            if provider not in patterns.ats_base_domains:
                continue
        company = _candidate(m.group(1), rule.confidence, f"Matched {rule.name} sender pattern.", patterns)
        if company:
            return company
    if not _is_generic_sender_name(name, patterns):
        return _candidate(name, SENDER_DISPLAY_NAME_CONFIDENCE, "Used sender display name as company.", patterns)
    return None


def extract_company_from_local_part(
    sender: Optional[str], body_text: Optional[str], patterns: IdentityPatterns = DEFAULT_PATTERNS
) -> Optional[CompanyCandidate]:
    """ATS aliases like pru@myworkday.com name the employer."""
    local_part = extract_sender_local_part(sender)
    if not local_part:
        return None
    mapped = patterns.ats_localpart_company_map.get(local_part.lower())
    name = clean_company_candidate(mapped, patterns)
    if not name:
        return None
    body = body_text or ""
    confirmed = bool(body) and re.search(rf"\b{re.escape(name)}\b", body, re.I) is not None
    if body.strip() and not confirmed:
        return None
    if confirmed:
        return CompanyCandidate(name, LOCALPART_CONFIRMED_CONFIDENCE, "Derived company from sender alias confirmed in body.")
    return CompanyCandidate(name, LOCALPART_CONFIDENCE, "Derived company from sender alias.")


def company_from_domain(sender_domain: Optional[str], patterns: IdentityPatterns = DEFAULT_PATTERNS) -> Optional[CompanyCandidate]:
    base = base_domain(sender_domain)
    if not base or base in patterns.generic_domains or base in patterns.ats_base_domains:
        return None
    words = [part[:1].upper() + part[1:] for part in re.split(r"[-_.]", base) if part]
    return _candidate(" ".join(words), DOMAIN_COMPANY_CONFIDENCE, "Derived company from sender domain.", patterns)


_SIGNATURE_NOISE = (
    re.compile(r"^(?:best regards|kind regards|warm regards|regards|sincerely|cheers)[,:\s-]*", re.I),
    re.compile(r"^(?:thanks|thank you)[,:\s-]*", re.I),
    re.compile(r"^(?:hi|hello|dear|hey)[,:\s-]*", re.I),
    re.compile(r"\b(?:recruiting team|talent acquisition|talent team|hiring team|people team|recruiting)\b", re.I),
)


def _strip_signature_noise(line: str) -> str:
    text = line or ""
    for pattern in _SIGNATURE_NOISE:
        text = pattern.sub("", text)
    return normalize(text)


def extract_company_from_signature(body_text: Optional[str], patterns: IdentityPatterns = DEFAULT_PATTERNS) -> Optional[CompanyCandidate]:
    """Scan the trailing lines of the body, bottom up, for a company sign-off."""
    raw = body_text or ""
    if not raw.strip():
        return None
    lines = [line.strip() for line in raw.splitlines() if line.strip()]
    for line in reversed(lines[-patterns.signature_scan_lines:]):
        lower = line.lower()
        if "unsubscribe" in lower or "view in browser" in lower:
            continue
        if "@" in line or re.search(r"https?://|www\.", lower):
            continue
        candidate = _strip_signature_noise(line)
        if not candidate:
            continue
        candidate = re.sub(r"\b(?:and|&)\s+its\s+affiliates\b", "", candidate, flags=re.I)
        m = re.match(r"^(.+?)\s+(?:recruiting|recruiting team|hiring team|talent acquisition|talent team|careers)$", candidate, re.I)
        if m:
            candidate = m.group(1)
        company = _candidate(candidate, SIGNATURE_COMPANY_CONFIDENCE, "Derived company from email signature.", patterns)
        if company:
            return company
    return None


def extract_company_from_body(body_text: Optional[str], patterns: IdentityPatterns = DEFAULT_PATTERNS) -> Optional[CompanyCandidate]:
    text = normalize(body_text)
    if not text:
        return None
    for rule in patterns.body_company_patterns:
        m = rule.regex.search(text)
        if not m:
            continue
        company = _candidate(m.group(1), rule.confidence, f"Matched {rule.name} pattern in body.", patterns)
        if company and not re.search(r"\b(?:position|role|job)\b", company.name, re.I):
            return company
    return None


# ----------------------------
# Domain confidence
# ----------------------------

def domain_confidence(
    company_name: Optional[str], sender_domain: Optional[str], patterns: IdentityPatterns = DEFAULT_PATTERNS
) -> tuple[float, bool]:
    """(score, is_ats_domain) for how well the sender domain corroborates the company."""
    if not company_name or not sender_domain:
        return 0.0, False
    base = base_domain(sender_domain)
    if not base or base in patterns.generic_domains:
        return 0.2, False
    if base in patterns.ats_base_domains:
        return 0.9, True
    company_slug = slugify(company_name)
    domain_slug = slugify(base)
    if not company_slug or not domain_slug:
        return 0.2, False
    if company_slug in domain_slug or domain_slug in company_slug:
        return 0.95, False
    return 0.4, False


def is_ats_domain(sender_domain: Optional[str], patterns: IdentityPatterns = DEFAULT_PATTERNS) -> bool:
    base = base_domain(sender_domain)
    return bool(base) and base in patterns.ats_base_domains


def build_match_key(company_name: Optional[str], job_title: Optional[str], sender_domain: Optional[str]) -> Optional[str]:
    """Stable dedupe key 'company|role|domain' (slugged); None if any part is missing."""
    if not company_name or not job_title or not sender_domain:
        return None
    return f"{slugify(company_name)}|{slugify(job_title)}|{slugify(sender_domain)}"


# ----------------------------
# Requisition IDs
# ----------------------------

_REQ_ID_SHAPE = re.compile(r"^[A-Z0-9][A-Z0-9-]{1,39}$")


def normalize_external_req_id(value: Optional[str]) -> Optional[str]:
    """' r-100 ' -> 'R-100'; None unless the value looks like an ID (has a digit)."""
    text = re.sub(r"\s+", "", str(value or "")).upper().lstrip("#").strip(".:-")
    if not _REQ_ID_SHAPE.match(text) or not re.search(r"\d", text):
        return None
    return text


def extract_external_req_id(
    subject: Optional[str],
    snippet: Optional[str] = None,
    body_text: Optional[str] = None,
    patterns: IdentityPatterns = DEFAULT_PATTERNS,
) -> Optional[str]:
    """First requisition or job ID found in subject, then snippet, then body."""
    body = (body_text or "")[: patterns.max_body_chars]
    for text in (normalize(subject), normalize(snippet), body):
        if not text:
            continue
        for pattern in patterns.req_id_patterns:
            m = pattern.regex.search(text)
            value = normalize_external_req_id(m.group(1)) if m else None
            if value:
                return value
    return None


# ----------------------------
# Identity
# ----------------------------

def _first(*sources: Callable[[], Optional[CompanyCandidate]]) -> Optional[CompanyCandidate]:
    for source in sources:
        found = source()
        if found is not None:
            return found
    return None


def _apply_enrichment(
    company: Optional[CompanyCandidate],
    role: Optional[str],
    role_confidence: Optional[float],
    hint: Optional[EnrichmentHint],
    patterns: IdentityPatterns,
) -> tuple[Optional[CompanyCandidate], Optional[str], Optional[float]]:
    if hint is None or hint.confidence < MIN_ENRICHMENT_CONFIDENCE:
        return company, role, role_confidence
    logger.debug(f"Enrichment hint accepted (confidence={hint.confidence:.2f})")
    if company is None and hint.company_name:
        company = _candidate(hint.company_name, hint.confidence, "Company from enrichment.", patterns)
    if role is None and hint.job_title:
        role, role_confidence = normalize(hint.job_title) or None, hint.confidence
    return company, role, role_confidence


def extract_identity(
    subject: Optional[str],
    sender: Optional[str],
    snippet: Optional[str] = None,
    body_text: Optional[str] = None,
    *,
    patterns: IdentityPatterns = DEFAULT_PATTERNS,
    min_role_confidence: Optional[float] = None,
    enricher: Optional[IdentityEnricher] = None,
) -> Identity:
    if min_role_confidence is None:
        min_role_confidence = settings.min_role_confidence
    subject_text = normalize(subject)
    snippet_text = normalize(snippet)
    body_raw = body_text or ""
    has_body = bool(body_raw.strip())
    sender_domain = extract_sender_domain(sender)
    sender_name = extract_sender_name(sender)
    ats_sender = is_ats_domain(sender_domain, patterns)
    platform_sender = ats_sender or (bool(sender_name) and is_provider_name(sender_name, patterns))

    structured_company, structured_role = extract_company_role_from_subject(subject_text, patterns)

    company = _first(
        lambda: structured_company,
        lambda: extract_company_from_text(subject_text, patterns),
        lambda: extract_company_from_text(snippet_text, patterns),
        lambda: extract_company_from_sender(sender, patterns),
        lambda: extract_company_from_local_part(sender, body_raw, patterns) if platform_sender else None,
        lambda: company_from_domain(sender_domain, patterns),
        lambda: extract_company_from_signature(body_raw, patterns) if has_body else None,
        lambda: extract_company_from_body(body_raw, patterns) if has_body else None,
    )
    company_name = company.name if company else None

    role: Optional[str] = None
    role_confidence: Optional[float] = None
    role_explanation: Optional[str] = None
    if structured_role and structured_company is not None:
        role, role_confidence = structured_role, structured_company.confidence
        role_explanation = structured_company.explanation
    else:
        best = extract_job_title(
            subject=subject_text,
            snippet=snippet_text,
            body=body_raw,
            sender=sender,
            company_name=company_name,
            patterns=patterns,
        )
        if best is not None and best.confidence >= min_role_confidence:
            role, role_confidence, role_explanation = best.value, best.confidence, best.explanation

    if enricher is not None:
        try:
            hint = enricher(subject_text, sender or "", snippet_text, body_text)
        except Exception as e:
            logger.warning(f"Identity enrichment failed, continuing without it: {e}")
            hint = None
        company, role, role_confidence = _apply_enrichment(company, role, role_confidence, hint, patterns)
        company_name = company.name if company else None

    company_conf = company.confidence if company else 0.0
    domain_score, ats_domain = domain_confidence(company_name, sender_domain, patterns)
    match_conf = min(company_conf, domain_score)
    if role is not None:
        match_conf = min(match_conf, role_confidence or 0.0)

    parts = []
    if company is not None:
        parts.append(company.explanation)
    if role is not None and role_explanation and role_explanation not in parts:
        parts.append(role_explanation)
    if ats_domain:
        parts.append("ATS domain detected.")

    return Identity(
        company_name=company_name,
        job_title=role,
        sender_domain=sender_domain,
        company_confidence=company_conf,
        role_confidence=role_confidence if role is not None else None,
        domain_confidence=domain_score,
        match_confidence=match_conf,
        is_ats_domain=ats_domain,
        explanation=" ".join(parts) if parts else "No identity match.",
        is_platform_email=platform_sender,
        body_text_available=has_body,
        external_req_id=extract_external_req_id(subject_text, snippet_text, body_raw, patterns),
    )
