"""
Pattern and lookup tables for company / role / sender-domain extraction.

Everything here is immutable and built once at import. IdentityPatterns is
passed into the extractor so tests (or deployments with extra ATS vendors)
can substitute their own tables with dataclasses.replace().
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Pattern


@dataclass(frozen=True)
class NamedPattern:
    name: str
    regex: Pattern[str]
    confidence: float


def _p(name: str, pattern: str, confidence: float, flags: int = re.I) -> NamedPattern:
    return NamedPattern(name=name, regex=re.compile(pattern, flags), confidence=confidence)


# Personal mail providers: the domain says nothing about the employer.
GENERIC_DOMAINS = frozenset({"gmail", "googlemail", "yahoo", "outlook", "hotmail", "live", "icloud", "protonmail"})

# Applicant tracking systems send on behalf of employers.
ATS_BASE_DOMAINS = frozenset(
    {
        "icims",
        "taleo",
        "talemetry",
        "workday",
        "myworkday",
        "myworkdayjobs",
        "greenhouse",
        "greenhouse-mail",
        "workable",
        "workablemail",
        "lever",
        "smartrecruiters",
        "ashbyhq",
        "successfactors",
        "adp",
        "bamboohr",
    }
)

PROVIDER_DISPLAY_NAMES = ATS_BASE_DOMAINS | {"ashby"}

# ATS sender aliases that identify the employer.
ATS_LOCALPART_COMPANY_MAP = MappingProxyType({"pru": "Prudential"})

GENERIC_SENDER_NAMES = (
    "no reply",
    "noreply",
    "no-reply",
    "do not reply",
    "notifications",
    "notification",
    "jobs",
    "careers",
    "recruiting",
    "talent acquisition",
    "talent team",
    "hiring",
    "hiring team",
    "hr",
    "human resources",
    "application",
    "applications",
    "support",
    "info",
)

INVALID_COMPANY_TERMS = frozenset(
    {
        "hi",
        "hello",
        "dear",
        "hey",
        "thanks",
        "thank you",
        "regards",
        "best regards",
        "kind regards",
        "sincerely",
        "team",
        "recruiting",
        "recruiting team",
        "hiring team",
        "talent team",
        "talent acquisition",
        "careers",
        "applications",
        "application",
        "candidate",
        "candidates",
        "opportunity",
        "position",
        "job",
        "hr",
        "human resources",
    }
)

_ROLE_CHARS = r"[A-Z][A-Za-z0-9/&.'\- ]{2,80}"
_COMPANY_CHARS = r"[A-Z][A-Za-z0-9&.'\- ]{2,60}"

# Role and company from one subject template. Case sensitive: both must be capitalized.
ROLE_COMPANY_PATTERNS = (
    _p("for_role_at_company", rf"\bfor\s+({_ROLE_CHARS})\s+(?:at|with|from)\s+({_COMPANY_CHARS})\b", 0.95, 0),
    _p("position_role_at_company", rf"\bposition[:\s]+({_ROLE_CHARS})\s+(?:at|with|from)\s+({_COMPANY_CHARS})\b", 0.93, 0),
    _p("role_at_company", rf"\brole[:\s]+({_ROLE_CHARS})\s+(?:at|with|from)\s+({_COMPANY_CHARS})\b", 0.93, 0),
)

_NAME = r"([A-Z][A-Za-z0-9/&.'\- ]{2,80})"

COMPANY_ONLY_PATTERNS = (
    _p("thank_you_applying_to", rf"thank\s+you\s+for\s+applying\s+to\s+{_NAME}", 0.92),
    _p("thanks_for_applying_to", rf"thanks\s+for\s+applying\s+to\s+{_NAME}", 0.92),
    _p("applying_to_company", rf"applying\s+to\s+{_NAME}", 0.88),
    _p("your_application_to", rf"your\s+application\s+(?:to|at|with)\s+{_NAME}", 0.9),
    _p("application_received_to", rf"application\s+(?:received|confirmation|submitted)(?:\s*(?:to|at|with))?\s+{_NAME}", 0.9),
    _p("application_status_company", rf"application\s+status(?:\s+update)?(?:\s*(?:to|at|with))?\s+{_NAME}", 0.88),
    _p("application_update_company", rf"update\s+on\s+your\s+application(?:\s*(?:to|at|with))?\s+{_NAME}", 0.88),
)

COMPANY_AT_ATS = _p("company_at_ats", r"^(.+?)\s+(?:@|via)\s+([A-Za-z0-9._-]+)$", 0.92)
SENDER_COMPANY_PATTERNS = (
    COMPANY_AT_ATS,
    _p("company_in_parens", r"\(([^)]+)\)", 0.9),
    _p("company_careers", r"^(.+?)\s+(?:careers|jobs|recruiting|talent acquisition|talent team)$", 0.88),
)
SENDER_DISPLAY_NAME_CONFIDENCE = 0.9
LOCALPART_CONFIRMED_CONFIDENCE = 0.9
LOCALPART_CONFIDENCE = 0.86
DOMAIN_COMPANY_CONFIDENCE = 0.85
SIGNATURE_COMPANY_CONFIDENCE = 0.85

BODY_COMPANY_PATTERNS = (
    _p("body_thank_you_applying_to", rf"thank\s+you\s+for\s+applying\s+to\s+{_NAME}", 0.9),
    _p("body_thanks_for_applying_to", rf"thanks\s+for\s+applying\s+to\s+{_NAME}", 0.9),
    _p("body_applying_to", rf"applying\s+to\s+{_NAME}", 0.86),
)

ROLE_PATTERNS = (
    _p("thank_you_applying_for_role", r"thank\s+you\s+for\s+applying(?:\s+to\s+[^,.\n]+)?\s+for\s+(?:the\s+)?([^.\n]+)", 0.92),
    _p("application_for_role_position", r"application\s+for\s+(?:our|the)?\s*(.+?)\s+position\b", 0.96),
    _p("application_for_role_job", r"application\s+for\s+(?:the\s+)?(.+?)\s+job\b", 0.96),
    _p("application_to_role_position", r"application\s+to\s+(?:the\s+)?(.+?)\s+position\b", 0.95),
    _p("submitting_application_to_role_position", r"submitting\s+your\s+application\s+to\s+(?:the\s+)?(.+?)\s+position\b", 0.95),
    _p("position_of", r"position\s+of\s+([^.\n]+)", 0.92),
    _p("interest_in_position_of", r"interest\s+in\s+the\s+position\s+of\s+([^.\n]+)", 0.9),
    _p("role_of", r"role\s+of\s+([^.\n]+)", 0.9),
    _p("for_role_position", r"for\s+the\s+([^.\n]+?)\s+position", 0.9),
    _p("applied_for_role", r"applied\s+for\s+the\s+([^.\n]+?)\s+role", 0.9),
    _p("moving_forward_with_role", r"with\s+(?:the\s+)?([^.\n]+?)\s+role", 0.86),
    _p("applied_for_position_of", r"applied\s+for\s+the\s+position\s+of\s+([^.\n]+)", 0.9),
    _p("application_for_role", r"application\s+for\s+([^.\n]+?)(?:\s+(?:at|with)\s+[A-Z].*)?$", 0.9),
    _p("application_received_role", r"application\s+received[:\-]\s*([^.\n]+)", 0.88),
    _p("application_received_dash_role", r"([^.\n]+)\s+[-–—]\s+application\s+received", 0.9),
    _p("re_role_application", r"re:\s*([^.\n]+?)\s+application", 0.92),
    _p("interview_for_role", r"interview\s+(?:for|with)\s+([^.\n]+)", 0.88),
    _p("interview_role", r"interview[:\-]\s*([^.\n]+)", 0.9),
    _p("next_steps_role", r"next\s+steps[:\-]\s*([^.\n]+)", 0.86),
    _p("position_label", r"\bposition[:\-]\s*([^.\n]+)", 0.88),
    _p("role_label", r"\brole[:\-]\s*([^.\n]+)", 0.86),
    _p("position_title_role", r"position\s+title[:\-]\s*([^.\n]+)", 0.88),
    _p("for_role_requisition", r"for\s+([^.\n]+?)\s*\((?:job|requisition|req)\b", 0.88),
)

# Role from a sender display name like "Data Engineer Hiring Team".
SENDER_ROLE_PATTERN = re.compile(
    r"^(.+?)\s+(?:hiring team|recruiting|recruiting team|talent acquisition|talent team|careers)$", re.I
)
SENDER_ROLE_CONFIDENCE = 0.78

GENERIC_ROLE_TERMS = frozenset(
    {
        "position",
        "role",
        "opportunity",
        "application",
        "career",
        "candidate",
        "opening",
        "job",
        "requisition",
        "jr",
        "jr.",
        "sr",
        "sr.",
        "junior",
        "senior",
    }
)

# Requisition / job IDs. Labelled forms first; the bare Workday form is case sensitive.
_REQ_VALUE = r"([A-Z0-9][A-Z0-9-]*\d[A-Z0-9-]*)"
REQ_ID_PATTERNS = (
    _p("requisition_label", rf"\b(?:requisition|req)\b\.?(?:\s*(?:id|no\.?|number))?\s*[:#]?\s*#?\s*{_REQ_VALUE}\b", 0.95),
    _p("job_id_label", rf"\bjob\s*(?:id|no\.?|number|code)\s*[:#]?\s*#?\s*{_REQ_VALUE}\b", 0.95),
    _p("workday_req", r"\b((?:JR|R)-\d{3,}|JR\d{4,})\b", 0.9, 0),
)

# Confidence deducted from a role pattern by where it matched.
ROLE_SOURCE_PENALTIES = MappingProxyType({"subject": 0.0, "snippet": 0.04, "body": 0.06, "sender": 0.08})
ROLE_SOURCE_RANK = MappingProxyType({"subject": 3, "snippet": 2, "body": 1, "sender": 0})


@dataclass(frozen=True)
class IdentityPatterns:
    generic_domains: frozenset = GENERIC_DOMAINS
    ats_base_domains: frozenset = ATS_BASE_DOMAINS
    provider_display_names: frozenset = PROVIDER_DISPLAY_NAMES
    ats_localpart_company_map: Mapping[str, str] = field(default_factory=lambda: ATS_LOCALPART_COMPANY_MAP)
    generic_sender_names: tuple = GENERIC_SENDER_NAMES
    invalid_company_terms: frozenset = INVALID_COMPANY_TERMS
    role_company_patterns: tuple = ROLE_COMPANY_PATTERNS
    company_only_patterns: tuple = COMPANY_ONLY_PATTERNS
    sender_company_patterns: tuple = SENDER_COMPANY_PATTERNS
    body_company_patterns: tuple = BODY_COMPANY_PATTERNS
    role_patterns: tuple = ROLE_PATTERNS
    req_id_patterns: tuple = REQ_ID_PATTERNS
    generic_role_terms: frozenset = GENERIC_ROLE_TERMS
    role_source_penalties: Mapping[str, float] = field(default_factory=lambda: ROLE_SOURCE_PENALTIES)
    signature_scan_lines: int = 20
    max_body_chars: int = 5000


DEFAULT_PATTERNS = IdentityPatterns()
