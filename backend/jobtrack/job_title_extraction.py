"""
Job title extraction utilities.

Goal: keep the title "exact-ish" as written in the email, with only obvious
wrapper/noise removed, and score it by which pattern matched and where
(subject beats snippet beats body beats sender display name).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from .identity_patterns import (
    DEFAULT_PATTERNS,
    ROLE_SOURCE_RANK,
    SENDER_ROLE_CONFIDENCE,
    SENDER_ROLE_PATTERN,
    IdentityPatterns,
)
from .text_utils import extract_sender_name, normalize, slugify


_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class TitleCandidate:
    value: str
    confidence: float
    source: str  # subject, snippet, body, sender
    pattern: str  # e.g. "application_for_role_position"

    @property
    def explanation(self) -> str:
        if self.source == "sender":
            return "Derived role from sender display name."
        return f"Matched {self.pattern} pattern in {self.source}."


def _collapse_ws(s: str) -> str:
    return _WS_RE.sub(" ", (s or "").strip())


def clean_job_title(raw: Optional[str], company_name: Optional[str] = None) -> Optional[str]:
    """
    Clean a raw extracted title while keeping it close to the email's wording.
    Removes wrappers like "role:", requisition ids and "at Company" suffixes.
    """
    if not raw:
        return None
    s = _collapse_ws(raw)
    if not s:
        return None

    # Strip surrounding quotes/brackets.
    s = s.strip(" \t\r\n\"'“”‘’`")
    s = re.sub(r"\s+\[.*\]$", "", s)

    # Remove common wrappers/prefixes.
    s = re.sub(r"^(?:the\s+)?(?:role|position|title|opening|opportunity)\s*[:\-–—]\s*", "", s, flags=re.I)
    s = re.sub(r"^job\s*title\s*[:\-–—]\s*", "", s, flags=re.I)

    # Requisition ids / tracking tokens anywhere: "Req 12345", "Job ID: 778", "R-1234".
    s = re.sub(r"\b(?:req(?:uisition)?|job\s+id|job)\s*#?:?\s*[A-Z]*-?\d+\b", "", s, flags=re.I)
    s = re.sub(r"\bR-\d+\b", "", s, flags=re.I)
    s = re.sub(r"\s*[\(\[\{]\s*#?\s*[\)\]\}]", "", s)

    if company_name:
        escaped = re.escape(company_name)
        s = re.sub(rf"\s+(?:at|with|for)\s+{escaped}.*$", "", s, flags=re.I)
        s = re.sub(rf"\s+-\s+{escaped}.*$", "", s, flags=re.I)

    # Remove trailing "at <company>" or "with <company>" when it looks like a suffix.
    s = re.sub(r"\s+(?:at|with)\s+[A-Z0-9][\w&.,'\- ]{1,80}\s*$", "", s).strip()

    # Remove common suffixes that often follow a title.
    s = re.sub(r"\s+(?:position|role|opportunity|job)\s*$", "", s, flags=re.I)

    s = s.strip(" \t\r\n\"'“”‘’`")
    # Remove trailing punctuation.
    s = s.rstrip(" .,:;|/\\-–—")

    s = _collapse_ws(s)
    return s or None


def is_generic_role(value: Optional[str], patterns: IdentityPatterns = DEFAULT_PATTERNS) -> bool:
    text = normalize(value).lower()
    if not text:
        return True
    if re.match(r"^(?:hi|hello|dear|hey)\b", text):
        return True
    if re.match(r"^(?:thanks|thank you)\b", text):
        return True
    words = text.split()
    return all(w in patterns.generic_role_terms for w in words)


def is_plausible_job_title(title: Optional[str], patterns: IdentityPatterns = DEFAULT_PATTERNS) -> bool:
    """
    Conservative plausibility filter: prevent obvious junk, but keep recall high.
    """
    if not title:
        return False
    s = _collapse_ws(title)
    if len(s) < 3:
        return False
    # Long strings are sentences unless they carry a parenthetical like "(Remote)".
    if len(s) > 90 and "(" not in s:
        return False

    # Must contain at least one letter.
    if not re.search(r"[A-Za-z]", s):
        return False

    # Avoid URLs/emails.
    if re.search(r"https?://|www\.", s, re.I):
        return False
    if re.search(r"\b[\w.\-]+@[\w.\-]+\.\w+\b", s):
        return False

    # Too many words is usually a sentence, not a title.
    if len(s.split()) > 10:
        return False

    if is_generic_role(s, patterns):
        return False

    lowered = s.lower()
    banned = (
        "thank you for applying",
        "your application",
        "next steps",
        "application received",
        "interview invitation",
    )
    return lowered not in banned


def _dedupe_keep_best(cands: Iterable[TitleCandidate]) -> list[TitleCandidate]:
    best: dict[str, TitleCandidate] = {}
    for c in cands:
        key = _collapse_ws(c.value).lower()
        existing = best.get(key)
        if existing is None or (c.confidence, ROLE_SOURCE_RANK[c.source]) > (
            existing.confidence,
            ROLE_SOURCE_RANK[existing.source],
        ):
            best[key] = c
    return sorted(
        best.values(),
        key=lambda x: (x.confidence, ROLE_SOURCE_RANK[x.source]),
        reverse=True,
    )


def _score_for_source(base: float, source: str, patterns: IdentityPatterns) -> float:
    return round(max(0.0, base - patterns.role_source_penalties.get(source, 0.0)), 4)


def _accept(candidate: Optional[str], company_name: Optional[str], patterns: IdentityPatterns) -> bool:
    if not is_plausible_job_title(candidate, patterns):
        return False
    if company_name:
        # "Acme" is not a role at Acme.
        if slugify(candidate) == slugify(company_name):
            return False
    return True


def get_job_title_candidates(
    *,
    subject: Optional[str],
    snippet: Optional[str] = None,
    body: Optional[str] = None,
    sender: Optional[str] = None,
    company_name: Optional[str] = None,
    patterns: IdentityPatterns = DEFAULT_PATTERNS,
) -> list[TitleCandidate]:
    """
    Extract ranked job title candidates from subject, snippet, body and the
    sender display name. Best candidate first.
    """
    sources = (
        ("subject", normalize(subject)),
        ("snippet", normalize(snippet)),
        ("body", normalize((body or "")[: patterns.max_body_chars])),
    )
    cands: list[TitleCandidate] = []
    for source, text in sources:
        if not text:
            continue
        for rule in patterns.role_patterns:
            m = rule.regex.search(text)
            if not m:
                continue
            cleaned = clean_job_title(m.group(1), company_name)
            if not _accept(cleaned, company_name, patterns):
                continue
            cands.append(
                TitleCandidate(
                    value=cleaned,
                    confidence=_score_for_source(rule.confidence, source, patterns),
                    source=source,
                    pattern=rule.name,
                )
            )

    sender_name = extract_sender_name(sender)
    if sender_name:
        m = SENDER_ROLE_PATTERN.match(normalize(sender_name))
        if m:
            cleaned = clean_job_title(m.group(1), company_name)
            if _accept(cleaned, company_name, patterns):
                cands.append(
                    TitleCandidate(
                        value=cleaned,
                        confidence=_score_for_source(SENDER_ROLE_CONFIDENCE, "sender", patterns),
                        source="sender",
                        pattern="sender_display_name",
                    )
                )
    return _dedupe_keep_best(cands)


def extract_job_title(
    *,
    subject: Optional[str],
    snippet: Optional[str] = None,
    body: Optional[str] = None,
    sender: Optional[str] = None,
    company_name: Optional[str] = None,
    patterns: IdentityPatterns = DEFAULT_PATTERNS,
) -> Optional[TitleCandidate]:
    """Best role candidate, or None when nothing plausible matched."""
    cands = get_job_title_candidates(
        subject=subject,
        snippet=snippet,
        body=body,
        sender=sender,
        company_name=company_name,
        patterns=patterns,
    )
    return cands[0] if cands else None
