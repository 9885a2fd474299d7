"""
Rule-based email classification.

classify(subject, snippet, sender) maps free text onto one lifecycle event
type with a fixed per-rule confidence. Pure and deterministic: the rule
tables are compiled once into an immutable ClassifierRules and can be swapped
out in tests by building a Classifier with a different table.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Iterable, Optional, Pattern, Sequence

from .config import settings
from .domain import ClassificationResult, EventType
from .text_utils import normalize


@dataclass(frozen=True)
class ClassifierRule:
    name: str
    event_type: EventType
    confidence: float
    patterns: tuple[Pattern[str], ...]
    requires_job_context: bool = False
    sender_pattern: Optional[Pattern[str]] = None

    def first_match(self, text: str) -> Optional[Pattern[str]]:
        for pattern in self.patterns:
            if pattern.search(text):
                return pattern
        return None


@dataclass(frozen=True)
class ClassifierRules:
    denylist: tuple[Pattern[str], ...]
    rules: tuple[ClassifierRule, ...]
    strong_rejection: Optional[ClassifierRule] = None
    linkedin_confirmation: Optional[ClassifierRule] = None
    min_confidence: float = 0.6


def _compile(patterns: Iterable[str]) -> tuple[Pattern[str], ...]:
    return tuple(re.compile(p, re.I) for p in patterns)


def _rule(name: str, event_type: EventType, confidence: float, patterns: Sequence[str], **kw) -> ClassifierRule:
    return ClassifierRule(
        name=name,
        event_type=event_type,
        confidence=confidence,
        patterns=_compile(patterns),
        **kw,
    )


DENYLIST_PATTERNS = [
    r"unsubscribe",
    r"newsletter",
    r"promotion",
    r"sale\b",
    r"discount",
    r"marketing",
]

OFFER_PATTERNS = [
    r"offer\s+(?:letter|extended|of\s+employment)",
    r"we\s+(?:are|re|'re)\s+pleased\s+to\s+offer",
    r"congratulations.+offer",
    r"offer(?:ing)?\s+you\s+the\s+(?:position|role)",
]

REJECTION_PATTERNS = [
    r"not\s+moving\s+forward",
    r"no\s+longer\s+under\s+consideration",
    r"not\s+selected",
    r"regret\s+to\s+inform",
    r"unable\s+to\s+move\s+forward",
    r"after\s+careful\s+consideration",
    r"after\s+reviewing\s+your\s+application,?\s+we(?:'|\s+have)?\s*decided\s+to\s+move\s+forward",
    r"we\s+(?:have\s+)?decided\s+to\s+move\s+forward\s+with\s+other\s+candidates",
    r"decided\s+to\s+pursue\s+other\s+candidates",
    r"we\s+(?:have\s+)?chosen\s+other\s+(?:candidates|applicants)",
    r"we\s+(?:will\s+not|won't)\s+be\s+moving\s+forward",
    r"we(?:'|\s+have)?\s*decided\s+to\s+go\s+in\s+a\s+different\s+direction",
    r"moved\s+to\s+the\s+next\s+step\s+in\s+(?:their\s+)?hiring\s+process",
    r"will\s+not\s+be\s+moving\s+forward",
    r"application\s+(?:was|has\s+been)\s+not\s+selected",
    r"unfortunately.+(?:application|candidacy|role|position)",
    r"we\s+appreciate\s+your\s+interest\s+in\s+the\s+(?:position|role|opportunity)",
    r"position\s+has\s+been\s+filled",
    r"application\s+(?:was|has\s+been)\s+(?:rejected|declined)",
    r"declined\b",
]

INTERVIEW_PATTERNS = [
    r"schedule\s+(?:an|your)\s+interview",
    r"interview\s+(?:invite|invitation|confirmed|availability)",
    r"interview\s+(?:schedule|scheduled|scheduling)",
    r"phone\s+screen",
    r"video\s+interview",
    r"thank\s+you\s+for\s+interviewing",
    r"thank\s+you\s+for\s+(?:the\s+)?interview",
    r"select\s+(?:a|your)\s+time\s+for\s+an\s+interview",
]

CONFIRMATION_PATTERNS = [
    r"application\s+(?:received|confirmation)",
    r"application\s+(?:submitted|submission\s+received)",
    r"thank\s+you\s+for\s+applying",
    r"thank\s+you\s+for\s+your\s+interest\s+in\s+the\s+(?:position|role|opportunity)",
    r"thank\s+you\s+for\s+your\s+application",
    r"thanks\s+for\s+applying",
    r"we\s+(?:have\s+)?received\s+your\s+application",
    r"will\s+review\s+your\s+(?:application|resume)",
    r"your\s+application\s+for\s+the\s+.*\s+position",
    r"an\s+update\s+on\s+your\s+application",
]

UNDER_REVIEW_PATTERNS = [
    r"application\s+(?:is\s+)?under\s+review",
    r"application\s+status[:\s]+under\s+review",
    r"your\s+application\s+is\s+in\s+review",
    r"application\s+(?:is\s+)?under\s+consideration",
    r"application\s+(?:is\s+)?being\s+reviewed",
]

RECRUITER_OUTREACH_PATTERNS = [
    r"recruiter\s+(?:from|at)",
    r"talent\s+acquisition",
    r"reaching\s+out\s+about",
]

OTHER_JOB_RELATED_PATTERNS = [
    r"job\s+application",
    r"application\s+status",
    r"application\s+was\s+viewed",
    r"candidate\s+portal",
    r"candidate",
    r"candidacy",
    r"requisition",
    r"job\s+id[:\s]*\d+",
    r"position\s+id[:\s]*\d+",
    r"assessment",
    r"coding\s+challenge",
    r"take[-\s]home",
    r"hirevue",
    r"skill\s+survey",
    r"next\s+steps",
    r"position\s+you\s+applied",
    r"application\s+update",
    r"update\s+on\s+your\s+application",
    r"application\s+progress",
]

STRONG_REJECTION_PATTERNS = [
    r"not\s+selected",
    r"moved\s+to\s+the\s+next\s+step\s+in\s+(?:their\s+)?hiring\s+process",
    r"we\s+(?:will\s+not|won't)\s+be\s+moving\s+forward",
    r"move\s+forward\s+with\s+other\s+candidates",
    r"regret\s+to\s+inform",
    r"go\s+in\s+a\s+different\s+direction",
]

LINKEDIN_CONFIRMATION_PATTERNS = [
    r"your\s+application\s+was\s+sent\s+to",
    r"applied\s+on\s+[A-Za-z]+\s+\d{1,2},\s+\d{4}",
]

_JOB_CONTEXT_RE = re.compile(
    r"\b(?:applications?|apply|applied|positions?|roles?|jobs?|candidate|candidacy|hiring"
    r"|recruit\w*|interview\w*|careers?|talent)\b",
    re.I,
)
# "Senior Engineer - Acme" style subjects.
_SUBJECT_ROLE_RE = re.compile(r"\b[A-Z][A-Za-z0-9 '&/.()-]{2,}\s*[-–—]\s*[A-Z][A-Za-z0-9 '&/.()-]{2,}")


def build_default_rules(min_confidence: Optional[float] = None) -> ClassifierRules:
    """
    Compile the built-in rule table. Order of `rules` is precedence: offer and
    rejection are checked before confirmation because rejections routinely
    reuse confirmation phrasing ("thank you for applying ... unfortunately").
    """
    rules = (
        _rule("offer", EventType.OFFER, 0.95, OFFER_PATTERNS),
        _rule("rejection", EventType.REJECTION, 0.95, REJECTION_PATTERNS, requires_job_context=True),
        _rule("interview", EventType.INTERVIEW, 0.9, INTERVIEW_PATTERNS),
        _rule("confirmation", EventType.CONFIRMATION, 0.92, CONFIRMATION_PATTERNS),
        _rule("under_review", EventType.UNDER_REVIEW, 0.9, UNDER_REVIEW_PATTERNS),
        _rule("recruiter_outreach", EventType.RECRUITER_OUTREACH, 0.8, RECRUITER_OUTREACH_PATTERNS),
        _rule("other_job_related", EventType.OTHER_JOB_RELATED, 0.72, OTHER_JOB_RELATED_PATTERNS),
    )
    return ClassifierRules(
        denylist=_compile(DENYLIST_PATTERNS),
        rules=rules,
        strong_rejection=_rule(
            "rejection_strong",
            EventType.REJECTION,
            0.98,
            STRONG_REJECTION_PATTERNS,
            requires_job_context=True,
        ),
        linkedin_confirmation=_rule(
            "linkedin_application_sent",
            EventType.CONFIRMATION,
            0.92,
            LINKEDIN_CONFIRMATION_PATTERNS,
            sender_pattern=re.compile(r"linkedin\.com", re.I),
        ),
        min_confidence=settings.classifier_min_confidence if min_confidence is None else min_confidence,
    )


def has_job_context(text: str, subject: str = "") -> bool:
    return bool(_JOB_CONTEXT_RE.search(text or "")) or bool(_SUBJECT_ROLE_RE.search(subject or ""))


def _matched(rule: ClassifierRule, pattern: Pattern[str]) -> ClassificationResult:
    return ClassificationResult(
        is_job_related=True,
        event_type=rule.event_type,
        confidence_score=rule.confidence,
        explanation=f"Matched {rule.name} via '{pattern.pattern}'.",
        reason=rule.name,
    )


def _not_job_related(explanation: str, reason: str) -> ClassificationResult:
    return ClassificationResult(
        is_job_related=False,
        event_type=None,
        confidence_score=0.0,
        explanation=explanation,
        reason=reason,
    )


class Classifier:
    """Ordered-rule classifier. Holds no mutable state."""

    def __init__(self, rules: Optional[ClassifierRules] = None):
        self.rules = rules or DEFAULT_RULES

    def with_min_confidence(self, min_confidence: float) -> "Classifier":
        return Classifier(replace(self.rules, min_confidence=min_confidence))

    def classify(self, subject: Optional[str], snippet: Optional[str], sender: Optional[str]) -> ClassificationResult:
        subject_n = normalize(subject)
        text = " ".join(p for p in (subject_n, normalize(snippet), normalize(sender)) if p)
        if not text:
            return _not_job_related("Empty subject/snippet.", "empty")

        # Denylist wins over every allowlist rule, including the strong ones.
        for pattern in self.rules.denylist:
            if pattern.search(text):
                return _not_job_related(f"Denied by '{pattern.pattern}'.", "denylisted")

        job_context = has_job_context(text, subject_n)

        linkedin = self.rules.linkedin_confirmation
        if linkedin is not None and linkedin.sender_pattern is not None and linkedin.sender_pattern.search(sender or ""):
            pattern = linkedin.first_match(text)
            if pattern is not None:
                return _matched(linkedin, pattern)

        strong = self.rules.strong_rejection
        below_threshold: Optional[ClassifierRule] = None
        for rule in self.rules.rules:
            if rule.requires_job_context and not job_context:
                continue
            # Unambiguous rejection phrasing takes the rejection slot at a higher confidence.
            if strong is not None and rule.event_type == strong.event_type:
                pattern = strong.first_match(text)
                if pattern is not None and strong.confidence >= self.rules.min_confidence:
                    return _matched(strong, pattern)
            pattern = rule.first_match(text)
            if pattern is None:
                continue
            if rule.confidence < self.rules.min_confidence:
                below_threshold = below_threshold or rule
                continue
            return _matched(rule, pattern)

        if below_threshold is not None:
            return _not_job_related(f"Matched {below_threshold.name} below threshold.", "below_threshold")
        return _not_job_related("No allowlist match.", "no_allowlist")


DEFAULT_RULES = build_default_rules()
_default_classifier = Classifier(DEFAULT_RULES)


def classify(subject: Optional[str], snippet: Optional[str], sender: Optional[str]) -> ClassificationResult:
    """Classify with the process-wide default rule table."""
    return _default_classifier.classify(subject, snippet, sender)
