import pytest

from jobtrack.domain import EventType
from jobtrack.email_classifier import Classifier, build_default_rules, classify, has_job_context


@pytest.mark.parametrize(
    "subject,snippet,sender,expected",
    [
        ("Thank you for applying to Acme for Software Engineer", "", "jobs@acme.com", EventType.CONFIRMATION),
        ("Application received", "We have received your application.", "no-reply@globex.com", EventType.CONFIRMATION),
        ("Your application is under review", "", "careers@initech.com", EventType.UNDER_REVIEW),
        ("Schedule an interview", "Please pick a slot.", "recruiting@umbrella.com", EventType.INTERVIEW),
        ("Offer letter", "We are pleased to offer you the role.", "hr@hooli.com", EventType.OFFER),
        ("Update", "Unfortunately we are not moving forward with your application.", "jobs@acme.com", EventType.REJECTION),
    ],
)
def test_classifies_lifecycle_events(subject, snippet, sender, expected):
    result = classify(subject, snippet, sender)
    assert result.is_job_related
    assert result.event_type == expected
    assert result.confidence_score >= 0.9
    assert result.explanation.startswith("Matched ")


def test_rejection_beats_confirmation_phrasing():
    result = classify(
        "Thank you for applying",
        "After careful consideration, we regret to inform you that your application was not selected.",
        "talent@acme.com",
    )
    assert result.event_type == EventType.REJECTION
    assert result.confidence_score == 0.98
    assert result.reason == "rejection_strong"


def test_offer_wins_over_strong_rejection():
    result = classify("Offer letter", "We regret to inform you about parking. Your offer letter is attached.", "hr@acme.com")
    assert result.event_type == EventType.OFFER


def test_denylist_wins_over_allowlist():
    result = classify("Thank you for applying", "Click here to unsubscribe from our newsletter.", "jobs@acme.com")
    assert not result.is_job_related
    assert result.event_type is None
    assert result.reason == "denylisted"


def test_denylist_wins_over_strong_rejection():
    result = classify("Regret to inform you", "We regret to inform you about our discount on positions.", "jobs@acme.com")
    assert not result.is_job_related
    assert result.reason == "denylisted"


def test_rejection_requires_job_context():
    # "declined" alone is a rejection signal only with job context.
    result = classify("Your card was declined", "Please update your payment method.", "billing@shop.com")
    assert not result.is_job_related
    assert result.reason == "no_allowlist"


def test_linkedin_application_sent_is_confirmation():
    result = classify(
        "Your application was sent to Acme",
        "Applied on March 3, 2025",
        "LinkedIn <jobs-noreply@linkedin.com>",
    )
    assert result.event_type == EventType.CONFIRMATION
    assert result.reason == "linkedin_application_sent"


def test_empty_message_is_not_job_related():
    result = classify("", "", "")
    assert not result.is_job_related
    assert result.reason == "empty"
    assert result.confidence_score == 0.0


def test_unrelated_message_has_no_allowlist_match():
    result = classify("Lunch on Friday?", "Want to grab tacos?", "friend@gmail.com")
    assert not result.is_job_related
    assert result.reason == "no_allowlist"


def test_min_confidence_suppresses_weak_rules():
    strict = Classifier(build_default_rules(min_confidence=0.85))
    result = strict.classify("Candidate portal", "Log in to the candidate portal.", "portal@acme.com")
    assert not result.is_job_related
    assert result.reason == "below_threshold"

    default = Classifier(build_default_rules(min_confidence=0.6))
    result = default.classify("Candidate portal", "Log in to the candidate portal.", "portal@acme.com")
    assert result.event_type == EventType.OTHER_JOB_RELATED
    assert result.confidence_score == 0.72


def test_with_min_confidence_returns_new_classifier():
    base = Classifier(build_default_rules(min_confidence=0.6))
    strict = base.with_min_confidence(0.99)
    assert strict is not base
    assert base.rules.min_confidence == 0.6
    assert strict.rules.min_confidence == 0.99


def test_classification_is_deterministic():
    args = ("Interview invitation", "Let's find a time.", "recruiting@acme.com")
    assert classify(*args) == classify(*args)


def test_job_context_detection():
    assert has_job_context("we reviewed your application")
    assert has_job_context("", "Senior Engineer - Acme")
    assert not has_job_context("your order has shipped", "Order 1234")
