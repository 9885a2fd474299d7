import pytest

from jobtrack.job_title_extraction import (
    clean_job_title,
    extract_job_title,
    get_job_title_candidates,
    is_plausible_job_title,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ('Role: "Senior Backend Engineer" at Acme', "Senior Backend Engineer"),
        ("Position - Staff Software Engineer (Req 12345)", "Staff Software Engineer"),
        ("job title: Product Manager - Req #A-7788", "Product Manager"),
    ],
)
def test_clean_job_title_strips_wrappers(raw, expected):
    assert clean_job_title(raw) == expected


def test_clean_job_title_strips_known_company_suffix():
    assert clean_job_title("Platform Engineer with Globex", company_name="Globex") == "Platform Engineer"


def test_candidates_from_applied_flow_body_thanks_for_applying():
    subject = "Thanks for applying to MyJunior AI!"
    body = "Thank you for applying for the Senior Full Stack Engineer role at MyJunior AI. We will review."
    cands = get_job_title_candidates(subject=subject, body=body)
    assert cands and cands[0].value == "Senior Full Stack Engineer"
    assert cands[0].source == "body"


def test_candidates_from_subject_interview_for():
    subject = "Interview for Senior Software Engineer"
    body = "We'd like to schedule time."
    cands = get_job_title_candidates(subject=subject, body=body)
    assert cands and cands[0].value == "Senior Software Engineer"
    assert cands[0].source == "subject"


def test_candidates_from_recruiter_outreach_label():
    subject = "Opportunity: Senior Data Engineer - Remote"
    body = "Role: Senior Data Engineer. Location: Remote."
    cands = get_job_title_candidates(subject=subject, body=body)
    assert any(c.value == "Senior Data Engineer" for c in cands)


def test_subject_beats_body_for_same_pattern():
    best = extract_job_title(
        subject="Interview for Backend Engineer",
        body="Interview for Backend Engineer",
    )
    assert best.value == "Backend Engineer"
    assert best.source == "subject"
    assert best.confidence == pytest.approx(0.88)


def test_body_match_is_penalized():
    best = extract_job_title(subject="Next steps", body="Interview for Backend Engineer")
    assert best.source == "body"
    assert best.confidence == pytest.approx(0.82)


def test_role_from_sender_display_name():
    best = extract_job_title(subject="Hello", sender="Data Engineer Hiring Team <jobs@acme.com>")
    assert best.value == "Data Engineer"
    assert best.source == "sender"
    assert best.explanation == "Derived role from sender display name."


def test_company_name_is_not_a_role():
    assert extract_job_title(subject="Role: Acme", company_name="Acme") is None


def test_no_title_returns_none():
    assert extract_job_title(subject="Your order has shipped") is None


def test_plausibility_rejects_generic_words_and_urls():
    assert not is_plausible_job_title("role")
    assert not is_plausible_job_title("Senior")
    assert not is_plausible_job_title("https://example.com/jobs/123")
    assert not is_plausible_job_title("Hi there")
    assert is_plausible_job_title("Machine Learning Engineer")
