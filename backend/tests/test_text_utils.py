from datetime import datetime

import pytest

from jobtrack.text_utils import (
    base_domain,
    extract_email_address,
    extract_sender_domain,
    extract_sender_name,
    parse_received_at,
)


@pytest.mark.parametrize(
    "domain,expected",
    [
        ("acme.com", "acme"),
        ("mail.greenhouse.io", "greenhouse"),
        ("jobs.acme.co.uk", "acme"),
        ("acme.co.uk", "acme"),
        ("Careers.Globex.COM.AU", "globex"),
        ("co.uk", "co"),
        ("localhost", "localhost"),
        (None, None),
    ],
)
def test_base_domain(domain, expected):
    assert base_domain(domain) == expected


def test_sender_parsing():
    sender = '"Acme Careers" <Jobs@Acme.com>'
    assert extract_email_address(sender) == "Jobs@Acme.com"
    assert extract_sender_domain(sender) == "acme.com"
    assert extract_sender_name(sender) == "Acme Careers"
    assert extract_sender_name("jobs@acme.com") is None


def test_parse_received_at_accepts_iso_and_epoch_millis():
    assert parse_received_at("2025-04-01T15:00:00Z") == datetime(2025, 4, 1, 15, 0)
    assert parse_received_at(1743519600000) == datetime(2025, 4, 1, 15, 0)
    assert parse_received_at("not a date") is None
