"""Text and sender helpers shared by the classifier and identity extractor."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional, Union

_WS_RE = re.compile(r"\s+")
_BRACKET_EMAIL_RE = re.compile(r"<([^>]+)>")
_DIRECT_EMAIL_RE = re.compile(r"([A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,})", re.I)


def normalize(text: Optional[str]) -> str:
    """Collapse whitespace and strip."""
    return _WS_RE.sub(" ", str(text or "")).strip()


def slugify(text: Optional[str]) -> str:
    return re.sub(r"[^a-z0-9]", "", normalize(text).lower())


def format_confidence(value: Optional[float]) -> str:
    return f"{float(value or 0.0):.2f}"


def extract_email_address(sender: Optional[str]) -> Optional[str]:
    """'Acme Careers <jobs@acme.com>' -> 'jobs@acme.com'."""
    text = normalize(sender)
    m = _BRACKET_EMAIL_RE.search(text)
    if m and m.group(1):
        return m.group(1).strip()
    m = _DIRECT_EMAIL_RE.search(text)
    return m.group(1) if m else None


def _split_address(sender: Optional[str]) -> Optional[tuple[str, str]]:
    email = extract_email_address(sender)
    if not email:
        return None
    parts = email.split("@")
    if len(parts) != 2:
        return None
    return parts[0], parts[1]


def extract_sender_local_part(sender: Optional[str]) -> Optional[str]:
    parts = _split_address(sender)
    return (parts[0] or None) if parts else None


def extract_sender_domain(sender: Optional[str]) -> Optional[str]:
    parts = _split_address(sender)
    return parts[1].lower() if parts and parts[1] else None


def extract_sender_name(sender: Optional[str]) -> Optional[str]:
    """Display name without the address part; None for a bare address."""
    text = normalize(sender)
    if not text:
        return None
    without_email = _BRACKET_EMAIL_RE.sub("", text).replace('"', "").strip()
    if not without_email:
        return None
    if "@" in without_email and "<" not in text:
        return None
    return without_email


# Country-code suffixes with two labels ("acme.co.uk").
TWO_LABEL_SUFFIXES = frozenset(
    {
        "co.uk", "org.uk", "ac.uk", "gov.uk", "me.uk",
        "com.au", "net.au", "org.au",
        "co.nz", "org.nz",
        "co.in", "co.jp", "co.za", "co.kr", "co.il",
        "com.br", "com.mx", "com.sg", "com.cn", "com.hk", "com.tr", "com.ar",
    }
)


def base_domain(domain: Optional[str]) -> Optional[str]:
    """Registrable label: 'mail.greenhouse.io' -> 'greenhouse', 'jobs.acme.co.uk' -> 'acme'."""
    if not domain:
        return None
    parts = [p for p in domain.lower().split(".") if p]
    if len(parts) < 2:
        return domain
    if len(parts) >= 3 and ".".join(parts[-2:]) in TWO_LABEL_SUFFIXES:
        return parts[-3]
    return parts[-2]


def parse_received_at(value: Union[None, str, int, float, datetime]) -> Optional[datetime]:
    """
    Accept a datetime, an ISO-8601 string or epoch milliseconds and return
    naive UTC. Unparseable input yields None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        try:
            dt = datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        text = str(value).strip()
        if text.isdigit():
            return parse_received_at(int(text))
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
