"""Domain primitives: scalar aliases + email helpers.

Email addresses are the only reliable join key between the CRM and the LMS, so
every comparison goes through ``normalize_email``.
"""

from __future__ import annotations

type ContactId = str
type PartnerId = str
type UserId = str
type GroupId = str
type Domain = str


def normalize_email(value: str | None) -> str | None:
    """Return the trimmed, lower-cased email or ``None`` when blank."""

    if value is None:
        return None
    normalized = value.strip().lower()
    return normalized or None


def email_domain(value: str | None) -> Domain | None:
    """Return the lower-cased part after ``@``; ``None`` when there is none."""

    email = normalize_email(value)
    if email is None or "@" not in email:
        return None
    domain = email.rsplit("@", 1)[1].strip()
    return domain or None


def normalize_name(value: str | None) -> str:
    return (value or "").strip().lower()
