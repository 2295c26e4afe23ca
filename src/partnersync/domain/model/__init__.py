"""Domain model for partner/LMS reconciliation."""

from __future__ import annotations

from .crm import Contact, ContactInput, DatabaseStats, OrphanDismissal, Partner
from .derived import DomainRecord, OrphanRecord
from .lms import Group, LmsUser, PersonInput
from .primitives import (
    ContactId,
    Domain,
    GroupId,
    PartnerId,
    UserId,
    email_domain,
    normalize_email,
    normalize_name,
)

__all__ = [
    "Contact",
    "ContactId",
    "ContactInput",
    "DatabaseStats",
    "Domain",
    "DomainRecord",
    "Group",
    "GroupId",
    "LmsUser",
    "OrphanDismissal",
    "OrphanRecord",
    "Partner",
    "PartnerId",
    "PersonInput",
    "UserId",
    "email_domain",
    "normalize_email",
    "normalize_name",
]
