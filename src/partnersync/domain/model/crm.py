"""CRM-side entities: partners, their contacts, and orphan dismissals."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from partnersync.domain.model.primitives import normalize_email

if TYPE_CHECKING:
    from datetime import datetime

    from partnersync.domain.model.primitives import ContactId, Domain, PartnerId, UserId


@dataclass(slots=True, kw_only=True)
class Contact:
    """Snapshot of one CRM contact. Owned by the CRM; read-only here."""

    id: ContactId
    email: str | None
    first_name: str = ""
    last_name: str = ""
    account_id: PartnerId | None = None
    account_name: str | None = None
    partner_tier: str | None = None
    account_region: str | None = None
    is_active: bool = True

    @property
    def normalized_email(self) -> str | None:
        return normalize_email(self.email)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(slots=True, kw_only=True)
class Partner:
    """Partner organisation imported from the CRM.

    ``domains`` is derived from the partner's contacts by the domain extractor;
    it is never treated as authoritative input.
    """

    id: PartnerId
    account_name: str
    tier: str | None = None
    region: str | None = None
    is_active: bool = True
    domains: frozenset[Domain] = field(default_factory=frozenset["Domain"])


@dataclass(slots=True, frozen=True)
class OrphanDismissal:
    """Operator decision that ``user_id`` does not belong to ``partner_id``."""

    user_id: UserId
    partner_id: PartnerId
    reason: str | None = None

    @property
    def key(self) -> tuple[UserId, PartnerId]:
        return (self.user_id, self.partner_id)


@dataclass(slots=True, kw_only=True)
class ContactInput:
    """Payload for creating a CRM contact."""

    email: str
    first_name: str = ""
    last_name: str = ""
    account_id: PartnerId | None = None
    account_name: str | None = None


@dataclass(slots=True, kw_only=True)
class DatabaseStats:
    last_import_timestamp: datetime | None = None
    contact_count: int = 0
    partner_count: int = 0
