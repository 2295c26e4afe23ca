"""LMS-side entities: users (people) and groups."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from partnersync.domain.model.primitives import email_domain, normalize_email

if TYPE_CHECKING:
    from partnersync.domain.model.primitives import Domain, GroupId, PartnerId, UserId


@dataclass(slots=True, kw_only=True)
class LmsUser:
    id: UserId
    email: str | None
    first_name: str = ""
    last_name: str = ""
    is_active: bool = True
    group_ids: frozenset[GroupId] = field(default_factory=frozenset["GroupId"])

    @property
    def normalized_email(self) -> str | None:
        return normalize_email(self.email)

    @property
    def domain(self) -> Domain | None:
        return email_domain(self.email)

    def in_group(self, group_id: GroupId) -> bool:
        return group_id in self.group_ids


@dataclass(slots=True, kw_only=True)
class Group:
    id: GroupId
    name: str
    partner_id: PartnerId | None = None
    member_count: int = 0


@dataclass(slots=True, kw_only=True)
class PersonInput:
    """Payload for creating an LMS person."""

    email: str
    first_name: str = ""
    last_name: str = ""
