"""Records derived per analysis run; never persisted by the engine itself."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from partnersync.domain.model.lms import LmsUser
    from partnersync.domain.model.primitives import Domain, GroupId, PartnerId


@dataclass(slots=True, kw_only=True)
class DomainRecord:
    """LMS users sharing one email domain, with the partner it resolves to."""

    domain: Domain
    partner_id: PartnerId | None = None
    partner_is_active: bool | None = None
    group_id: GroupId | None = None
    users: list[LmsUser] = field(default_factory=list["LmsUser"])

    @property
    def is_matched(self) -> bool:
        return self.partner_id is not None


@dataclass(slots=True, kw_only=True)
class OrphanRecord:
    """LMS user whose domain points at a partner it has no confirmed link to.

    ``dismissed`` mirrors the persisted operator decision for this
    ``(user, partner)`` pair.
    """

    user: LmsUser
    partner_id: PartnerId
    domain: Domain
    group_id: GroupId | None = None
    dismissed: bool = False
    reason: str | None = None
