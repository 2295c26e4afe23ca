"""Lookup structures shared by the classifier and planner.

Group names are indexed in both their prefixed and unprefixed forms so that
``"acme"``, ``"Acme"`` and ``"ptr_acme"`` all resolve to the group
``"ptr_Acme"``.

Key collisions resolve last-write-wins in iteration order. That choice hides
duplicate-group data problems, so every collision is recorded on the index
and logged rather than silently dropped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, Final

from partnersync.domain.model import normalize_email, normalize_name
from partnersync.domain.reconciliation.domains import is_excluded_domain
from partnersync.domain.reconciliation.matching import GroupMatching, match_groups_to_partners

if TYPE_CHECKING:
    from collections.abc import Iterable

    from partnersync.domain.model import Domain, Group, GroupId, LmsUser, Partner, PartnerId
    from partnersync.domain.reconciliation.domains import DomainExtraction
    from partnersync.domain.reconciliation.matching import GroupMatch

log = getLogger(__name__)

DEFAULT_GROUP_PREFIX: Final[str] = "ptr_"
DEFAULT_GLOBAL_GROUP_NAME: Final[str] = "All Partners"


class CollisionKind(StrEnum):
    GROUP_NAME = "group_name"
    PARTNER_GROUP = "partner_group"
    EMAIL = "email"
    DOMAIN = "domain"
    GLOBAL_GROUP = "global_group"


@dataclass(slots=True, frozen=True)
class IndexCollision:
    """Two records competed for the same lookup key; ``winner`` was kept."""

    kind: CollisionKind
    key: str
    replaced: str
    winner: str


@dataclass(slots=True, kw_only=True)
class ReconciliationIndex:
    prefix: str = DEFAULT_GROUP_PREFIX
    email_to_user: dict[str, LmsUser] = field(default_factory=dict["str", "LmsUser"])
    name_to_group: dict[str, Group] = field(default_factory=dict["str", "Group"])
    partner_to_group: dict[PartnerId, Group] = field(default_factory=dict["PartnerId", "Group"])
    domain_to_partner: dict[Domain, PartnerId] = field(default_factory=dict["Domain", "PartnerId"])
    groups_by_id: dict[GroupId, Group] = field(default_factory=dict["GroupId", "Group"])
    global_group: Group | None = None
    collisions: list[IndexCollision] = field(default_factory=list["IndexCollision"])
    partner_group_ids: frozenset[GroupId] = frozenset()
    group_matching: GroupMatching = field(default_factory=GroupMatching)

    def user_for_email(self, email: str | None) -> LmsUser | None:
        key = normalize_email(email)
        if key is None:
            return None
        return self.email_to_user.get(key)

    def group_named(self, name: str | None) -> Group | None:
        key = normalize_name(name)
        if not key:
            return None
        return self.name_to_group.get(key)

    def group_for_account(self, account_name: str | None) -> Group | None:
        """Resolve the single candidate group ``prefix + account_name``."""

        key = normalize_name(account_name)
        if not key:
            return None
        return self.name_to_group.get(normalize_name(self.prefix) + key)

    def group_for_partner(
        self,
        partner_id: PartnerId | None,
        account_name: str | None = None,
    ) -> Group | None:
        """Prefer an explicit partner link, then fall back to the naming convention."""

        if partner_id is not None:
            linked = self.partner_to_group.get(partner_id)
            if linked is not None:
                return linked
        return self.group_for_account(account_name)

    def partner_for_domain(self, domain: Domain | None) -> PartnerId | None:
        if domain is None:
            return None
        return self.domain_to_partner.get(domain)

    def is_partner_group(self, group_id: GroupId) -> bool:
        group = self.groups_by_id.get(group_id)
        if group is None:
            return False
        if self.global_group is not None and group.id == self.global_group.id:
            return False
        if group_id in self.partner_group_ids or group.partner_id is not None:
            return True
        return normalize_name(group.name).startswith(normalize_name(self.prefix))

    def partner_group_ids_of(self, user: LmsUser) -> frozenset[GroupId]:
        return frozenset(group_id for group_id in user.group_ids if self.is_partner_group(group_id))


def name_keys(name: str, prefix: str = DEFAULT_GROUP_PREFIX) -> tuple[str, ...]:
    """Return every lookup key a group called ``name`` is stored under."""

    literal = normalize_name(name)
    if not literal:
        return ()
    normalized_prefix = normalize_name(prefix)
    if literal.startswith(normalized_prefix):
        stripped = literal[len(normalized_prefix) :].strip()
        return (literal, stripped) if stripped else (literal,)
    return (literal, normalized_prefix + literal)


def build_indices(
    users: Iterable[LmsUser],
    groups: Iterable[Group],
    domains: DomainExtraction,
    *,
    prefix: str = DEFAULT_GROUP_PREFIX,
    global_group_name: str = DEFAULT_GLOBAL_GROUP_NAME,
    partners: Iterable[Partner] = (),
) -> ReconciliationIndex:
    """Build the email, group-name, partner and domain lookup maps.

    Every group resolved for one of ``partners``, by link, by naming convention
    or by name matching, counts as a partner group whatever its name.
    """

    index = ReconciliationIndex(prefix=prefix)

    for user in users:
        email = user.normalized_email
        if email is None or not user.id:
            continue
        previous = index.email_to_user.get(email)
        if previous is not None and previous.id != user.id:
            _record(index, CollisionKind.EMAIL, email, previous.id, user.id)
        index.email_to_user[email] = user

    global_names = _global_group_names(global_group_name, prefix)
    for group in groups:
        if not group.id:
            continue
        index.groups_by_id[group.id] = group
        for key in name_keys(group.name, prefix):
            previous_group = index.name_to_group.get(key)
            if previous_group is not None and previous_group.id != group.id:
                _record(index, CollisionKind.GROUP_NAME, key, previous_group.id, group.id)
            index.name_to_group[key] = group
        if group.partner_id is not None:
            previous_group = index.partner_to_group.get(group.partner_id)
            if previous_group is not None and previous_group.id != group.id:
                _record(
                    index,
                    CollisionKind.PARTNER_GROUP,
                    group.partner_id,
                    previous_group.id,
                    group.id,
                )
            index.partner_to_group[group.partner_id] = group
        if normalize_name(group.name) in global_names:
            if index.global_group is None:
                index.global_group = group
            else:
                # first match is kept; any further candidate is a data problem
                _record(
                    index,
                    CollisionKind.GLOBAL_GROUP,
                    normalize_name(global_group_name),
                    group.id,
                    index.global_group.id,
                )

    for partner_id, partner_domains in domains.domains_by_partner.items():
        for domain in sorted(partner_domains):
            if is_excluded_domain(domain):
                continue
            previous_partner = index.domain_to_partner.get(domain)
            if previous_partner is not None and previous_partner != partner_id:
                _record(index, CollisionKind.DOMAIN, domain, previous_partner, partner_id)
            index.domain_to_partner[domain] = partner_id

    _resolve_partner_groups(index, partners)

    log.info(
        f"Built reconciliation index: users={len(index.email_to_user)}, "
        f"groups={len(index.groups_by_id)}, domains={len(index.domain_to_partner)}, "
        f"collisions={len(index.collisions)}"
    )
    return index


def _resolve_partner_groups(index: ReconciliationIndex, partners: Iterable[Partner]) -> None:
    claimed = {group.id for group in index.partner_to_group.values()}
    unresolved: list[Partner] = []
    for partner in partners:
        if not partner.id:
            continue
        group = index.group_for_partner(partner.id, partner.account_name)
        if group is None:
            unresolved.append(partner)
        else:
            claimed.add(group.id)

    if unresolved:
        global_id = index.global_group.id if index.global_group is not None else None
        open_groups = [
            group
            for group in index.groups_by_id.values()
            if group.id not in claimed and group.id != global_id and group.partner_id is None
        ]
        index.group_matching = match_groups_to_partners(unresolved, open_groups, prefix=index.prefix)
        chosen: dict[PartnerId, GroupMatch] = {}
        for match in index.group_matching.matches:
            current = chosen.get(match.partner_id)
            if current is not None:
                winner, loser = (current, match) if current.score > match.score else (match, current)
                _record(index, CollisionKind.PARTNER_GROUP, match.partner_id, loser.group.id, winner.group.id)
                chosen[match.partner_id] = winner
            else:
                chosen[match.partner_id] = match
        for partner_id, match in chosen.items():
            log.info(
                f"Group {match.group.name!r} matched to partner {partner_id} "
                f"({match.match_type}, score {match.score:.2f})"
            )
            index.partner_to_group[partner_id] = match.group
            claimed.add(match.group.id)

    index.partner_group_ids = frozenset(claimed)


def _global_group_names(global_group_name: str, prefix: str) -> frozenset[str]:
    base = normalize_name(global_group_name)
    names = {base, normalize_name(prefix) + base}
    if base.endswith("s"):
        names.add(base[:-1])
    return frozenset(names)


def _record(
    index: ReconciliationIndex,
    kind: CollisionKind,
    key: str,
    replaced: str,
    winner: str,
) -> None:
    log.warning(f"Index collision on {kind} key {key!r}: {replaced} replaced by {winner}")
    index.collisions.append(IndexCollision(kind=kind, key=key, replaced=replaced, winner=winner))
