"""Classify CRM contacts and LMS users into remediation categories.

Contact-confirmed relationships always outrank domain inference: a user whose
email matches a contact is judged against that contact's partner group and is
never reported as an orphan, whatever partner its domain points at.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from partnersync.domain.model import DomainRecord, OrphanRecord
from partnersync.domain.reconciliation.domains import is_excluded_domain

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence

    from partnersync.domain.model import (
        Contact,
        Domain,
        Group,
        GroupId,
        LmsUser,
        OrphanDismissal,
        Partner,
        PartnerId,
        UserId,
    )
    from partnersync.domain.reconciliation.index import ReconciliationIndex

log = getLogger(__name__)


class OffboardReason(StrEnum):
    CONTACT_INACTIVE = "contact_inactive"
    PARTNER_INACTIVE = "partner_inactive"
    GROUP_MISSING = "group_missing"


@dataclass(slots=True, kw_only=True)
class ReconciliationContext:
    """Everything one classification run reads. Nothing in here is mutated."""

    contacts: Sequence[Contact]
    partners: Sequence[Partner]
    index: ReconciliationIndex
    dismissals: Collection[OrphanDismissal] = ()


@dataclass(slots=True, kw_only=True)
class PartnerGroupGap:
    """Contact-matched user missing from the contact's partner group."""

    user: LmsUser
    contact: Contact
    group: Group


@dataclass(slots=True, kw_only=True)
class OffboardCandidate:
    user: LmsUser
    reason: OffboardReason
    contact: Contact | None = None
    partner_id: PartnerId | None = None
    group_ids: frozenset[GroupId] = frozenset()


@dataclass(slots=True, kw_only=True)
class Classification:
    missing_from_lms: list[Contact] = field(default_factory=list["Contact"])
    missing_from_partner_group: list[PartnerGroupGap] = field(
        default_factory=list["PartnerGroupGap"]
    )
    missing_from_global_group: list[LmsUser] = field(default_factory=list["LmsUser"])
    orphans: list[OrphanRecord] = field(default_factory=list["OrphanRecord"])
    dismissed_orphans: list[OrphanRecord] = field(default_factory=list["OrphanRecord"])
    users_to_offboard: list[OffboardCandidate] = field(default_factory=list["OffboardCandidate"])
    partners_without_groups: list[Partner] = field(default_factory=list["Partner"])
    domain_records: list[DomainRecord] = field(default_factory=list["DomainRecord"])
    global_group: Group | None = None

    def summary(self) -> dict[str, int]:
        return {
            "missing_from_lms": len(self.missing_from_lms),
            "missing_from_partner_group": len(self.missing_from_partner_group),
            "missing_from_global_group": len(self.missing_from_global_group),
            "orphans": len(self.orphans),
            "dismissed_orphans": len(self.dismissed_orphans),
            "users_to_offboard": len(self.users_to_offboard),
            "partners_without_groups": len(self.partners_without_groups),
        }


def classify(context: ReconciliationContext) -> Classification:
    """Compute every remediation category for one snapshot.

    Records missing an id or email are skipped, never raised.
    """

    index = context.index
    partners_by_id = {partner.id: partner for partner in context.partners if partner.id}
    partner_by_group_id = _partners_by_group(context.partners, index)
    contacts_by_email = _contacts_by_email(context.contacts)
    dismissed = {dismissal.key: dismissal for dismissal in context.dismissals}
    global_group = index.global_group
    result = Classification(global_group=global_group)

    seen_missing: set[str] = set()
    for contact in context.contacts:
        email = contact.normalized_email
        if not contact.id or email is None or not contact.is_active:
            continue
        if email in seen_missing or index.user_for_email(email) is not None:
            continue
        seen_missing.add(email)
        result.missing_from_lms.append(contact)

    domain_users: dict[Domain, list[LmsUser]] = {}
    for email, user in index.email_to_user.items():
        if not user.id:
            continue
        partner_groups = index.partner_group_ids_of(user)
        in_global = global_group is not None and user.in_group(global_group.id)
        contact = contacts_by_email.get(email)

        if contact is not None:
            partner = partners_by_id.get(contact.account_id) if contact.account_id else None
            group = index.group_for_partner(contact.account_id, contact.account_name)
            reason = _contact_retirement(contact, partner)
            if group is not None and reason is None and not user.in_group(group.id):
                result.missing_from_partner_group.append(
                    PartnerGroupGap(user=user, contact=contact, group=group)
                )
            linked = group is not None or bool(partner_groups)
            backing_partner_id = contact.account_id
        else:
            reason = _membership_retirement(partner_groups, partner_by_group_id)
            linked = bool(partner_groups)
            backing_partner_id = None
            orphan = _orphan_for(user, index, partners_by_id, dismissed)
            if orphan is not None:
                if orphan.dismissed:
                    result.dismissed_orphans.append(orphan)
                else:
                    result.orphans.append(orphan)

        if in_global and reason is not None:
            result.users_to_offboard.append(
                OffboardCandidate(
                    user=user,
                    reason=reason,
                    contact=contact,
                    partner_id=backing_partner_id,
                    group_ids=partner_groups,
                )
            )
        elif linked and reason is None and global_group is not None and not in_global:
            result.missing_from_global_group.append(user)

        domain = user.domain
        if domain is not None and not is_excluded_domain(domain):
            domain_users.setdefault(domain, []).append(user)

    result.domain_records = _domain_records(domain_users, index, partners_by_id)
    result.partners_without_groups = [
        partner
        for partner in context.partners
        if partner.id
        and partner.is_active
        and index.group_for_partner(partner.id, partner.account_name) is None
    ]

    log.info(f"Classification complete: {result.summary()}")
    return result


def _contacts_by_email(contacts: Sequence[Contact]) -> dict[str, Contact]:
    by_email: dict[str, Contact] = {}
    for contact in contacts:
        email = contact.normalized_email
        if not contact.id or email is None:
            continue
        existing = by_email.get(email)
        # an active record for the same person wins over a retired duplicate
        if existing is not None and existing.is_active and not contact.is_active:
            continue
        by_email[email] = contact
    return by_email


def _partners_by_group(
    partners: Sequence[Partner], index: ReconciliationIndex
) -> dict[GroupId, Partner]:
    by_group: dict[GroupId, Partner] = {}
    for partner in partners:
        if not partner.id:
            continue
        group = index.group_for_partner(partner.id, partner.account_name)
        if group is not None:
            by_group[group.id] = partner
    return by_group


def _contact_retirement(contact: Contact, partner: Partner | None) -> OffboardReason | None:
    if not contact.is_active:
        return OffboardReason.CONTACT_INACTIVE
    if partner is not None and not partner.is_active:
        return OffboardReason.PARTNER_INACTIVE
    return None


def _membership_retirement(
    partner_groups: frozenset[GroupId],
    partner_by_group_id: dict[GroupId, Partner],
) -> OffboardReason | None:
    if not partner_groups:
        return OffboardReason.GROUP_MISSING
    backing = [partner_by_group_id.get(group_id) for group_id in partner_groups]
    if all(partner is not None and not partner.is_active for partner in backing):
        return OffboardReason.PARTNER_INACTIVE
    return None


def _orphan_for(
    user: LmsUser,
    index: ReconciliationIndex,
    partners_by_id: dict[PartnerId, Partner],
    dismissed: dict[tuple[UserId, PartnerId], OrphanDismissal],
) -> OrphanRecord | None:
    domain = user.domain
    if domain is None or is_excluded_domain(domain):
        return None
    partner_id = index.partner_for_domain(domain)
    partner = partners_by_id.get(partner_id) if partner_id is not None else None
    if partner is None or not partner.is_active:
        return None
    group = index.group_for_partner(partner.id, partner.account_name)
    if group is not None and user.in_group(group.id):
        return None
    dismissal = dismissed.get((user.id, partner.id))
    return OrphanRecord(
        user=user,
        partner_id=partner.id,
        domain=domain,
        group_id=group.id if group is not None else None,
        dismissed=dismissal is not None,
        reason=dismissal.reason if dismissal is not None else None,
    )


def _domain_records(
    domain_users: dict[Domain, list[LmsUser]],
    index: ReconciliationIndex,
    partners_by_id: dict[PartnerId, Partner],
) -> list[DomainRecord]:
    records: list[DomainRecord] = []
    for domain in sorted(domain_users):
        partner_id = index.partner_for_domain(domain)
        partner = partners_by_id.get(partner_id) if partner_id is not None else None
        group = (
            index.group_for_partner(partner.id, partner.account_name)
            if partner is not None
            else None
        )
        records.append(
            DomainRecord(
                domain=domain,
                partner_id=partner_id,
                partner_is_active=partner.is_active if partner is not None else None,
                group_id=group.id if group is not None else None,
                users=domain_users[domain],
            )
        )
    return records
