"""Turn classification output into ordered, idempotent remediation actions.

Planning is pure: nothing here calls a collaborator or mutates its inputs, so
a plan can be asserted on directly before anything is executed.

For the add-missing-users flow a work unit carries only its ``CREATE_PERSON``
action. The partner-group and global-group additions are held as pending
follow-ups and only become actions through :func:`bind_follow_ups`, once the
executor knows the person exists. A unit whose create failed therefore never
yields a group action.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, Any

from partnersync.domain.model import ContactInput, PersonInput, normalize_email

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from partnersync.domain.model import (
        Contact,
        Group,
        GroupId,
        LmsUser,
        OrphanRecord,
        Partner,
        PartnerId,
        UserId,
    )
    from partnersync.domain.reconciliation.classify import OffboardCandidate, PartnerGroupGap
    from partnersync.domain.reconciliation.index import ReconciliationIndex

log = getLogger(__name__)


class PreconditionError(RuntimeError):
    """Raised before any plan exists when a flow cannot run at all."""


class ActionKind(StrEnum):
    CREATE_GROUP = "create_group"
    DELETE_GROUP = "delete_group"
    ADD_TO_GROUP = "add_to_group"
    REMOVE_FROM_GROUP = "remove_from_group"
    CREATE_CONTACT = "create_contact"
    CREATE_PERSON = "create_person"
    DEACTIVATE = "deactivate"


class GroupRole(StrEnum):
    PARTNER = "partner"
    GLOBAL = "global"
    TARGET = "target"


class Flow(StrEnum):
    ADD_MISSING_USERS = "add_missing_users"
    ADD_TO_GROUP = "add_to_group"
    LINK_ORPHANS = "link_orphans"
    FIX_PARTNER_GROUP = "fix_partner_group"
    FIX_GLOBAL_GROUP = "fix_global_group"
    OFFBOARD = "offboard"
    CREATE_GROUPS = "create_groups"
    CREATE_CONTACTS = "create_contacts"
    DEACTIVATE = "deactivate"


class Category(StrEnum):
    """Classification output an operator can act on."""

    MISSING_FROM_LMS = "missing_from_lms"
    MISSING_FROM_PARTNER_GROUP = "missing_from_partner_group"
    MISSING_FROM_GLOBAL_GROUP = "missing_from_global_group"
    ORPHANS = "orphans"
    USERS_TO_OFFBOARD = "users_to_offboard"
    PARTNERS_WITHOUT_GROUPS = "partners_without_groups"
    SELECTED_USERS = "selected_users"


@dataclass(slots=True, frozen=True, kw_only=True)
class GroupSpec:
    name: str
    description: str
    partner_id: PartnerId | None = None


type ActionPayload = PersonInput | ContactInput | GroupSpec


@dataclass(slots=True, frozen=True, kw_only=True)
class ReconciliationAction:
    kind: ActionKind
    target_id: str
    group_id: GroupId | None = None
    role: GroupRole | None = None
    payload: ActionPayload | None = None
    idempotency_key: str


def idempotency_key(kind: ActionKind, target_id: str, group_id: GroupId | None = None) -> str:
    key = f"{kind}:{target_id}"
    if group_id is not None:
        key = f"{key}:{group_id}"
    return key


def make_action(
    kind: ActionKind,
    target_id: str,
    *,
    group_id: GroupId | None = None,
    role: GroupRole | None = None,
    payload: ActionPayload | None = None,
) -> ReconciliationAction:
    return ReconciliationAction(
        kind=kind,
        target_id=target_id,
        group_id=group_id,
        role=role,
        payload=payload,
        idempotency_key=idempotency_key(kind, target_id, group_id),
    )


@dataclass(slots=True, frozen=True)
class PendingGroupAdd:
    group_id: GroupId
    role: GroupRole


@dataclass(slots=True, kw_only=True)
class WorkUnit:
    """Ordered actions for one entity; the executor paces between units."""

    entity: str
    actions: list[ReconciliationAction] = field(default_factory=list["ReconciliationAction"])
    follow_ups: tuple[PendingGroupAdd, ...] = ()


def bind_follow_ups(unit: WorkUnit, user_id: UserId) -> list[ReconciliationAction]:
    """Materialize ``unit``'s pending group additions for a now-known user."""

    return [
        make_action(
            ActionKind.ADD_TO_GROUP,
            user_id,
            group_id=pending.group_id,
            role=pending.role,
        )
        for pending in unit.follow_ups
    ]


@dataclass(slots=True, kw_only=True)
class ReconciliationPlan:
    flow: Flow
    units: list[WorkUnit] = field(default_factory=list["WorkUnit"])
    already_satisfied: list[str] = field(default_factory=list[str])
    warnings: list[str] = field(default_factory=list[str])

    @property
    def actions(self) -> list[ReconciliationAction]:
        return [action for unit in self.units for action in unit.actions]

    def __len__(self) -> int:
        return len(self.units)

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            log.warning(message)
            self.warnings.append(message)


def plan_add_missing_users(
    contacts: Iterable[Contact], index: ReconciliationIndex
) -> ReconciliationPlan:
    """Create a person per contact, then (once created) partner and global group adds."""

    result = ReconciliationPlan(flow=Flow.ADD_MISSING_USERS)
    global_group = index.global_group
    if global_group is None:
        result.warn("No global group found; created users will only join partner groups")

    seen: set[str] = set()
    for contact in contacts:
        email = contact.normalized_email
        if email is None or email in seen:
            continue
        seen.add(email)

        follow_ups: list[PendingGroupAdd] = []
        group = index.group_for_partner(contact.account_id, contact.account_name)
        if group is not None:
            follow_ups.append(PendingGroupAdd(group.id, GroupRole.PARTNER))
        elif contact.account_name:
            result.warn(f"No partner group for account {contact.account_name!r}")
        if global_group is not None:
            follow_ups.append(PendingGroupAdd(global_group.id, GroupRole.GLOBAL))

        person = PersonInput(
            email=email,
            first_name=contact.first_name,
            last_name=contact.last_name,
        )
        result.units.append(
            WorkUnit(
                entity=email,
                actions=[make_action(ActionKind.CREATE_PERSON, email, payload=person)],
                follow_ups=tuple(follow_ups),
            )
        )
    return result


def plan_group_additions(
    users: Iterable[LmsUser],
    group: Group,
    role: GroupRole = GroupRole.TARGET,
    *,
    flow: Flow = Flow.ADD_TO_GROUP,
) -> ReconciliationPlan:
    """Add the selected users to ``group``; current members count as satisfied."""

    result = ReconciliationPlan(flow=flow)
    seen: set[UserId] = set()
    for user in users:
        if not user.id or user.id in seen:
            continue
        seen.add(user.id)
        if user.in_group(group.id):
            result.already_satisfied.append(user.id)
            continue
        result.units.append(
            WorkUnit(
                entity=user.email or user.id,
                actions=[
                    make_action(ActionKind.ADD_TO_GROUP, user.id, group_id=group.id, role=role)
                ],
            )
        )
    return result


def plan_link_orphans(
    orphans: Sequence[OrphanRecord], index: ReconciliationIndex
) -> ReconciliationPlan:
    """Add orphans to the group of the partner their domain resolved to."""

    unresolved = sorted(
        {
            orphan.partner_id
            for orphan in orphans
            if _orphan_group(orphan, index) is None
        }
    )
    if unresolved:
        raise PreconditionError(
            f"No partner group exists for partner(s): {', '.join(unresolved)}. "
            "Create the group first."
        )

    result = ReconciliationPlan(flow=Flow.LINK_ORPHANS)
    for orphan in orphans:
        group_id = _orphan_group(orphan, index)
        if group_id is None or not orphan.user.id:
            continue
        if orphan.user.in_group(group_id):
            result.already_satisfied.append(orphan.user.id)
            continue
        result.units.append(
            WorkUnit(
                entity=orphan.user.email or orphan.user.id,
                actions=[
                    make_action(
                        ActionKind.ADD_TO_GROUP,
                        orphan.user.id,
                        group_id=group_id,
                        role=GroupRole.PARTNER,
                    )
                ],
            )
        )
    return result


def _orphan_group(orphan: OrphanRecord, index: ReconciliationIndex) -> GroupId | None:
    if orphan.group_id is not None:
        return orphan.group_id
    group = index.group_for_partner(orphan.partner_id)
    return group.id if group is not None else None


def plan_fix_missing_partner_group(entries: Sequence[PartnerGroupGap]) -> ReconciliationPlan:
    result = ReconciliationPlan(flow=Flow.FIX_PARTNER_GROUP)
    seen: set[tuple[UserId, GroupId]] = set()
    for entry in entries:
        key = (entry.user.id, entry.group.id)
        if not entry.user.id or key in seen:
            continue
        seen.add(key)
        if entry.user.in_group(entry.group.id):
            result.already_satisfied.append(entry.user.id)
            continue
        result.units.append(
            WorkUnit(
                entity=entry.user.email or entry.user.id,
                actions=[
                    make_action(
                        ActionKind.ADD_TO_GROUP,
                        entry.user.id,
                        group_id=entry.group.id,
                        role=GroupRole.PARTNER,
                    )
                ],
            )
        )
    return result


def plan_fix_missing_global_group(
    users: Iterable[LmsUser], index: ReconciliationIndex
) -> ReconciliationPlan:
    global_group = _require_global_group(index)
    return plan_group_additions(
        users,
        global_group,
        GroupRole.GLOBAL,
        flow=Flow.FIX_GLOBAL_GROUP,
    )


def plan_offboarding(
    entries: Sequence[OffboardCandidate],
    index: ReconciliationIndex,
    *,
    deactivate: bool = False,
    delete_groups_of: Iterable[Partner] = (),
) -> ReconciliationPlan:
    """Remove each user from its partner groups and the global group.

    With ``deactivate`` the user is also deactivated once the removals ran.
    The groups of inactive partners in ``delete_groups_of`` are deleted after
    every user unit; active partners there are ignored.
    """

    result = ReconciliationPlan(flow=Flow.OFFBOARD)
    global_group = index.global_group
    if global_group is None:
        result.warn("No global group found; offboarding only removes partner-group memberships")

    seen: set[UserId] = set()
    for entry in entries:
        user = entry.user
        if not user.id or user.id in seen:
            continue
        seen.add(user.id)

        group_ids = set(entry.group_ids)
        if entry.contact is not None:
            group = index.group_for_partner(entry.contact.account_id, entry.contact.account_name)
            if group is not None and user.in_group(group.id):
                group_ids.add(group.id)

        actions = [
            make_action(
                ActionKind.REMOVE_FROM_GROUP,
                user.id,
                group_id=group_id,
                role=GroupRole.PARTNER,
            )
            for group_id in sorted(group_ids)
        ]
        if global_group is not None and user.in_group(global_group.id):
            actions.append(
                make_action(
                    ActionKind.REMOVE_FROM_GROUP,
                    user.id,
                    group_id=global_group.id,
                    role=GroupRole.GLOBAL,
                )
            )
        if deactivate and user.is_active:
            actions.append(make_action(ActionKind.DEACTIVATE, user.id))
        if not actions:
            result.already_satisfied.append(user.id)
            continue
        result.units.append(WorkUnit(entity=user.email or user.id, actions=actions))

    doomed: set[GroupId] = set()
    for partner in delete_groups_of:
        if not partner.id or partner.is_active:
            continue
        group = index.group_for_partner(partner.id, partner.account_name)
        if group is None or group.id in doomed:
            continue
        if global_group is not None and group.id == global_group.id:
            continue
        doomed.add(group.id)
        result.units.append(
            WorkUnit(
                entity=group.name or group.id,
                actions=[make_action(ActionKind.DELETE_GROUP, group.id, group_id=group.id)],
            )
        )
    return result


def plan_create_groups(
    partners: Iterable[Partner],
    *,
    prefix: str,
    index: ReconciliationIndex | None = None,
) -> ReconciliationPlan:
    """One ``CREATE_GROUP`` per partner, named ``prefix + account_name``."""

    result = ReconciliationPlan(flow=Flow.CREATE_GROUPS)
    seen: set[PartnerId] = set()
    for partner in partners:
        if not partner.id or not partner.account_name or partner.id in seen:
            continue
        seen.add(partner.id)
        if index is not None and index.group_for_partner(partner.id, partner.account_name):
            result.already_satisfied.append(partner.id)
            continue
        spec = GroupSpec(
            name=f"{prefix}{partner.account_name}",
            description=f"Partner group for {partner.account_name}",
            partner_id=partner.id,
        )
        result.units.append(
            WorkUnit(
                entity=partner.account_name,
                actions=[make_action(ActionKind.CREATE_GROUP, partner.id, payload=spec)],
            )
        )
    return result


def plan_create_contacts(
    orphans: Sequence[OrphanRecord],
    partners_by_id: Mapping[PartnerId, Partner],
) -> ReconciliationPlan:
    """Record confirmed orphans as CRM contacts of their matched partner."""

    result = ReconciliationPlan(flow=Flow.CREATE_CONTACTS)
    seen: set[str] = set()
    for orphan in orphans:
        email = normalize_email(orphan.user.email)
        if email is None or email in seen:
            continue
        partner = partners_by_id.get(orphan.partner_id)
        if partner is None:
            result.warn(f"Unknown partner {orphan.partner_id!r} for {email}; contact skipped")
            continue
        seen.add(email)
        contact = ContactInput(
            email=email,
            first_name=orphan.user.first_name,
            last_name=orphan.user.last_name,
            account_id=partner.id,
            account_name=partner.account_name,
        )
        result.units.append(
            WorkUnit(
                entity=email,
                actions=[make_action(ActionKind.CREATE_CONTACT, email, payload=contact)],
            )
        )
    return result


def plan_deactivations(users: Iterable[LmsUser]) -> ReconciliationPlan:
    result = ReconciliationPlan(flow=Flow.DEACTIVATE)
    seen: set[UserId] = set()
    for user in users:
        if not user.id or user.id in seen:
            continue
        seen.add(user.id)
        if not user.is_active:
            result.already_satisfied.append(user.id)
            continue
        result.units.append(
            WorkUnit(
                entity=user.email or user.id,
                actions=[make_action(ActionKind.DEACTIVATE, user.id)],
            )
        )
    return result


def plan(
    category: Category,
    entries: Sequence[Any],
    *,
    index: ReconciliationIndex,
    target: Group | None = None,
) -> ReconciliationPlan:
    """Dispatch ``entries`` of one classification category to its planner."""

    match category:
        case Category.MISSING_FROM_LMS:
            return plan_add_missing_users(entries, index)
        case Category.MISSING_FROM_PARTNER_GROUP:
            return plan_fix_missing_partner_group(entries)
        case Category.MISSING_FROM_GLOBAL_GROUP:
            return plan_fix_missing_global_group(entries, index)
        case Category.ORPHANS:
            if target is not None:
                return plan_group_additions(
                    [orphan.user for orphan in entries],
                    target,
                    GroupRole.PARTNER,
                    flow=Flow.LINK_ORPHANS,
                )
            return plan_link_orphans(entries, index)
        case Category.USERS_TO_OFFBOARD:
            return plan_offboarding(entries, index)
        case Category.PARTNERS_WITHOUT_GROUPS:
            return plan_create_groups(entries, prefix=index.prefix, index=index)
        case Category.SELECTED_USERS:
            if target is None:
                raise PreconditionError("Select a target group before adding users")
            return plan_group_additions(entries, target)


def _require_global_group(index: ReconciliationIndex) -> Group:
    if index.global_group is None:
        raise PreconditionError("No global group found; create it before assigning users")
    return index.global_group
