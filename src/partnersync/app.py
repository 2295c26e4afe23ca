"""Application orchestration entry points.

Each flow reads a fresh snapshot from both systems, analyses it, plans one
remediation category and executes the plan. Flows that write are serialized
per (contact store, LMS instance) pair through a process-wide run registry.
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from partnersync.adapters.crm_export import load_crm_export
from partnersync.adapters.northpass import NorthpassClient
from partnersync.adapters.sqlalchemy import SqlAlchemyContactStore, is_started, startup
from partnersync.config import (
    ReconciliationConfig,
    get_database_config,
    get_northpass_config,
    get_reconciliation_config,
)
from partnersync.domain.model import normalize_email
from partnersync.domain.reconciliation import (
    CancellationToken,
    Collaborators,
    ContactCreateResult,
    CreateUserResult,
    DeactivateResult,
    ExecutionResult,
    FixedDelayPacer,
    GroupAddResult,
    GroupCreateResult,
    GroupRemoveResult,
    ReconciliationEngine,
    RunRegistry,
    Snapshot,
    execute,
    plan_add_missing_users,
    plan_create_contacts,
    plan_create_groups,
    plan_deactivations,
    plan_fix_missing_global_group,
    plan_fix_missing_partner_group,
    plan_link_orphans,
    plan_offboarding,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Collection
    from pathlib import Path

    from partnersync.domain.model import DatabaseStats, GroupId, PartnerId, UserId
    from partnersync.domain.ports import ContactStoreClient, LmsClient
    from partnersync.domain.reconciliation import (
        Analysis,
        ExecutionProgress,
        Pacer,
        ReconciliationPlan,
    )

log = getLogger(__name__)

RUN_REGISTRY = RunRegistry()
DEFAULT_DISMISS_REASON = "Not a match"

type ProgressCallback = Callable[[ExecutionProgress], None]


@dataclass(slots=True, kw_only=True)
class Services:
    """Collaborators and settings shared by every flow of one invocation."""

    lms: LmsClient
    contact_store: ContactStoreClient
    settings: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    crm_key: str = "default"
    lms_key: str = "default"
    pacer: Pacer | None = None
    on_progress: ProgressCallback | None = None
    cancellation: CancellationToken = field(default_factory=CancellationToken)

    @property
    def engine(self) -> ReconciliationEngine:
        return ReconciliationEngine(
            prefix=self.settings.group_prefix,
            global_group_name=self.settings.global_group_name,
        )

    @property
    def collaborators(self) -> Collaborators:
        return Collaborators(lms=self.lms, contact_store=self.contact_store)

    def effective_pacer(self) -> Pacer:
        return self.pacer or FixedDelayPacer(self.settings.call_delay_seconds)


def build_services(
    *,
    lms: LmsClient | None = None,
    contact_store: ContactStoreClient | None = None,
    settings: ReconciliationConfig | None = None,
    pacer: Pacer | None = None,
    on_progress: ProgressCallback | None = None,
    cancellation: CancellationToken | None = None,
) -> Services:
    """Fill in the configured Northpass and SQLAlchemy adapters where none are given."""

    crm_key = lms_key = "injected"
    if contact_store is None:
        database = get_database_config()
        if not is_started():
            startup(database_uri=database.uri)
        contact_store = SqlAlchemyContactStore()
        crm_key = database.account_key
    if lms is None:
        northpass = get_northpass_config()
        lms = NorthpassClient(config=northpass)
        lms_key = northpass.instance_key
    return Services(
        lms=lms,
        contact_store=contact_store,
        settings=settings or get_reconciliation_config(),
        crm_key=crm_key,
        lms_key=lms_key,
        pacer=pacer,
        on_progress=on_progress,
        cancellation=cancellation if cancellation is not None else CancellationToken(),
    )


@dataclass(slots=True, kw_only=True)
class AuditReport:
    analysis: Analysis
    stats: DatabaseStats

    @property
    def summary(self) -> dict[str, int]:
        summary = self.analysis.classification.summary()
        summary["index_collisions"] = len(self.analysis.index.collisions)
        return summary


@dataclass(slots=True, kw_only=True)
class FixGroupsResult:
    partner_group: GroupAddResult | None = None
    global_group: GroupAddResult | None = None


async def load_snapshot(services: Services) -> Snapshot:
    """Read both systems; failures here abort the flow before anything is written."""

    store = services.contact_store
    contacts = await store.get_all_contacts()
    partners = await store.get_all_partners()
    dismissals = await store.get_dismissed_orphans()
    groups = await services.lms.get_all_groups()
    users = await services.lms.get_all_users(groups=groups)
    log.info(
        "Loaded snapshot: contacts=%s, partners=%s, users=%s, groups=%s, dismissals=%s",
        len(contacts),
        len(partners),
        len(users),
        len(groups),
        len(dismissals),
    )
    return Snapshot(
        contacts=contacts,
        partners=partners,
        users=users,
        groups=groups,
        dismissals=dismissals,
    )


def run_audit(services: Services | None = None) -> AuditReport:
    """Classify the current state of both systems without changing anything."""

    async def audit(active: Services) -> AuditReport:
        snapshot = await load_snapshot(active)
        stats = await active.contact_store.get_database_stats()
        return AuditReport(analysis=active.engine.analyze(snapshot), stats=stats)

    return _run(services, audit, exclusive=False)


def add_missing_users(
    services: Services | None = None,
    *,
    emails: Collection[str] | None = None,
) -> CreateUserResult:
    """Create LMS people for active contacts missing from the LMS, then assign groups."""

    wanted = _normalized_emails(emails)

    async def flow(active: Services) -> CreateUserResult:
        analysis = active.engine.analyze(await load_snapshot(active))
        contacts = [
            contact
            for contact in analysis.classification.missing_from_lms
            if wanted is None or contact.normalized_email in wanted
        ]
        plan = plan_add_missing_users(contacts, analysis.index)
        return await _execute(active, plan, CreateUserResult)

    return _run(services, flow)


def link_orphans(
    services: Services | None = None,
    *,
    partner_id: PartnerId | None = None,
    user_ids: Collection[UserId] | None = None,
) -> GroupAddResult:
    """Add undismissed orphans to the group of the partner their domain matched."""

    async def flow(active: Services) -> GroupAddResult:
        analysis = active.engine.analyze(await load_snapshot(active))
        orphans = [
            orphan
            for orphan in analysis.classification.orphans
            if (partner_id is None or orphan.partner_id == partner_id)
            and (user_ids is None or orphan.user.id in user_ids)
        ]
        return await _execute(active, plan_link_orphans(orphans, analysis.index), GroupAddResult)

    return _run(services, flow)


def fix_group_memberships(
    services: Services | None = None,
    *,
    partner_groups: bool = True,
    global_group: bool = True,
) -> FixGroupsResult:
    """Add contact-matched users to their partner group and linked users to the global group."""

    async def flow(active: Services) -> FixGroupsResult:
        analysis = active.engine.analyze(await load_snapshot(active))
        classification = analysis.classification
        # plan both first; a missing global group fails before any write
        partner_plan = (
            plan_fix_missing_partner_group(classification.missing_from_partner_group)
            if partner_groups
            else None
        )
        global_plan = (
            plan_fix_missing_global_group(classification.missing_from_global_group, analysis.index)
            if global_group
            else None
        )
        result = FixGroupsResult()
        if partner_plan is not None:
            result.partner_group = await _execute(active, partner_plan, GroupAddResult)
        if global_plan is not None:
            result.global_group = await _execute(active, global_plan, GroupAddResult)
        return result

    return _run(services, flow)


def offboard_users(
    services: Services | None = None,
    *,
    deactivate: bool = False,
    user_ids: Collection[UserId] | None = None,
    delete_partner_groups: bool = False,
) -> GroupRemoveResult:
    """Remove retired users from partner groups and the global group.

    With ``delete_partner_groups`` the LMS groups of inactive partners are
    deleted once every user has been removed.
    """

    async def flow(active: Services) -> GroupRemoveResult:
        analysis = active.engine.analyze(await load_snapshot(active))
        entries = [
            entry
            for entry in analysis.classification.users_to_offboard
            if user_ids is None or entry.user.id in user_ids
        ]
        retired = (
            [partner for partner in analysis.context.partners if not partner.is_active]
            if delete_partner_groups
            else []
        )
        plan = plan_offboarding(
            entries, analysis.index, deactivate=deactivate, delete_groups_of=retired
        )
        return await _execute(active, plan, GroupRemoveResult)

    return _run(services, flow)


def create_partner_groups(
    services: Services | None = None,
    *,
    partner_ids: Collection[PartnerId] | None = None,
) -> GroupCreateResult:
    """Create ``prefix + account name`` groups for active partners that lack one."""

    async def flow(active: Services) -> GroupCreateResult:
        analysis = active.engine.analyze(await load_snapshot(active))
        partners = [
            partner
            for partner in analysis.classification.partners_without_groups
            if partner_ids is None or partner.id in partner_ids
        ]
        plan = plan_create_groups(
            partners, prefix=active.settings.group_prefix, index=analysis.index
        )
        return await _execute(active, plan, GroupCreateResult)

    return _run(services, flow)


def create_orphan_contacts(
    services: Services | None = None,
    *,
    user_ids: Collection[UserId],
) -> ContactCreateResult:
    """Record operator-confirmed orphans as contacts of their matched partner."""

    async def flow(active: Services) -> ContactCreateResult:
        analysis = active.engine.analyze(await load_snapshot(active))
        orphans = [o for o in analysis.classification.orphans if o.user.id in user_ids]
        partners_by_id = {partner.id: partner for partner in analysis.context.partners}
        plan = plan_create_contacts(orphans, partners_by_id)
        return await _execute(active, plan, ContactCreateResult)

    return _run(services, flow)


def deactivate_users(
    services: Services | None = None,
    *,
    user_ids: Collection[UserId],
) -> DeactivateResult:
    async def flow(active: Services) -> DeactivateResult:
        snapshot = await load_snapshot(active)
        users = [user for user in snapshot.users if user.id in user_ids]
        return await _execute(active, plan_deactivations(users), DeactivateResult)

    return _run(services, flow)


def dismiss_orphan(
    user_id: UserId,
    partner_id: PartnerId,
    reason: str = DEFAULT_DISMISS_REASON,
    *,
    services: Services | None = None,
) -> None:
    async def flow(active: Services) -> None:
        await active.contact_store.dismiss_orphan(user_id, partner_id, reason)
        log.info("Dismissed orphan %s for partner %s", user_id, partner_id)

    _run(services, flow, exclusive=False)


def restore_orphan(
    user_id: UserId,
    partner_id: PartnerId,
    *,
    services: Services | None = None,
) -> None:
    async def flow(active: Services) -> None:
        await active.contact_store.restore_orphan(user_id, partner_id)
        log.info("Restored orphan %s for partner %s", user_id, partner_id)

    _run(services, flow, exclusive=False)


def import_crm_export(path: Path, *, store: SqlAlchemyContactStore | None = None) -> int:
    """Load a CRM export file into the contact store. Returns the number of rows written."""

    partners, contacts = load_crm_export(path)
    if store is None:
        if not is_started():
            startup(database_uri=get_database_config().uri)
        store = SqlAlchemyContactStore()
    return store.import_snapshot(partners, contacts)


def rename_group(
    group_id: GroupId,
    new_name: str,
    *,
    services: Services | None = None,
) -> None:
    if not new_name.strip():
        raise ValueError("Group name must not be blank")

    async def flow(active: Services) -> None:
        await active.lms.update_group_name(group_id, new_name.strip())
        log.info("Renamed group %s to %s", group_id, new_name.strip())

    _run(services, flow)


async def _execute[R: ExecutionResult](
    services: Services,
    plan: ReconciliationPlan,
    result_type: type[R],
) -> R:
    result = await execute(
        plan,
        services.collaborators,
        on_progress=services.on_progress,
        pacer=services.effective_pacer(),
        cancellation=services.cancellation,
    )
    if not isinstance(result, result_type):
        raise TypeError(f"{plan.flow} produced {type(result).__name__}, not {result_type.__name__}")
    return result


def _run[T](
    services: Services | None,
    flow: Callable[[Services], Awaitable[T]],
    *,
    exclusive: bool = True,
) -> T:
    active = services or build_services()

    async def runner() -> T:
        async with AsyncExitStack() as stack:
            if isinstance(active.lms, NorthpassClient):
                await stack.enter_async_context(active.lms)
            return await flow(active)

    if not exclusive:
        return asyncio.run(runner())
    with RUN_REGISTRY.exclusive(active.crm_key, active.lms_key):
        return asyncio.run(runner())


def _normalized_emails(emails: Collection[str] | None) -> set[str] | None:
    if emails is None:
        return None
    return {email for email in (normalize_email(value) for value in emails) if email}
