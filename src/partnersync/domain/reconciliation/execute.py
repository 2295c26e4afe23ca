"""Apply a reconciliation plan against the LMS and the contact store.

Execution is strictly sequential: one external call in flight, work units in
plan order, and the actions of one unit in their planned order. A pacer runs
between units to keep the overall call rate bounded.

Expected per-item failures never raise. A raised exception or a
``success=False`` outcome is recorded as an :class:`ExecutionError` and the
batch moves on to the next unit.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Protocol

from aiolimiter import AsyncLimiter

from partnersync.domain.model import ContactInput, PersonInput
from partnersync.domain.reconciliation.plan import (
    ActionKind,
    Flow,
    GroupRole,
    GroupSpec,
    bind_follow_ups,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from partnersync.domain.model import Contact, Group
    from partnersync.domain.ports import ContactStoreClient, LmsClient, OperationOutcome
    from partnersync.domain.reconciliation.plan import (
        ReconciliationAction,
        ReconciliationPlan,
        WorkUnit,
    )

log = getLogger(__name__)

DEFAULT_CALL_DELAY_SECONDS = 0.3


class ActionFailedError(RuntimeError):
    """A collaborator reported ``success=False`` for one action."""


class Pacer(Protocol):
    async def wait(self) -> None: ...


@dataclass(slots=True)
class FixedDelayPacer:
    delay: float = DEFAULT_CALL_DELAY_SECONDS

    async def wait(self) -> None:
        if self.delay > 0:
            await asyncio.sleep(self.delay)


class RateLimitedPacer:
    """Token-bucket pacing: at most ``max_rate`` units per ``time_period`` seconds."""

    def __init__(self, max_rate: float, time_period: float = 1.0) -> None:
        self._limiter = AsyncLimiter(max_rate, time_period)

    async def wait(self) -> None:
        await self._limiter.acquire()


class NoDelayPacer:
    async def wait(self) -> None:
        return None


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class IdempotencyLedger:
    """Action keys already applied; share one instance across runs to skip repeats."""

    def __init__(self, keys: set[str] | None = None) -> None:
        self._keys: set[str] = set(keys or ())

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def record(self, key: str) -> None:
        self._keys.add(key)


@dataclass(slots=True, kw_only=True)
class Collaborators:
    lms: LmsClient
    contact_store: ContactStoreClient | None = None


@dataclass(slots=True, frozen=True)
class ExecutionError:
    entity: str
    error: str


@dataclass(slots=True, frozen=True, kw_only=True)
class ExecutionProgress:
    flow: Flow
    completed: int
    total: int
    entity: str
    succeeded: bool


@dataclass(slots=True, kw_only=True)
class ExecutionResult:
    flow: Flow
    applied: list[ReconciliationAction] = field(default_factory=list["ReconciliationAction"])
    errors: list[ExecutionError] = field(default_factory=list["ExecutionError"])
    warnings: list[str] = field(default_factory=list[str])
    failed: int = 0
    skipped_duplicates: int = 0
    cancelled: bool = False

    def record_error(self, entity: str, error: str) -> None:
        self.errors.append(ExecutionError(entity, error))


@dataclass(slots=True, kw_only=True)
class CreateUserResult(ExecutionResult):
    created: int = 0
    already_existed: int = 0
    added_to_group: int = 0
    added_to_global_group: int = 0


@dataclass(slots=True, kw_only=True)
class GroupAddResult(ExecutionResult):
    success: int = 0
    already_member: int = 0


@dataclass(slots=True, kw_only=True)
class GroupRemoveResult(ExecutionResult):
    removed: int = 0
    removed_from_global_group: int = 0
    deactivated: int = 0
    groups_deleted: int = 0


@dataclass(slots=True, kw_only=True)
class GroupCreateResult(ExecutionResult):
    created: int = 0
    groups: list[Group] = field(default_factory=list["Group"])


@dataclass(slots=True, kw_only=True)
class ContactCreateResult(ExecutionResult):
    created: int = 0
    contacts: list[Contact] = field(default_factory=list["Contact"])


@dataclass(slots=True, kw_only=True)
class DeactivateResult(ExecutionResult):
    deactivated: int = 0


_RESULT_TYPES: dict[Flow, type[ExecutionResult]] = {
    Flow.ADD_MISSING_USERS: CreateUserResult,
    Flow.ADD_TO_GROUP: GroupAddResult,
    Flow.LINK_ORPHANS: GroupAddResult,
    Flow.FIX_PARTNER_GROUP: GroupAddResult,
    Flow.FIX_GLOBAL_GROUP: GroupAddResult,
    Flow.OFFBOARD: GroupRemoveResult,
    Flow.CREATE_GROUPS: GroupCreateResult,
    Flow.CREATE_CONTACTS: ContactCreateResult,
    Flow.DEACTIVATE: DeactivateResult,
}


class _Cancelled(Exception):  # noqa: N818
    pass


class _Skipped(Exception):  # noqa: N818
    pass


class ActionExecutor:
    """Run one plan; instances are single-use."""

    def __init__(
        self,
        collaborators: Collaborators,
        *,
        on_progress: Callable[[ExecutionProgress], None] | None = None,
        pacer: Pacer | None = None,
        cancellation: CancellationToken | None = None,
        ledger: IdempotencyLedger | None = None,
    ) -> None:
        self._collaborators = collaborators
        self._on_progress = on_progress
        self._pacer: Pacer = pacer if pacer is not None else FixedDelayPacer()
        self._cancellation = cancellation
        self._ledger = ledger if ledger is not None else IdempotencyLedger()

    async def run(self, plan: ReconciliationPlan) -> ExecutionResult:
        result = _RESULT_TYPES[plan.flow](flow=plan.flow, warnings=list(plan.warnings))
        if isinstance(result, GroupAddResult):
            result.already_member += len(plan.already_satisfied)

        total = len(plan.units)
        log.info(f"Executing {plan.flow} plan with {total} work unit(s)")
        for position, unit in enumerate(plan.units):
            if position > 0:
                await self._pacer.wait()
            try:
                succeeded = await self._run_unit(unit, result)
            except _Cancelled:
                result.cancelled = True
                log.warning(f"{plan.flow} run cancelled after {position}/{total} unit(s)")
                break
            if not succeeded:
                result.failed += 1
            if self._on_progress is not None:
                self._on_progress(
                    ExecutionProgress(
                        flow=plan.flow,
                        completed=position + 1,
                        total=total,
                        entity=unit.entity,
                        succeeded=succeeded,
                    )
                )

        log.info(
            f"{plan.flow} finished: applied={len(result.applied)}, failed={result.failed}, "
            f"skipped={result.skipped_duplicates}, cancelled={result.cancelled}"
        )
        return result

    async def _run_unit(self, unit: WorkUnit, result: ExecutionResult) -> bool:
        if isinstance(result, CreateUserResult):
            return await self._run_create_unit(unit, result)

        succeeded = True
        for action in unit.actions:
            try:
                await self._apply(action, result)
            except _Cancelled:
                raise
            except _Skipped:
                continue
            except Exception as e:  # noqa: BLE001
                succeeded = False
                log.warning(f"{action.kind} failed for {unit.entity}: {e}")
                result.record_error(unit.entity, str(e))
        return succeeded

    async def _run_create_unit(self, unit: WorkUnit, result: CreateUserResult) -> bool:
        create = unit.actions[0]
        try:
            user_id = await self._create_person(create, result)
        except _Cancelled:
            raise
        except _Skipped:
            return True
        except Exception as e:  # noqa: BLE001
            log.warning(f"Failed to create {unit.entity}: {e}")
            result.record_error(unit.entity, str(e))
            return False

        # group steps are non-terminal; a partner-group failure still lets the global step run
        for action in bind_follow_ups(unit, user_id):
            try:
                await self._apply(action, result)
            except _Cancelled:
                raise
            except _Skipped:
                continue
            except Exception as e:  # noqa: BLE001
                message = f"{action.role} group add failed for {unit.entity}: {e}"
                log.warning(message)
                result.warnings.append(message)
        return True

    async def _create_person(self, action: ReconciliationAction, result: CreateUserResult) -> str:
        self._guard(action, result)
        if not isinstance(action.payload, PersonInput):
            raise TypeError(f"{action.kind} requires a PersonInput payload")
        outcome = await self._collaborators.lms.create_person(action.payload)
        if not outcome.success or outcome.user_id is None:
            raise ActionFailedError(outcome.error or "Failed to create person")
        if outcome.already_exists:
            result.already_existed += 1
        else:
            result.created += 1
        self._ledger.record(action.idempotency_key)
        result.applied.append(action)
        return outcome.user_id

    async def _apply(self, action: ReconciliationAction, result: ExecutionResult) -> None:
        self._guard(action, result)
        lms = self._collaborators.lms
        match action.kind:
            case ActionKind.ADD_TO_GROUP:
                outcome = await lms.add_user_to_group(_group_id(action), action.target_id)
                _check(outcome)
                _count_add(result, action, outcome)
            case ActionKind.REMOVE_FROM_GROUP:
                outcome = await lms.remove_user_from_group(_group_id(action), action.target_id)
                _check(outcome)
                if isinstance(result, GroupRemoveResult):
                    if action.role is GroupRole.GLOBAL:
                        result.removed_from_global_group += 1
                    else:
                        result.removed += 1
            case ActionKind.DEACTIVATE:
                outcome = await lms.deactivate_user(action.target_id)
                _check(outcome)
                if isinstance(result, DeactivateResult | GroupRemoveResult):
                    result.deactivated += 1
            case ActionKind.DELETE_GROUP:
                outcome = await lms.delete_group(_group_id(action))
                _check(outcome)
                if isinstance(result, GroupRemoveResult):
                    result.groups_deleted += 1
            case ActionKind.CREATE_GROUP:
                if not isinstance(action.payload, GroupSpec):
                    raise TypeError(f"{action.kind} requires a GroupSpec payload")
                group = await lms.create_group(action.payload.name, action.payload.description)
                if isinstance(result, GroupCreateResult):
                    result.created += 1
                    result.groups.append(group)
            case ActionKind.CREATE_CONTACT:
                store = self._collaborators.contact_store
                if store is None:
                    raise ActionFailedError("No contact store configured")
                if not isinstance(action.payload, ContactInput):
                    raise TypeError(f"{action.kind} requires a ContactInput payload")
                contact = await store.create_contact(action.payload)
                if isinstance(result, ContactCreateResult):
                    result.created += 1
                    result.contacts.append(contact)
            case ActionKind.CREATE_PERSON:
                raise TypeError("Person creation only runs in the add-missing-users flow")
        self._ledger.record(action.idempotency_key)
        result.applied.append(action)

    def _guard(self, action: ReconciliationAction, result: ExecutionResult) -> None:
        if self._cancellation is not None and self._cancellation.cancelled:
            raise _Cancelled
        if action.idempotency_key in self._ledger:
            log.debug(f"Skipping already applied action {action.idempotency_key}")
            result.skipped_duplicates += 1
            raise _Skipped


def _group_id(action: ReconciliationAction) -> str:
    if action.group_id is None:
        raise TypeError(f"{action.kind} requires a group id")
    return action.group_id


def _check(outcome: OperationOutcome) -> None:
    if not outcome.success:
        raise ActionFailedError(outcome.error or "Operation failed")


def _count_add(
    result: ExecutionResult, action: ReconciliationAction, outcome: OperationOutcome
) -> None:
    if isinstance(result, CreateUserResult):
        if action.role is GroupRole.GLOBAL:
            result.added_to_global_group += 1
        else:
            result.added_to_group += 1
    elif isinstance(result, GroupAddResult):
        if outcome.already_applied:
            result.already_member += 1
        else:
            result.success += 1


async def execute(
    plan: ReconciliationPlan,
    collaborators: Collaborators,
    *,
    on_progress: Callable[[ExecutionProgress], None] | None = None,
    pacer: Pacer | None = None,
    cancellation: CancellationToken | None = None,
    ledger: IdempotencyLedger | None = None,
) -> ExecutionResult:
    """Execute ``plan`` and return its flow-specific result variant."""

    executor = ActionExecutor(
        collaborators,
        on_progress=on_progress,
        pacer=pacer,
        cancellation=cancellation,
        ledger=ledger,
    )
    return await executor.run(plan)
