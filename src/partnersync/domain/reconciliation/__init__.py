"""Reconciliation core for partner contacts and LMS users.

Layered flow:
1) extract candidate email domains per partner from CRM contacts
2) build email, group-name and domain lookup indices, matching stray groups to partners by name
3) classify contacts and users into remediation categories
4) plan idempotent remediation actions for one category
5) execute the plan sequentially against the LMS and contact store
"""

from __future__ import annotations

from .classify import (
    Classification,
    OffboardCandidate,
    OffboardReason,
    PartnerGroupGap,
    ReconciliationContext,
    classify,
)
from .domains import (
    EXCLUDED_EMAIL_DOMAINS,
    DomainExtraction,
    attach_domains,
    extract_domains,
    is_excluded_domain,
)
from .engine import Analysis, ReconciliationEngine, Snapshot
from .execute import (
    ActionExecutor,
    CancellationToken,
    Collaborators,
    ContactCreateResult,
    CreateUserResult,
    DeactivateResult,
    ExecutionError,
    ExecutionProgress,
    ExecutionResult,
    FixedDelayPacer,
    GroupAddResult,
    GroupCreateResult,
    GroupRemoveResult,
    IdempotencyLedger,
    NoDelayPacer,
    Pacer,
    RateLimitedPacer,
    execute,
)
from .index import IndexCollision, ReconciliationIndex, build_indices
from .matching import (
    GroupMatch,
    GroupMatching,
    GroupSuggestion,
    MatchType,
    comparable_name,
    is_system_group,
    match_groups_to_partners,
)
from .plan import (
    ActionKind,
    Category,
    Flow,
    GroupRole,
    GroupSpec,
    PendingGroupAdd,
    PreconditionError,
    ReconciliationAction,
    ReconciliationPlan,
    WorkUnit,
    bind_follow_ups,
    plan,
    plan_add_missing_users,
    plan_create_contacts,
    plan_create_groups,
    plan_deactivations,
    plan_fix_missing_global_group,
    plan_fix_missing_partner_group,
    plan_group_additions,
    plan_link_orphans,
    plan_offboarding,
)
from .runs import RunInProgressError, RunRegistry

__all__ = [
    "EXCLUDED_EMAIL_DOMAINS",
    "ActionExecutor",
    "ActionKind",
    "Analysis",
    "CancellationToken",
    "Category",
    "Classification",
    "Collaborators",
    "ContactCreateResult",
    "CreateUserResult",
    "DeactivateResult",
    "DomainExtraction",
    "ExecutionError",
    "ExecutionProgress",
    "ExecutionResult",
    "FixedDelayPacer",
    "Flow",
    "GroupAddResult",
    "GroupCreateResult",
    "GroupMatch",
    "GroupMatching",
    "GroupRemoveResult",
    "GroupRole",
    "GroupSpec",
    "GroupSuggestion",
    "IdempotencyLedger",
    "IndexCollision",
    "MatchType",
    "NoDelayPacer",
    "OffboardCandidate",
    "OffboardReason",
    "Pacer",
    "PartnerGroupGap",
    "PendingGroupAdd",
    "PreconditionError",
    "RateLimitedPacer",
    "ReconciliationAction",
    "ReconciliationContext",
    "ReconciliationEngine",
    "ReconciliationIndex",
    "ReconciliationPlan",
    "RunInProgressError",
    "RunRegistry",
    "Snapshot",
    "WorkUnit",
    "attach_domains",
    "bind_follow_ups",
    "build_indices",
    "classify",
    "comparable_name",
    "execute",
    "extract_domains",
    "is_excluded_domain",
    "is_system_group",
    "match_groups_to_partners",
    "plan",
    "plan_add_missing_users",
    "plan_create_contacts",
    "plan_create_groups",
    "plan_deactivations",
    "plan_fix_missing_global_group",
    "plan_fix_missing_partner_group",
    "plan_group_additions",
    "plan_link_orphans",
    "plan_offboarding",
]
