"""Compose the pure stages into one analysis pass over a snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .classify import Classification, ReconciliationContext, classify
from .domains import DomainExtraction, attach_domains, extract_domains
from .index import (
    DEFAULT_GLOBAL_GROUP_NAME,
    DEFAULT_GROUP_PREFIX,
    ReconciliationIndex,
    build_indices,
)

if TYPE_CHECKING:
    from partnersync.domain.model import Contact, Group, LmsUser, OrphanDismissal, Partner


@dataclass(slots=True, kw_only=True)
class Snapshot:
    """Both systems' state as read at the start of a run."""

    contacts: list[Contact] = field(default_factory=list["Contact"])
    partners: list[Partner] = field(default_factory=list["Partner"])
    users: list[LmsUser] = field(default_factory=list["LmsUser"])
    groups: list[Group] = field(default_factory=list["Group"])
    dismissals: list[OrphanDismissal] = field(default_factory=list["OrphanDismissal"])


@dataclass(slots=True, kw_only=True)
class Analysis:
    extraction: DomainExtraction
    index: ReconciliationIndex
    context: ReconciliationContext
    classification: Classification


@dataclass(slots=True)
class ReconciliationEngine:
    prefix: str = DEFAULT_GROUP_PREFIX
    global_group_name: str = DEFAULT_GLOBAL_GROUP_NAME

    def analyze(self, snapshot: Snapshot) -> Analysis:
        """Extract domains, build indices, then classify ``snapshot``."""

        extraction = extract_domains(snapshot.contacts, snapshot.partners)
        partners = attach_domains(snapshot.partners, extraction)
        index = build_indices(
            snapshot.users,
            snapshot.groups,
            extraction,
            prefix=self.prefix,
            global_group_name=self.global_group_name,
            partners=snapshot.partners,
        )
        context = ReconciliationContext(
            contacts=snapshot.contacts,
            partners=partners,
            index=index,
            dismissals=snapshot.dismissals,
        )
        return Analysis(
            extraction=extraction,
            index=index,
            context=context,
            classification=classify(context),
        )
