"""Port for the CRM contact store."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from partnersync.domain.model import (
        Contact,
        ContactInput,
        DatabaseStats,
        OrphanDismissal,
        Partner,
        PartnerId,
        UserId,
    )


@runtime_checkable
class ContactStoreClient(Protocol):
    """Async collaborator for the CRM-backed relational store.

    Orphan dismissals live here rather than in engine memory so that an
    operator's decision survives across reconciliation runs.
    """

    async def get_all_contacts(self) -> list[Contact]: ...

    async def get_all_partners(self) -> list[Partner]: ...

    async def get_database_stats(self) -> DatabaseStats: ...

    async def create_contact(self, contact: ContactInput) -> Contact: ...

    async def dismiss_orphan(self, user_id: UserId, partner_id: PartnerId, reason: str) -> None: ...

    async def restore_orphan(self, user_id: UserId, partner_id: PartnerId) -> None: ...

    async def get_dismissed_orphans(self) -> list[OrphanDismissal]: ...


__all__ = ["ContactStoreClient"]
