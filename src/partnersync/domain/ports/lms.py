"""Port for the learning-management system (people and groups)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from partnersync.domain.model import Group, GroupId, LmsUser, PersonInput, UserId


@dataclass(slots=True, kw_only=True)
class CreatePersonOutcome:
    """Result of asking the LMS to create a person.

    ``already_exists`` is set when the LMS reported the email as taken and the
    existing person's id was resolved instead.
    """

    success: bool
    user_id: UserId | None = None
    already_exists: bool = False
    error: str | None = None


@dataclass(slots=True, kw_only=True)
class OperationOutcome:
    success: bool
    error: str | None = None
    already_applied: bool = False


@runtime_checkable
class LmsClient(Protocol):
    """Async collaborator for the LMS API."""

    async def get_all_users(self, groups: Sequence[Group] | None = None) -> list[LmsUser]: ...

    async def get_all_groups(self) -> list[Group]: ...

    async def create_group(self, name: str, description: str) -> Group: ...

    async def delete_group(self, group_id: GroupId) -> OperationOutcome: ...

    async def create_person(self, person: PersonInput) -> CreatePersonOutcome: ...

    async def add_user_to_group(self, group_id: GroupId, user_id: UserId) -> OperationOutcome: ...

    async def remove_user_from_group(
        self, group_id: GroupId, user_id: UserId
    ) -> OperationOutcome: ...

    async def update_group_name(self, group_id: GroupId, new_name: str) -> None: ...

    async def deactivate_user(self, user_id: UserId) -> OperationOutcome: ...


__all__ = ["CreatePersonOutcome", "LmsClient", "OperationOutcome"]
