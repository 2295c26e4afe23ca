"""Translate Northpass payloads to domain entities and back."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from partnersync.domain.model import Group, LmsUser

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from partnersync.domain.model import GroupId, PersonInput, UserId

    from .schema import GroupResource, PersonResource

log = getLogger(__name__)


def parse_person(
    resource: PersonResource,
    group_ids: Iterable[GroupId] = (),
) -> LmsUser:
    attributes = resource.attributes
    if attributes.email is None:
        log.debug("Northpass person %s has no email", resource.id)
    return LmsUser(
        id=resource.id,
        email=attributes.email,
        first_name=attributes.first_name or "",
        last_name=attributes.last_name or "",
        is_active=attributes.deactivated_at is None,
        group_ids=frozenset(group_ids),
    )


def parse_group(resource: GroupResource) -> Group:
    return Group(
        id=resource.id,
        name=resource.attributes.name.strip(),
        member_count=resource.attributes.user_count,
    )


def invert_memberships(
    members_by_group: Mapping[GroupId, Iterable[UserId]],
) -> dict[UserId, set[GroupId]]:
    groups_by_user: dict[UserId, set[GroupId]] = {}
    for group_id, user_ids in members_by_group.items():
        for user_id in user_ids:
            groups_by_user.setdefault(user_id, set()).add(group_id)
    return groups_by_user


def person_document(person: PersonInput) -> dict[str, object]:
    return {
        "data": {
            "type": "people",
            "attributes": {
                "email": person.email,
                "first_name": person.first_name,
                "last_name": person.last_name,
            },
        }
    }


def group_document(name: str, description: str) -> dict[str, object]:
    return {"data": {"type": "groups", "attributes": {"name": name, "description": description}}}


def rename_document(group_id: GroupId, name: str) -> dict[str, object]:
    return {"data": {"type": "groups", "id": group_id, "attributes": {"name": name}}}


def people_linkage(*user_ids: UserId) -> dict[str, object]:
    return {"data": [{"type": "people", "id": str(user_id)} for user_id in user_ids]}


def deactivation_document(user_id: UserId) -> dict[str, object]:
    return {"data": {"type": "people", "id": user_id, "attributes": {"deactivated": True}}}
