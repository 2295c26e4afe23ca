"""HTTP client for the Northpass LMS API."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from pydantic import BaseModel, ValidationError

from partnersync.adapters.http_resilience import ResilientClient
from partnersync.config.northpass import get_northpass_config
from partnersync.domain.ports import CreatePersonOutcome, OperationOutcome

from .schema import (
    ErrorDocument,
    GroupDocument,
    GroupResource,
    GroupsPage,
    MembershipsPage,
    PeoplePage,
    PersonDocument,
    PersonResource,
)
from .translator import (
    deactivation_document,
    group_document,
    invert_memberships,
    parse_group,
    parse_person,
    people_linkage,
    person_document,
    rename_document,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from types import TracebackType

    import httpx

    from partnersync.config.http_resilience import ResilienceConfig
    from partnersync.config.northpass import NorthpassConfig
    from partnersync.domain.model import Group, GroupId, LmsUser, PersonInput, UserId
    from partnersync.domain.ports import LmsClient

log = getLogger(__name__)

_EMAIL_TAKEN_STATUS = 422


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


class NorthpassAPIError(RuntimeError):
    """Raised when the Northpass API returns an error status or an unexpected payload."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class NorthpassClient:
    """``LmsClient`` over the Northpass JSON:API.

    Use as an async context manager to share one connection pool across a run;
    otherwise a client is opened lazily and must be closed with :meth:`aclose`.
    """

    config: NorthpassConfig = field(default_factory=get_northpass_config)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    _http: ResilientClient | None = field(default=None, init=False, repr=False)

    async def __aenter__(self) -> NorthpassClient:
        self._client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    def _client(self) -> ResilientClient:
        if self._http is None:
            self._http = self.client_factory(self.config.resilience)
        return self._http

    # reads

    async def get_all_users(self, groups: Sequence[Group] | None = None) -> list[LmsUser]:
        """Fetch every person together with their group memberships.

        Pass the already listed ``groups`` to read memberships without listing
        the groups again.
        """

        people = await self._fetch_people()
        if groups is None:
            group_ids = [resource.id for resource in await self._fetch_groups()]
        else:
            group_ids = [group.id for group in groups if group.id]
        members_by_group: dict[GroupId, list[UserId]] = {}
        for group_id in group_ids:
            members_by_group[group_id] = await self._fetch_member_ids(group_id)
        groups_by_user = invert_memberships(members_by_group)
        users = [parse_person(person, groups_by_user.get(person.id, ())) for person in people]
        log.info(f"Fetched {len(users)} Northpass people across {len(group_ids)} groups")
        return users

    async def get_all_groups(self) -> list[Group]:
        return [parse_group(resource) for resource in await self._fetch_groups()]

    async def find_person_by_email(self, email: str) -> LmsUser | None:
        response = await self._client().get(
            "/v2/people",
            params={"filter[email][eq]": email, "limit": 1},
        )
        self._raise_for_status(response, f"lookup of {email}")
        page = self._validate(PeoplePage, response)
        if not page.data:
            return None
        return parse_person(page.data[0])

    # writes

    async def create_group(self, name: str, description: str) -> Group:
        response = await self._client().post("/v2/groups", json=group_document(name, description))
        self._raise_for_status(response, f"creation of group {name!r}")
        group = parse_group(self._validate(GroupDocument, response).data)
        log.info(f"Created Northpass group {group.name} ({group.id})")
        return group

    async def delete_group(self, group_id: GroupId) -> OperationOutcome:
        response = await self._client().delete(f"/v2/groups/{group_id}")
        if response.status_code == 404:  # noqa: PLR2004
            return OperationOutcome(success=True, already_applied=True)
        if response.is_error:
            return OperationOutcome(success=False, error=self._error_message(response))
        log.info(f"Deleted Northpass group {group_id}")
        return OperationOutcome(success=True)

    async def create_person(self, person: PersonInput) -> CreatePersonOutcome:
        response = await self._client().post("/v2/people", json=person_document(person))
        if response.status_code == _EMAIL_TAKEN_STATUS:
            existing = await self.find_person_by_email(person.email)
            if existing is not None:
                log.info(f"{person.email} already exists in Northpass as {existing.id}")
                return CreatePersonOutcome(success=True, user_id=existing.id, already_exists=True)
            return CreatePersonOutcome(success=False, error=self._error_message(response))
        if response.is_error:
            return CreatePersonOutcome(success=False, error=self._error_message(response))
        created = self._validate(PersonDocument, response).data
        return CreatePersonOutcome(success=True, user_id=created.id)

    async def add_user_to_group(self, group_id: GroupId, user_id: UserId) -> OperationOutcome:
        response = await self._client().post(
            f"/v2/groups/{group_id}/relationships/people",
            json=people_linkage(user_id),
        )
        if response.is_error:
            return OperationOutcome(success=False, error=self._error_message(response))
        return OperationOutcome(success=True)

    async def remove_user_from_group(self, group_id: GroupId, user_id: UserId) -> OperationOutcome:
        response = await self._client().delete(
            f"/v2/groups/{group_id}/relationships/people",
            json=people_linkage(user_id),
        )
        if response.status_code == 404:  # noqa: PLR2004
            return OperationOutcome(success=True, already_applied=True)
        if response.is_error:
            return OperationOutcome(success=False, error=self._error_message(response))
        return OperationOutcome(success=True)

    async def update_group_name(self, group_id: GroupId, new_name: str) -> None:
        response = await self._client().patch(
            f"/v2/groups/{group_id}",
            json=rename_document(group_id, new_name),
        )
        self._raise_for_status(response, f"rename of group {group_id}")

    async def deactivate_user(self, user_id: UserId) -> OperationOutcome:
        response = await self._client().patch(
            f"/v2/people/{user_id}",
            json=deactivation_document(user_id),
        )
        if response.is_error:
            return OperationOutcome(success=False, error=self._error_message(response))
        return OperationOutcome(success=True)

    # pagination

    async def _fetch_people(self) -> list[PersonResource]:
        people: list[PersonResource] = []
        url: str | None = "/v2/people"
        params: dict[str, int] | None = {"limit": self.config.page_size}
        while url is not None:
            response = await self._client().get(url, params=params)
            self._raise_for_status(response, "people listing")
            page = self._validate(PeoplePage, response)
            people.extend(page.data)
            url, params = page.links.next, None
        return people

    async def _fetch_groups(self) -> list[GroupResource]:
        groups: list[GroupResource] = []
        url: str | None = "/v2/groups"
        params: dict[str, int] | None = {"limit": self.config.page_size}
        while url is not None:
            response = await self._client().get(url, params=params)
            self._raise_for_status(response, "group listing")
            page = self._validate(GroupsPage, response)
            groups.extend(page.data)
            url, params = page.links.next, None
        return groups

    async def _fetch_member_ids(self, group_id: GroupId) -> list[UserId]:
        member_ids: list[UserId] = []
        url: str | None = f"/v2/groups/{group_id}/memberships"
        params: dict[str, int] | None = {"limit": self.config.page_size}
        while url is not None:
            response = await self._client().get(url, params=params)
            self._raise_for_status(response, f"memberships of group {group_id}")
            page = self._validate(MembershipsPage, response)
            member_ids.extend(m.person_id for m in page.data if m.person_id is not None)
            url, params = page.links.next, None
        return member_ids

    # helpers

    @staticmethod
    def _validate[ModelT: BaseModel](model: type[ModelT], response: httpx.Response) -> ModelT:
        try:
            return model.model_validate(response.json())
        except (ValidationError, ValueError) as exc:
            raise NorthpassAPIError(
                f"Unexpected Northpass response payload for {response.request.url}",
                status_code=response.status_code,
            ) from exc

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            detail = ErrorDocument.model_validate(response.json()).message
        except (ValidationError, ValueError):
            detail = response.reason_phrase or "Unknown error"
        return f"HTTP {response.status_code}: {detail}"

    def _raise_for_status(self, response: httpx.Response, context: str) -> None:
        if not response.is_error:
            return
        message = self._error_message(response)
        log.error(f"Northpass API error during {context}: {message}")
        raise NorthpassAPIError(message, status_code=response.status_code)


if TYPE_CHECKING:
    _client_check: LmsClient = NorthpassClient()
