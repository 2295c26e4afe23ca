"""Pydantic models describing the Northpass JSON:API v2 payloads."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class NorthpassBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class PersonAttributes(NorthpassBaseModel):
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    deactivated_at: datetime | None = None

    _normalize_blanks = field_validator(
        "email", "first_name", "last_name", "deactivated_at", mode="before"
    )(_blank_to_none)


class PersonResource(NorthpassBaseModel):
    id: str
    type: str = "people"
    attributes: PersonAttributes = Field(default_factory=PersonAttributes)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value


class GroupAttributes(NorthpassBaseModel):
    name: str = ""
    description: str | None = None
    user_count: int = Field(default=0, alias="user_count")

    @field_validator("user_count", mode="before")
    @classmethod
    def _null_count(cls, value: object) -> object:
        return 0 if value is None else value


class GroupResource(NorthpassBaseModel):
    id: str
    type: str = "groups"
    attributes: GroupAttributes = Field(default_factory=GroupAttributes)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value


class ResourceIdentifier(NorthpassBaseModel):
    id: str
    type: str

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value


class RelationshipLinkage(NorthpassBaseModel):
    data: ResourceIdentifier | None = None


class MembershipRelationships(NorthpassBaseModel):
    person: RelationshipLinkage = Field(default_factory=RelationshipLinkage)


class MembershipResource(NorthpassBaseModel):
    id: str | None = None
    relationships: MembershipRelationships = Field(default_factory=MembershipRelationships)

    @property
    def person_id(self) -> str | None:
        linkage = self.relationships.person.data
        return linkage.id if linkage is not None else None


class PageLinks(NorthpassBaseModel):
    next: str | None = None

    _normalize_next = field_validator("next", mode="before")(_blank_to_none)


class PeoplePage(NorthpassBaseModel):
    data: list[PersonResource] = Field(default_factory=list[PersonResource])
    links: PageLinks = Field(default_factory=PageLinks)


class GroupsPage(NorthpassBaseModel):
    data: list[GroupResource] = Field(default_factory=list[GroupResource])
    links: PageLinks = Field(default_factory=PageLinks)


class MembershipsPage(NorthpassBaseModel):
    data: list[MembershipResource] = Field(default_factory=list[MembershipResource])
    links: PageLinks = Field(default_factory=PageLinks)


class PersonDocument(NorthpassBaseModel):
    data: PersonResource


class GroupDocument(NorthpassBaseModel):
    data: GroupResource


class ErrorObject(NorthpassBaseModel):
    status: str | None = None
    title: str | None = None
    detail: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value

    @property
    def message(self) -> str:
        return self.detail or self.title or "Unknown error"


class ErrorDocument(NorthpassBaseModel):
    errors: list[ErrorObject] = Field(default_factory=list[ErrorObject])

    @property
    def message(self) -> str:
        if not self.errors:
            return "Unknown error"
        return "; ".join(error.message for error in self.errors)
