"""Public interface for the Northpass LMS adapter."""

from __future__ import annotations

from .client import NorthpassAPIError, NorthpassClient
from .schema import GroupResource, MembershipResource, PersonResource
from .translator import parse_group, parse_person

__all__ = [
    "GroupResource",
    "MembershipResource",
    "NorthpassAPIError",
    "NorthpassClient",
    "PersonResource",
    "parse_group",
    "parse_person",
]
