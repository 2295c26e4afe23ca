"""Builders for domain entities used across the test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

from partnersync.domain.model import Contact, Group, LmsUser, Partner

if TYPE_CHECKING:
    from collections.abc import Iterable


def make_partner(
    partner_id: str = "p-acme",
    account_name: str = "Acme",
    *,
    is_active: bool = True,
) -> Partner:
    return Partner(id=partner_id, account_name=account_name, is_active=is_active)


def make_contact(
    email: str | None,
    partner: Partner | None = None,
    *,
    contact_id: str | None = None,
    is_active: bool = True,
    first_name: str = "Ada",
    last_name: str = "Lovelace",
) -> Contact:
    return Contact(
        id=contact_id or f"c-{email}",
        email=email,
        first_name=first_name,
        last_name=last_name,
        account_id=partner.id if partner is not None else None,
        account_name=partner.account_name if partner is not None else None,
        is_active=is_active,
    )


def make_user(
    user_id: str,
    email: str | None,
    groups: Iterable[str] = (),
    *,
    is_active: bool = True,
) -> LmsUser:
    return LmsUser(
        id=user_id,
        email=email,
        first_name="Grace",
        last_name="Hopper",
        is_active=is_active,
        group_ids=frozenset(groups),
    )


def make_group(group_id: str, name: str, *, partner_id: str | None = None) -> Group:
    return Group(id=group_id, name=name, partner_id=partner_id)
