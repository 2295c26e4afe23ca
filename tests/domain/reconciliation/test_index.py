from __future__ import annotations

import logging

import pytest

from partnersync.domain.reconciliation import DomainExtraction, build_indices, extract_domains
from partnersync.domain.reconciliation.index import CollisionKind, name_keys
from tests.helpers.entities import make_contact, make_group, make_partner, make_user


def _empty() -> DomainExtraction:
    return DomainExtraction()


@pytest.mark.parametrize("lookup", ["acme", "Acme", "ptr_acme", "PTR_ACME", " ptr_Acme "])
def test_group_lookup_ignores_prefix_and_case(lookup: str) -> None:
    group = make_group("g1", "ptr_Acme")
    index = build_indices([], [group], _empty())

    assert index.group_named(lookup) is group


def test_group_for_account_uses_the_prefixed_name() -> None:
    group = make_group("g1", "ptr_Acme")
    index = build_indices([], [group], _empty())

    assert index.group_for_account("ACME") is group
    assert index.group_for_account("Globex") is None
    assert index.group_for_account(None) is None


def test_explicit_partner_link_wins_over_naming_convention() -> None:
    by_name = make_group("g1", "ptr_Acme")
    linked = make_group("g2", "Acme EMEA learners", partner_id="p1")
    index = build_indices([], [by_name, linked], _empty())

    assert index.group_for_partner("p1", "Acme") is linked
    assert index.group_for_partner("p9", "Acme") is by_name


def test_custom_prefix() -> None:
    group = make_group("g1", "partner-Acme")
    index = build_indices([], [group], _empty(), prefix="partner-")

    assert index.group_for_account("acme") is group
    assert name_keys("partner-Acme", "partner-") == ("partner-acme", "acme")
    assert name_keys("Acme", "partner-") == ("acme", "partner-acme")
    assert name_keys("  ") == ()


def test_bare_and_prefixed_duplicates_resolve_last_write_wins(
    caplog: pytest.LogCaptureFixture,
) -> None:
    bare = make_group("g-bare", "Acme")
    prefixed = make_group("g-prefixed", "ptr_Acme")

    with caplog.at_level(logging.WARNING):
        index = build_indices([], [bare, prefixed], _empty())

    assert index.group_named("acme") is prefixed
    assert index.group_named("ptr_acme") is prefixed
    assert {collision.key for collision in index.collisions} == {"acme", "ptr_acme"}
    assert all(collision.kind is CollisionKind.GROUP_NAME for collision in index.collisions)
    assert all(collision.winner == "g-prefixed" for collision in index.collisions)
    assert "Index collision" in caplog.text

    reversed_index = build_indices([], [prefixed, bare], _empty())
    assert reversed_index.group_named("acme") is bare
    assert reversed_index.group_for_account("Acme") is bare


def test_duplicate_emails_keep_the_last_user() -> None:
    first = make_user("u1", "a@acme.com")
    second = make_user("u2", " A@ACME.com")

    index = build_indices([first, second], [], _empty())

    assert index.user_for_email("a@acme.com") is second
    assert index.collisions[0].kind is CollisionKind.EMAIL
    assert index.collisions[0].replaced == "u1"


def test_users_without_email_or_id_are_not_indexed() -> None:
    index = build_indices(
        [make_user("u1", None), make_user("", "ghost@acme.com")],
        [],
        _empty(),
    )

    assert index.email_to_user == {}


def test_domain_claimed_by_two_partners_is_recorded() -> None:
    acme = make_partner("p1", "Acme")
    rival = make_partner("p2", "Rival")
    extraction = extract_domains(
        [make_contact("a@shared.com", acme), make_contact("b@shared.com", rival)]
    )

    index = build_indices([], [], extraction)

    assert index.partner_for_domain("shared.com") == "p2"
    [collision] = index.collisions
    assert collision.kind is CollisionKind.DOMAIN
    assert (collision.replaced, collision.winner) == ("p1", "p2")


def test_excluded_domains_are_never_keys() -> None:
    extraction = DomainExtraction(domains_by_partner={"p1": frozenset({"gmail.com", "acme.com"})})

    index = build_indices([], [], extraction)

    assert "gmail.com" not in index.domain_to_partner
    assert index.partner_for_domain("acme.com") == "p1"


def test_global_group_detection_and_partner_group_membership() -> None:
    global_group = make_group("g-all", "All Partner")
    partner_group = make_group("g1", "ptr_Acme")
    other = make_group("g2", "Onboarding")
    user = make_user("u1", "a@acme.com", ["g-all", "g1", "g2"])

    index = build_indices([user], [global_group, partner_group, other], _empty())

    assert index.global_group is global_group
    assert index.partner_group_ids_of(user) == frozenset({"g1"})
    assert not index.is_partner_group("g-all")
    assert not index.is_partner_group("unknown")


def test_second_global_candidate_is_recorded_not_used() -> None:
    first = make_group("g-all", "All Partners")
    second = make_group("g-all-2", "ptr_All Partners")

    index = build_indices([], [first, second], _empty())

    assert index.global_group is first
    assert any(c.kind is CollisionKind.GLOBAL_GROUP for c in index.collisions)
