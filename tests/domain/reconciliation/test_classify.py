from __future__ import annotations

from typing import TYPE_CHECKING

from partnersync.domain.model import OrphanDismissal
from partnersync.domain.reconciliation import OffboardReason, ReconciliationEngine, Snapshot
from tests.helpers.entities import make_contact, make_group, make_partner, make_user

if TYPE_CHECKING:
    from collections.abc import Sequence

    from partnersync.domain.model import Contact, Group, LmsUser, Partner
    from partnersync.domain.reconciliation import Classification


def _classify(
    *,
    contacts: Sequence[Contact] = (),
    partners: Sequence[Partner] = (),
    users: Sequence[LmsUser] = (),
    groups: Sequence[Group] = (),
    dismissals: Sequence[OrphanDismissal] = (),
) -> Classification:
    snapshot = Snapshot(
        contacts=list(contacts),
        partners=list(partners),
        users=list(users),
        groups=list(groups),
        dismissals=list(dismissals),
    )
    return ReconciliationEngine().analyze(snapshot).classification


ACME = make_partner("p1", "Acme")
GLOBEX = make_partner("p2", "Globex")
ACME_GROUP = make_group("g1", "ptr_Acme")
GLOBEX_GROUP = make_group("g2", "ptr_Globex")
GLOBAL = make_group("g-all", "All Partners")


def test_contact_without_lms_user_is_missing_from_lms() -> None:
    contact = make_contact("a@acme.com", None, contact_id="c1")
    contact.account_name = "Acme"

    result = _classify(contacts=[contact], groups=[ACME_GROUP])

    assert result.missing_from_lms == [contact]


def test_missing_from_lms_skips_inactive_duplicates_and_known_users() -> None:
    known = make_contact("known@acme.com", ACME)
    first = make_contact("new@acme.com", ACME, contact_id="c-1")
    duplicate = make_contact("NEW@acme.com", ACME, contact_id="c-2")
    retired = make_contact("gone@acme.com", ACME, is_active=False)
    malformed = make_contact(None, ACME)

    result = _classify(
        contacts=[known, first, duplicate, retired, malformed],
        partners=[ACME],
        users=[make_user("u1", "known@acme.com", ["g1"])],
        groups=[ACME_GROUP],
    )

    assert result.missing_from_lms == [first]


def test_contact_match_outranks_domain_match() -> None:
    # acme.com is also claimed by Globex, which is extracted last and wins the domain
    contacts = [
        make_contact("a@acme.com", ACME),
        make_contact("rogue@acme.com", GLOBEX),
    ]
    user = make_user("u1", "a@acme.com", ["g-all"])

    result = _classify(
        contacts=contacts,
        partners=[ACME, GLOBEX],
        users=[user],
        groups=[ACME_GROUP, GLOBEX_GROUP, GLOBAL],
    )

    assert [gap.user.id for gap in result.missing_from_partner_group] == ["u1"]
    assert result.missing_from_partner_group[0].group is ACME_GROUP
    assert result.orphans == []


def test_contact_matched_member_is_neither_gap_nor_orphan() -> None:
    contacts = [
        make_contact("a@acme.com", ACME),
        make_contact("rogue@acme.com", GLOBEX),
    ]
    user = make_user("u1", "a@acme.com", ["g1", "g-all"])

    result = _classify(
        contacts=contacts,
        partners=[ACME, GLOBEX],
        users=[user],
        groups=[ACME_GROUP, GLOBEX_GROUP, GLOBAL],
    )

    assert result.missing_from_partner_group == []
    assert result.orphans == []
    assert result.missing_from_global_group == []


def test_domain_only_match_is_an_orphan() -> None:
    result = _classify(
        contacts=[make_contact("a@acme.com", ACME)],
        partners=[ACME],
        users=[make_user("u2", "b@acme.com")],
        groups=[ACME_GROUP],
    )

    [orphan] = result.orphans
    assert orphan.user.id == "u2"
    assert orphan.partner_id == "p1"
    assert orphan.domain == "acme.com"
    assert orphan.group_id == "g1"
    assert result.missing_from_partner_group == []


def test_orphan_rules_skip_members_public_domains_and_inactive_partners() -> None:
    retired = make_partner("p3", "Retired", is_active=False)
    result = _classify(
        contacts=[
            make_contact("a@acme.com", ACME),
            make_contact("a@retired.org", retired),
            make_contact("b@gmail.com", ACME),
        ],
        partners=[ACME, retired],
        users=[
            make_user("member", "member@acme.com", ["g1"]),
            make_user("public", "someone@gmail.com"),
            make_user("stale", "x@retired.org"),
        ],
        groups=[ACME_GROUP],
    )

    assert result.orphans == []


def test_dismissed_orphan_is_listed_separately() -> None:
    result = _classify(
        contacts=[make_contact("a@acme.com", ACME)],
        partners=[ACME],
        users=[make_user("u2", "b@acme.com")],
        groups=[ACME_GROUP],
        dismissals=[OrphanDismissal("u2", "p1", "Contractor")],
    )

    assert result.orphans == []
    [dismissed] = result.dismissed_orphans
    assert dismissed.dismissed
    assert dismissed.reason == "Contractor"


def test_dismissal_for_another_partner_does_not_hide_orphan() -> None:
    result = _classify(
        contacts=[make_contact("a@acme.com", ACME)],
        partners=[ACME],
        users=[make_user("u2", "b@acme.com")],
        groups=[ACME_GROUP],
        dismissals=[OrphanDismissal("u2", "p2")],
    )

    assert [orphan.user.id for orphan in result.orphans] == ["u2"]


def test_inactive_contact_in_global_group_is_offboarded() -> None:
    contact = make_contact("a@acme.com", ACME, is_active=False)
    user = make_user("u1", "a@acme.com", ["g1", "g-all"])

    result = _classify(
        contacts=[contact],
        partners=[ACME],
        users=[user],
        groups=[ACME_GROUP, GLOBAL],
    )

    [candidate] = result.users_to_offboard
    assert candidate.reason is OffboardReason.CONTACT_INACTIVE
    assert candidate.contact is contact
    assert candidate.group_ids == frozenset({"g1"})
    assert result.missing_from_partner_group == []


def test_inactive_partner_retires_its_members() -> None:
    retired = make_partner("p1", "Acme", is_active=False)
    contact_user = make_user("u1", "a@acme.com", ["g1", "g-all"])
    member_only = make_user("u2", "b@elsewhere.net", ["g1", "g-all"])

    result = _classify(
        contacts=[make_contact("a@acme.com", retired)],
        partners=[retired],
        users=[contact_user, member_only],
        groups=[ACME_GROUP, GLOBAL],
    )

    reasons = {candidate.user.id: candidate.reason for candidate in result.users_to_offboard}
    assert reasons == {
        "u1": OffboardReason.PARTNER_INACTIVE,
        "u2": OffboardReason.PARTNER_INACTIVE,
    }
    assert result.partners_without_groups == []


def test_global_member_without_any_partner_link_is_offboarded() -> None:
    result = _classify(
        users=[make_user("u1", "x@nowhere.net", ["g-all"])],
        groups=[GLOBAL],
    )

    [candidate] = result.users_to_offboard
    assert candidate.reason is OffboardReason.GROUP_MISSING
    assert candidate.contact is None


def test_contact_of_partner_without_group_stays_in_global_group() -> None:
    result = _classify(
        contacts=[make_contact("a@acme.com", ACME)],
        partners=[ACME],
        users=[make_user("u1", "a@acme.com", ["g-all"])],
        groups=[GLOBAL],
    )

    assert result.users_to_offboard == []
    assert result.missing_from_global_group == []
    assert [partner.id for partner in result.partners_without_groups] == ["p1"]


def test_bare_named_partner_group_counts_as_partner_membership() -> None:
    bare = make_group("g-bare", "Acme")

    result = _classify(
        contacts=[make_contact("known@acme.com", ACME)],
        partners=[ACME],
        users=[make_user("u9", "x@acme.com", ["g-bare", "g-all"])],
        groups=[bare, GLOBAL],
    )

    assert result.users_to_offboard == []
    assert result.orphans == []
    assert result.partners_without_groups == []


def test_group_matched_by_name_backs_its_members() -> None:
    suffixed = make_group("g-inc", "ptr_Acme Inc.")

    result = _classify(
        partners=[ACME],
        users=[
            make_user("u1", "a@acme.com", ["g-inc", "g-all"]),
            make_user("u2", "b@acme.com", ["g-inc"]),
        ],
        groups=[suffixed, GLOBAL],
    )

    assert result.users_to_offboard == []
    assert [user.id for user in result.missing_from_global_group] == ["u2"]
    assert result.partners_without_groups == []


def test_retired_user_outside_global_group_is_not_offboarded() -> None:
    result = _classify(
        contacts=[make_contact("a@acme.com", ACME, is_active=False)],
        partners=[ACME],
        users=[make_user("u1", "a@acme.com", ["g1"])],
        groups=[ACME_GROUP, GLOBAL],
    )

    assert result.users_to_offboard == []
    assert result.missing_from_global_group == []


def test_linked_users_missing_from_global_group() -> None:
    result = _classify(
        contacts=[make_contact("a@acme.com", ACME)],
        partners=[ACME],
        users=[
            make_user("u1", "a@acme.com", ["g1"]),
            make_user("u2", "b@partner.io", ["g1"]),
            make_user("u3", "loner@nowhere.net"),
        ],
        groups=[ACME_GROUP, GLOBAL],
    )

    assert sorted(user.id for user in result.missing_from_global_group) == ["u1", "u2"]


def test_no_global_group_means_nothing_missing_from_it() -> None:
    result = _classify(
        contacts=[make_contact("a@acme.com", ACME)],
        partners=[ACME],
        users=[make_user("u1", "a@acme.com", ["g1"])],
        groups=[ACME_GROUP],
    )

    assert result.global_group is None
    assert result.missing_from_global_group == []
    assert result.users_to_offboard == []


def test_domain_records_summarise_users_per_domain() -> None:
    result = _classify(
        contacts=[make_contact("a@acme.com", ACME)],
        partners=[ACME],
        users=[
            make_user("u1", "a@acme.com", ["g1"]),
            make_user("u2", "b@acme.com"),
            make_user("u3", "c@unknown.org"),
            make_user("u4", "d@gmail.com"),
        ],
        groups=[ACME_GROUP],
    )

    records = {record.domain: record for record in result.domain_records}
    assert list(records) == ["acme.com", "unknown.org"]
    assert records["acme.com"].is_matched
    assert records["acme.com"].group_id == "g1"
    assert [user.id for user in records["acme.com"].users] == ["u1", "u2"]
    assert not records["unknown.org"].is_matched


def test_summary_counts_every_category() -> None:
    result = _classify(
        contacts=[make_contact("a@acme.com", ACME)],
        partners=[ACME, GLOBEX],
        groups=[ACME_GROUP],
    )

    summary = result.summary()
    assert summary["missing_from_lms"] == 1
    assert summary["partners_without_groups"] == 1
    assert summary["orphans"] == 0
