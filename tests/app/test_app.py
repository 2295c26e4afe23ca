from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from partnersync.app import (
    RUN_REGISTRY,
    Services,
    add_missing_users,
    create_orphan_contacts,
    create_partner_groups,
    deactivate_users,
    dismiss_orphan,
    fix_group_memberships,
    import_crm_export,
    link_orphans,
    offboard_users,
    rename_group,
    restore_orphan,
    run_audit,
)
from partnersync.domain.reconciliation import NoDelayPacer, PreconditionError, RunInProgressError
from tests.helpers.entities import make_contact, make_group, make_partner, make_user
from tests.support.collaborators import FakeContactStore, FakeLmsClient

if TYPE_CHECKING:
    from pathlib import Path

    from partnersync.adapters.sqlalchemy import SqlAlchemyContactStore
    from partnersync.domain.reconciliation import ExecutionProgress

ACME = make_partner("p1", "Acme")
GLOBEX = make_partner("p2", "Globex", is_active=False)
INITECH = make_partner("p3", "Initech")


def _lms(*, with_global_group: bool = True) -> FakeLmsClient:
    groups = [make_group("g1", "ptr_Acme"), make_group("g2", "ptr_Globex")]
    if with_global_group:
        groups.append(make_group("g-all", "All Partners"))
    return FakeLmsClient(
        users=[
            make_user("u-b", "b@acme.com", ["g-all"]),
            make_user("u-f", "f@acme.com", ["g1"]),
            make_user("u-c", "c@globex.com", ["g2", "g-all"]),
            make_user("u-o", "o@acme.com"),
        ],
        groups=groups,
    )


def _store() -> FakeContactStore:
    return FakeContactStore(
        contacts=[
            make_contact("a@acme.com", ACME),
            make_contact("b@acme.com", ACME),
            make_contact("f@acme.com", ACME),
            make_contact("c@globex.com", GLOBEX),
        ],
        partners=[ACME, GLOBEX, INITECH],
    )


def _services(
    lms: FakeLmsClient | None = None, store: FakeContactStore | None = None
) -> Services:
    return Services(
        lms=lms or _lms(),
        contact_store=store or _store(),
        pacer=NoDelayPacer(),
    )


def test_audit_summarises_every_category() -> None:
    report = run_audit(_services())

    assert report.summary == {
        "missing_from_lms": 1,
        "missing_from_partner_group": 1,
        "missing_from_global_group": 1,
        "orphans": 1,
        "dismissed_orphans": 0,
        "users_to_offboard": 1,
        "partners_without_groups": 1,
        "index_collisions": 0,
    }
    assert report.stats.partner_count == 3


def test_add_missing_users_creates_person_then_assigns_groups() -> None:
    lms = _lms()
    progress: list[ExecutionProgress] = []
    services = _services(lms)
    services.on_progress = progress.append

    result = add_missing_users(services)

    assert (result.created, result.added_to_group, result.added_to_global_group) == (1, 1, 1)
    assert lms.calls == [
        ("create_person", "a@acme.com"),
        ("add_user_to_group", "g1", "u-new-1"),
        ("add_user_to_group", "g-all", "u-new-1"),
    ]
    assert [p.entity for p in progress] == ["a@acme.com"]


def test_add_missing_users_without_global_group_only_warns() -> None:
    lms = _lms(with_global_group=False)

    result = add_missing_users(_services(lms))

    assert result.failed == 0
    assert any("No global group" in warning for warning in result.warnings)
    assert lms.call_names() == ["create_person", "add_user_to_group"]


def test_add_missing_users_can_be_restricted_by_email() -> None:
    lms = _lms()
    store = _store()
    store.contacts.append(make_contact("e@acme.com", ACME))

    result = add_missing_users(_services(lms, store), emails=[" E@Acme.com "])

    assert result.created == 1
    assert ("create_person", "e@acme.com") in lms.calls
    assert ("create_person", "a@acme.com") not in lms.calls


def test_link_orphans_adds_to_matched_partner_group() -> None:
    lms = _lms()

    result = link_orphans(_services(lms), partner_id="p1")

    assert result.success == 1
    assert lms.users["u-o"].in_group("g1")


def test_dismissed_orphans_are_not_linked_until_restored() -> None:
    lms = _lms()
    services = _services(lms)

    dismiss_orphan("u-o", "p1", services=services)
    assert run_audit(services).summary["dismissed_orphans"] == 1
    assert link_orphans(services).success == 0
    assert "add_user_to_group" not in lms.call_names()

    restore_orphan("u-o", "p1", services=services)
    assert run_audit(services).summary["orphans"] == 1


def test_fix_group_memberships_runs_both_group_kinds() -> None:
    lms = _lms()

    fixed = fix_group_memberships(_services(lms))

    assert fixed.partner_group is not None
    assert fixed.partner_group.success == 1
    assert fixed.global_group is not None
    assert fixed.global_group.success == 1
    assert lms.users["u-b"].in_group("g1")
    assert lms.users["u-f"].in_group("g-all")


def test_fix_group_memberships_can_skip_the_global_group() -> None:
    fixed = fix_group_memberships(_services(), global_group=False)

    assert fixed.partner_group is not None
    assert fixed.global_group is None


def test_fix_group_memberships_without_global_group_stops_before_any_write() -> None:
    lms = _lms(with_global_group=False)

    with pytest.raises(PreconditionError, match="No global group"):
        fix_group_memberships(_services(lms))

    assert lms.calls == []


def test_offboard_users_removes_memberships_and_deactivates() -> None:
    lms = _lms()

    result = offboard_users(_services(lms), deactivate=True)

    assert (result.removed, result.removed_from_global_group, result.deactivated) == (1, 1, 1)
    assert lms.users["u-c"].group_ids == frozenset()
    assert not lms.users["u-c"].is_active
    assert "g2" in lms.groups


def test_offboard_users_can_delete_inactive_partner_groups() -> None:
    lms = _lms()

    result = offboard_users(_services(lms), delete_partner_groups=True)

    assert (result.removed, result.removed_from_global_group, result.groups_deleted) == (1, 1, 1)
    assert lms.calls[-1] == ("delete_group", "g2")
    assert "g2" not in lms.groups
    assert "g1" in lms.groups


def test_create_partner_groups_for_partners_without_one() -> None:
    lms = _lms()

    result = create_partner_groups(_services(lms))

    assert result.created == 1
    assert [group.name for group in result.groups] == ["ptr_Initech"]


def test_create_orphan_contacts_records_matched_partner() -> None:
    store = _store()

    result = create_orphan_contacts(_services(store=store), user_ids=["u-o"])

    assert result.created == 1
    assert store.created[0].email == "o@acme.com"
    assert store.created[0].account_id == "p1"


def test_deactivate_users() -> None:
    lms = _lms()

    result = deactivate_users(_services(lms), user_ids=["u-o"])

    assert result.deactivated == 1
    assert not lms.users["u-o"].is_active


def test_rename_group() -> None:
    lms = _lms()
    services = _services(lms)

    with pytest.raises(ValueError, match="blank"):
        rename_group("g1", "   ", services=services)
    rename_group("g1", " ptr_Acme Corp ", services=services)

    assert lms.groups["g1"].name == "ptr_Acme Corp"


def test_second_write_run_for_the_same_pair_is_refused() -> None:
    services = _services()

    with RUN_REGISTRY.exclusive(services.crm_key, services.lms_key):
        with pytest.raises(RunInProgressError):
            add_missing_users(services)
        assert run_audit(services).summary["missing_from_lms"] == 1

    assert add_missing_users(services).created == 1


def test_import_crm_export_into_store(
    tmp_path: Path, contact_store: SqlAlchemyContactStore
) -> None:
    path = tmp_path / "export.json"
    path.write_text(
        json.dumps(
            {
                "partners": [{"id": "p1", "account_name": "Acme"}],
                "contacts": [{"id": "c1", "email": "a@acme.com", "account_id": "p1"}],
            }
        ),
        encoding="utf-8",
    )

    assert import_crm_export(path, store=contact_store) == 2


def test_users_added_for_a_partner_without_group_are_not_offboarded_later() -> None:
    newco = make_partner("p4", "Newco")
    lms = FakeLmsClient(groups=[make_group("g-all", "All Partners")])
    store = FakeContactStore(contacts=[make_contact("a@newco.com", newco)], partners=[newco])
    services = _services(lms, store)

    added = add_missing_users(services)
    summary = run_audit(services).summary

    assert (added.created, added.added_to_global_group) == (1, 1)
    assert summary["users_to_offboard"] == 0
    assert summary["partners_without_groups"] == 1
    assert summary["missing_from_lms"] == 0


def test_cancelled_services_stop_before_the_first_call() -> None:
    lms = _lms()
    services = _services(lms)
    services.cancellation.cancel()

    result = add_missing_users(services)

    assert result.cancelled
    assert result.created == 0
    assert lms.calls == []
