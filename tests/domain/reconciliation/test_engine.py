from __future__ import annotations

from partnersync.domain.reconciliation import ReconciliationEngine, Snapshot
from tests.helpers.entities import make_contact, make_group, make_partner, make_user


def test_engine_attaches_domains_and_honours_configured_names() -> None:
    acme = make_partner("p1", "Acme")
    snapshot = Snapshot(
        contacts=[make_contact("a@acme.com", acme)],
        partners=[acme],
        users=[make_user("u1", "a@acme.com", ["g1", "g9"])],
        groups=[make_group("g1", "team-Acme"), make_group("g9", "Everyone")],
    )

    analysis = ReconciliationEngine(prefix="team-", global_group_name="Everyone").analyze(snapshot)

    assert analysis.context.partners[0].domains == frozenset({"acme.com"})
    assert analysis.index.global_group is not None
    assert analysis.index.global_group.id == "g9"
    assert analysis.index.group_for_account("Acme") is not None
    assert analysis.classification.missing_from_partner_group == []
    assert analysis.classification.missing_from_global_group == []
    assert snapshot.partners[0].domains == frozenset()
