from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine, select

from partnersync.adapters.sqlalchemy import (
    ContactStoreError,
    SqlAlchemyContactStore,
    StartupError,
    is_started,
    shutdown,
    startup,
    sync_logs_table,
)
from partnersync.domain.model import ContactInput
from tests.helpers.entities import make_contact, make_partner

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine


def _seed(store: SqlAlchemyContactStore) -> None:
    acme = make_partner("p1", "Acme")
    retired = make_partner("p2", "Retired", is_active=False)
    store.import_snapshot(
        [acme, retired],
        [
            make_contact("a@acme.com", acme, contact_id="c1"),
            make_contact("b@retired.org", retired, contact_id="c2", is_active=False),
        ],
    )


def test_contacts_are_joined_with_their_partner(contact_store: SqlAlchemyContactStore) -> None:
    _seed(contact_store)

    contacts = asyncio.run(contact_store.get_all_contacts())
    partners = asyncio.run(contact_store.get_all_partners())

    assert [contact.id for contact in contacts] == ["c1", "c2"]
    assert contacts[0].account_name == "Acme"
    assert not contacts[1].is_active
    assert [(p.id, p.is_active) for p in partners] == [("p1", True), ("p2", False)]


def test_import_is_an_upsert(contact_store: SqlAlchemyContactStore) -> None:
    _seed(contact_store)
    renamed = make_partner("p1", "Acme Corp")

    contact_store.import_snapshot([renamed], [])

    partners = asyncio.run(contact_store.get_all_partners())
    assert [p.account_name for p in partners] == ["Acme Corp", "Retired"]


def test_database_stats_report_last_import(
    contact_store: SqlAlchemyContactStore, sqlite_engine: Engine
) -> None:
    empty = asyncio.run(contact_store.get_database_stats())
    assert empty.last_import_timestamp is None

    _seed(contact_store)
    stats = asyncio.run(contact_store.get_database_stats())

    assert (stats.partner_count, stats.contact_count) == (2, 2)
    assert stats.last_import_timestamp is not None
    with sqlite_engine.connect() as conn:
        [log_row] = conn.execute(select(sync_logs_table)).all()
    assert log_row.sync_type == "crm_import"
    assert log_row.records_processed == 4


def test_create_contact_links_to_partner_and_is_idempotent(
    contact_store: SqlAlchemyContactStore,
) -> None:
    _seed(contact_store)
    payload = ContactInput(
        email=" New@Acme.com ", first_name="Grace", last_name="Hopper", account_id="p1"
    )

    first = asyncio.run(contact_store.create_contact(payload))
    second = asyncio.run(contact_store.create_contact(payload))

    assert first.id == second.id
    assert first.account_name == "Acme"
    assert first.email == "New@Acme.com"
    assert len(asyncio.run(contact_store.get_all_contacts())) == 3


def test_create_contact_for_unknown_partner_fails(
    contact_store: SqlAlchemyContactStore,
) -> None:
    with pytest.raises(ContactStoreError, match="p404"):
        asyncio.run(contact_store.create_contact(ContactInput(email="x@y.io", account_id="p404")))


def test_dismiss_and_restore_orphan(contact_store: SqlAlchemyContactStore) -> None:
    asyncio.run(contact_store.dismiss_orphan("u1", "p1", "Contractor"))
    asyncio.run(contact_store.dismiss_orphan("u1", "p1", "Former employee"))
    asyncio.run(contact_store.dismiss_orphan("u2", "p1", "Not a match"))

    dismissed = asyncio.run(contact_store.get_dismissed_orphans())
    assert [(d.user_id, d.reason) for d in dismissed] == [
        ("u1", "Former employee"),
        ("u2", "Not a match"),
    ]

    asyncio.run(contact_store.restore_orphan("u1", "p1"))
    remaining = asyncio.run(contact_store.get_dismissed_orphans())
    assert [d.key for d in remaining] == [("u2", "p1")]


def test_startup_lifecycle(sqlite_engine: Engine) -> None:
    shutdown()
    with pytest.raises(StartupError):
        SqlAlchemyContactStore()

    startup(engine=sqlite_engine, force=True)
    try:
        assert is_started()
        with pytest.raises(StartupError):
            startup(engine=create_engine("sqlite+pysqlite:///:memory:"))
    finally:
        shutdown()
    assert not is_started()
