"""SQLAlchemy-backed contact store: partners, contacts, orphan dismissals, sync logs."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, delete, func, insert, select, update

from partnersync.config.storage import get_database_config
from partnersync.domain.model import Contact, DatabaseStats, OrphanDismissal, Partner

from .tables import (
    contacts_table,
    create_all_tables,
    dismissed_orphans_table,
    partners_table,
    sync_logs_table,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy import Row, Table
    from sqlalchemy.engine import Connection, Engine

    from partnersync.domain.model import ContactInput, PartnerId, UserId
    from partnersync.domain.ports import ContactStoreClient

log = logging.getLogger(__name__)

CRM_IMPORT_SYNC_TYPE = "crm_import"


class StartupError(RuntimeError):
    """Raised when the contact store is used before initialisation."""


class ContactStoreError(RuntimeError):
    """Raised when a write violates the store's referential rules."""


@dataclass(slots=True)
class _AdapterState:
    engine: Engine | None = None


_STATE = _AdapterState()


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> Engine:
    """Initialise the engine and create any missing tables."""

    if _STATE.engine is not None and not force:
        raise StartupError("Contact store already initialised. Pass force=True to reconfigure.")

    resolved_engine = engine or create_engine(database_uri or get_database_config().uri)
    create_all_tables(resolved_engine)
    _STATE.engine = resolved_engine
    return resolved_engine


def is_started() -> bool:
    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the managed engine and reset state (primarily for tests)."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None


def _require_engine() -> Engine:
    if _STATE.engine is None:
        raise StartupError(
            "Contact store not initialised. Call partnersync.adapters.sqlalchemy."
            "startup() before opening the store."
        )
    return _STATE.engine


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class SqlAlchemyContactStore:
    """``ContactStoreClient`` over SQLAlchemy Core.

    The port is async; statements run synchronously on the calling thread,
    which is acceptable for the short, sequential queries issued per run.
    """

    def __init__(self, engine: Engine | None = None) -> None:
        self.engine = engine or _require_engine()

    async def get_all_contacts(self) -> list[Contact]:
        statement = (
            select(
                contacts_table,
                partners_table.c.account_name,
                partners_table.c.partner_tier,
                partners_table.c.account_region,
            )
            .select_from(
                contacts_table.outerjoin(
                    partners_table, contacts_table.c.account_id == partners_table.c.id
                )
            )
            .order_by(contacts_table.c.id)
        )
        with self.engine.connect() as conn:
            return [_contact_from_row(row) for row in conn.execute(statement)]

    async def get_all_partners(self) -> list[Partner]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(partners_table).order_by(partners_table.c.id))
            return [
                Partner(
                    id=row.id,
                    account_name=row.account_name,
                    tier=row.partner_tier,
                    region=row.account_region,
                    is_active=bool(row.is_active),
                )
                for row in rows
            ]

    async def get_database_stats(self) -> DatabaseStats:
        with self.engine.connect() as conn:
            contact_count = conn.scalar(select(func.count()).select_from(contacts_table)) or 0
            partner_count = conn.scalar(select(func.count()).select_from(partners_table)) or 0
            last_import = conn.scalar(
                select(func.max(sync_logs_table.c.completed_at)).where(
                    sync_logs_table.c.sync_type == CRM_IMPORT_SYNC_TYPE,
                    sync_logs_table.c.status == "completed",
                )
            )
        return DatabaseStats(
            last_import_timestamp=last_import,
            contact_count=contact_count,
            partner_count=partner_count,
        )

    async def create_contact(self, contact: ContactInput) -> Contact:
        with self.engine.begin() as conn:
            partner = None
            if contact.account_id is not None:
                partner = conn.execute(
                    select(partners_table).where(partners_table.c.id == contact.account_id)
                ).first()
                if partner is None:
                    raise ContactStoreError(f"Unknown partner {contact.account_id!r}")

            existing = conn.execute(
                select(contacts_table.c.id).where(
                    func.lower(contacts_table.c.email) == contact.email.strip().lower(),
                    contacts_table.c.account_id == contact.account_id,
                )
            ).first()
            contact_id = existing.id if existing is not None else uuid.uuid4().hex
            if existing is None:
                conn.execute(
                    insert(contacts_table).values(
                        id=contact_id,
                        email=contact.email.strip(),
                        first_name=contact.first_name,
                        last_name=contact.last_name,
                        account_id=contact.account_id,
                        is_active=True,
                    )
                )
                log.info("Created contact %s for partner %s", contact.email, contact.account_id)

        return Contact(
            id=contact_id,
            email=contact.email.strip(),
            first_name=contact.first_name,
            last_name=contact.last_name,
            account_id=contact.account_id,
            account_name=partner.account_name if partner is not None else contact.account_name,
            partner_tier=partner.partner_tier if partner is not None else None,
            account_region=partner.account_region if partner is not None else None,
        )

    async def dismiss_orphan(
        self,
        user_id: UserId,
        partner_id: PartnerId,
        reason: str,
        dismissed_by: str | None = None,
    ) -> None:
        key = (
            dismissed_orphans_table.c.user_id == user_id,
            dismissed_orphans_table.c.partner_id == partner_id,
        )
        with self.engine.begin() as conn:
            updated = conn.execute(
                update(dismissed_orphans_table)
                .where(*key)
                .values(reason=reason, dismissed_by=dismissed_by, dismissed_at=_utcnow())
            )
            if updated.rowcount == 0:
                conn.execute(
                    insert(dismissed_orphans_table).values(
                        user_id=user_id,
                        partner_id=partner_id,
                        reason=reason,
                        dismissed_by=dismissed_by,
                        dismissed_at=_utcnow(),
                    )
                )

    async def restore_orphan(self, user_id: UserId, partner_id: PartnerId) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                delete(dismissed_orphans_table).where(
                    dismissed_orphans_table.c.user_id == user_id,
                    dismissed_orphans_table.c.partner_id == partner_id,
                )
            )

    async def get_dismissed_orphans(self) -> list[OrphanDismissal]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(
                    dismissed_orphans_table.c.user_id,
                    dismissed_orphans_table.c.partner_id,
                    dismissed_orphans_table.c.reason,
                ).order_by(dismissed_orphans_table.c.id)
            )
            return [
                OrphanDismissal(user_id=row.user_id, partner_id=row.partner_id, reason=row.reason)
                for row in rows
            ]

    # CRM import

    def import_snapshot(self, partners: Iterable[Partner], contacts: Iterable[Contact]) -> int:
        """Upsert a CRM export and log it as a completed import. Returns rows written."""

        started_at = _utcnow()
        written = 0
        with self.engine.begin() as conn:
            for partner in partners:
                _upsert(
                    conn,
                    partners_table,
                    partner.id,
                    account_name=partner.account_name,
                    partner_tier=partner.tier,
                    account_region=partner.region,
                    is_active=partner.is_active,
                )
                written += 1
            for contact in contacts:
                _upsert(
                    conn,
                    contacts_table,
                    contact.id,
                    email=contact.email,
                    first_name=contact.first_name,
                    last_name=contact.last_name,
                    account_id=contact.account_id,
                    is_active=contact.is_active,
                )
                written += 1
            _record_sync(
                conn,
                CRM_IMPORT_SYNC_TYPE,
                started_at=started_at,
                status="completed",
                processed=written,
            )
        log.info("Imported %s CRM rows", written)
        return written


def _contact_from_row(row: Row[tuple[object, ...]]) -> Contact:
    return Contact(
        id=str(row.id),
        email=row.email,
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        account_id=row.account_id,
        account_name=row.account_name,
        partner_tier=row.partner_tier,
        account_region=row.account_region,
        is_active=bool(row.is_active),
    )


def _upsert(conn: Connection, table: Table, row_id: str, **values: object) -> None:
    updated = conn.execute(update(table).where(table.c.id == row_id).values(**values))
    if updated.rowcount == 0:
        conn.execute(insert(table).values(id=row_id, **values))


def _record_sync(
    conn: Connection,
    sync_type: str,
    *,
    started_at: datetime,
    status: str,
    processed: int = 0,
) -> None:
    conn.execute(
        insert(sync_logs_table).values(
            sync_type=sync_type,
            status=status,
            started_at=started_at,
            completed_at=_utcnow(),
            records_processed=processed,
        )
    )


if TYPE_CHECKING:
    _store_check: ContactStoreClient = SqlAlchemyContactStore()
