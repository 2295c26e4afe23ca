"""
SQLAlchemy Core tables for the contact store
sql.func.now() uses UTC for sqlite databases
-> see https://www.sqlite.org/lang_datefunc.html
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)

if TYPE_CHECKING:
    from sqlalchemy import engine as sa_engine

log = logging.getLogger(__name__)


metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_label)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)

partners_table = Table(
    "partners",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("account_name", String(255), nullable=False),
    Column("partner_tier", String(64)),
    Column("account_region", String(64)),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now()),
)

contacts_table = Table(
    "contacts",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("email", String(255), index=True),
    Column("first_name", String(255), nullable=False, default=""),
    Column("last_name", String(255), nullable=False, default=""),
    Column("account_id", String(64), ForeignKey("partners.id")),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, server_default=func.now()),
)

dismissed_orphans_table = Table(
    "dismissed_orphans",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(64), nullable=False),
    Column("partner_id", String(64), nullable=False),
    Column("reason", Text),
    Column("dismissed_by", String(255)),
    Column("dismissed_at", DateTime, server_default=func.now()),
    UniqueConstraint("user_id", "partner_id"),
)

sync_logs_table = Table(
    "sync_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("sync_type", String(64), nullable=False),
    Column("status", String(32), nullable=False),
    Column("started_at", DateTime, nullable=False),
    Column("completed_at", DateTime),
    Column("records_processed", Integer, nullable=False, default=0),
    Column("records_failed", Integer, nullable=False, default=0),
    Column("error_message", Text),
)


def create_all_tables(engine: sa_engine.Engine) -> None:
    """Create all tables."""
    log.info("Creating all tables")
    metadata.create_all(engine)
