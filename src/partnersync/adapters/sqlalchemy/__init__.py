"""SQLAlchemy adapter package for the CRM contact store."""

from __future__ import annotations

from .contact_store import (
    ContactStoreError,
    SqlAlchemyContactStore,
    StartupError,
    is_started,
    shutdown,
    startup,
)
from .tables import (
    contacts_table,
    create_all_tables,
    dismissed_orphans_table,
    metadata,
    partners_table,
    sync_logs_table,
)

__all__ = [
    "ContactStoreError",
    "SqlAlchemyContactStore",
    "StartupError",
    "contacts_table",
    "create_all_tables",
    "dismissed_orphans_table",
    "is_started",
    "metadata",
    "partners_table",
    "shutdown",
    "startup",
    "sync_logs_table",
]
