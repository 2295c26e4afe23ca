"""Read a CRM export file (JSON) into partner and contact entities.

Expected shape::

    {"partners": [{"id": ..., "account_name": ..., "partner_tier": ..., ...}],
     "contacts": [{"id": ..., "email": ..., "account_id": ..., ...}]}
"""

from __future__ import annotations

import json
from logging import getLogger
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from partnersync.domain.model import Contact, Partner

if TYPE_CHECKING:
    from pathlib import Path

log = getLogger(__name__)


class CrmExportError(ValueError):
    """Raised when an export file cannot be read or does not match the expected shape."""


def _coerce_id(value: object) -> object:
    return str(value) if isinstance(value, int) else value


class _ExportModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class PartnerRow(_ExportModel):
    id: str
    account_name: str
    partner_tier: str | None = None
    account_region: str | None = None
    is_active: bool = True

    _ids = field_validator("id", mode="before")(_coerce_id)


class ContactRow(_ExportModel):
    id: str
    email: str | None = None
    first_name: str = ""
    last_name: str = ""
    account_id: str | None = None
    is_active: bool = True

    _ids = field_validator("id", "account_id", mode="before")(_coerce_id)

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _null_name(cls, value: object) -> object:
        return "" if value is None else value


class CrmExport(_ExportModel):
    partners: list[PartnerRow] = Field(default_factory=list[PartnerRow])
    contacts: list[ContactRow] = Field(default_factory=list[ContactRow])

    def to_domain(self) -> tuple[list[Partner], list[Contact]]:
        names = {row.id: row.account_name for row in self.partners}
        partners = [
            Partner(
                id=row.id,
                account_name=row.account_name,
                tier=row.partner_tier,
                region=row.account_region,
                is_active=row.is_active,
            )
            for row in self.partners
        ]
        contacts = [
            Contact(
                id=row.id,
                email=row.email,
                first_name=row.first_name,
                last_name=row.last_name,
                account_id=row.account_id,
                account_name=names.get(row.account_id) if row.account_id else None,
                is_active=row.is_active,
            )
            for row in self.contacts
        ]
        return partners, contacts


def load_crm_export(path: Path) -> tuple[list[Partner], list[Contact]]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        export = CrmExport.model_validate(payload)
    except (OSError, ValueError, ValidationError) as exc:
        raise CrmExportError(f"Cannot read CRM export {path}: {exc}") from exc

    known = {row.id for row in export.partners}
    unknown = sorted(
        {
            row.account_id
            for row in export.contacts
            if row.account_id is not None and row.account_id not in known
        }
    )
    if unknown:
        raise CrmExportError(f"Contacts reference unknown partner(s): {', '.join(unknown)}")

    partners, contacts = export.to_domain()
    log.info(f"Read CRM export {path.name}: {len(partners)} partners, {len(contacts)} contacts")
    return partners, contacts
