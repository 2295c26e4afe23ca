"""Derive candidate email domains per partner from CRM contacts.

A domain is only ever inferred from a partner's own contacts, and public or
personal mailbox providers are never used, whatever else the data says.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Final

from partnersync.domain.model import email_domain

if TYPE_CHECKING:
    from collections.abc import Iterable

    from partnersync.domain.model import Contact, Domain, Partner, PartnerId

EXCLUDED_EMAIL_DOMAINS: Final[frozenset[str]] = frozenset(
    {
        "gmail.com",
        "googlemail.com",
        "google.com",
        "hotmail.com",
        "hotmail.co.uk",
        "hotmail.fr",
        "hotmail.de",
        "hotmail.es",
        "hotmail.it",
        "outlook.com",
        "outlook.co.uk",
        "outlook.fr",
        "outlook.de",
        "outlook.es",
        "outlook.it",
        "msn.com",
        "live.com",
        "live.co.uk",
        "live.fr",
        "live.de",
        "yahoo.com",
        "yahoo.co.uk",
        "yahoo.fr",
        "yahoo.de",
        "yahoo.es",
        "yahoo.it",
        "yahoo.ca",
        "ymail.com",
        "rocketmail.com",
        "icloud.com",
        "me.com",
        "mac.com",
        "aol.com",
        "aim.com",
        "protonmail.com",
        "proton.me",
        "zoho.com",
        "mail.com",
        "gmx.com",
        "gmx.net",
        "gmx.de",
        "web.de",
        "freenet.de",
        "t-online.de",
        "orange.fr",
        "wanadoo.fr",
        "laposte.net",
        "comcast.net",
        "verizon.net",
        "att.net",
        "sbcglobal.net",
        "cox.net",
        "charter.net",
        "mailinator.com",
        "guerrillamail.com",
        "tempmail.com",
        "10minutemail.com",
    }
)


def is_excluded_domain(value: str | None) -> bool:
    """Return whether ``value`` (an email or a bare domain) must not drive matching.

    Missing or unparsable domains count as excluded.
    """

    if value is None:
        return True
    domain = email_domain(value) if "@" in value else value.strip().lower()
    if not domain:
        return True
    return domain in EXCLUDED_EMAIL_DOMAINS


@dataclass(slots=True)
class DomainExtraction:
    """Per-partner domain sets plus the partners that yielded none."""

    domains_by_partner: dict[PartnerId, frozenset[Domain]] = field(
        default_factory=dict["PartnerId", "frozenset[Domain]"]
    )
    partners_without_domains: frozenset[PartnerId] = frozenset()
    partners_without_contacts: frozenset[PartnerId] = frozenset()

    def domains_for(self, partner_id: PartnerId) -> frozenset[Domain]:
        return self.domains_by_partner.get(partner_id, frozenset())


def extract_domains(
    contacts: Iterable[Contact],
    partners: Iterable[Partner] | None = None,
) -> DomainExtraction:
    """Collect the non-excluded email domains of each partner's contacts.

    Contacts without an email or account are skipped. ``partners`` is only
    needed to report partners that have no contacts at all.
    """

    collected: dict[PartnerId, set[Domain]] = {}
    for contact in contacts:
        if not contact.account_id:
            continue
        bucket = collected.setdefault(contact.account_id, set())
        domain = email_domain(contact.email)
        if domain is None or is_excluded_domain(domain):
            continue
        bucket.add(domain)

    domains_by_partner = {
        partner_id: frozenset(domains) for partner_id, domains in collected.items() if domains
    }
    without_domains = frozenset(
        partner_id for partner_id, domains in collected.items() if not domains
    )
    without_contacts: frozenset[PartnerId] = frozenset()
    if partners is not None:
        without_contacts = frozenset(
            partner.id for partner in partners if partner.id not in collected
        )

    return DomainExtraction(
        domains_by_partner=domains_by_partner,
        partners_without_domains=without_domains,
        partners_without_contacts=without_contacts,
    )


def attach_domains(partners: Iterable[Partner], extraction: DomainExtraction) -> list[Partner]:
    """Return copies of ``partners`` carrying their derived domain sets."""

    return [replace(partner, domains=extraction.domains_for(partner.id)) for partner in partners]
