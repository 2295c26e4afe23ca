"""Domain port definitions for adapters."""

from __future__ import annotations

from .contact_store import ContactStoreClient
from .lms import CreatePersonOutcome, LmsClient, OperationOutcome

__all__ = [
    "ContactStoreClient",
    "CreatePersonOutcome",
    "LmsClient",
    "OperationOutcome",
]
