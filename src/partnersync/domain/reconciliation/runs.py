"""Serialize reconciliation runs per (CRM account, LMS instance) pair."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from logging import getLogger
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

log = getLogger(__name__)

type RunKey = tuple[str, str]


class RunInProgressError(RuntimeError):
    def __init__(self, key: RunKey) -> None:
        super().__init__(f"Sync already in progress for CRM {key[0]!r} and LMS {key[1]!r}")
        self.key = key


class RunRegistry:
    """Refuses a second run for a pair instead of queueing it.

    Two concurrent runs against the live APIs could create the same group
    twice, so the caller is told immediately.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: set[RunKey] = set()

    def is_running(self, crm_key: str, lms_key: str) -> bool:
        with self._lock:
            return (crm_key, lms_key) in self._active

    @contextmanager
    def exclusive(self, crm_key: str, lms_key: str) -> Iterator[RunKey]:
        key: RunKey = (crm_key, lms_key)
        with self._lock:
            if key in self._active:
                raise RunInProgressError(key)
            self._active.add(key)
        log.info(f"Reconciliation run started for {key}")
        try:
            yield key
        finally:
            with self._lock:
                self._active.discard(key)
            log.info(f"Reconciliation run finished for {key}")
