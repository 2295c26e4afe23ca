"""Reconciliation defaults: group naming and call pacing."""

from __future__ import annotations

from dataclasses import dataclass

from partnersync.domain.reconciliation.execute import DEFAULT_CALL_DELAY_SECONDS
from partnersync.domain.reconciliation.index import (
    DEFAULT_GLOBAL_GROUP_NAME,
    DEFAULT_GROUP_PREFIX,
)

from .env import env_float, optional_env


@dataclass(frozen=True, slots=True)
class ReconciliationConfig:
    group_prefix: str = DEFAULT_GROUP_PREFIX
    global_group_name: str = DEFAULT_GLOBAL_GROUP_NAME
    call_delay_seconds: float = DEFAULT_CALL_DELAY_SECONDS


def get_reconciliation_config() -> ReconciliationConfig:
    return ReconciliationConfig(
        group_prefix=optional_env("PARTNERSYNC_GROUP_PREFIX", DEFAULT_GROUP_PREFIX)
        or DEFAULT_GROUP_PREFIX,
        global_group_name=optional_env("PARTNERSYNC_GLOBAL_GROUP", DEFAULT_GLOBAL_GROUP_NAME)
        or DEFAULT_GLOBAL_GROUP_NAME,
        call_delay_seconds=env_float(
            "PARTNERSYNC_CALL_DELAY_SECONDS", DEFAULT_CALL_DELAY_SECONDS
        ),
    )
