from __future__ import annotations

import pytest

from partnersync.domain.reconciliation import RunInProgressError, RunRegistry


def test_second_run_for_the_same_pair_is_refused() -> None:
    registry = RunRegistry()

    with registry.exclusive("crm", "lms") as key:
        assert key == ("crm", "lms")
        assert registry.is_running("crm", "lms")
        with pytest.raises(RunInProgressError, match="already in progress"):
            with registry.exclusive("crm", "lms"):
                pass

    assert not registry.is_running("crm", "lms")


def test_different_pairs_run_independently() -> None:
    registry = RunRegistry()

    with registry.exclusive("crm", "lms-a"), registry.exclusive("crm", "lms-b"):
        assert registry.is_running("crm", "lms-a")
        assert registry.is_running("crm", "lms-b")


def test_slot_is_released_when_the_run_fails() -> None:
    registry = RunRegistry()

    with pytest.raises(ValueError, match="boom"):
        with registry.exclusive("crm", "lms"):
            raise ValueError("boom")

    assert not registry.is_running("crm", "lms")
