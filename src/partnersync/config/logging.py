"""Logging setup for the command line entry points."""

from __future__ import annotations

import logging


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Configure the root logger with a terse, timestamped CLI format.

    ``force=True`` replaces handlers installed earlier, e.g. by a test runner.
    The ``httpx`` logger is raised to WARNING so request lines do not drown
    the per-user progress output.
    """

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
