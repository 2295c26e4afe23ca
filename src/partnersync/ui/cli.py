from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import fields
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from partnersync.app import (
    DEFAULT_DISMISS_REASON,
    add_missing_users,
    build_services,
    create_orphan_contacts,
    create_partner_groups,
    deactivate_users,
    dismiss_orphan,
    fix_group_memberships,
    import_crm_export,
    link_orphans,
    offboard_users,
    rename_group,
    restore_orphan,
    run_audit,
)
from partnersync.config import configure_logging
from partnersync.domain.reconciliation import CancellationToken

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from partnersync.app import AuditReport, Services
    from partnersync.domain.reconciliation import ExecutionProgress, ExecutionResult

log = logging.getLogger(__name__)

_CANCELLATION = CancellationToken()


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Reconcile CRM partner contacts with Northpass users and groups"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("audit", help="Classify both systems without changing anything")

    crm = subparsers.add_parser("import-crm", help="Load a CRM export (JSON) into the store")
    crm.add_argument("path", type=Path, help="Path to the export file")

    add_missing = subparsers.add_parser(
        "add-missing", help="Create LMS people for active contacts missing from the LMS"
    )
    add_missing.add_argument(
        "--email",
        action="append",
        dest="emails",
        help="Restrict to this contact email (repeatable)",
    )

    fix_groups = subparsers.add_parser(
        "fix-groups", help="Add linked users to their partner group and the global group"
    )
    fix_groups.add_argument(
        "--skip-partner-groups",
        action="store_true",
        help="Do not add contact-matched users to their partner group",
    )
    fix_groups.add_argument(
        "--skip-global-group",
        action="store_true",
        help="Do not add linked users to the global group",
    )

    link = subparsers.add_parser(
        "link-orphans", help="Add orphans to the partner group their domain matched"
    )
    link.add_argument("--partner-id", type=str, help="Only link orphans matched to this partner")
    link.add_argument(
        "--user-id",
        action="append",
        dest="user_ids",
        help="Only link this LMS user (repeatable)",
    )

    offboard = subparsers.add_parser(
        "offboard", help="Remove retired users from partner groups and the global group"
    )
    offboard.add_argument(
        "--deactivate",
        action="store_true",
        help="Also deactivate each offboarded user",
    )
    offboard.add_argument(
        "--user-id",
        action="append",
        dest="user_ids",
        help="Only offboard this LMS user (repeatable)",
    )
    offboard.add_argument(
        "--delete-groups",
        action="store_true",
        help="Also delete the LMS groups of inactive partners",
    )

    create_groups = subparsers.add_parser(
        "create-groups", help="Create partner groups for active partners without one"
    )
    create_groups.add_argument(
        "--partner-id",
        action="append",
        dest="partner_ids",
        help="Only create the group for this partner (repeatable)",
    )

    create_contacts = subparsers.add_parser(
        "create-contacts", help="Record confirmed orphans as contacts of their matched partner"
    )
    create_contacts.add_argument(
        "--user-id",
        action="append",
        dest="user_ids",
        required=True,
        help="LMS user to record (repeatable)",
    )

    deactivate = subparsers.add_parser("deactivate", help="Deactivate LMS users")
    deactivate.add_argument(
        "--user-id",
        action="append",
        dest="user_ids",
        required=True,
        help="LMS user to deactivate (repeatable)",
    )

    dismiss = subparsers.add_parser("dismiss", help="Mark an orphan as not belonging to a partner")
    dismiss.add_argument("--user-id", type=str, required=True)
    dismiss.add_argument("--partner-id", type=str, required=True)
    dismiss.add_argument("--reason", type=str, default=DEFAULT_DISMISS_REASON)

    restore = subparsers.add_parser("restore", help="Undo an orphan dismissal")
    restore.add_argument("--user-id", type=str, required=True)
    restore.add_argument("--partner-id", type=str, required=True)

    rename = subparsers.add_parser("rename-group", help="Rename an LMS group")
    rename.add_argument("--group-id", type=str, required=True)
    rename.add_argument("--name", type=str, required=True, help="New group name")

    return parser.parse_args(list(argv))


def _validate(args: argparse.Namespace) -> None:
    if args.command == "rename-group" and not args.name.strip():
        raise ValueError("Group name must not be blank")
    if args.command == "fix-groups" and args.skip_partner_groups and args.skip_global_group:
        raise ValueError("Nothing to do: both group kinds are skipped")


def _log_progress(progress: ExecutionProgress) -> None:
    status = "ok" if progress.succeeded else "FAILED"
    log.info(f"[{progress.completed}/{progress.total}] {progress.entity}: {status}")


def _services() -> Services:
    return build_services(on_progress=_log_progress, cancellation=_CANCELLATION)


def _log_audit(report: AuditReport) -> None:
    stats = report.stats
    log.info(
        "Contact store: partners=%s, contacts=%s, last import=%s",
        stats.partner_count,
        stats.contact_count,
        stats.last_import_timestamp or "never",
    )
    classification = report.analysis.classification
    if classification.global_group is None:
        log.warning("No global group found")
    for category, count in report.summary.items():
        log.info(f"{category}: {count}")
    for collision in report.analysis.index.collisions:
        log.warning(
            f"Collision on {collision.kind} {collision.key!r}: "
            f"{collision.replaced} replaced by {collision.winner}"
        )
    matching = report.analysis.index.group_matching
    for match in matching.matches:
        log.info(
            f"Group {match.group.name!r} matched to partner {match.partner_id} "
            f"by {match.match_type} name ({match.score:.0%})"
        )
    for suggestion in matching.suggestions:
        if suggestion.best is not None:
            log.info(
                f"Unmatched group {suggestion.group.name!r} may belong to partner "
                f"{suggestion.best.partner_id} ({suggestion.best.score:.0%})"
            )


def _log_result(result: ExecutionResult) -> bool:
    """Log a flow result; returns whether every unit succeeded."""

    counters = {
        field.name: value
        for field in fields(result)
        if isinstance(value := getattr(result, field.name), int) and not isinstance(value, bool)
    }
    log.info(
        f"{result.flow} finished: "
        + ", ".join(f"{name}={value}" for name, value in sorted(counters.items()))
    )
    for warning in result.warnings:
        log.warning(warning)
    for error in result.errors:
        log.error(f"{error.entity}: {error.error}")
    if result.cancelled:
        log.warning(f"{result.flow} was cancelled before completing")
    return result.failed == 0 and not result.cancelled


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        _validate(parsed_args)
    except ValueError:
        configure_logging()
        log.exception("CLI validation error")
        sys.exit(2)

    configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)

    ok = True
    try:
        command = parsed_args.command
        if command == "audit":
            _log_audit(run_audit(_services()))
        elif command == "import-crm":
            written = import_crm_export(parsed_args.path)
            log.info("Imported %s CRM rows from %s", written, parsed_args.path)
        elif command == "add-missing":
            ok = _log_result(add_missing_users(_services(), emails=parsed_args.emails))
        elif command == "fix-groups":
            fixed = fix_group_memberships(
                _services(),
                partner_groups=not parsed_args.skip_partner_groups,
                global_group=not parsed_args.skip_global_group,
            )
            for result in (fixed.partner_group, fixed.global_group):
                if result is not None:
                    ok = _log_result(result) and ok
        elif command == "link-orphans":
            ok = _log_result(
                link_orphans(
                    _services(),
                    partner_id=parsed_args.partner_id,
                    user_ids=parsed_args.user_ids,
                )
            )
        elif command == "offboard":
            ok = _log_result(
                offboard_users(
                    _services(),
                    deactivate=parsed_args.deactivate,
                    user_ids=parsed_args.user_ids,
                    delete_partner_groups=parsed_args.delete_groups,
                )
            )
        elif command == "create-groups":
            ok = _log_result(create_partner_groups(_services(), partner_ids=parsed_args.partner_ids))
        elif command == "create-contacts":
            ok = _log_result(create_orphan_contacts(_services(), user_ids=parsed_args.user_ids))
        elif command == "deactivate":
            ok = _log_result(deactivate_users(_services(), user_ids=parsed_args.user_ids))
        elif command == "dismiss":
            dismiss_orphan(
                parsed_args.user_id,
                parsed_args.partner_id,
                parsed_args.reason,
                services=_services(),
            )
        elif command == "restore":
            restore_orphan(parsed_args.user_id, parsed_args.partner_id, services=_services())
        elif command == "rename-group":
            rename_group(parsed_args.group_id, parsed_args.name, services=_services())
        else:
            raise ValueError(f"Unsupported command: {command}")  # noqa: TRY301

    except Exception:
        log.exception("Fatal error during reconciliation")
        sys.exit(1)

    if not ok:
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Cancel the running batch on the first Ctrl+C; exit on the second."""
    if _CANCELLATION.cancelled:
        log.warning("Interrupted again; exiting without waiting for the batch")
        sys.exit(1)
    log.warning("Cancelling after the current call (Ctrl+C again to exit now)")
    _CANCELLATION.cancel()


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
