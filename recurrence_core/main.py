import argparse
import sys
from pathlib import Path

from dotenv import find_dotenv, load_dotenv
from loguru import logger

from recurrence_core.logging_setup import setup_logging


def _load_env() -> None:
    env_path = find_dotenv(usecwd=True)
    if not env_path:
        candidate = Path(__file__).resolve().parents[1] / ".env"
        if candidate.exists():
            env_path = str(candidate)
    if env_path:
        logger.info("Loaded .env from {}", env_path)
        load_dotenv(env_path, override=True)
    else:
        logger.warning("No .env found")


def _run_migrations() -> None:
    from alembic import command
    from alembic.config import Config

    config_path = Path(__file__).resolve().parents[1] / "alembic.ini"
    alembic_cfg = Config(str(config_path))
    command.upgrade(alembic_cfg, "head")


def _resolve_today(raw: str | None) -> str:
    from recurrence_core.core.dates import is_iso_date, today_iso_date

    if raw is None:
        return today_iso_date()
    if not is_iso_date(raw):
        logger.error("--today must be a YYYY-MM-DD date, got {}", raw)
        sys.exit(2)
    return raw


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="recurrence-core")
    parser.add_argument("--log-level", help="override LOG_LEVEL for this run")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("upgrade", help="apply database migrations")

    for name, help_text in (
        ("sync", "migrate legacy tasks and materialize due series instances"),
        ("rollover", "reopen done legacy recurring tasks whose due date arrived"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--user", required=True)
        cmd.add_argument("--today")

    migrate = sub.add_parser("migrate-legacy", help="lift inline task recurrences into series")
    migrate.add_argument("--user")
    migrate.add_argument("--today")

    listing = sub.add_parser("list", help="sync, then print the user's series")
    listing.add_argument("--user", required=True)
    listing.add_argument("--today")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    _load_env()
    setup_logging(args.log_level)

    if args.command == "upgrade":
        _run_migrations()
        return

    from recurrence_core.core.legacy_migration import migrate_all_users, migrate_legacy_task_recurrences
    from recurrence_core.core.recurrence_preview import BEHAVIOR_LABELS, series_preview
    from recurrence_core.core.rollover import rollover_due_legacy_tasks
    from recurrence_core.core.series_sync import sync_recurrence_series
    from recurrence_core.db.repositories.series_repo import list_series
    from recurrence_core.db.session import get_session

    today = _resolve_today(args.today)
    with get_session() as session:
        if args.command == "sync":
            sync_recurrence_series(session, args.user, today)
        elif args.command == "rollover":
            rollover_due_legacy_tasks(session, args.user, today)
        elif args.command == "migrate-legacy":
            if args.user:
                migrate_legacy_task_recurrences(session, args.user, today)
            else:
                migrate_all_users(session, today)
        elif args.command == "list":
            sync_recurrence_series(session, args.user, today)
            for series in list_series(session, args.user):
                preview = series_preview(series)
                state = "active" if series.active else "paused"
                print(
                    f"{series.id}  {series.title}  [{preview.cadence}, "
                    f"{BEHAVIOR_LABELS.get(series.recurrence_behavior, series.recurrence_behavior)}, {state}]  next={preview.next}"
                )


if __name__ == "__main__":
    main()
