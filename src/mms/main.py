from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from mms.application.container import build_container
from mms.config import get_app_paths, load_settings
from mms.domain.errors import AppError
from mms.logging_config import setup_logging

log = logging.getLogger(__name__)


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mms", description="Daily material stock ledger")
    sub = p.add_subparsers(dest="command", required=True)

    cf = sub.add_parser("carry-forward", help="create next-day records from closing stock")
    cf.add_argument("--from", dest="from_date")
    cf.add_argument("--to", dest="to_date")

    imp = sub.add_parser("import", help="import materials from .csv, .xlsx or .json")
    imp.add_argument("file")
    imp.add_argument("--date")

    csv_out = sub.add_parser("export-csv", help="export one day's records as CSV")
    csv_out.add_argument("date")
    csv_out.add_argument("out")
    csv_out.add_argument("--columns", help="comma-separated column keys")

    js = sub.add_parser("export-json", help="export the whole database as JSON")
    js.add_argument("out")

    bk = sub.add_parser("backup", help="write a backup archive")
    bk.add_argument("--label")

    rs = sub.add_parser("restore", help="restore a backup archive")
    rs.add_argument("name")

    sub.add_parser("list-backups", help="list backup archives, newest first")

    cl = sub.add_parser("cleanup", help="delete old backup archives")
    cl.add_argument("--keep", type=int)

    sub.add_parser("sync-pull", help="overwrite local data with the remote copy")
    return p


def run(args: argparse.Namespace, container) -> int:
    ledger = container.ledger
    cmd = args.command

    if cmd == "carry-forward":
        from_date = args.from_date or ledger.today()
        to_date = args.to_date or ledger.today(1)
        created = ledger.carry_forward_all(from_date, to_date)
        print(f"Created {len(created)} record(s) for {to_date}")
    elif cmd == "import":
        result = container.imports.import_file(args.file, default_date=args.date)
        print(
            f"Imported {result.materials} material(s), {result.records} record(s); "
            f"skipped {result.skipped_rows} row(s)"
        )
    elif cmd == "export-csv":
        columns = [c.strip() for c in args.columns.split(",") if c.strip()] if args.columns else None
        n = container.reporting.export_daily_csv(args.out, args.date, columns)
        print(f"Exported {n} row(s) to {args.out}")
    elif cmd == "export-json":
        path = container.reporting.export_database(args.out)
        print(f"Exported database to {path}")
    elif cmd == "backup":
        print(container.backup.backup(args.label))
    elif cmd == "restore":
        safety = container.backup.restore(args.name)
        print(f"Restored {args.name} (previous state saved as {safety})")
    elif cmd == "list-backups":
        for a in container.backup.list_archives():
            desc = (a.backup_info or {}).get("description", "-")
            print(f"{a.name}\t{a.size}\t{a.modified_at}\t{desc}")
    elif cmd == "cleanup":
        keep = args.keep if args.keep is not None else container.settings.archive_keep
        deleted = container.backup.cleanup(keep)
        print(f"Deleted {len(deleted)} archive(s)")
    elif cmd == "sync-pull":
        status = container.sync.force_pull()
        print(f"{status.state} {status.detail}".strip())
        return 1 if status.degraded else 0
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parser().parse_args(argv)
    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)
    settings = load_settings()

    container = build_container(
        paths.data_path,
        settings=settings,
        backups_dir=paths.backups_dir,
        auth_path=paths.auth_path,
    )
    try:
        return run(args, container)
    except AppError as exc:
        log.error("command_failed command=%s error=%s", args.command, exc)
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
