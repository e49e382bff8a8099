from __future__ import annotations

import argparse
import dataclasses
from pathlib import Path
from typing import Sequence

from experiment_store.core.database import Database
from experiment_store.core.errors import ExperimentStoreError
from experiment_store.core.export import export_table
from experiment_store.core.settings import StoreSettings, load_settings, settings_from_mapping
from experiment_store.core.utils import json_dumps


def resolve_settings(db_path: str | None, settings_path: str | None) -> StoreSettings:
    """Settings file (or environment) first, then `--db` overrides the path."""

    if settings_path:
        settings = load_settings(settings_path)
    elif db_path:
        settings = settings_from_mapping({"path": db_path})
    else:
        settings = settings_from_mapping({})
    if db_path:
        settings = dataclasses.replace(settings, path=db_path)
    return settings


def cmd_executions(db: Database) -> None:
    for row in db.list_executions():
        fields = " ".join(
            f"{key}={value}"
            for key, value in row.items()
            if key not in {"id", "created_at"} and value is not None
        )
        print(f"{row['id']}\t{row['created_at']}\t{fields}".rstrip())


def cmd_show(db: Database, execution_id: int) -> None:
    execution = db.fetch_execution(execution_id)
    if execution is None:
        raise SystemExit(f"Unknown execution id: {execution_id}")
    outcomes = {}
    for table in db.list_outcome_tables():
        rows = db.fetch_rows(table, execution_id)
        if rows:
            outcomes[table] = rows
    payload = {
        "execution": execution,
        "parameters": db.fetch_parameters(execution_id),
        "outcomes": outcomes,
    }
    print(json_dumps(payload))


def cmd_tables(db: Database) -> None:
    for table in db.list_tables():
        columns = ", ".join(f"{name} {col_type}".rstrip() for name, col_type in db.table_columns(table))
        print(f"{table}: {columns}")


def cmd_export(db: Database, table: str, out: str, execution_id: int | None) -> None:
    count = export_table(db, table, Path(out), execution_id)
    print(f"Exported {count} rows of {table} to {out}")


def cmd_integrity_check(db: Database, full: bool = False) -> None:
    ok, msg = db.integrity_check(full=full)
    if not ok:
        raise SystemExit(f"Integrity check failed: {msg}")
    print("OK")


def cmd_backup(db: Database, out: str) -> None:
    db.backup_to(Path(out))
    print(f"Backup written to {out}")


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="experiment-store")
    parser.add_argument("--db", help="path of the store (overrides the settings)")
    parser.add_argument("--settings", help="YAML or JSON settings file")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("executions")

    show_parser = sub.add_parser("show")
    show_parser.add_argument("--id", required=True, type=int)

    sub.add_parser("tables")

    export_parser = sub.add_parser("export")
    export_parser.add_argument("--table", required=True)
    export_parser.add_argument("--out", required=True)
    export_parser.add_argument("--execution-id", type=int)

    integrity_parser = sub.add_parser("integrity-check")
    integrity_parser.add_argument("--full", action="store_true")

    backup_parser = sub.add_parser("backup")
    backup_parser.add_argument("--out", required=True)

    args = parser.parse_args(argv)

    try:
        settings = resolve_settings(args.db, args.settings)
        if not Path(settings.path).exists():
            raise SystemExit(f"No store at {settings.path}")
        with Database.from_settings(settings) as db:
            if args.command == "executions":
                cmd_executions(db)
            elif args.command == "show":
                cmd_show(db, args.id)
            elif args.command == "tables":
                cmd_tables(db)
            elif args.command == "export":
                cmd_export(db, args.table, args.out, args.execution_id)
            elif args.command == "integrity-check":
                cmd_integrity_check(db, full=bool(args.full))
            elif args.command == "backup":
                cmd_backup(db, args.out)
            else:
                raise SystemExit(2)
    except (ExperimentStoreError, ValueError) as exc:
        raise SystemExit(f"error: {exc}") from exc


if __name__ == "__main__":
    main()
