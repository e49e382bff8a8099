from __future__ import annotations

from pathlib import Path

import pandas as pd

from .database import Database
from .utils import ensure_dir, quote_identifier


def read_table(db: Database, table: str, execution_id: int | None = None) -> pd.DataFrame:
    """Load a table of the store into a DataFrame, optionally for one execution."""

    safe_table = quote_identifier(table)
    sql = f"SELECT * FROM {safe_table}"
    params: tuple[int, ...] = ()
    if execution_id is not None:
        column = "id" if table.lower() == "executions" else "execution_id"
        sql += f" WHERE {column} = ?"
        params = (int(execution_id),)
    sql += " ORDER BY rowid"
    with db.connection() as conn:
        return pd.read_sql_query(sql, conn, params=params)


def read_parameters(db: Database) -> pd.DataFrame:
    """One row per execution, one column per parameter key."""

    with db.connection() as conn:
        df = pd.read_sql_query(
            "SELECT execution_id, key, value FROM parameters ORDER BY execution_id, rowid", conn
        )
    if df.empty:
        return pd.DataFrame(index=pd.Index([], name="execution_id"))
    return df.pivot(index="execution_id", columns="key", values="value")


def export_table(
    db: Database, table: str, out_path: Path, execution_id: int | None = None
) -> int:
    """Write a table as CSV or JSON (by suffix); returns the number of rows."""

    out_path = Path(out_path)
    df = read_table(db, table, execution_id)
    ensure_dir(out_path.parent)
    suffix = out_path.suffix.lower()
    if suffix == ".json":
        df.to_json(out_path, orient="records", indent=2)
    elif suffix == ".csv":
        df.to_csv(out_path, index=False)
    else:
        raise ValueError(f"Unsupported export format: {out_path.suffix or out_path.name}")
    return len(df)
