from __future__ import annotations

import json
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from .errors import InvalidIdentifierError

Logger = Callable[[str], None]

RESERVED_TABLES = frozenset({"executions", "parameters", "schema_migrations"})

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def check_identifier(name: Any) -> str:
    if not isinstance(name, str) or not _IDENT_RE.fullmatch(name):
        raise InvalidIdentifierError(f"Unsafe identifier: {name!r}")
    if name.lower().startswith("sqlite_"):
        raise InvalidIdentifierError(f"Identifier reserved by SQLite: {name!r}")
    return name


def quote_identifier(name: str) -> str:
    return f"\"{check_identifier(name)}\""


def check_table_name(name: Any) -> str:
    check_identifier(name)
    if name.lower() in RESERVED_TABLES:
        raise InvalidIdentifierError(f"Reserved table name: {name!r}")
    return name


def null_logger(msg: str) -> None:
    pass


def file_logger(path: Path) -> Logger:
    """Return a logger appending one line per message to `path`."""

    path = Path(path)

    def logger(msg: str) -> None:
        ensure_dir(path.parent)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(f"{now_iso()} {msg}\n")

    return logger


def env_flag(name: str) -> bool | None:
    raw = os.environ.get(name, "").strip().lower()
    if raw in {"0", "false", "no", "off"}:
        return False
    if raw in {"1", "true", "yes", "on"}:
        return True
    return None


_ENV_PLACEHOLDER_RE = re.compile(r"^\$\{ENV:([A-Z0-9_]+)\}$")


def resolve_env_placeholders(value: Any) -> Any:
    """Resolve `${ENV:NAME}` strings to their environment variable values."""

    if isinstance(value, str):
        match = _ENV_PLACEHOLDER_RE.match(value.strip())
        if not match:
            return value
        name = match.group(1)
        if name not in os.environ:
            raise ValueError(f"Missing environment variable: {name}")
        return os.environ[name]
    if isinstance(value, list):
        return [resolve_env_placeholders(item) for item in value]
    if isinstance(value, dict):
        return {k: resolve_env_placeholders(v) for k, v in value.items()}
    return value


def json_dumps(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2, sort_keys=True)
