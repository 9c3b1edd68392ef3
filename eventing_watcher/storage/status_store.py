from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Iterable

import structlog


SCHEMA_VERSION = 1

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StatusRecord:
    function_name: str
    status: str
    message: str
    timestamp: int  # epoch milliseconds

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _row_to_record(row: sqlite3.Row) -> StatusRecord:
    return StatusRecord(
        function_name=str(row["function_name"]),
        status=str(row["status"]),
        message=str(row["message"] or ""),
        timestamp=int(row["timestamp"]),
    )


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing db_path")
    if p != ":memory:":
        Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000;")
    # WAL lets the health endpoint read while a pass is appending.
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.DatabaseError:
        pass
    return conn


def _ensure_schema_conn(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return
    if cur == 0:
        _apply_v1(conn)
        conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),))
        return
    raise RuntimeError(f"Unsupported schema version upgrade path cur={cur} target={SCHEMA_VERSION}")


def _apply_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS function_status (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          function_name TEXT NOT NULL,
          status TEXT NOT NULL,
          message TEXT,
          timestamp INTEGER NOT NULL
        );
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_function_status_name_ts ON function_status(function_name, timestamp DESC);"
    )


class StatusStore:
    """
    Append-only history of function verdicts.

    For each function name the row with the greatest timestamp is the latest
    status; ties go to the row inserted last. Rows are never updated. Every call
    opens its own connection, so the store is safe to use from worker threads.
    Reads never create or migrate the schema; run `ensure_schema` at startup.
    """

    def __init__(self, db_path: str):
        self.db_path = str(db_path)

    def ensure_schema(self) -> None:
        conn = _connect(self.db_path)
        try:
            _ensure_schema_conn(conn)
        finally:
            conn.close()

    def append_status(self, function_name: str, status: str, message: str, timestamp: int) -> None:
        if not function_name:
            raise ValueError("function_name is required")
        conn = _connect(self.db_path)
        try:
            _ensure_schema_conn(conn)
            conn.execute(
                "INSERT INTO function_status (function_name, status, message, timestamp) VALUES (?, ?, ?, ?)",
                (str(function_name), str(status), str(message or ""), int(timestamp)),
            )
        finally:
            conn.close()
        logger.debug("Function status recorded", function_name=function_name, status=status)

    def get_latest(self, function_name: str) -> StatusRecord | None:
        conn = _connect(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT function_name, status, message, timestamp
                FROM function_status
                WHERE function_name=?
                ORDER BY timestamp DESC, id DESC
                LIMIT 1
                """,
                (str(function_name),),
            ).fetchone()
        finally:
            conn.close()
        return _row_to_record(row) if row else None

    def get_all_latest(self) -> list[StatusRecord]:
        conn = _connect(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT fs.function_name, fs.status, fs.message, fs.timestamp
                FROM function_status fs
                WHERE fs.id = (
                  SELECT f2.id FROM function_status f2
                  WHERE f2.function_name = fs.function_name
                  ORDER BY f2.timestamp DESC, f2.id DESC
                  LIMIT 1
                )
                ORDER BY fs.function_name ASC
                """
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_record(r) for r in rows]

    def history(self, function_name: str, *, limit: int = 50) -> list[StatusRecord]:
        limit = max(1, min(int(limit), 1000))
        conn = _connect(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT function_name, status, message, timestamp
                FROM function_status
                WHERE function_name=?
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
                """,
                (str(function_name), limit),
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_record(r) for r in rows]

    def count_rows(self, function_name: str | None = None) -> int:
        conn = _connect(self.db_path)
        try:
            if function_name is None:
                row = conn.execute("SELECT COUNT(*) AS n FROM function_status").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) AS n FROM function_status WHERE function_name=?", (str(function_name),)
                ).fetchone()
        finally:
            conn.close()
        return int(row["n"] or 0)

    def delete_not_in(self, function_names: Iterable[str]) -> int:
        """Delete every row whose function name is not in `function_names`. Returns rows removed."""
        keep = sorted({str(n) for n in function_names if n})
        conn = _connect(self.db_path)
        try:
            _ensure_schema_conn(conn)
            if keep:
                placeholders = ",".join("?" for _ in keep)
                cur = conn.execute(
                    f"DELETE FROM function_status WHERE function_name NOT IN ({placeholders})",
                    keep,
                )
            else:
                cur = conn.execute("DELETE FROM function_status")
            removed = int(cur.rowcount or 0)
        finally:
            conn.close()
        if removed:
            logger.info("Removed status rows for decommissioned functions", rows=removed, live=len(keep))
        return removed
