"""Ad-hoc SQL access to the embedded SQLite database.

Used by support staff through the debug infos endpoints: queries come back as
CSV, updates report the number of affected rows.
"""
from __future__ import annotations

import csv
import io
import logging
import re
import sqlite3
from pathlib import Path

logger = logging.getLogger("diag_services.database")

KNOWN_TABLES = [
    "SEARCH",
    "SEARCHRESULT",
    "INDEXERSEARCH",
    "INDEXERAPIACCESS",
    "INDEXERAPIACCESS_SHORT",
    "INDEXERNZBDOWNLOAD",
]

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SqlExecutionError(RuntimeError):
    """Raised when the database rejects a statement."""


class Database:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    @property
    def url(self) -> str:
        return f"sqlite:///{self.path.as_posix()}"

    def _connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.path)

    def execute_sql_query(self, sql: str) -> str:
        """Run ``sql`` and return the result set as CSV with a header row."""

        logger.info('Executing SQL query "%s" and returning as CSV', sql)
        connection = self._connect()
        try:
            cursor = connection.execute(sql)
            header = [column[0] for column in cursor.description or []]
            rows = cursor.fetchall()
        except sqlite3.Error as exc:
            raise SqlExecutionError(str(exc)) from exc
        finally:
            connection.close()

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        if header:
            writer.writerow(header)
        writer.writerows(rows)
        return buffer.getvalue()

    def execute_sql_update(self, sql: str) -> str:
        """Run a modifying statement and return the affected row count as text."""

        logger.info('Executing SQL query "%s"', sql)
        connection = self._connect()
        try:
            with connection:
                cursor = connection.execute(sql)
            affected = cursor.rowcount
        except sqlite3.Error as exc:
            raise SqlExecutionError(str(exc)) from exc
        finally:
            connection.close()
        return str(max(affected, 0))

    def count_rows(self, table: str) -> int:
        if not _IDENTIFIER.match(table):
            raise ValueError(f"invalid table name: {table!r}")
        if not self.path.exists():
            raise FileNotFoundError(f"No database at {self.path}")

        connection = sqlite3.connect(self.path)
        try:
            (count,) = connection.execute(f"select count(*) from {table}").fetchone()
        except sqlite3.Error as exc:
            raise SqlExecutionError(str(exc)) from exc
        finally:
            connection.close()
        return count

    def folder_size(self) -> int | None:
        """Return the summed size of all files in the database folder in bytes."""

        folder = self.path.parent
        if not folder.exists():
            return None
        return sum(path.stat().st_size for path in folder.iterdir() if path.is_file())
