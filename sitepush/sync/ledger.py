"""SQLite-backed ledger of source files that were pushed successfully.

A path is recorded once no matter how many targets accepted it; repeated
uploads only refresh its timestamp. The ledger is what an operator reads to
know which files of the working tree changed since it was last cleared.
"""

import sqlite3
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS changes (
    path        TEXT PRIMARY KEY,
    uploaded_at TEXT NOT NULL
)
"""

_UPSERT = """
INSERT INTO changes (path, uploaded_at) VALUES (?, ?)
ON CONFLICT(path) DO UPDATE SET uploaded_at = excluded.uploaded_at
"""


class ChangeLedger:
    """Persistent set of uploaded source paths.

    Usage::

        with ChangeLedger("/path/to/changes.db") as ledger:
            ledger.add("/home/user/site/index.html")
            for path in ledger.paths():
                print(path)
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_CREATE_TABLE)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "ChangeLedger":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def add(self, path: str) -> None:
        self.add_many([path])

    def add_many(self, paths: Iterable[str]) -> None:
        now = datetime.now(UTC).isoformat()
        self._conn.executemany(_UPSERT, [(p, now) for p in paths])
        self._conn.commit()

    def contains(self, path: str) -> bool:
        row = self._conn.execute("SELECT 1 FROM changes WHERE path = ?", (path,)).fetchone()
        return row is not None

    def paths(self) -> list[str]:
        """Return all recorded paths, oldest upload first."""
        rows = self._conn.execute(
            "SELECT path FROM changes ORDER BY uploaded_at ASC, path ASC"
        ).fetchall()
        return [row[0] for row in rows]

    def count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) FROM changes").fetchone()
        return row[0]

    def clear(self) -> int:
        """Forget every recorded path. Returns how many were removed."""
        cursor = self._conn.execute("DELETE FROM changes")
        self._conn.commit()
        return cursor.rowcount
