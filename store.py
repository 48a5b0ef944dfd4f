"""Local SQLite cache of Jira issues, components and worklog entries.

The cache can always be rebuilt from Jira with a sync, so an unreadable
database file is moved aside and replaced by an empty one.
"""

import sqlite3
import sys
from contextlib import contextmanager
from datetime import date, datetime, time
from pathlib import Path
from typing import Iterable, Iterator

from models import Component, Issue, WorklogEntry

SCHEMA = """
CREATE TABLE IF NOT EXISTS issue (
    key TEXT PRIMARY KEY,
    numeric_id INTEGER NOT NULL,
    summary TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS component (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS issue_component (
    issue_key TEXT NOT NULL,
    component_id INTEGER NOT NULL,
    FOREIGN KEY(issue_key) REFERENCES issue(key) ON DELETE CASCADE,
    FOREIGN KEY(component_id) REFERENCES component(id) ON DELETE CASCADE,
    UNIQUE(issue_key, component_id)
);

CREATE TABLE IF NOT EXISTS worklog (
    id INTEGER PRIMARY KEY,
    issue_key TEXT NOT NULL,
    author TEXT NOT NULL,
    started TEXT NOT NULL,
    duration_seconds INTEGER NOT NULL CHECK (duration_seconds >= 0),
    comment TEXT,
    FOREIGN KEY(issue_key) REFERENCES issue(key) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_worklog_issue_started ON worklog(issue_key, started);
"""


class LocalStoreError(Exception):
    """Reading or writing the local database failed."""


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.astimezone()
    return datetime.combine(value, time.min).astimezone()


def _timestamp(value: date | datetime) -> str:
    return _as_datetime(value).isoformat(timespec="seconds")


def _entry_from_row(row: sqlite3.Row) -> WorklogEntry:
    return WorklogEntry(
        entry_id=row["id"],
        issue_key=row["issue_key"],
        author=row["author"],
        started=datetime.fromisoformat(row["started"]),
        duration_seconds=row["duration_seconds"],
        comment=row["comment"],
    )


class WorklogStore:
    """The local worklog database.

    All writes go through one connection and each write operation is a
    single transaction, so other processes reading the file only ever see
    complete updates.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        try:
            self._conn = self._connect()
        except sqlite3.OperationalError as e:
            # Locked or not writable; the file itself may be fine
            raise LocalStoreError(f"Local store: cannot open {self.path}: {e}") from e
        except sqlite3.DatabaseError as e:
            if not self.path.is_file():
                raise LocalStoreError(f"Local store: cannot open {self.path}: {e}") from e
            print(
                f"[!] Local database {self.path} is unreadable ({e}), starting with an empty one. "
                "Run 'sync' to fill it again.",
                file=sys.stderr,
            )
            self._discard_file()
            try:
                self._conn = self._connect()
            except sqlite3.Error as e2:
                raise LocalStoreError(f"Local store: cannot create {self.path}: {e2}") from e2
        except OSError as e:
            raise LocalStoreError(f"Local store: cannot open {self.path}: {e}") from e

    def _connect(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        connection = sqlite3.connect(self.path)
        try:
            connection.row_factory = sqlite3.Row
            connection.execute("PRAGMA foreign_keys = ON")
            connection.execute("PRAGMA journal_mode = WAL")
            connection.executescript(SCHEMA)
        except sqlite3.Error:
            connection.close()
            raise
        return connection

    def _discard_file(self) -> None:
        corrupt = self.path.with_name(self.path.name + ".corrupt")
        self.path.replace(corrupt)
        for suffix in ("-wal", "-shm"):
            leftover = self.path.with_name(self.path.name + suffix)
            if leftover.exists():
                leftover.unlink()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "WorklogStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        try:
            with self._conn:
                yield self._conn
        except sqlite3.Error as e:
            raise LocalStoreError(f"Local store: unable to {action}: {e}") from e

    def _query(self, action: str, sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
        try:
            return self._conn.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as e:
            raise LocalStoreError(f"Local store: unable to {action}: {e}") from e

    # ------------------------------------------------------------------
    # Issues and components
    # ------------------------------------------------------------------

    def _write_issue(self, conn: sqlite3.Connection, issue: Issue) -> None:
        conn.execute(
            """
            INSERT INTO issue (key, numeric_id, summary) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET numeric_id = excluded.numeric_id, summary = excluded.summary
            """,
            (issue.key, issue.numeric_id, issue.summary),
        )

    def _write_component(self, conn: sqlite3.Connection, component: Component) -> None:
        conn.execute(
            "INSERT INTO component (id, name) VALUES (?, ?) "
            "ON CONFLICT(id) DO UPDATE SET name = excluded.name",
            (component.component_id, component.name),
        )

    def _write_issue_metadata(self, conn: sqlite3.Connection, issue: Issue) -> None:
        # Jira decides which components an issue has
        self._write_issue(conn, issue)
        conn.execute("DELETE FROM issue_component WHERE issue_key = ?", (issue.key,))
        for component in issue.components:
            self._write_component(conn, component)
            conn.execute(
                "INSERT OR IGNORE INTO issue_component (issue_key, component_id) VALUES (?, ?)",
                (issue.key, component.component_id),
            )

    def upsert_issue(self, issue: Issue) -> None:
        """Insert or refresh an issue together with its component links."""
        with self._transaction(f"store issue {issue.key}") as conn:
            self._write_issue_metadata(conn, issue)

    def upsert_component(self, component: Component) -> None:
        with self._transaction(f"store component {component.name}") as conn:
            self._write_component(conn, component)

    def link_issue_component(self, issue_key: str, component_id: int) -> None:
        with self._transaction(f"link {issue_key} to component {component_id}") as conn:
            conn.execute(
                "INSERT OR IGNORE INTO issue_component (issue_key, component_id) VALUES (?, ?)",
                (issue_key, component_id),
            )

    def components_for_issue(self, issue_key: str) -> list[Component]:
        rows = self._query(
            f"read components of {issue_key}",
            """
            SELECT c.id, c.name FROM component c
            JOIN issue_component ic ON ic.component_id = c.id
            WHERE ic.issue_key = ?
            ORDER BY c.name
            """,
            (issue_key,),
        )
        return [Component(component_id=row["id"], name=row["name"]) for row in rows]

    def get_issues(self, issue_keys: Iterable[str] | None = None) -> list[Issue]:
        """Cached issues, all of them when issue_keys is None."""
        sql = "SELECT key, numeric_id, summary FROM issue"
        params: list[str] = []
        if issue_keys is not None:
            params = list(issue_keys)
            if not params:
                return []
            sql += f" WHERE key IN ({', '.join('?' for _ in params)})"
        rows = self._query("read issues", sql + " ORDER BY key", params)
        return [
            Issue(
                key=row["key"],
                numeric_id=row["numeric_id"],
                summary=row["summary"],
                components=self.components_for_issue(row["key"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Worklog entries
    # ------------------------------------------------------------------

    def _write_entries(self, conn: sqlite3.Connection, entries: Iterable[WorklogEntry]) -> int:
        count = 0
        for entry in entries:
            conn.execute(
                """
                INSERT INTO worklog (id, issue_key, author, started, duration_seconds, comment)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    issue_key = excluded.issue_key,
                    author = excluded.author,
                    started = excluded.started,
                    duration_seconds = excluded.duration_seconds,
                    comment = excluded.comment
                """,
                (
                    entry.entry_id,
                    entry.issue_key,
                    entry.author,
                    _timestamp(entry.started),
                    entry.duration_seconds,
                    entry.comment,
                ),
            )
            count += 1
        return count

    def _delete_window(
        self,
        conn: sqlite3.Connection,
        issue_key: str,
        since: date | datetime,
        until: date | datetime | None,
        author: str | None,
    ) -> None:
        # Same lower bound as Jira's startedAfter, which includes since
        sql = "DELETE FROM worklog WHERE issue_key = ? AND julianday(started) >= julianday(?)"
        params: list[object] = [issue_key, _timestamp(since)]
        if until is not None:
            sql += " AND julianday(started) < julianday(?)"
            params.append(_timestamp(until))
        if author is not None:
            sql += " AND author = ?"
            params.append(author)
        conn.execute(sql, params)

    def upsert_entries(
        self,
        issue_key: str,
        entries: list[WorklogEntry],
        since: date | datetime | None = None,
        until: date | datetime | None = None,
        author: str | None = None,
    ) -> int:
        """Store the entries of one issue, keyed by their Jira id.

        With since given, the entries replace everything cached for the
        issue started at or after since (and before until, and written by author,
        when those are given). Entries outside that window are kept.
        The issue row must already exist.
        """
        for entry in entries:
            if entry.issue_key != issue_key:
                raise ValueError(f"Entry {entry.entry_id} belongs to {entry.issue_key}, not {issue_key}")

        with self._transaction(f"store worklogs for {issue_key}") as conn:
            if since is not None:
                self._delete_window(conn, issue_key, since, until, author)
            return self._write_entries(conn, entries)

    def replace_issue_window(
        self,
        issue: Issue,
        entries: list[WorklogEntry],
        since: date | datetime,
        until: date | datetime | None = None,
        author: str | None = None,
    ) -> int:
        """Refresh an issue and replace its fetched window in one transaction."""
        for entry in entries:
            if entry.issue_key != issue.key:
                raise ValueError(f"Entry {entry.entry_id} belongs to {entry.issue_key}, not {issue.key}")

        with self._transaction(f"store worklogs for {issue.key}") as conn:
            self._write_issue_metadata(conn, issue)
            self._delete_window(conn, issue.key, since, until, author)
            return self._write_entries(conn, entries)

    def record_entry(self, issue: Issue, entry: WorklogEntry) -> None:
        """Mirror an entry just accepted by Jira."""
        with self._transaction(f"store worklog {entry.entry_id}") as conn:
            self._write_issue_metadata(conn, issue)
            self._write_entries(conn, [entry])

    def delete_entry(self, entry_id: int) -> bool:
        with self._transaction(f"delete worklog {entry_id}") as conn:
            cursor = conn.execute("DELETE FROM worklog WHERE id = ?", (entry_id,))
            return cursor.rowcount > 0

    def get_entry(self, entry_id: int) -> WorklogEntry | None:
        rows = self._query(f"read worklog {entry_id}", "SELECT * FROM worklog WHERE id = ?", (entry_id,))
        return _entry_from_row(rows[0]) if rows else None

    def find_entries(
        self,
        issue_keys: Iterable[str] | None = None,
        since: date | datetime | None = None,
        until: date | datetime | None = None,
        author: str | None = None,
    ) -> list[WorklogEntry]:
        """Entries started in [since, until), ordered by start."""
        conditions: list[str] = []
        params: list[object] = []
        if issue_keys is not None:
            keys = list(issue_keys)
            if not keys:
                return []
            conditions.append(f"issue_key IN ({', '.join('?' for _ in keys)})")
            params.extend(keys)
        if since is not None:
            conditions.append("julianday(started) >= julianday(?)")
            params.append(_timestamp(since))
        if until is not None:
            conditions.append("julianday(started) < julianday(?)")
            params.append(_timestamp(until))
        if author is not None:
            conditions.append("author = ?")
            params.append(author)

        sql = "SELECT * FROM worklog"
        if conditions:
            sql += f" WHERE {' AND '.join(conditions)}"
        sql += " ORDER BY julianday(started), id"
        return [_entry_from_row(row) for row in self._query("read worklogs", sql, params)]

    def distinct_issue_keys(self) -> list[str]:
        """Issue keys with cached entries, most used first."""
        rows = self._query(
            "read issue keys",
            """
            SELECT issue_key FROM worklog
            GROUP BY issue_key
            ORDER BY COUNT(*) DESC, MAX(julianday(started)) DESC, issue_key
            """,
        )
        return [row["issue_key"] for row in rows]
