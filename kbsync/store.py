"""
Sync Store — SQLite Persistent Backend

Tables:
    projects           - Projects and sub-projects, unique on (slug, org)
    meetings           - One row per meeting document, unique on path
    meeting_projects   - Meeting ↔ project links (one primary)
    people             - Attendees and task owners
    meeting_attendees  - Meeting ↔ person links
    items              - Tasks, with their document source coordinate
    item_people        - Extra assignees of a task
    sync_events        - Audit log (append-only)

Transactions: the connection runs in autocommit mode and every mutation goes
through _atomic(), which opens ``BEGIN`` at depth 0 and a ``SAVEPOINT`` when
nested.  transaction() wraps a whole batch; savepoint() isolates one entity
inside it, so a failing entity rolls back alone.

Timestamps: sync-side writes (``synced_hash=`` given) set ``updated_at`` and
``last_synced_at`` to the same instant.  User-side writes only move
``updated_at``, which is how the conflict detector sees "db changed".

Thread safety: uses sqlite3 check_same_thread=False with a re-entrant lock.
All mutations create audit events automatically.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from kbsync.errors import NotFoundError
from kbsync.status import ITEM_STATUSES, PROJECT_STATUSES
from kbsync.types import (
    ItemRecord,
    MeetingRecord,
    PersonRecord,
    ProjectRecord,
    _now_iso,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS projects (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    slug        TEXT NOT NULL,
    org         TEXT NOT NULL DEFAULT '',
    name        TEXT NOT NULL,
    status      TEXT,
    priority    INTEGER,
    parent_id   INTEGER REFERENCES projects(id),
    source_path TEXT,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    UNIQUE (slug, org)
);

CREATE TABLE IF NOT EXISTS meetings (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    path           TEXT NOT NULL UNIQUE,
    title          TEXT NOT NULL,
    date           TEXT,
    org            TEXT,
    status         TEXT,
    file_hash      TEXT,
    last_synced_at TEXT,
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS meeting_projects (
    meeting_id INTEGER NOT NULL REFERENCES meetings(id),
    project_id INTEGER NOT NULL REFERENCES projects(id),
    is_primary INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (meeting_id, project_id)
);

CREATE TABLE IF NOT EXISTS people (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    name       TEXT NOT NULL UNIQUE COLLATE NOCASE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS meeting_attendees (
    meeting_id INTEGER NOT NULL REFERENCES meetings(id),
    person_id  INTEGER NOT NULL REFERENCES people(id),
    PRIMARY KEY (meeting_id, person_id)
);

CREATE TABLE IF NOT EXISTS items (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    title             TEXT NOT NULL,
    description       TEXT,
    status            TEXT NOT NULL DEFAULT 'pending',
    due_date          TEXT,
    project_id        INTEGER REFERENCES projects(id),
    owner_id          INTEGER REFERENCES people(id),
    source_type       TEXT,
    source_path       TEXT,
    source_line       INTEGER,
    source_meeting_id INTEGER REFERENCES meetings(id),
    section           TEXT,
    phase             TEXT,
    file_hash         TEXT,           -- digest of the source line at last sync
    last_synced_at    TEXT,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL,
    completed_at      TEXT,
    deleted_at        TEXT
);

CREATE TABLE IF NOT EXISTS item_people (
    item_id   INTEGER NOT NULL REFERENCES items(id),
    person_id INTEGER NOT NULL REFERENCES people(id),
    role      TEXT NOT NULL DEFAULT 'assignee',
    PRIMARY KEY (item_id, person_id, role)
);

CREATE TABLE IF NOT EXISTS sync_events (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    action       TEXT NOT NULL,
    entity       TEXT NOT NULL,
    entity_id    INTEGER,
    details_json TEXT NOT NULL DEFAULT '{}',
    timestamp    TEXT NOT NULL
);

-- Schema metadata for forward compatibility
CREATE TABLE IF NOT EXISTS schema_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_items_source ON items(source_path, source_line);
CREATE INDEX IF NOT EXISTS idx_items_meeting ON items(source_meeting_id);
CREATE INDEX IF NOT EXISTS idx_items_status ON items(status);
CREATE INDEX IF NOT EXISTS idx_projects_parent ON projects(parent_id);
CREATE INDEX IF NOT EXISTS idx_events_entity ON sync_events(entity, entity_id);
"""

_PROJECT_FIELDS = {"name", "status", "priority", "parent_id", "source_path"}
_MEETING_FIELDS = {"title", "date", "org", "status", "file_hash"}
_ITEM_FIELDS = {
    "title", "description", "status", "due_date", "project_id", "owner_id",
    "source_type", "source_path", "source_line", "source_meeting_id",
    "section", "phase",
}


def _later_than(ts: Optional[str]) -> str:
    """Now, but strictly after ``ts`` even on a coarse clock."""
    now = _now_iso()
    if ts and now <= ts:
        try:
            now = (datetime.fromisoformat(ts) + timedelta(microseconds=1)).isoformat()
        except ValueError:
            pass
    return now


# ---------------------------------------------------------------------------
# SyncStore
# ---------------------------------------------------------------------------

class SyncStore:
    """
    SQLite-backed store for projects, meetings, people and items.

    Thread-safe via a re-entrant lock. All mutations create audit events.
    """

    def __init__(self, db_path: str = ":memory:", wal_mode: bool = True):
        """Open (and create if needed) the store.

        Args:
            db_path: SQLite database path (or ":memory:" for in-memory).
            wal_mode: Enable WAL journal mode for concurrent readers.
        """
        self._db_path = db_path
        self._lock = threading.RLock()
        self._depth = 0
        self._rollback_listeners: List[Callable[[], None]] = []
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            db_path, check_same_thread=False, isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        if wal_mode and db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA_SQL)
        with self._atomic():
            self._conn.execute(
                "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('schema_version', ?)",
                (str(SCHEMA_VERSION),),
            )
            self._conn.execute(
                "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('created_by', 'kbsync')",
            )
            self._conn.execute(
                "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('created_at', datetime('now'))",
            )
        logger.info("SyncStore initialized: %s", db_path)

    @property
    def db_path(self) -> str:
        return self._db_path

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self) -> SyncStore:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- Transactions ------------------------------------------------------

    def add_rollback_listener(self, fn: Callable[[], None]) -> None:
        """Call ``fn`` whenever a transaction or savepoint rolls back."""
        self._rollback_listeners.append(fn)

    def remove_rollback_listener(self, fn: Callable[[], None]) -> None:
        if fn in self._rollback_listeners:
            self._rollback_listeners.remove(fn)

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def _atomic(self) -> Iterator[SyncStore]:
        with self._lock:
            depth = self._depth
            name = f"sp_{depth}"
            if depth == 0:
                self._conn.execute("BEGIN")
            else:
                self._conn.execute(f"SAVEPOINT {name}")
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth = depth
                if depth == 0:
                    self._conn.execute("ROLLBACK")
                else:
                    self._conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
                    self._conn.execute(f"RELEASE SAVEPOINT {name}")
                for fn in list(self._rollback_listeners):
                    fn()
                raise
            else:
                self._depth = depth
                if depth == 0:
                    self._conn.execute("COMMIT")
                else:
                    self._conn.execute(f"RELEASE SAVEPOINT {name}")

    @contextmanager
    def transaction(self) -> Iterator[SyncStore]:
        """Run a batch atomically (BEGIN/COMMIT, ROLLBACK on error)."""
        with self._atomic() as store:
            yield store

    @contextmanager
    def savepoint(self) -> Iterator[SyncStore]:
        """Isolate one entity's writes inside an enclosing transaction.

        An exception rolls back only this savepoint and is re-raised; the
        enclosing transaction stays usable.
        """
        with self._atomic() as store:
            yield store

    # -- Projects ----------------------------------------------------------

    def find_project(self, slug: str, org: Optional[str]) -> Optional[ProjectRecord]:
        """Look up a project by its composite key (slug, org)."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM projects WHERE slug=? AND org=?", (slug, org or ""),
            ).fetchone()
            return ProjectRecord.from_row(row) if row else None

    def find_project_any_org(self, slug: str) -> Optional[ProjectRecord]:
        """First project with this slug in any org (lowest id)."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM projects WHERE slug=? ORDER BY id LIMIT 1", (slug,),
            ).fetchone()
            return ProjectRecord.from_row(row) if row else None

    def get_project(self, project_id: int) -> Optional[ProjectRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM projects WHERE id=?", (project_id,),
            ).fetchone()
            return ProjectRecord.from_row(row) if row else None

    def list_projects(self, org: Optional[str] = None) -> List[ProjectRecord]:
        with self._lock:
            if org is None:
                rows = self._conn.execute(
                    "SELECT * FROM projects ORDER BY org, slug"
                ).fetchall()
            else:
                rows = self._conn.execute(
                    "SELECT * FROM projects WHERE org=? ORDER BY slug", (org,),
                ).fetchall()
            return [ProjectRecord.from_row(r) for r in rows]

    def create_project(
        self,
        slug: str,
        org: Optional[str],
        name: str,
        *,
        status: Optional[str] = None,
        priority: Optional[int] = None,
        parent_id: Optional[int] = None,
        source_path: Optional[str] = None,
    ) -> ProjectRecord:
        """Insert a project. Raises sqlite3.IntegrityError on a duplicate key."""
        if status is not None and status not in PROJECT_STATUSES:
            raise ValueError(f"Invalid project status: {status!r}")
        now = _now_iso()
        with self._atomic():
            cur = self._conn.execute(
                """INSERT INTO projects
                   (slug, org, name, status, priority, parent_id, source_path,
                    created_at, updated_at)
                   VALUES (?,?,?,?,?,?,?,?,?)""",
                (slug, org or "", name, status, priority, parent_id, source_path, now, now),
            )
            project_id = cur.lastrowid
            self._log_event("create", "project", project_id, {"slug": slug, "org": org})
        return self.get_project(project_id)

    def update_project(self, project_id: int, **fields: Any) -> ProjectRecord:
        """Patch a project. Unknown fields raise ValueError."""
        unknown = set(fields) - _PROJECT_FIELDS
        if unknown:
            raise ValueError(f"Cannot update project fields: {sorted(unknown)}")
        status = fields.get("status")
        if status is not None and status not in PROJECT_STATUSES:
            raise ValueError(f"Invalid project status: {status!r}")
        with self._atomic():
            self._update_row("projects", project_id, fields, _now_iso())
            self._log_event("update", "project", project_id, {"fields": sorted(fields)})
        record = self.get_project(project_id)
        if record is None:
            raise NotFoundError(f"Project not found: {project_id}")
        return record

    # -- Meetings ----------------------------------------------------------

    def find_meeting(self, path: str) -> Optional[MeetingRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM meetings WHERE path=?", (path,),
            ).fetchone()
            return MeetingRecord.from_row(row) if row else None

    def get_meeting(self, meeting_id: int) -> Optional[MeetingRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM meetings WHERE id=?", (meeting_id,),
            ).fetchone()
            return MeetingRecord.from_row(row) if row else None

    def create_meeting(
        self,
        path: str,
        title: str,
        *,
        date: Optional[str] = None,
        org: Optional[str] = None,
        status: Optional[str] = None,
        file_hash: Optional[str] = None,
    ) -> MeetingRecord:
        now = _now_iso()
        with self._atomic():
            cur = self._conn.execute(
                """INSERT INTO meetings
                   (path, title, date, org, status, file_hash, last_synced_at,
                    created_at, updated_at)
                   VALUES (?,?,?,?,?,?,?,?,?)""",
                (path, title, date, org, status, file_hash, now, now, now),
            )
            meeting_id = cur.lastrowid
            self._log_event("create", "meeting", meeting_id, {"path": path})
        return self.get_meeting(meeting_id)

    def update_meeting(self, meeting_id: int, **fields: Any) -> MeetingRecord:
        """Patch a meeting; always a sync-side write."""
        unknown = set(fields) - _MEETING_FIELDS
        if unknown:
            raise ValueError(f"Cannot update meeting fields: {sorted(unknown)}")
        now = _now_iso()
        with self._atomic():
            self._update_row(
                "meetings", meeting_id, dict(fields, last_synced_at=now), now,
            )
            self._log_event("update", "meeting", meeting_id, {"fields": sorted(fields)})
        record = self.get_meeting(meeting_id)
        if record is None:
            raise NotFoundError(f"Meeting not found: {meeting_id}")
        return record

    def link_meeting_project(
        self, meeting_id: int, project_id: int, *, primary: bool = False,
    ) -> bool:
        """Link a meeting to a project. Returns True if a new link was made."""
        with self._atomic():
            cur = self._conn.execute(
                "INSERT OR IGNORE INTO meeting_projects (meeting_id, project_id, is_primary) "
                "VALUES (?,?,?)",
                (meeting_id, project_id, int(primary)),
            )
            return cur.rowcount > 0

    def meeting_project_ids(self, meeting_id: int) -> List[int]:
        """Linked project ids, primary first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT project_id FROM meeting_projects WHERE meeting_id=? "
                "ORDER BY is_primary DESC, project_id",
                (meeting_id,),
            ).fetchall()
            return [r["project_id"] for r in rows]

    # -- People ------------------------------------------------------------

    def find_person(self, name: str) -> Optional[PersonRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM people WHERE name=?", (name.strip(),),
            ).fetchone()
            return PersonRecord.from_row(row) if row else None

    def get_person(self, person_id: int) -> Optional[PersonRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM people WHERE id=?", (person_id,),
            ).fetchone()
            return PersonRecord.from_row(row) if row else None

    def create_person(self, name: str) -> PersonRecord:
        with self._atomic():
            cur = self._conn.execute(
                "INSERT INTO people (name, created_at) VALUES (?,?)",
                (name.strip(), _now_iso()),
            )
            person_id = cur.lastrowid
            self._log_event("create", "person", person_id, {"name": name.strip()})
        return self.get_person(person_id)

    def link_attendee(self, meeting_id: int, person_id: int) -> bool:
        with self._atomic():
            cur = self._conn.execute(
                "INSERT OR IGNORE INTO meeting_attendees (meeting_id, person_id) VALUES (?,?)",
                (meeting_id, person_id),
            )
            return cur.rowcount > 0

    def meeting_attendee_ids(self, meeting_id: int) -> List[int]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT person_id FROM meeting_attendees WHERE meeting_id=? ORDER BY person_id",
                (meeting_id,),
            ).fetchall()
            return [r["person_id"] for r in rows]

    def link_item_person(self, item_id: int, person_id: int, role: str = "assignee") -> bool:
        with self._atomic():
            cur = self._conn.execute(
                "INSERT OR IGNORE INTO item_people (item_id, person_id, role) VALUES (?,?,?)",
                (item_id, person_id, role),
            )
            return cur.rowcount > 0

    def item_people(self, item_id: int) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT p.id, p.name, ip.role FROM item_people ip "
                "JOIN people p ON p.id = ip.person_id WHERE ip.item_id=? ORDER BY p.id",
                (item_id,),
            ).fetchall()
            return [{"id": r["id"], "name": r["name"], "role": r["role"]} for r in rows]

    # -- Items -------------------------------------------------------------

    def get_item(self, item_id: int) -> Optional[ItemRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM items WHERE id=?", (item_id,),
            ).fetchone()
            return ItemRecord.from_row(row) if row else None

    def find_items_by_source(
        self, source_path: str, *, include_deleted: bool = False,
    ) -> List[ItemRecord]:
        """Items linked to a document, ordered by id."""
        sql = "SELECT * FROM items WHERE source_path=?"
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        with self._lock:
            rows = self._conn.execute(sql + " ORDER BY id", (source_path,)).fetchall()
            return [ItemRecord.from_row(r) for r in rows]

    def find_items_by_meeting(
        self, meeting_id: int, *, include_deleted: bool = True,
    ) -> List[ItemRecord]:
        sql = "SELECT * FROM items WHERE source_meeting_id=?"
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        with self._lock:
            rows = self._conn.execute(sql + " ORDER BY id", (meeting_id,)).fetchall()
            return [ItemRecord.from_row(r) for r in rows]

    def list_linked_items(self) -> List[ItemRecord]:
        """Live items that point at a document line."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM items WHERE deleted_at IS NULL AND source_path IS NOT NULL "
                "AND source_line IS NOT NULL ORDER BY source_path, source_line, id"
            ).fetchall()
            return [ItemRecord.from_row(r) for r in rows]

    def list_items(
        self,
        *,
        status: Optional[str] = None,
        project_id: Optional[int] = None,
        source_path: Optional[str] = None,
        limit: int = 100,
    ) -> List[ItemRecord]:
        conditions = ["deleted_at IS NULL"]
        params: list = []
        if status:
            conditions.append("status=?")
            params.append(status)
        if project_id is not None:
            conditions.append("project_id=?")
            params.append(project_id)
        if source_path:
            conditions.append("source_path=?")
            params.append(source_path)
        where = " AND ".join(conditions)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM items WHERE {where} ORDER BY id LIMIT ?",
                params + [limit],
            ).fetchall()
            return [ItemRecord.from_row(r) for r in rows]

    def create_item(
        self,
        title: str,
        *,
        status: str = "pending",
        synced_hash: Optional[str] = None,
        **fields: Any,
    ) -> ItemRecord:
        """Insert an item.

        With ``synced_hash`` the item is created as freshly synced from its
        document line: ``file_hash`` is set and ``last_synced_at`` equals
        ``updated_at``.
        """
        if status not in ITEM_STATUSES:
            raise ValueError(f"Invalid item status: {status!r}")
        unknown = set(fields) - _ITEM_FIELDS
        if unknown:
            raise ValueError(f"Cannot set item fields: {sorted(unknown)}")
        now = _now_iso()
        row = dict(fields, title=title, status=status, created_at=now, updated_at=now)
        if status == "complete":
            row["completed_at"] = now
        if synced_hash is not None:
            row["file_hash"] = synced_hash
            row["last_synced_at"] = now
        cols = sorted(row)
        with self._atomic():
            cur = self._conn.execute(
                f"INSERT INTO items ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})",
                [row[c] for c in cols],
            )
            item_id = cur.lastrowid
            self._log_event("create", "item", item_id, {
                "source_path": fields.get("source_path"),
                "source_line": fields.get("source_line"),
                "status": status,
            })
        return self.get_item(item_id)

    def update_item(
        self,
        item_id: int,
        *,
        synced_hash: Optional[str] = None,
        **fields: Any,
    ) -> ItemRecord:
        """Patch an item.

        With ``synced_hash`` this is a sync-side write: ``file_hash`` is
        replaced and ``last_synced_at`` is set to the new ``updated_at``.
        Without it only ``updated_at`` moves.
        """
        unknown = set(fields) - _ITEM_FIELDS
        if unknown:
            raise ValueError(f"Cannot update item fields: {sorted(unknown)}")
        current = self.get_item(item_id)
        if current is None:
            raise NotFoundError(f"Item not found: {item_id}")
        status = fields.get("status")
        if status is not None and status not in ITEM_STATUSES:
            raise ValueError(f"Invalid item status: {status!r}")

        patch = dict(fields)
        if synced_hash is not None:
            now = _later_than(current.updated_at)
            patch["file_hash"] = synced_hash
            patch["last_synced_at"] = now
        else:
            now = _later_than(current.last_synced_at)
        if status is not None and status != current.status:
            patch["completed_at"] = now if status == "complete" else None

        with self._atomic():
            self._update_row("items", item_id, patch, now)
            self._log_event("update", "item", item_id, {
                "fields": sorted(fields), "synced": synced_hash is not None,
            })
        return self.get_item(item_id)

    def set_item_status(self, item_id: int, status: str) -> ItemRecord:
        """User-side status change; never touches the sync fields."""
        return self.update_item(item_id, status=status)

    def relink_item(self, item_id: int, source_line: Optional[int]) -> ItemRecord:
        """Move an item's source line without counting as a change on either side."""
        with self._atomic():
            cur = self._conn.execute(
                "UPDATE items SET source_line=? WHERE id=?", (source_line, item_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"Item not found: {item_id}")
            self._log_event("relink", "item", item_id, {"source_line": source_line})
        return self.get_item(item_id)

    def mark_item_synced(self, item_id: int, file_hash: str) -> ItemRecord:
        """Record that document and store agree as of now."""
        current = self.get_item(item_id)
        if current is None:
            raise NotFoundError(f"Item not found: {item_id}")
        now = _later_than(current.updated_at)
        with self._atomic():
            self._conn.execute(
                "UPDATE items SET file_hash=?, last_synced_at=?, updated_at=? WHERE id=?",
                (file_hash, now, now, item_id),
            )
            self._log_event("synced", "item", item_id, {})
        return self.get_item(item_id)

    def delete_item(self, item_id: int) -> bool:
        """Soft-delete: set deleted_at, never physically remove."""
        with self._atomic():
            cur = self._conn.execute(
                "UPDATE items SET deleted_at=? WHERE id=? AND deleted_at IS NULL",
                (_now_iso(), item_id),
            )
            if cur.rowcount:
                self._log_event("delete", "item", item_id, {})
            return cur.rowcount > 0

    # -- Events (audit log) ------------------------------------------------

    def read_events(
        self,
        entity: Optional[str] = None,
        entity_id: Optional[int] = None,
        action: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """Query audit events, newest first."""
        conditions = []
        params: list = []
        if entity:
            conditions.append("entity=?")
            params.append(entity)
        if entity_id is not None:
            conditions.append("entity_id=?")
            params.append(entity_id)
        if action:
            conditions.append("action=?")
            params.append(action)
        where = " AND ".join(conditions) if conditions else "1=1"
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM sync_events WHERE {where} ORDER BY id DESC LIMIT ?",
                params + [limit],
            ).fetchall()
            return [
                {
                    "id": r["id"], "action": r["action"], "entity": r["entity"],
                    "entity_id": r["entity_id"],
                    "details": json.loads(r["details_json"]),
                    "timestamp": r["timestamp"],
                }
                for r in rows
            ]

    # -- Stats -------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        """Summary statistics for the store."""
        with self._lock:
            def count(sql: str) -> int:
                return self._conn.execute(sql).fetchone()[0]

            by_status = {
                r["status"]: r["cnt"] for r in self._conn.execute(
                    "SELECT status, COUNT(*) AS cnt FROM items "
                    "WHERE deleted_at IS NULL GROUP BY status"
                ).fetchall()
            }
            by_source = {
                (r["source_type"] or "manual"): r["cnt"] for r in self._conn.execute(
                    "SELECT source_type, COUNT(*) AS cnt FROM items "
                    "WHERE deleted_at IS NULL GROUP BY source_type"
                ).fetchall()
            }
            return {
                "projects": count("SELECT COUNT(*) FROM projects"),
                "sub_projects": count("SELECT COUNT(*) FROM projects WHERE parent_id IS NOT NULL"),
                "meetings": count("SELECT COUNT(*) FROM meetings"),
                "people": count("SELECT COUNT(*) FROM people"),
                "items": count("SELECT COUNT(*) FROM items WHERE deleted_at IS NULL"),
                "linked_items": count(
                    "SELECT COUNT(*) FROM items WHERE deleted_at IS NULL "
                    "AND source_path IS NOT NULL AND source_line IS NOT NULL"
                ),
                "items_by_status": by_status,
                "items_by_source": by_source,
                "events_count": count("SELECT COUNT(*) FROM sync_events"),
                "schema_version": SCHEMA_VERSION,
            }

    # -- Internal helpers --------------------------------------------------

    def _update_row(
        self, table: str, row_id: int, fields: Dict[str, Any], now: str,
    ) -> None:
        """UPDATE one row by id (must be called within _atomic)."""
        patch = dict(fields, updated_at=now)
        cols = sorted(patch)
        cur = self._conn.execute(
            f"UPDATE {table} SET {', '.join(c + '=?' for c in cols)} WHERE id=?",
            [patch[c] for c in cols] + [row_id],
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"{table[:-1].capitalize()} not found: {row_id}")

    def _log_event(
        self, action: str, entity: str, entity_id: Optional[int],
        details: Dict[str, Any],
    ) -> None:
        """Write an audit event (must be called within _atomic)."""
        self._conn.execute(
            """INSERT INTO sync_events
               (action, entity, entity_id, details_json, timestamp)
               VALUES (?,?,?,?,?)""",
            (action, entity, entity_id, json.dumps(details), _now_iso()),
        )
