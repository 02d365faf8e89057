from __future__ import annotations

import copy
import json
import os
import sqlite3
import uuid
from typing import Any

from .models import resource_from_dict
from .settings import settings
from .store import AlreadyExists, Conflict, NotFound, Store, StoreUnavailable, utc_now


def _resolve_db_path(path: str | None = None) -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (e.g. a bind mount that did not exist
    yet and was created as a directory), the DB file is placed inside it.
    """

    p = os.path.abspath(path or settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "tcr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect(path: str | None = None) -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(path), check_same_thread=False, timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(path: str | None = None) -> None:
    """Create tables if they do not exist."""
    with connect(path) as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS resources (
              kind TEXT NOT NULL,
              namespace TEXT NOT NULL,
              name TEXT NOT NULL,
              uid TEXT NOT NULL UNIQUE,
              resource_version INTEGER NOT NULL,
              body TEXT NOT NULL, -- JSON document
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL,
              PRIMARY KEY(kind, namespace, name)
            );

            CREATE TABLE IF NOT EXISTS resource_index (
              kind TEXT NOT NULL,
              index_key TEXT NOT NULL,
              value TEXT NOT NULL,
              namespace TEXT NOT NULL,
              name TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              namespace TEXT,
              name TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_resource_index_lookup ON resource_index(kind, index_key, value);
            CREATE INDEX IF NOT EXISTS idx_resource_index_object ON resource_index(kind, namespace, name);
            """
        )


def log_event(
    level: str,
    message: str,
    namespace: str | None = None,
    name: str | None = None,
    path: str | None = None,
) -> None:
    with connect(path) as conn:
        conn.execute(
            "INSERT INTO events (ts, level, namespace, name, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), namespace, name, message),
        )


def latest_events(limit: int = 100, path: str | None = None) -> list[dict[str, Any]]:
    with connect(path) as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


def _row_to_resource(row: sqlite3.Row) -> Any:
    return resource_from_dict(json.loads(row["body"]))


class SqliteStore(Store):
    """Store backed by the same SQLite database as the event log.

    Index rows live in ``resource_index`` and are rewritten in the same
    transaction as the object they describe.
    """

    def __init__(self, path: str | None = None):
        super().__init__()
        self.path = path
        init_db(path)

    def _connect(self) -> sqlite3.Connection:
        return connect(self.path)

    def log_event(self, level: str, message: str, namespace: str | None = None, name: str | None = None) -> None:
        log_event(level, message, namespace=namespace, name=name, path=self.path)

    def latest_events(self, limit: int = 100) -> list[dict[str, Any]]:
        return latest_events(limit, path=self.path)

    def _get(self, kind: str, namespace: str, name: str) -> Any:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT body FROM resources WHERE kind=? AND namespace=? AND name=?",
                    (kind, namespace, name),
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"get {kind} {namespace}/{name}: {e}") from e
        if not row:
            raise NotFound(kind, namespace, name)
        return _row_to_resource(row)

    def _list(self, kind: str, namespace: str | None, index: tuple[str, str] | None) -> list[Any]:
        sql = "SELECT r.body FROM resources r"
        params: list[Any] = []
        where = ["r.kind=?"]
        params.append(kind)
        if index is not None:
            sql += (
                " JOIN resource_index i"
                " ON i.kind = r.kind AND i.namespace = r.namespace AND i.name = r.name"
            )
            where.append("i.index_key=? AND i.value=?")
            params.extend(index)
        if namespace is not None:
            where.append("r.namespace=?")
            params.append(namespace)
        sql += " WHERE " + " AND ".join(where) + " ORDER BY r.namespace, r.name"
        try:
            with self._connect() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"list {kind}: {e}") from e
        return [_row_to_resource(r) for r in rows]

    def _create(self, obj: Any) -> Any:
        obj = copy.deepcopy(obj)
        meta = obj.metadata
        meta.uid = str(uuid.uuid4())
        meta.resource_version = 1
        meta.created_at = utc_now()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO resources (kind, namespace, name, uid, resource_version, body, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        obj.kind,
                        meta.namespace,
                        meta.name,
                        meta.uid,
                        meta.resource_version,
                        json.dumps(obj.to_dict()),
                        meta.created_at,
                        meta.created_at,
                    ),
                )
                self._write_index_rows(conn, obj)
        except sqlite3.IntegrityError as e:
            raise AlreadyExists(f"{obj.kind} {meta.namespace}/{meta.name} already exists") from e
        except sqlite3.Error as e:
            raise StoreUnavailable(f"create {obj.kind} {meta.namespace}/{meta.name}: {e}") from e
        return self._get(obj.kind, meta.namespace, meta.name)

    def _update(self, obj: Any) -> Any:
        obj = copy.deepcopy(obj)
        meta = obj.metadata
        try:
            with self._connect() as conn:
                current = conn.execute(
                    "SELECT uid, resource_version, created_at FROM resources WHERE kind=? AND namespace=? AND name=?",
                    (obj.kind, meta.namespace, meta.name),
                ).fetchone()
                if not current:
                    raise NotFound(obj.kind, meta.namespace, meta.name)
                # resource_version 0 means an unconditional write
                expected = meta.resource_version or current["resource_version"]
                meta.uid = current["uid"]
                meta.created_at = current["created_at"]
                meta.resource_version = expected + 1
                cur = conn.execute(
                    """
                    UPDATE resources
                    SET resource_version=?, body=?, updated_at=?
                    WHERE kind=? AND namespace=? AND name=? AND resource_version=?
                    """,
                    (
                        meta.resource_version,
                        json.dumps(obj.to_dict()),
                        utc_now(),
                        obj.kind,
                        meta.namespace,
                        meta.name,
                        expected,
                    ),
                )
                if cur.rowcount == 0:
                    raise Conflict(
                        f"{obj.kind} {meta.namespace}/{meta.name} was modified "
                        f"(have {expected}, store has {current['resource_version']})"
                    )
                self._delete_index_rows(conn, obj.kind, meta.namespace, meta.name)
                self._write_index_rows(conn, obj)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"update {obj.kind} {meta.namespace}/{meta.name}: {e}") from e
        return self._get(obj.kind, meta.namespace, meta.name)

    def _delete(self, kind: str, namespace: str, name: str) -> Any:
        current = self._get(kind, namespace, name)
        try:
            with self._connect() as conn:
                cur = conn.execute(
                    "DELETE FROM resources WHERE kind=? AND namespace=? AND name=?",
                    (kind, namespace, name),
                )
                if cur.rowcount == 0:
                    raise NotFound(kind, namespace, name)
                self._delete_index_rows(conn, kind, namespace, name)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"delete {kind} {namespace}/{name}: {e}") from e
        return current

    def _reindex(self, kind: str, key: str) -> None:
        fn = self._indexer(kind, key)
        objs = self._list(kind, None, None)
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM resource_index WHERE kind=? AND index_key=?", (kind, key))
                for obj in objs:
                    for value in fn(obj) or []:
                        conn.execute(
                            "INSERT INTO resource_index (kind, index_key, value, namespace, name) VALUES (?, ?, ?, ?, ?)",
                            (kind, key, value, obj.metadata.namespace, obj.metadata.name),
                        )
        except sqlite3.Error as e:
            raise StoreUnavailable(f"reindex {kind} {key}: {e}") from e

    def _write_index_rows(self, conn: sqlite3.Connection, obj: Any) -> None:
        for key, value in self._index_values(obj):
            conn.execute(
                "INSERT INTO resource_index (kind, index_key, value, namespace, name) VALUES (?, ?, ?, ?, ?)",
                (obj.kind, key, value, obj.metadata.namespace, obj.metadata.name),
            )

    def _delete_index_rows(self, conn: sqlite3.Connection, kind: str, namespace: str, name: str) -> None:
        conn.execute(
            "DELETE FROM resource_index WHERE kind=? AND namespace=? AND name=?",
            (kind, namespace, name),
        )


def event_recorder(store: Store):
    """Event log writer for a store: its own database for ``SqliteStore``, else ``TCR_DB_PATH``."""
    if isinstance(store, SqliteStore):
        return store.log_event
    return log_event
