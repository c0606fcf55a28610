from __future__ import annotations

import os
import re
import sqlite3
import threading
from typing import Dict, Generic, Iterator, List, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel


T = TypeVar("T", bound=BaseModel)

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


class Repository(Protocol[T]):
    """
    Persistence boundary for one record type, partitioned by a parent id
    (the data subject for personal data and consents).

    Items handed out are copies. A caller that changes an item must write it
    back with update().
    """

    def get_by_parent(self, parent_id: str) -> List[T]: ...

    def get_by_id(self, item_id: str) -> Optional[T]: ...

    def parent_of(self, item_id: str) -> Optional[str]: ...

    def insert(self, item: T) -> None: ...

    def update(self, item: T) -> None: ...

    def parents(self) -> List[str]: ...

    def iter_all(self) -> Iterator[T]: ...

    def count(self) -> int: ...


class InMemoryRepository(Generic[T]):
    def __init__(self, model: Type[T], *, id_attr: str, parent_attr: str):
        self.model = model
        self.id_attr = id_attr
        self.parent_attr = parent_attr
        self._lock = threading.RLock()
        self._by_parent: Dict[str, List[T]] = {}
        self._parent_of: Dict[str, str] = {}

    def _ids(self, item: T) -> tuple:
        return str(getattr(item, self.id_attr)), str(getattr(item, self.parent_attr))

    def get_by_parent(self, parent_id: str) -> List[T]:
        with self._lock:
            return [x.model_copy(deep=True) for x in self._by_parent.get(str(parent_id), [])]

    def get_by_id(self, item_id: str) -> Optional[T]:
        with self._lock:
            parent = self._parent_of.get(str(item_id))
            if parent is None:
                return None
            for x in self._by_parent.get(parent, []):
                if str(getattr(x, self.id_attr)) == str(item_id):
                    return x.model_copy(deep=True)
            return None

    def parent_of(self, item_id: str) -> Optional[str]:
        with self._lock:
            return self._parent_of.get(str(item_id))

    def insert(self, item: T) -> None:
        item_id, parent = self._ids(item)
        with self._lock:
            if item_id in self._parent_of:
                raise ValueError(f"duplicate id: {item_id}")
            self._by_parent.setdefault(parent, []).append(item.model_copy(deep=True))
            self._parent_of[item_id] = parent

    def update(self, item: T) -> None:
        item_id, parent = self._ids(item)
        with self._lock:
            if self._parent_of.get(item_id) != parent:
                raise KeyError(item_id)
            items = self._by_parent[parent]
            for i, x in enumerate(items):
                if str(getattr(x, self.id_attr)) == item_id:
                    items[i] = item.model_copy(deep=True)
                    return
            raise KeyError(item_id)

    def parents(self) -> List[str]:
        with self._lock:
            return [p for p, items in self._by_parent.items() if items]

    def iter_all(self) -> Iterator[T]:
        with self._lock:
            snapshot = [x.model_copy(deep=True) for items in self._by_parent.values() for x in items]
        return iter(snapshot)

    def count(self) -> int:
        with self._lock:
            return len(self._parent_of)


class SqliteRepository(Generic[T]):
    """
    SQLite-backed repository. One table per record type:
    (item_id PK, parent_id, created_at, payload_json).

    NOTES:
    - stdlib sqlite3, one short-lived connection per call
    - payload_json is the pydantic JSON dump; personal values inside it are
      already ciphertext or anonymized
    """

    def __init__(self, *, db_path: str, table: str, model: Type[T], id_attr: str, parent_attr: str):
        if not _TABLE_NAME.match(str(table)):
            raise ValueError(f"invalid table name: {table!r}")
        self.db_path = str(db_path)
        self.table = str(table)
        self.model = model
        self.id_attr = id_attr
        self.parent_attr = parent_attr
        self._lock = threading.Lock()
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
        self._init_db()

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
        except sqlite3.DatabaseError:
            # some filesystems refuse WAL; the default journal still works
            pass
        return conn

    def _init_db(self) -> None:
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self.table} (
                      item_id TEXT PRIMARY KEY,
                      parent_id TEXT NOT NULL,
                      created_at TEXT NOT NULL,
                      payload_json TEXT NOT NULL
                    );
                    """
                )
                conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{self.table}_parent ON {self.table}(parent_id);")
                conn.commit()
            finally:
                conn.close()

    def _row_to_item(self, row: sqlite3.Row) -> T:
        return self.model.model_validate_json(row["payload_json"])

    def _created_at(self, item: T) -> str:
        created = getattr(item, "created_at", None)
        return created.isoformat() if created is not None else ""

    def get_by_parent(self, parent_id: str) -> List[T]:
        with self._lock:
            conn = self._conn()
            try:
                rows = conn.execute(
                    f"SELECT payload_json FROM {self.table} WHERE parent_id=? ORDER BY rowid ASC", (str(parent_id),)
                ).fetchall()
            finally:
                conn.close()
        return [self._row_to_item(r) for r in rows]

    def get_by_id(self, item_id: str) -> Optional[T]:
        with self._lock:
            conn = self._conn()
            try:
                row = conn.execute(f"SELECT payload_json FROM {self.table} WHERE item_id=?", (str(item_id),)).fetchone()
            finally:
                conn.close()
        return self._row_to_item(row) if row else None

    def parent_of(self, item_id: str) -> Optional[str]:
        with self._lock:
            conn = self._conn()
            try:
                row = conn.execute(f"SELECT parent_id FROM {self.table} WHERE item_id=?", (str(item_id),)).fetchone()
            finally:
                conn.close()
        return str(row["parent_id"]) if row else None

    def insert(self, item: T) -> None:
        item_id = str(getattr(item, self.id_attr))
        parent = str(getattr(item, self.parent_attr))
        with self._lock:
            conn = self._conn()
            try:
                conn.execute(
                    f"INSERT INTO {self.table}(item_id, parent_id, created_at, payload_json) VALUES (?, ?, ?, ?)",
                    (item_id, parent, self._created_at(item), item.model_dump_json()),
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                raise ValueError(f"duplicate id: {item_id}") from e
            finally:
                conn.close()

    def update(self, item: T) -> None:
        item_id = str(getattr(item, self.id_attr))
        parent = str(getattr(item, self.parent_attr))
        with self._lock:
            conn = self._conn()
            try:
                cur = conn.execute(
                    f"UPDATE {self.table} SET payload_json=? WHERE item_id=? AND parent_id=?",
                    (item.model_dump_json(), item_id, parent),
                )
                conn.commit()
                changed = cur.rowcount
            finally:
                conn.close()
        if not changed:
            raise KeyError(item_id)

    def parents(self) -> List[str]:
        with self._lock:
            conn = self._conn()
            try:
                rows = conn.execute(
                    f"SELECT parent_id FROM {self.table} GROUP BY parent_id ORDER BY MIN(rowid) ASC"
                ).fetchall()
            finally:
                conn.close()
        return [str(r["parent_id"]) for r in rows]

    def iter_all(self) -> Iterator[T]:
        with self._lock:
            conn = self._conn()
            try:
                rows = conn.execute(f"SELECT payload_json FROM {self.table} ORDER BY rowid ASC").fetchall()
            finally:
                conn.close()
        return iter([self._row_to_item(r) for r in rows])

    def count(self) -> int:
        with self._lock:
            conn = self._conn()
            try:
                row = conn.execute(f"SELECT COUNT(*) AS n FROM {self.table}").fetchone()
            finally:
                conn.close()
        return int(row["n"] or 0)
