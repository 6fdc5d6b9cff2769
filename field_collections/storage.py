"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

Mutations that must land together run inside ``atomic()``: the backend lock is
held for the whole unit, nested units become savepoints, and any exception
rolls the unit back so a half-applied write is never observable.
Versioned records use ``save_versioned`` as a compare-and-swap on ``version``.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Tuple, Union
from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager
import json
import sqlite3
import threading

from .exceptions import StaleState


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    def __init__(self):
        self._lock = threading.RLock()
        self._depth = 0

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in insertion order"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records whose fields equal every filter value"""
        pass

    @abstractmethod
    def _compare_and_swap(self, table: str, record_id: str, data: Dict[str, Any],
                          expected_version: int) -> bool:
        """Write data only if the stored version equals expected_version"""
        pass

    @abstractmethod
    def _begin(self, depth: int) -> None:
        pass

    @abstractmethod
    def _commit(self, depth: int) -> None:
        pass

    @abstractmethod
    def _rollback(self, depth: int) -> None:
        pass

    def close(self) -> None:
        """Close storage connection"""
        pass

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        return self.load(table, record_id) is not None

    def count(self, table: str) -> int:
        """Count records in table"""
        return len(self.load_all(table))

    def save_versioned(self, table: str, record_id: str, data: Dict[str, Any],
                       expected_version: int) -> int:
        """
        Optimistic write: persist data only if the stored record is still at
        expected_version (0 for a record that must not exist yet).

        Returns:
            The new version written

        Raises:
            StaleState: If another writer got there first
        """
        new_version = expected_version + 1
        payload = dict(data)
        payload['version'] = new_version
        with self._lock:
            if not self._compare_and_swap(table, record_id, payload, expected_version):
                current = self.load(table, record_id)
                actual = current.get('version', 0) if current else 0
                raise StaleState(
                    f"{table} record {record_id} changed concurrently "
                    f"(expected version {expected_version}, found {actual})",
                    entity_type=table, entity_id=record_id,
                    expected_version=expected_version, actual_version=actual
                )
        return new_version

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations; nests as savepoints"""
        with self._lock:
            self._depth += 1
            depth = self._depth
            self._begin(depth)
            try:
                yield
            except BaseException:
                self._rollback(depth)
                self._depth -= 1
                raise
            else:
                self._commit(depth)
                self._depth -= 1


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        # One undo frame per open atomic unit: (table, record_id, previous row or None)
        self._undo: List[List[Tuple[str, str, Optional[Dict[str, Any]]]]] = []

    def _ensure_table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(table, {})

    @staticmethod
    def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
        # JSON round trip: callers never share references with stored rows
        return json.loads(json.dumps(data, default=str))

    def _remember(self, table: str, record_id: str) -> None:
        if self._undo:
            self._undo[-1].append((table, record_id, self._ensure_table(table).get(record_id)))

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._remember(table, record_id)
            self._ensure_table(table)[record_id] = self._copy(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._ensure_table(table).get(record_id)
            return self._copy(record) if record is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [self._copy(record) for record in self._ensure_table(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            rows = self._ensure_table(table)
            if record_id in rows:
                self._remember(table, record_id)
                del rows[record_id]
                return True
            return False

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            results = []
            for record in self._ensure_table(table).values():
                if all(key in record and record[key] == value
                       for key, value in filters.items()):
                    results.append(self._copy(record))
            return results

    def _compare_and_swap(self, table: str, record_id: str, data: Dict[str, Any],
                          expected_version: int) -> bool:
        rows = self._ensure_table(table)
        current = rows.get(record_id)
        current_version = current.get('version', 0) if current else 0
        if current is None and expected_version != 0:
            return False
        if current_version != expected_version:
            return False
        self._remember(table, record_id)
        rows[record_id] = self._copy(data)
        return True

    def _begin(self, depth: int) -> None:
        self._undo.append([])

    def _commit(self, depth: int) -> None:
        frame = self._undo.pop()
        if self._undo:
            # A committed savepoint is still undone if its parent rolls back
            self._undo[-1].extend(frame)

    def _rollback(self, depth: int) -> None:
        frame = self._undo.pop()
        for table, record_id, previous in reversed(frame):
            rows = self._ensure_table(table)
            if previous is None:
                rows.pop(record_id, None)
            else:
                rows[record_id] = previous


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        super().__init__()
        self.db_path = str(db_path)
        # Autocommit mode: transactions are opened explicitly by atomic()
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False,
                                           isolation_level=None)
        self._connection.row_factory = sqlite3.Row
        self._known_tables = set()

        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._known_tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._known_tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            self._connection.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, json.dumps(data, default=str), now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
            return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"SELECT data FROM {table} ORDER BY seq")
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"DELETE FROM {table} WHERE id = ?", (record_id,)
            )
            return cursor.rowcount > 0

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            conditions = []
            params: List[Any] = []
            for key, value in filters.items():
                conditions.append("json_extract(data, ?) = ?")
                params.extend([f"$.{key}", value])
            where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
            cursor = self._connection.execute(
                f"SELECT data FROM {table} {where} ORDER BY seq", params
            )
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def _compare_and_swap(self, table: str, record_id: str, data: Dict[str, Any],
                          expected_version: int) -> bool:
        self._ensure_table(table)
        now = datetime.now(timezone.utc).isoformat()
        payload = json.dumps(data, default=str)
        if expected_version == 0:
            try:
                self._connection.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                """, (record_id, payload, now, now))
            except sqlite3.IntegrityError:
                return False
            return True
        cursor = self._connection.execute(f"""
            UPDATE {table} SET data = ?, updated_at = ?
            WHERE id = ? AND json_extract(data, '$.version') = ?
        """, (payload, now, record_id, expected_version))
        return cursor.rowcount == 1

    def _begin(self, depth: int) -> None:
        if depth == 1:
            self._connection.execute("BEGIN IMMEDIATE")
        else:
            self._connection.execute(f"SAVEPOINT sp_{depth}")

    def _commit(self, depth: int) -> None:
        if depth == 1:
            self._connection.execute("COMMIT")
        else:
            self._connection.execute(f"RELEASE SAVEPOINT sp_{depth}")

    def _rollback(self, depth: int) -> None:
        if depth == 1:
            self._connection.execute("ROLLBACK")
            # DDL inside the transaction was rolled back too
            self._known_tables.clear()
        else:
            self._connection.execute(f"ROLLBACK TO SAVEPOINT sp_{depth}")
            self._connection.execute(f"RELEASE SAVEPOINT sp_{depth}")
            self._known_tables.clear()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL.

    ``memory://`` selects InMemoryStorage, ``sqlite:///path`` (or
    ``sqlite://`` for an in-process database) selects SQLiteStorage.
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        return SQLiteStorage(path or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
