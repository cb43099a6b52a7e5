"""
Storage Backend Module

Provides the abstract storage interface plus in-memory and SQLite backends.
Each backend owns a re-entrant lock; ``atomic()`` holds it for the whole unit
of work so that every escrow operation is applied as one step.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Any, Union
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


@dataclass
class StorageRecord:
    """Base class for stored records keyed by a string id"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])

        return cls(**data)


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    def __init__(self):
        self._lock = threading.RLock()
        self._atomic_depth = 0
        self._after_commit: List[Callable[[], None]] = []

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
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """
        Context manager for atomic operations

        Holds the backend lock for the whole block. Nested blocks join the
        outermost one, which alone commits or rolls back. Callbacks queued
        with on_commit() run once the outermost block has committed and the
        lock is released; a rollback discards them.
        """
        with self._lock:
            outermost = self._atomic_depth == 0
            if outermost:
                self.begin_transaction()
            self._atomic_depth += 1
            try:
                yield
            except Exception:
                self._atomic_depth -= 1
                if outermost:
                    self._after_commit = []
                    self.rollback()
                raise
            self._atomic_depth -= 1
            if not outermost:
                return
            self.commit()
            callbacks, self._after_commit = self._after_commit, []

        for callback in callbacks:
            callback()

    def on_commit(self, callback: Callable[[], None]) -> None:
        """Run callback after the enclosing atomic block commits, or now if there is none"""
        with self._lock:
            if self._atomic_depth > 0:
                self._after_commit.append(callback)
                return
        callback()


class InMemoryStorage(StorageInterface):
    """In-memory storage with snapshot rollback"""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None

    @staticmethod
    def _copy(value: Any) -> Any:
        # Deep copy through JSON so callers never share mutable state
        return json.loads(json.dumps(value, default=str))

    def _ensure_table(self, table: str) -> None:
        if table not in self._data:
            self._data[table] = {}

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            self._data[table][record_id] = self._copy(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record is not None:
                return self._copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in insertion order"""
        with self._lock:
            self._ensure_table(table)
            return [self._copy(record) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records whose fields equal every filter value"""
        with self._lock:
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                if all(key in record and record[key] == value for key, value in filters.items()):
                    results.append(self._copy(record))
            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def begin_transaction(self) -> None:
        """Take a snapshot to restore on rollback"""
        with self._lock:
            self._snapshot = self._copy(self._data)

    def commit(self) -> None:
        """Discard the rollback snapshot"""
        with self._lock:
            self._snapshot = None

    def rollback(self) -> None:
        """Restore the snapshot taken at begin_transaction"""
        with self._lock:
            if self._snapshot is not None:
                self._data = self._snapshot
                self._snapshot = None

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        super().__init__()
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._in_transaction = False
        self._tables = set()

        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    def _maybe_commit(self) -> None:
        if not self._in_transaction:
            self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        self._maybe_commit()
        self._tables.add(table)

    def _execute(self, table: str, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        self._ensure_table(table)
        return self._connection.execute(sql.format(table=table), params)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record, keeping its first created_at"""
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self._execute(
                table,
                "INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at) VALUES "
                "(?, ?, COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?), ?)",
                (record_id, json.dumps(data, default=str), record_id, now, now)
            )
            self._maybe_commit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._execute(table, "SELECT data FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Records in insertion order"""
        with self._lock:
            rows = self._execute(table, "SELECT data FROM {table} ORDER BY created_at, rowid").fetchall()
        return [json.loads(row['data']) for row in rows]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            deleted = self._execute(table, "DELETE FROM {table} WHERE id = ?", (record_id,)).rowcount > 0
            self._maybe_commit()
        return deleted

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            row = self._execute(table, "SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,)).fetchone()
        return row is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Records whose JSON fields equal every filter value"""
        return [
            record for record in self.load_all(table)
            if all(key in record and record[key] == value for key, value in filters.items())
        ]

    def count(self, table: str) -> int:
        with self._lock:
            return self._execute(table, "SELECT COUNT(*) FROM {table}").fetchone()[0]

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._lock:
            # isolation_level='DEFERRED' opens the transaction on the first write
            self._in_transaction = True

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._in_transaction:
                self._connection.commit()
                self._in_transaction = False

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._in_transaction:
                self._connection.rollback()
                self._in_transaction = False
                # Tables created inside the rolled back transaction are gone
                self._tables.clear()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(backend: str = "memory", database_path: str = "escrow.db") -> StorageInterface:
    """Build a storage backend by name ("memory" or "sqlite")"""
    if backend == "memory":
        return InMemoryStorage()
    if backend == "sqlite":
        return SQLiteStorage(database_path)
    raise ValueError(f"Unknown storage backend: {backend}")
