"""
Storage Backend Module

Provides the abstract storage interface and implementations for in-memory
(testing) and SQLite (persistence). Records are JSON documents keyed by id;
both backends support create-only inserts, upserts, monotonically increasing
sequences and rollback-capable transactions.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager, nullcontext
import re


FIELD_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class StorageError(Exception):
    """Backend unavailable, locked or otherwise failing"""


class RecordExistsError(StorageError):
    """Create-only insert hit an existing id"""

    def __init__(self, table: str, record_id: str):
        self.table = table
        self.record_id = record_id
        super().__init__(f"Record {record_id} already exists in {table}")


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        data = dict(data)
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])

        return cls(**data)


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Create a record; raise RecordExistsError if the id is taken"""
        pass

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Create or replace a record"""
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
    def find(self, table: str, filters: Dict[str, Any], order_by: Optional[str] = None,
             descending: bool = False, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Find records whose top-level fields equal every filter value

        Results are sorted by the order_by field when given and cut to limit.
        """
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def next_sequence(self, name: str) -> int:
        """Return the next value of a strictly increasing named sequence"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def add_index(self, table: str, field: str) -> None:
        """Index a top-level field used in find filters (default no-op)"""
        pass

    def begin_transaction(self, immediate: bool = True) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self, immediate: bool = True):
        """
        Context manager for atomic operations

        Transactions are scoped to the calling thread. Nested blocks join the
        outermost transaction; only the outermost block commits or rolls back.
        immediate=False marks a read-only block that backends may run without
        taking the write lock.
        """
        self.begin_transaction(immediate)
        try:
            yield
        except BaseException:
            self.rollback()
            raise
        self.commit()


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._sequences: Dict[str, int] = {}
        self._lock = threading.RLock()
        self._local = threading.local()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def _remember(self, table: str, record_id: str) -> None:
        """Record the prior value of a row in this thread's undo journal"""
        journal = getattr(self._local, 'journal', None)
        if journal is not None:
            journal.append((table, record_id, self._data[table].get(record_id)))

    @staticmethod
    def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
        # Deep copy to prevent external mutation
        return json.loads(json.dumps(data, default=str))

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                raise RecordExistsError(table, record_id)
            self._remember(table, record_id)
            self._data[table][record_id] = self._copy(data)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            self._remember(table, record_id)
            self._data[table][record_id] = self._copy(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record is not None:
                return self._copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            return [self._copy(record) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                self._remember(table, record_id)
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any], order_by: Optional[str] = None,
             descending: bool = False, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            matches = [
                record for record in self._data[table].values()
                if all(key in record and record[key] == value
                       for key, value in filters.items())
            ]
            if order_by:
                matches.sort(key=lambda record: record[order_by], reverse=descending)
            if limit is not None:
                matches = matches[:limit]
            return [self._copy(record) for record in matches]

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._ensure_table(table)
            for record_id in list(self._data[table]):
                self._remember(table, record_id)
            self._data[table] = {}

    def next_sequence(self, name: str) -> int:
        # Not journaled: values consumed by a rolled back transaction are skipped
        with self._lock:
            value = self._sequences.get(name, 0) + 1
            self._sequences[name] = value
            return value

    def begin_transaction(self, immediate: bool = True) -> None:
        depth = getattr(self._local, 'depth', 0)
        if depth == 0:
            self._local.journal = []
        self._local.depth = depth + 1

    def commit(self) -> None:
        depth = getattr(self._local, 'depth', 0)
        if depth == 0:
            return
        self._local.depth = depth - 1
        if depth == 1:
            self._local.journal = None

    def rollback(self) -> None:
        depth = getattr(self._local, 'depth', 0)
        if depth == 0:
            return
        self._local.depth = depth - 1
        if depth > 1:
            return

        journal = self._local.journal or []
        self._local.journal = None
        with self._lock:
            for table, record_id, previous in reversed(journal):
                if previous is None:
                    self._data[table].pop(record_id, None)
                else:
                    self._data[table][record_id] = previous

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence

    File databases give every thread its own connection and run transactions
    as BEGIN IMMEDIATE, so SQLite itself serializes writers. Read-only blocks
    run as deferred transactions and, in WAL mode, never wait for a writer. An in-memory
    database only exists on one connection; that connection is shared and
    guarded by a lock held for the whole of each transaction.
    """

    SEQUENCE_TABLE = "_sequences"

    def __init__(self, db_path: Union[str, Path] = ":memory:", busy_timeout: float = 5.0):
        self.db_path = str(db_path)
        self.busy_timeout = busy_timeout
        self._shared = self.db_path == ":memory:"
        self._lock = threading.RLock()
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._tables = set()
        self._indexes: Dict[str, set] = {}
        self._shared_connection = self._open() if self._shared else None

        with self._connection_scope() as conn:
            if not self._shared:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.SEQUENCE_TABLE} (
                    name TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                )
            """)

    def _open(self) -> sqlite3.Connection:
        # isolation_level=None: statements autocommit unless we issue BEGIN
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout,
            check_same_thread=False,
            isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        if not self._shared:
            conn.execute("PRAGMA synchronous = NORMAL")
        with self._lock:
            self._connections.append(conn)
        return conn

    def _connection(self) -> sqlite3.Connection:
        if self._shared:
            if self._shared_connection is None:
                raise StorageError("Storage is closed")
            return self._shared_connection
        conn = getattr(self._local, 'connection', None)
        if conn is None:
            conn = self._open()
            self._local.connection = conn
        return conn

    @property
    def _depth(self) -> int:
        return getattr(self._local, 'depth', 0)

    @contextmanager
    def _connection_scope(self):
        """Yield this thread's connection, translating sqlite3 errors"""
        guard = self._lock if self._shared else nullcontext()
        with guard:
            try:
                yield self._connection()
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e

    def _ensure_table(self, conn: sqlite3.Connection, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        for field in sorted(self._indexes.get(table, ())):
            conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_{field}
                ON {table}({self._json_path(field)})
            """)
        # DDL inside a transaction disappears on rollback
        if self._depth == 0:
            self._tables.add(table)
        else:
            self._local.pending_tables.add(table)

    @staticmethod
    def _json_path(field: str) -> str:
        # Inlined rather than bound so expression indexes match the queries
        if not FIELD_NAME.fullmatch(field):
            raise StorageError(f"Invalid field name: {field}")
        return f"json_extract(data, '$.{field}')"

    def add_index(self, table: str, field: str) -> None:
        self._json_path(field)
        with self._lock:
            self._indexes.setdefault(table, set()).add(field)
            self._tables.discard(table)
        with self._connection_scope() as conn:
            self._ensure_table(conn, table)

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._connection_scope() as conn:
            self._ensure_table(conn, table)
            try:
                conn.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                """, (record_id, json.dumps(data, default=str), now, now))
            except sqlite3.IntegrityError:
                raise RecordExistsError(table, record_id)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._connection_scope() as conn:
            self._ensure_table(conn, table)
            conn.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, json.dumps(data, default=str), now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._connection_scope() as conn:
            self._ensure_table(conn, table)
            row = conn.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,)).fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._connection_scope() as conn:
            self._ensure_table(conn, table)
            cursor = conn.execute(f"""
                SELECT data FROM {table} ORDER BY created_at, rowid
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._connection_scope() as conn:
            self._ensure_table(conn, table)
            cursor = conn.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        with self._connection_scope() as conn:
            self._ensure_table(conn, table)
            cursor = conn.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any], order_by: Optional[str] = None,
             descending: bool = False, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Find records matching filters using json_extract"""
        conditions = []
        params: List[Any] = []
        for key, value in filters.items():
            if value is None:
                conditions.append(f"{self._json_path(key)} IS NULL")
            else:
                conditions.append(f"{self._json_path(key)} = ?")
                params.append(value)

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        if order_by:
            direction = "DESC" if descending else "ASC"
            order_clause = f"ORDER BY {self._json_path(order_by)} {direction}"
        else:
            order_clause = "ORDER BY created_at, rowid"
        if limit is not None:
            order_clause += " LIMIT ?"
            params.append(limit)

        with self._connection_scope() as conn:
            self._ensure_table(conn, table)
            cursor = conn.execute(f"""
                SELECT data FROM {table} {where_clause}
                {order_clause}
            """, params)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        with self._connection_scope() as conn:
            self._ensure_table(conn, table)
            cursor = conn.execute(f"SELECT COUNT(*) AS count FROM {table}")
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        with self._connection_scope() as conn:
            self._ensure_table(conn, table)
            conn.execute(f"DELETE FROM {table}")

    def next_sequence(self, name: str) -> int:
        with self.atomic():
            with self._connection_scope() as conn:
                conn.execute(f"""
                    INSERT INTO {self.SEQUENCE_TABLE} (name, value) VALUES (?, 1)
                    ON CONFLICT(name) DO UPDATE SET value = value + 1
                """, (name,))
                row = conn.execute(f"""
                    SELECT value FROM {self.SEQUENCE_TABLE} WHERE name = ?
                """, (name,)).fetchone()
                return row['value']

    def begin_transaction(self, immediate: bool = True) -> None:
        depth = self._depth
        if depth == 0:
            if self._shared and not self._lock.acquire(timeout=self.busy_timeout):
                raise StorageError("Timed out waiting for the database")
            try:
                self._connection().execute("BEGIN IMMEDIATE" if immediate else "BEGIN DEFERRED")
            except sqlite3.Error as e:
                if self._shared:
                    self._lock.release()
                raise StorageError(str(e)) from e
            except StorageError:
                if self._shared:
                    self._lock.release()
                raise
            self._local.pending_tables = set()
        self._local.depth = depth + 1

    def _finish(self, statement: str) -> None:
        conn = self._connection()
        try:
            conn.execute(statement)
        except sqlite3.Error as e:
            if statement != "ROLLBACK" and conn.in_transaction:
                try:
                    conn.execute("ROLLBACK")
                except sqlite3.Error:
                    # The failed COMMIT is what gets reported
                    pass
            raise StorageError(str(e)) from e
        finally:
            if self._shared:
                self._lock.release()

    def commit(self) -> None:
        depth = self._depth
        if depth == 0:
            return
        self._local.depth = depth - 1
        if depth == 1:
            self._finish("COMMIT")
            self._tables.update(self._local.pending_tables)

    def rollback(self) -> None:
        depth = self._depth
        if depth == 0:
            return
        self._local.depth = depth - 1
        if depth == 1:
            self._local.pending_tables = set()
            self._finish("ROLLBACK")

    def close(self) -> None:
        """Close every connection opened by this storage"""
        with self._lock:
            for conn in self._connections:
                conn.close()
            self._connections = []
            self._shared_connection = None
            self._local = threading.local()
