"""
Document Store Module

Provides the abstract document store the ledger is built on and two
implementations: in-memory (testing) and SQLite (persistence).

The store offers three things and nothing more:

* point-in-time reads of a document by id,
* an atomic multi-document compare-and-put (``commit``), and
* an append-only, totally ordered transaction log of every committed batch.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from datetime import datetime, timezone
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
import sqlite3
import json
import threading

from .errors import StorageError


@dataclass(frozen=True)
class Match:
    """Precondition: the stored document under ``doc_id`` equals ``expected``.

    ``expected=None`` asserts that no document exists under ``doc_id``.
    """
    doc_id: int
    expected: Optional[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {"op": "match", "id": self.doc_id, "document": self.expected}


@dataclass(frozen=True)
class Put:
    """Write the full new document under ``doc_id``"""
    doc_id: int
    document: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"op": "put", "id": self.doc_id, "document": self.document}


DocumentOp = Union[Match, Put]


def op_from_dict(data: Dict[str, Any]) -> DocumentOp:
    """Rebuild a document operation from its stored form"""
    kind = data.get("op")
    if kind == "match":
        return Match(data["id"], data["document"])
    if kind == "put":
        return Put(data["id"], data["document"])
    raise StorageError(f"Unknown document operation in transaction log: {kind!r}")


class CommitResult(Enum):
    """Outcome of a conditional commit"""
    COMMITTED = "committed"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class TransactionEntry:
    """
    One committed write batch. Immutable once appended to the log.
    """
    sequence_id: int
    operations: Tuple[DocumentOp, ...]
    committed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_id": self.sequence_id,
            "operations": [op.to_dict() for op in self.operations],
            "committed_at": self.committed_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransactionEntry':
        committed_at = data["committed_at"]
        if isinstance(committed_at, str):
            committed_at = datetime.fromisoformat(committed_at)
        return cls(
            sequence_id=data["sequence_id"],
            operations=tuple(op_from_dict(op) for op in data["operations"]),
            committed_at=committed_at
        )


def _validate_ops(ops: Sequence[DocumentOp]) -> Tuple[DocumentOp, ...]:
    ops = tuple(ops)
    if not ops:
        raise ValueError("A commit needs at least one operation")
    for op in ops:
        if not isinstance(op, (Match, Put)):
            raise TypeError(f"Unsupported document operation: {op!r}")
    if not any(isinstance(op, Put) for op in ops):
        raise ValueError("A commit needs at least one Put")
    return ops


def _copy(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    # Deep copy to prevent external mutation
    if document is None:
        return None
    return json.loads(json.dumps(document))


class DocumentStore(ABC):
    """Abstract interface for document store backends"""

    @abstractmethod
    def get(self, doc_id: int) -> Optional[Dict[str, Any]]:
        """Latest committed version of a document, or None"""
        pass

    @abstractmethod
    def commit(self, ops: Sequence[DocumentOp]) -> CommitResult:
        """
        Atomically apply every Put iff every Match holds against the
        current state. Returns CONFLICT, without writing anything, when a
        Match fails. Each successful commit appends one TransactionEntry.
        """
        pass

    @abstractmethod
    def read_log(self) -> List[TransactionEntry]:
        """
        Snapshot of the transaction log, oldest first. Entries committed
        after the call are not part of the returned sequence.
        """
        pass

    @abstractmethod
    def next_id(self, counter: str) -> int:
        """Atomically allocate the next unused id from a named counter"""
        pass

    @abstractmethod
    def reserve_id(self, counter: str, value: int) -> bool:
        """
        Claim a caller-chosen id on a named counter

        Ids at or below the counter have already been handed out (or were
        skipped because a document held them), so claiming one fails and
        returns False. Otherwise the counter advances to ``value`` and later
        ``next_id`` calls allocate above it.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release backend resources"""
        pass


class InMemoryDocumentStore(DocumentStore):
    """In-memory document store for testing"""

    def __init__(self):
        self._documents: Dict[int, Dict[str, Any]] = {}
        self._log: List[TransactionEntry] = []
        self._counters: Dict[str, int] = {}
        self._lock = threading.RLock()

    def get(self, doc_id: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            return _copy(self._documents.get(doc_id))

    def commit(self, ops: Sequence[DocumentOp]) -> CommitResult:
        ops = _validate_ops(ops)
        with self._lock:
            for op in ops:
                if isinstance(op, Match) and self._documents.get(op.doc_id) != op.expected:
                    return CommitResult.CONFLICT

            stored_ops = tuple(
                Match(op.doc_id, _copy(op.expected)) if isinstance(op, Match)
                else Put(op.doc_id, _copy(op.document))
                for op in ops
            )
            for op in stored_ops:
                if isinstance(op, Put):
                    self._documents[op.doc_id] = _copy(op.document)

            self._log.append(TransactionEntry(
                sequence_id=len(self._log) + 1,
                operations=stored_ops,
                committed_at=datetime.now(timezone.utc)
            ))
            return CommitResult.COMMITTED

    def read_log(self) -> List[TransactionEntry]:
        with self._lock:
            return list(self._log)

    def next_id(self, counter: str) -> int:
        with self._lock:
            value = self._counters.get(counter, 0) + 1
            while value in self._documents:
                value += 1
            self._counters[counter] = value
            return value

    def reserve_id(self, counter: str, value: int) -> bool:
        with self._lock:
            if value <= self._counters.get(counter, 0):
                return False
            self._counters[counter] = value
            return True

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteDocumentStore(DocumentStore):
    """SQLite document store for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 30.0):
        self.db_path = str(db_path)
        # Autocommit mode; transactions are opened explicitly with BEGIN IMMEDIATE
        self._connection = sqlite3.connect(
            self.db_path, check_same_thread=False, timeout=timeout, isolation_level=None
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        with self._lock:
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._create_schema()

    def _create_schema(self) -> None:
        self._connection.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id INTEGER PRIMARY KEY,
                data TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute("""
            CREATE TABLE IF NOT EXISTS transaction_log (
                sequence_id INTEGER PRIMARY KEY AUTOINCREMENT,
                operations TEXT NOT NULL,
                committed_at TEXT NOT NULL
            )
        """)
        self._connection.execute("""
            CREATE TABLE IF NOT EXISTS counters (
                name TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
        """)

    def _conn(self) -> sqlite3.Connection:
        if self._connection is None:
            raise StorageError("SQLite document store is closed")
        return self._connection

    @staticmethod
    def _load(conn: sqlite3.Connection, doc_id: int) -> Optional[Dict[str, Any]]:
        row = conn.execute("SELECT data FROM documents WHERE id = ?", (doc_id,)).fetchone()
        if row:
            return json.loads(row['data'])
        return None

    def get(self, doc_id: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            try:
                return self._load(self._conn(), doc_id)
            except sqlite3.Error as e:
                raise StorageError(f"Failed to read document {doc_id}: {e}") from e

    def commit(self, ops: Sequence[DocumentOp]) -> CommitResult:
        ops = _validate_ops(ops)
        with self._lock:
            conn = self._conn()
            try:
                # IMMEDIATE takes the write lock up front so the Match checks
                # and the writes see the same state, even across processes
                conn.execute("BEGIN IMMEDIATE")
                for op in ops:
                    if isinstance(op, Match) and self._load(conn, op.doc_id) != op.expected:
                        conn.execute("ROLLBACK")
                        return CommitResult.CONFLICT

                now = datetime.now(timezone.utc).isoformat()
                for op in ops:
                    if isinstance(op, Put):
                        conn.execute(
                            "INSERT OR REPLACE INTO documents (id, data, updated_at) VALUES (?, ?, ?)",
                            (op.doc_id, json.dumps(op.document), now)
                        )
                conn.execute(
                    "INSERT INTO transaction_log (operations, committed_at) VALUES (?, ?)",
                    (json.dumps([op.to_dict() for op in ops]), now)
                )
                conn.execute("COMMIT")
                return CommitResult.COMMITTED
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StorageError(f"Commit failed: {e}") from e

    def read_log(self) -> List[TransactionEntry]:
        with self._lock:
            try:
                rows = self._conn().execute("""
                    SELECT sequence_id, operations, committed_at
                    FROM transaction_log ORDER BY sequence_id
                """).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to read transaction log: {e}") from e

        return [
            TransactionEntry.from_dict({
                "sequence_id": row['sequence_id'],
                "operations": json.loads(row['operations']),
                "committed_at": row['committed_at']
            })
            for row in rows
        ]

    def next_id(self, counter: str) -> int:
        with self._lock:
            conn = self._conn()
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute("SELECT value FROM counters WHERE name = ?", (counter,)).fetchone()
                value = (row['value'] if row else 0) + 1
                while conn.execute("SELECT 1 FROM documents WHERE id = ?", (value,)).fetchone():
                    value += 1
                conn.execute(
                    "INSERT OR REPLACE INTO counters (name, value) VALUES (?, ?)",
                    (counter, value)
                )
                conn.execute("COMMIT")
                return value
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StorageError(f"Failed to allocate id from counter {counter}: {e}") from e

    def reserve_id(self, counter: str, value: int) -> bool:
        with self._lock:
            conn = self._conn()
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute("SELECT value FROM counters WHERE name = ?", (counter,)).fetchone()
                if value <= (row['value'] if row else 0):
                    conn.execute("ROLLBACK")
                    return False
                conn.execute(
                    "INSERT OR REPLACE INTO counters (name, value) VALUES (?, ?)",
                    (counter, value)
                )
                conn.execute("COMMIT")
                return True
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StorageError(f"Failed to reserve id {value} on counter {counter}: {e}") from e

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_document_store(config) -> DocumentStore:
    """
    Create a document store from configuration

    Args:
        config: LedgerConfig (storage_backend, database_path, sqlite_timeout)

    Returns:
        DocumentStore instance
    """
    backend = config.storage_backend.lower()
    if backend == "memory":
        return InMemoryDocumentStore()
    if backend == "sqlite":
        return SQLiteDocumentStore(config.database_path, timeout=config.sqlite_timeout)
    raise ValueError(f"Unknown storage backend: {config.storage_backend}")
