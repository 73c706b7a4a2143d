"""Persistence: record store and document blob store.

Records are kept as JSON payloads next to the two columns they are queried
by, so the stored shape is exactly the archive shape.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator, Protocol, Sequence, TypeVar

from .models import Canvas, Highlight, Purpose, ReadtraceError, Session, pair_key

logger = logging.getLogger(__name__)

T = TypeVar("T", Highlight, Purpose, Session)


class StorageError(ReadtraceError):
    """Raised when the record or blob store cannot complete an operation."""


class RecordStore(Protocol):
    def load_highlights(self, owner_ids: Sequence[str], document_ids: Sequence[str]) -> dict[str, list[Highlight]]: ...

    def load_purposes(self, owner_ids: Sequence[str], document_ids: Sequence[str]) -> dict[str, list[Purpose]]: ...

    def load_sessions(self, owner_ids: Sequence[str], document_ids: Sequence[str]) -> dict[str, list[Session]]: ...

    def save_highlights(self, records: Iterable[Highlight]) -> None: ...

    def save_purposes(self, records: Iterable[Purpose]) -> None: ...

    def save_sessions(self, records: Iterable[Session]) -> None: ...

    def load_canvas(self, owner_id: str, document_id: str) -> Canvas | None: ...

    def save_canvas(self, canvas: Canvas) -> None: ...

    def delete_highlights(self, ids: Iterable[str]) -> None: ...


class BlobStore(Protocol):
    def store_document_blob(self, document_id: str, data: bytes) -> str: ...

    def fetch_document_blob(self, document_id: str) -> str: ...

    def read_document_blob(self, document_id: str) -> bytes: ...


# Migrations -------------------------------------------------------------------


@dataclass(frozen=True)
class Migration:
    """A SQL script applied exactly once per database."""

    identifier: str
    statements: str


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        "0001_records",
        """
        CREATE TABLE IF NOT EXISTS highlights (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            document_id TEXT NOT NULL,
            payload TEXT NOT NULL
        );
        CREATE TABLE IF NOT EXISTS purposes (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            document_id TEXT NOT NULL,
            payload TEXT NOT NULL
        );
        CREATE TABLE IF NOT EXISTS sessions (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            document_id TEXT NOT NULL,
            payload TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_highlights_pair ON highlights(owner_id, document_id);
        CREATE INDEX IF NOT EXISTS idx_purposes_pair ON purposes(owner_id, document_id);
        CREATE INDEX IF NOT EXISTS idx_sessions_pair ON sessions(owner_id, document_id);
        """,
    ),
    Migration(
        "0002_canvases",
        """
        CREATE TABLE IF NOT EXISTS canvases (
            id TEXT PRIMARY KEY,
            owner_id TEXT NOT NULL,
            document_id TEXT NOT NULL,
            graph TEXT NOT NULL,
            UNIQUE (owner_id, document_id)
        );
        """,
    ),
)


def apply_migrations(connection: sqlite3.Connection, migrations: Iterable[Migration]) -> list[str]:
    """Run pending migrations; returns the identifiers that were applied."""

    connection.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            id TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )
    applied = {row[0] for row in connection.execute("SELECT id FROM schema_migrations")}
    ran: list[str] = []
    for migration in migrations:
        if migration.identifier in applied:
            continue
        connection.executescript(migration.statements)
        connection.execute("INSERT INTO schema_migrations (id) VALUES (?)", (migration.identifier,))
        ran.append(migration.identifier)
    connection.commit()
    return ran


# SQLite record store ------------------------------------------------------------


class SQLiteRecordStore:
    """Record store over a single SQLite database file (or ``:memory:``)."""

    def __init__(self, path: str | Path) -> None:
        self.path = str(path)
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self.connection = sqlite3.connect(self.path)
            self.connection.row_factory = sqlite3.Row
            applied = apply_migrations(self.connection, MIGRATIONS)
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"Cannot open record store at {self.path}: {exc}") from exc
        if applied:
            logger.info("Applied migrations %s to %s", ", ".join(applied), self.path)

    def close(self) -> None:
        self.connection.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            with self.connection:
                yield self.connection
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc

    # Loading -------------------------------------------------------------
    def _load(
        self,
        table: str,
        owner_ids: Sequence[str],
        document_ids: Sequence[str],
        factory: Callable[[dict], T],
    ) -> dict[str, list[T]]:
        owners = list(dict.fromkeys(owner_ids))
        documents = list(dict.fromkeys(document_ids))
        if not owners or not documents:
            return {}
        query = (
            f"SELECT owner_id, document_id, payload FROM {table} "
            f"WHERE owner_id IN ({', '.join('?' * len(owners))}) "
            f"AND document_id IN ({', '.join('?' * len(documents))}) "
            "ORDER BY rowid"
        )
        try:
            rows = self.connection.execute(query, [*owners, *documents]).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        grouped: dict[str, list[T]] = {}
        for row in rows:
            key = pair_key(row["owner_id"], row["document_id"])
            grouped.setdefault(key, []).append(factory(json.loads(row["payload"])))
        return grouped

    def load_highlights(self, owner_ids: Sequence[str], document_ids: Sequence[str]) -> dict[str, list[Highlight]]:
        return self._load("highlights", owner_ids, document_ids, Highlight.from_dict)

    def load_purposes(self, owner_ids: Sequence[str], document_ids: Sequence[str]) -> dict[str, list[Purpose]]:
        return self._load("purposes", owner_ids, document_ids, Purpose.from_dict)

    def load_sessions(self, owner_ids: Sequence[str], document_ids: Sequence[str]) -> dict[str, list[Session]]:
        return self._load("sessions", owner_ids, document_ids, Session.from_dict)

    # Saving --------------------------------------------------------------
    def _save(self, table: str, records: Iterable[Highlight | Purpose | Session]) -> None:
        rows = [
            (record.id, record.owner_id, record.document_id, json.dumps(record.to_dict()))
            for record in records
        ]
        if not rows:
            return
        with self._transaction() as conn:
            conn.executemany(
                f"INSERT INTO {table} (id, owner_id, document_id, payload) VALUES (?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET owner_id = excluded.owner_id, "
                "document_id = excluded.document_id, payload = excluded.payload",
                rows,
            )
        logger.debug("Saved %d rows to %s", len(rows), table)

    def save_highlights(self, records: Iterable[Highlight]) -> None:
        self._save("highlights", records)

    def save_purposes(self, records: Iterable[Purpose]) -> None:
        self._save("purposes", records)

    def save_sessions(self, records: Iterable[Session]) -> None:
        self._save("sessions", records)

    def delete_highlights(self, ids: Iterable[str]) -> None:
        items = [(item,) for item in dict.fromkeys(ids)]
        if not items:
            return
        with self._transaction() as conn:
            conn.executemany("DELETE FROM highlights WHERE id = ?", items)

    # Canvas --------------------------------------------------------------
    def load_canvas(self, owner_id: str, document_id: str) -> Canvas | None:
        try:
            row = self.connection.execute(
                "SELECT id, graph FROM canvases WHERE owner_id = ? AND document_id = ?",
                (owner_id, document_id),
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        if row is None:
            return None
        return Canvas.from_serialized(row["id"], owner_id, document_id, row["graph"])

    def save_canvas(self, canvas: Canvas) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO canvases (id, owner_id, document_id, graph) VALUES (?, ?, ?, ?) "
                "ON CONFLICT(owner_id, document_id) DO UPDATE SET id = excluded.id, graph = excluded.graph",
                (canvas.id, canvas.owner_id, canvas.document_id, canvas.serialized_graph),
            )


# File blob store ----------------------------------------------------------------


@dataclass(slots=True)
class FileBlobStore:
    """Directory-backed document store; URLs are ``file://`` URIs."""

    base_dir: Path

    def __post_init__(self) -> None:
        self.base_dir = Path(self.base_dir)
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create blob directory {self.base_dir}: {exc}") from exc

    def _path(self, document_id: str) -> Path:
        if not document_id or "/" in document_id or "\\" in document_id or document_id in (".", ".."):
            raise StorageError(f"Invalid document id: {document_id!r}")
        return self.base_dir / f"{document_id}.pdf"

    def store_document_blob(self, document_id: str, data: bytes) -> str:
        path = self._path(document_id)
        try:
            path.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Cannot write document {document_id}: {exc}") from exc
        return path.resolve().as_uri()

    def fetch_document_blob(self, document_id: str) -> str:
        path = self._path(document_id)
        if not path.exists():
            raise StorageError(f"Document {document_id} is not stored")
        return path.resolve().as_uri()

    def read_document_blob(self, document_id: str) -> bytes:
        path = self._path(document_id)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StorageError(f"Cannot read document {document_id}: {exc}") from exc


__all__ = [
    "BlobStore",
    "FileBlobStore",
    "MIGRATIONS",
    "Migration",
    "RecordStore",
    "SQLiteRecordStore",
    "StorageError",
    "apply_migrations",
]
