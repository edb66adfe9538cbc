"""Durable Memory backed by SQLite.

Thoughts and notes live in two tables; embeddings are stored in the
bracketed text encoding and searched in-process with numpy.

Every query runs in a worker thread through ``asyncio.to_thread`` so the
event loop stays free while SQLite waits on its busy timeout. One connection
is shared by those threads and guarded by a lock.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, TypeVar

from .errors import PersistenceError, ThoughtNotFoundError
from .memory import Memory, NoteWithThought
from .models import Note, ThoughtRecord, generate_id
from .thought import Thought
from .vectors import decode_vector, encode_vector, rank_by_distance

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA_VERSION = 1

_THOUGHT_COLUMNS = (
    "id, intent, trace_id, parent_id, task_id, published_count, created_at, updated_at"
)
_NOTE_COLUMNS = "id, thought_id, key, content, metadata, source, created, embedding"


def _timestamp(value: datetime) -> str:
    # Fixed width so ORDER BY on the text column sorts chronologically
    return value.isoformat(timespec="microseconds")


class SQLiteMemory(Memory):
    """Memory store backed by a single SQLite database file."""

    def __init__(self, db_path: Path | str):
        """Initialize the store, creating the schema if needed.

        Args:
            db_path: Path to the database file (parent dirs are created)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        with self._lock:
            self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), timeout=30.0, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            # Enable WAL mode for better concurrency
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=30000")
            self._conn.execute("PRAGMA foreign_keys=ON")
        return self._conn

    def _init_db(self):
        conn = self._get_conn()

        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                created_at TEXT DEFAULT (datetime('now'))
            )
        """)
        version = conn.execute("SELECT version FROM schema_version").fetchone()
        if version is None:
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        elif version[0] < SCHEMA_VERSION:
            logger.warning(f"Schema version {version[0]} detected, may need migration")

        conn.executescript("""
            CREATE TABLE IF NOT EXISTS thoughts (
                id TEXT PRIMARY KEY,
                intent TEXT NOT NULL,
                trace_id TEXT NOT NULL UNIQUE,
                parent_id TEXT,
                task_id TEXT,
                published_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS notes (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                thought_id TEXT NOT NULL REFERENCES thoughts(id) ON DELETE CASCADE,
                key TEXT NOT NULL,
                content TEXT NOT NULL,
                metadata TEXT NOT NULL DEFAULT '{}',
                source TEXT NOT NULL DEFAULT '',
                created TEXT NOT NULL,
                embedding TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_thoughts_task ON thoughts(task_id);
            CREATE INDEX IF NOT EXISTS idx_thoughts_parent ON thoughts(parent_id);
            CREATE INDEX IF NOT EXISTS idx_notes_thought ON notes(thought_id, seq);
        """)
        conn.commit()

    # --- Row conversion ---

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ThoughtRecord:
        return ThoughtRecord(
            id=row["id"],
            intent=row["intent"],
            trace_id=row["trace_id"],
            parent_id=row["parent_id"],
            task_id=row["task_id"],
            published_count=row["published_count"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_note(row: sqlite3.Row) -> Note:
        return Note(
            id=row["id"],
            thought_id=row["thought_id"],
            key=row["key"],
            content=row["content"],
            metadata=json.loads(row["metadata"]),
            source=row["source"],
            created=datetime.fromisoformat(row["created"]),
            embedding=decode_vector(row["embedding"]),
        )

    def _fetch_record(self, where: str, value: str) -> ThoughtRecord | None:
        row = self._get_conn().execute(
            f"SELECT {_THOUGHT_COLUMNS} FROM thoughts WHERE {where} = ?", (value,)
        ).fetchone()
        return self._row_to_record(row) if row else None

    def _fetch_notes(self, thought_id: str) -> list[Note]:
        cursor = self._get_conn().execute(
            f"SELECT {_NOTE_COLUMNS} FROM notes WHERE thought_id = ? ORDER BY seq",
            (thought_id,),
        )
        return [self._row_to_note(row) for row in cursor]

    def _load(self, record: ThoughtRecord) -> Thought:
        return self.hydrate(record, self._fetch_notes(record.id))

    def _load_where(self, where: str, value: str) -> list[Thought]:
        cursor = self._get_conn().execute(
            f"SELECT {_THOUGHT_COLUMNS} FROM thoughts WHERE {where} = ? "
            "ORDER BY created_at, id",
            (value,),
        )
        return [self._load(self._row_to_record(row)) for row in cursor.fetchall()]

    # --- Worker-thread plumbing ---

    def _locked(self, fn: Callable[..., T], *args: Any) -> T:
        with self._lock:
            return fn(*args)

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking store operation off the event loop."""
        return await asyncio.to_thread(self._locked, fn, *args)

    # --- Blocking operations ---

    def _insert_thought(self, record: ThoughtRecord) -> None:
        try:
            conn = self._get_conn()
            conn.execute(
                f"INSERT INTO thoughts ({_THOUGHT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.intent,
                    record.trace_id,
                    record.parent_id,
                    record.task_id,
                    record.published_count,
                    _timestamp(record.created_at),
                    _timestamp(record.updated_at),
                ),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to create thought {record.id}: {e}") from e

    def _get_by(self, where: str, value: str) -> Thought:
        record = self._fetch_record(where, value)
        if record is None:
            raise ThoughtNotFoundError(value, by=where)
        return self._load(record)

    def _insert_note(self, note: Note) -> None:
        if self._fetch_record("id", note.thought_id) is None:
            raise ThoughtNotFoundError(note.thought_id)
        try:
            conn = self._get_conn()
            conn.execute(
                f"INSERT INTO notes ({_NOTE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    note.id,
                    note.thought_id,
                    note.key,
                    note.content,
                    json.dumps(note.metadata),
                    note.source,
                    _timestamp(note.created),
                    encode_vector(note.embedding),
                ),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to add note {note.key!r}: {e}") from e

    def _notes_of(self, thought_id: str) -> list[Note]:
        if self._fetch_record("id", thought_id) is None:
            raise ThoughtNotFoundError(thought_id)
        return self._fetch_notes(thought_id)

    def _update(self, record: ThoughtRecord) -> None:
        try:
            conn = self._get_conn()
            cursor = conn.execute(
                """
                UPDATE thoughts
                SET intent = ?, parent_id = ?, task_id = ?, published_count = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    record.intent,
                    record.parent_id,
                    record.task_id,
                    record.published_count,
                    _timestamp(record.updated_at),
                    record.id,
                ),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to update thought {record.id}: {e}") from e
        if cursor.rowcount == 0:
            raise ThoughtNotFoundError(record.id)

    def _delete(self, thought_id: str) -> None:
        try:
            conn = self._get_conn()
            conn.execute("DELETE FROM notes WHERE thought_id = ?", (thought_id,))
            cursor = conn.execute("DELETE FROM thoughts WHERE id = ?", (thought_id,))
            if cursor.rowcount == 0:
                conn.rollback()
                raise ThoughtNotFoundError(thought_id)
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to delete thought {thought_id}: {e}") from e

    def _embedded_notes(self) -> list[tuple[Note, list[float]]]:
        cursor = self._get_conn().execute(
            f"SELECT {_NOTE_COLUMNS} FROM notes WHERE embedding IS NOT NULL ORDER BY seq"
        )
        candidates = []
        for row in cursor:
            try:
                note = self._row_to_note(row)
            except (json.JSONDecodeError, ValueError) as e:
                logger.warning(f"Skipping malformed note {row['id']}: {e}")
                continue
            if note.embedding:
                candidates.append((note, note.embedding))
        return candidates

    def _search(self, embedding: list[float], limit: int) -> list[NoteWithThought]:
        hits = rank_by_distance(embedding, self._embedded_notes(), limit)
        thoughts: dict[str, Thought] = {}
        results = []
        for note in hits:
            if note.thought_id not in thoughts:
                thoughts[note.thought_id] = self._get_by("id", note.thought_id)
            results.append(NoteWithThought(note=note, thought=thoughts[note.thought_id]))
        return results

    def _search_by_task(self, embedding: list[float], limit: int) -> list[Thought]:
        candidates = self._embedded_notes()
        ordered = rank_by_distance(embedding, candidates, len(candidates))

        results = []
        seen_tasks = set()
        conn = self._get_conn()
        for note in ordered:
            owner = self._fetch_record("id", note.thought_id)
            if owner is None or owner.task_id is None or owner.task_id in seen_tasks:
                continue
            seen_tasks.add(owner.task_id)
            row = conn.execute(
                f"SELECT {_THOUGHT_COLUMNS} FROM thoughts WHERE task_id = ? "
                "ORDER BY created_at DESC, id DESC LIMIT 1",
                (owner.task_id,),
            ).fetchone()
            results.append(self._load(self._row_to_record(row)))
            if len(results) >= limit:
                break
        return results

    def _close(self) -> None:
        if self._conn is not None:
            self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            self._conn.close()
            self._conn = None

    # --- Memory contract ---

    async def create_thought(self, thought: Thought) -> Thought:
        if not thought.id:
            thought.id = generate_id()
        await self._call(self._insert_thought, thought.record())
        return thought

    async def get_thought(self, thought_id: str) -> Thought:
        return await self._call(self._get_by, "id", thought_id)

    async def get_thought_by_trace_id(self, trace_id: str) -> Thought:
        return await self._call(self._get_by, "trace_id", trace_id)

    async def get_thoughts_by_task_id(self, task_id: str) -> list[Thought]:
        return await self._call(self._load_where, "task_id", task_id)

    async def get_child_thoughts(self, parent_id: str) -> list[Thought]:
        return await self._call(self._load_where, "parent_id", parent_id)

    async def add_note(self, note: Note) -> None:
        await self._call(self._insert_note, note)

    async def get_notes(self, thought_id: str) -> list[Note]:
        return await self._call(self._notes_of, thought_id)

    async def update_thought(self, thought: Thought) -> None:
        await self._call(self._update, thought.record())

    async def delete_thought(self, thought_id: str) -> None:
        await self._call(self._delete, thought_id)

    async def search_notes(self, embedding: list[float], limit: int) -> list[NoteWithThought]:
        return await self._call(self._search, embedding, limit)

    async def search_notes_by_task(self, embedding: list[float], limit: int) -> list[Thought]:
        return await self._call(self._search_by_task, embedding, limit)

    async def close(self) -> None:
        """Close database connection, checkpointing the WAL first."""
        await self._call(self._close)
