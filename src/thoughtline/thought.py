"""Thought: the reasoning context passed through every primitive.

A Thought owns an append-only note log, a publish cursor marking how much
of that log the reasoning backend has already seen, a conversational
session and lineage pointers (parent, task). Primitives read the
unpublished slice, append their results and advance the cursor.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import TYPE_CHECKING

from .errors import NotConfiguredError, NotFoundError, NoteNotFoundError, ThoughtNotWritableError
from .models import Note, ThoughtRecord, generate_id, utc_now
from .resolve import resolve_embedder
from .session import Session
from .signals import Signal, emit

if TYPE_CHECKING:
    from .memory import Memory
    from .provider import Embedder

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"true", "yes", "1"}
_FALSE_VALUES = {"false", "no", "0"}


def render_notes(notes: list[Note]) -> str:
    """Render notes as context text, one ``key: content`` line per note.

    Metadata follows each note as indented ``name=value`` lines. Empty
    input renders to an empty string.
    """
    lines = []
    for note in notes:
        lines.append(f"{note.key}: {note.content}")
        for name in sorted(note.metadata):
            lines.append(f"  {name}={note.metadata[name]}")
    return "\n".join(lines)


class Thought:
    """A reasoning context with a note log, publish cursor and session.

    Not safe for concurrent writers: compose primitives sequentially, or
    ``clone()`` for parallel branches.
    """

    def __init__(
        self,
        intent: str,
        *,
        memory: Memory | None = None,
        id: str = "",
        trace_id: str | None = None,
        parent_id: str | None = None,
        task_id: str | None = None,
        session: Session | None = None,
        embedder: Embedder | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        self.id = id
        self.intent = intent
        self.trace_id = trace_id or generate_id()
        self.parent_id = parent_id
        self.task_id = task_id
        self.session = session if session is not None else Session()
        self.memory = memory
        self.embedder = embedder
        self.created_at = created_at or utc_now()
        self.updated_at = updated_at or self.created_at

        self._lock = threading.RLock()
        self._notes: list[Note] = []
        self._index: dict[str, int] = {}  # key -> position of latest note
        self._published = 0

    @classmethod
    async def create(
        cls,
        memory: Memory,
        intent: str,
        *,
        trace_id: str | None = None,
        task_id: str | None = None,
        parent_id: str | None = None,
        embedder: Embedder | None = None,
    ) -> Thought:
        """Create and persist a new Thought; the store assigns its id."""
        thought = cls(
            intent,
            memory=memory,
            trace_id=trace_id,
            task_id=task_id,
            parent_id=parent_id,
            embedder=embedder,
        )
        await memory.create_thought(thought)

        emit(
            Signal.THOUGHT_CREATED,
            trace_id=thought.trace_id,
            thought_id=thought.id,
            intent=intent,
        )
        return thought

    def __repr__(self) -> str:
        return (
            f"Thought(id={self.id!r}, intent={self.intent!r}, "
            f"notes={len(self._notes)}, published={self._published})"
        )

    def record(self) -> ThoughtRecord:
        """Snapshot of the persisted fields."""
        return ThoughtRecord(
            id=self.id,
            intent=self.intent,
            trace_id=self.trace_id,
            parent_id=self.parent_id,
            task_id=self.task_id,
            published_count=self._published,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    # ─────────────────────────────────────────────────────────────────
    # Note log
    # ─────────────────────────────────────────────────────────────────

    def _embedder(self) -> Embedder | None:
        try:
            return resolve_embedder(self.embedder)
        except NotConfiguredError:
            return None

    async def add_note(self, note: Note) -> Note:
        """Persist and append a note.

        Embeds the content when an embedder resolves; an embedding failure
        is logged and reported on the ``note.added`` signal, and the note
        is stored without a vector.

        Raises:
            ThoughtNotWritableError: If the thought has no persisted id or store
            PersistenceError: If the store rejects the note
        """
        if not self.id or self.memory is None:
            raise ThoughtNotWritableError(
                f"cannot add note {note.key!r}: thought is not persisted"
            )

        note = note.model_copy(deep=True)
        note.thought_id = self.id
        if note.created is None:
            note.created = utc_now()

        embed_error = None
        if note.embedding is None:
            embedder = self._embedder()
            if embedder is not None:
                try:
                    note.embedding = await embedder.embed(note.content)
                except Exception as e:
                    embed_error = str(e)
                    logger.warning(f"Embedding failed for note {note.key!r}: {e}")

        await self.memory.add_note(note)

        with self._lock:
            self._notes.append(note)
            self._index[note.key] = len(self._notes) - 1
            self.updated_at = utc_now()

        emit(
            Signal.NOTE_ADDED,
            trace_id=self.trace_id,
            note_key=note.key,
            note_source=note.source,
            content_size=len(note.content),
            error=embed_error,
        )
        return note

    async def set_content(self, key: str, content: str, source: str) -> Note:
        return await self.set_note(key, content, source)

    async def set_note(
        self,
        key: str,
        content: str,
        source: str,
        metadata: dict[str, str] | None = None,
    ) -> Note:
        """Append a note built from its parts."""
        return await self.add_note(
            Note(key=key, content=content, source=source, metadata=dict(metadata or {}))
        )

    def hydrate_note(self, note: Note) -> None:
        """Append a note loaded from the store, without persisting it again."""
        with self._lock:
            self._notes.append(note)
            self._index[note.key] = len(self._notes) - 1

    def get_note(self, key: str) -> Note | None:
        """Most recent note for ``key``, or None."""
        with self._lock:
            idx = self._index.get(key)
            return self._notes[idx] if idx is not None else None

    def get_content(self, key: str) -> str:
        note = self.get_note(key)
        if note is None:
            raise NoteNotFoundError(key)
        return note.content

    def get_metadata(self, key: str, field: str) -> str:
        note = self.get_note(key)
        if note is None:
            raise NoteNotFoundError(key)
        if field not in note.metadata:
            raise NotFoundError(f"metadata field {field!r} not found on note {key!r}")
        return note.metadata[field]

    def get_latest_note(self) -> Note | None:
        with self._lock:
            return self._notes[-1] if self._notes else None

    def all_notes(self) -> list[Note]:
        """Every note in log order (a new list)."""
        with self._lock:
            return list(self._notes)

    def get_bool(self, key: str) -> bool:
        value = self.get_content(key).strip().lower()
        if value in _TRUE_VALUES:
            return True
        if value in _FALSE_VALUES:
            return False
        raise ValueError(f"note {key!r} is not a boolean: {value!r}")

    def get_float(self, key: str) -> float:
        value = self.get_content(key).strip()
        try:
            return float(value)
        except ValueError as e:
            raise ValueError(f"note {key!r} is not a number: {value!r}") from e

    def get_int(self, key: str) -> int:
        value = self.get_content(key).strip()
        try:
            return int(value)
        except ValueError as e:
            raise ValueError(f"note {key!r} is not an integer: {value!r}") from e

    # ─────────────────────────────────────────────────────────────────
    # Publish cursor
    # ─────────────────────────────────────────────────────────────────

    @property
    def published_count(self) -> int:
        return self._published

    def set_published_count(self, count: int) -> None:
        """Restore the cursor (used when loading from the store)."""
        with self._lock:
            if count < 0 or count > len(self._notes):
                raise ValueError(
                    f"published count {count} out of range 0..{len(self._notes)}"
                )
            self._published = count

    def unpublished_notes(self) -> list[Note]:
        """Notes the reasoning backend has not seen yet, in log order."""
        with self._lock:
            return self._notes[self._published:]

    def mark_published(self) -> None:
        with self._lock:
            newly = len(self._notes) - self._published
            self._published = len(self._notes)
            self.updated_at = utc_now()

        emit(
            Signal.NOTES_PUBLISHED,
            trace_id=self.trace_id,
            published_count=self._published,
            unpublished_count=newly,
        )

    # ─────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────

    def clone(self) -> Thought:
        """Deep copy for parallel fan-out.

        Same id, trace and cursor; independent notes, metadata, embeddings
        and session. Shares the store and embedder references.
        """
        with self._lock:
            copy = Thought(
                self.intent,
                memory=self.memory,
                id=self.id,
                trace_id=self.trace_id,
                parent_id=self.parent_id,
                task_id=self.task_id,
                session=self.session.copy(),
                embedder=self.embedder,
                created_at=self.created_at,
                updated_at=self.updated_at,
            )
            for note in self._notes:
                copy.hydrate_note(note.model_copy(deep=True))
            copy._published = self._published
        return copy

    async def save(self) -> None:
        """Write the cursor and timestamps back to the store."""
        if not self.id or self.memory is None:
            raise ThoughtNotWritableError("cannot save: thought is not persisted")
        await self.memory.update_thought(self)
