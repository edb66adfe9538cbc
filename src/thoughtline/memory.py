"""Memory: the durable store behind thoughts and notes.

``Memory`` is the contract; ``InMemoryMemory`` keeps everything in dicts
and is what tests and short-lived pipelines use. ``store.SQLiteMemory``
is the durable implementation.

Thoughts loaded from a store are hydrated fresh: a new Session, the
stored notes and the stored publish cursor.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from .errors import ThoughtNotFoundError
from .models import Note, ThoughtRecord, generate_id
from .thought import Thought
from .vectors import rank_by_distance

logger = logging.getLogger(__name__)


@dataclass
class NoteWithThought:
    """A similarity-search hit: the note and the thought that owns it."""

    note: Note
    thought: Thought


class Memory(ABC):
    """Store contract. Missing entities raise ``ThoughtNotFoundError``."""

    @abstractmethod
    async def create_thought(self, thought: Thought) -> Thought:
        """Persist a new thought, assigning its id."""

    @abstractmethod
    async def get_thought(self, thought_id: str) -> Thought: ...

    @abstractmethod
    async def get_thought_by_trace_id(self, trace_id: str) -> Thought: ...

    @abstractmethod
    async def get_thoughts_by_task_id(self, task_id: str) -> list[Thought]:
        """All thoughts of a task, oldest first."""

    @abstractmethod
    async def get_child_thoughts(self, parent_id: str) -> list[Thought]: ...

    @abstractmethod
    async def add_note(self, note: Note) -> None: ...

    @abstractmethod
    async def get_notes(self, thought_id: str) -> list[Note]: ...

    @abstractmethod
    async def update_thought(self, thought: Thought) -> None: ...

    @abstractmethod
    async def delete_thought(self, thought_id: str) -> None:
        """Delete a thought and its notes."""

    @abstractmethod
    async def search_notes(self, embedding: list[float], limit: int) -> list[NoteWithThought]:
        """Notes closest to ``embedding`` (L2), with their owning thoughts."""

    @abstractmethod
    async def search_notes_by_task(self, embedding: list[float], limit: int) -> list[Thought]:
        """Most recent thought of each task that has matching notes."""

    async def close(self) -> None:
        """Release resources. Default: nothing to release."""

    def hydrate(self, record: ThoughtRecord, notes: list[Note]) -> Thought:
        """Build a fresh Thought from stored state."""
        thought = Thought(
            record.intent,
            memory=self,
            id=record.id,
            trace_id=record.trace_id,
            parent_id=record.parent_id,
            task_id=record.task_id,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        for note in notes:
            thought.hydrate_note(note)
        # Clamp: a cursor past the stored notes means a partial write
        published = min(record.published_count, len(notes))
        if published != record.published_count:
            logger.warning(
                f"Thought {record.id} cursor {record.published_count} exceeds "
                f"{len(notes)} stored notes; clamping"
            )
        thought.set_published_count(published)
        return thought

    async def lineage(self, thought_id: str) -> list[Thought]:
        """The thought followed by each ancestor, up to the root."""
        chain = []
        seen = set()
        current: str | None = thought_id
        while current is not None and current not in seen:
            seen.add(current)
            thought = await self.get_thought(current)
            chain.append(thought)
            current = thought.parent_id
        return chain


class InMemoryMemory(Memory):
    """Dict-backed store. Stored values are copies, never live objects."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._records: dict[str, ThoughtRecord] = {}
        self._notes: dict[str, list[Note]] = {}

    def _load(self, thought_id: str) -> Thought:
        record = self._records.get(thought_id)
        if record is None:
            raise ThoughtNotFoundError(thought_id)
        notes = [n.model_copy(deep=True) for n in self._notes.get(thought_id, [])]
        return self.hydrate(record, notes)

    async def create_thought(self, thought: Thought) -> Thought:
        async with self._lock:
            if not thought.id:
                thought.id = generate_id()
            self._records[thought.id] = thought.record()
            self._notes.setdefault(thought.id, [])
        return thought

    async def get_thought(self, thought_id: str) -> Thought:
        async with self._lock:
            return self._load(thought_id)

    async def get_thought_by_trace_id(self, trace_id: str) -> Thought:
        async with self._lock:
            for record in self._records.values():
                if record.trace_id == trace_id:
                    return self._load(record.id)
        raise ThoughtNotFoundError(trace_id, by="trace_id")

    async def get_thoughts_by_task_id(self, task_id: str) -> list[Thought]:
        async with self._lock:
            records = sorted(
                (r for r in self._records.values() if r.task_id == task_id),
                key=lambda r: (r.created_at, r.id),
            )
            return [self._load(r.id) for r in records]

    async def get_child_thoughts(self, parent_id: str) -> list[Thought]:
        async with self._lock:
            records = sorted(
                (r for r in self._records.values() if r.parent_id == parent_id),
                key=lambda r: (r.created_at, r.id),
            )
            return [self._load(r.id) for r in records]

    async def add_note(self, note: Note) -> None:
        async with self._lock:
            if note.thought_id not in self._records:
                raise ThoughtNotFoundError(note.thought_id)
            self._notes[note.thought_id].append(note.model_copy(deep=True))

    async def get_notes(self, thought_id: str) -> list[Note]:
        async with self._lock:
            if thought_id not in self._records:
                raise ThoughtNotFoundError(thought_id)
            return [n.model_copy(deep=True) for n in self._notes[thought_id]]

    async def update_thought(self, thought: Thought) -> None:
        async with self._lock:
            if thought.id not in self._records:
                raise ThoughtNotFoundError(thought.id)
            self._records[thought.id] = thought.record()

    async def delete_thought(self, thought_id: str) -> None:
        async with self._lock:
            if thought_id not in self._records:
                raise ThoughtNotFoundError(thought_id)
            del self._notes[thought_id]
            del self._records[thought_id]

    def _embedded_notes(self) -> list[tuple[Note, list[float]]]:
        return [
            (note, note.embedding)
            for notes in self._notes.values()
            for note in notes
            if note.embedding
        ]

    async def search_notes(self, embedding: list[float], limit: int) -> list[NoteWithThought]:
        async with self._lock:
            hits = rank_by_distance(embedding, self._embedded_notes(), limit)
            return [
                NoteWithThought(note=n.model_copy(deep=True), thought=self._load(n.thought_id))
                for n in hits
            ]

    async def search_notes_by_task(self, embedding: list[float], limit: int) -> list[Thought]:
        async with self._lock:
            candidates = self._embedded_notes()
            ordered = rank_by_distance(embedding, candidates, len(candidates))

            results = []
            seen_tasks = set()
            for note in ordered:
                task_id = self._records[note.thought_id].task_id
                if task_id is None or task_id in seen_tasks:
                    continue
                seen_tasks.add(task_id)
                latest = max(
                    (r for r in self._records.values() if r.task_id == task_id),
                    key=lambda r: (r.created_at, r.id),
                )
                results.append(self._load(latest.id))
                if len(results) >= limit:
                    break
            return results
