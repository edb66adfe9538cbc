"""Branching operations over thought lineage.

Checkpoint, Restore and Forget each fork: they persist a new Thought with
a fresh trace id, a fresh session and a publish cursor of 0, copy notes
into it and return it. The input thought is never modified and remains
queryable as the parent.

A fresh branch has no history with the model, so every inherited note is
unpublished on the new thought.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from .errors import NotFoundError
from .models import Note
from .step import Step
from .thought import Thought

logger = logging.getLogger(__name__)


async def fork(
    source: Thought,
    notes: Iterable[Note],
    *,
    intent: str,
    parent_id: str,
    task_id: str | None = None,
) -> Thought:
    """Create and persist a child thought holding copies of ``notes``.

    Copies keep key, content, source, created and embedding; metadata is
    an independent mapping. A note that fails to persist aborts the fork;
    notes already written stay in the store.
    """
    if source.memory is None:
        raise ValueError("cannot fork a thought without a memory store")

    child = await Thought.create(
        source.memory,
        intent,
        task_id=task_id if task_id is not None else source.task_id,
        parent_id=parent_id,
        embedder=source.embedder,
    )
    for note in notes:
        await child.add_note(note.copy_for())
    return child


class Checkpoint(Step):
    """Snapshot the current notes into a new branch and continue on it."""

    step_type = "checkpoint"

    def _started_fields(self, thought: Thought) -> dict[str, Any]:
        return {"note_count": len(thought.all_notes())}

    async def _run(self, thought: Thought) -> Thought:
        try:
            return await fork(
                thought, thought.all_notes(), intent=thought.intent, parent_id=thought.id
            )
        except Exception as e:
            raise self.error("failed to fork thought", e, phase="fork") from e


class Restore(Step):
    """Branch from an earlier thought, loaded fresh from the store.

    The new thought takes the target's notes and intent, and its parent is
    the target (not the input thought). The task id also comes from the
    target, falling back to the input.
    """

    step_type = "restore"

    def __init__(self, key: str, thought_id: str):
        super().__init__(key)
        self.thought_id = thought_id

    async def _run(self, thought: Thought) -> Thought:
        if thought.memory is None:
            raise self.error("thought has no memory store", phase="load")
        try:
            target = await thought.memory.get_thought(self.thought_id)
        except NotFoundError as e:
            raise self.error(f"failed to load thought {self.thought_id}", e, phase="load") from e

        try:
            child = await fork(
                thought,
                target.all_notes(),
                intent=target.intent,
                parent_id=target.id,
                task_id=target.task_id,
            )
        except Exception as e:
            raise self.error("failed to fork thought", e, phase="fork") from e
        logger.info(f"Restored thought {target.id} into {child.id}")
        return child


class Forget(Step):
    """Branch with a filtered copy of the notes.

    A non-empty ``keep`` list wins over ``drop``: only those keys survive.
    Otherwise every key in ``drop`` is removed.
    """

    step_type = "forget"

    def __init__(
        self,
        key: str,
        *,
        drop: Iterable[str] = (),
        keep: Iterable[str] = (),
    ):
        super().__init__(key)
        self.drop = set(drop)
        self.keep = set(keep)

    def should_keep(self, note_key: str) -> bool:
        if self.keep:
            return note_key in self.keep
        return note_key not in self.drop

    def _started_fields(self, thought: Thought) -> dict[str, Any]:
        return {"note_count": len(thought.all_notes())}

    async def _run(self, thought: Thought) -> Thought:
        kept = [note for note in thought.all_notes() if self.should_keep(note.key)]
        try:
            return await fork(thought, kept, intent=thought.intent, parent_id=thought.id)
        except Exception as e:
            raise self.error("failed to fork thought", e, phase="fork") from e
