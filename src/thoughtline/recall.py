"""Recall and Reflect: summarize notes into a single new note.

Recall pulls in another thought's notes (for example an earlier branch);
Reflect consolidates the current thought's own notes. Neither advances
the publish cursor.
"""

from __future__ import annotations

import logging
from typing import Any

from . import synapse
from .constants import DEFAULT_REASONING_TEMPERATURE
from .errors import NotFoundError
from .provider import Provider
from .resolve import resolve_provider
from .step import Step
from .thought import Thought, render_notes

logger = logging.getLogger(__name__)


class _SummarizingStep(Step):
    default_prompt = ""

    def __init__(
        self,
        key: str,
        *,
        prompt: str | None = None,
        provider: Provider | None = None,
        temperature: float | None = None,
    ):
        super().__init__(key)
        self.prompt = prompt or self.default_prompt
        self.provider = provider
        self.temperature = temperature

    def _resolve(self) -> Provider:
        try:
            return resolve_provider(self.provider)
        except Exception as e:
            raise self.error("failed to resolve provider", e, phase="setup") from e

    async def _summarize(self, thought: Thought, provider: Provider, text: str) -> str:
        try:
            return await synapse.transform(
                provider,
                thought.session,
                self.prompt,
                text,
                temperature=(
                    self.temperature if self.temperature is not None
                    else DEFAULT_REASONING_TEMPERATURE
                ),
            )
        except Exception as e:
            raise self.error("summarization failed", e, phase="reasoning") from e

    def _completed_fields(self, thought: Thought) -> dict[str, Any]:
        note = thought.get_note(self.key)
        return {"content_size": len(note.content) if note else 0}


class Recall(_SummarizingStep):
    """Summarize another thought's notes into this thought."""

    step_type = "recall"
    default_prompt = "Summarize the key information, decisions, and outcomes"

    def __init__(self, key: str, thought_id: str, **options):
        super().__init__(key, **options)
        self.thought_id = thought_id

    async def _run(self, thought: Thought) -> Thought:
        provider = self._resolve()
        if thought.memory is None:
            raise self.error("thought has no memory store", phase="load")
        try:
            target = await thought.memory.get_thought(self.thought_id)
        except NotFoundError as e:
            raise self.error(f"failed to load thought {self.thought_id}", e, phase="load") from e

        notes = target.all_notes()
        if not notes:
            raise self.error(f"target thought {self.thought_id} has no notes", phase="load")

        summary = await self._summarize(thought, provider, render_notes(notes))
        await thought.set_note(
            self.key,
            summary,
            self.step_type,
            {"source_thought_id": self.thought_id, "source_note_count": str(len(notes))},
        )
        return thought


class Reflect(_SummarizingStep):
    """Consolidate this thought's notes (or only the unpublished ones)."""

    step_type = "reflect"
    default_prompt = (
        "Synthesize the accumulated context into key insights, decisions made, "
        "and important findings"
    )

    def __init__(self, key: str, *, unpublished_only: bool = False, **options):
        super().__init__(key, **options)
        self.unpublished_only = unpublished_only

    async def _run(self, thought: Thought) -> Thought:
        provider = self._resolve()
        notes = thought.unpublished_notes() if self.unpublished_only else thought.all_notes()
        if not notes:
            raise self.error("no notes to reflect on", phase="setup")

        summary = await self._summarize(thought, provider, render_notes(notes))
        await thought.set_note(
            self.key,
            summary,
            self.step_type,
            {
                "source_note_count": str(len(notes)),
                "unpublished_only": str(self.unpublished_only).lower(),
            },
        )
        return thought
