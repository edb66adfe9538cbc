"""Seek and Survey: semantic search over stored notes.

Both embed a query, search the memory store and synthesize whatever they
find into a note. With no hits a fixed message is stored instead and no
reasoning call is made.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from . import synapse
from .constants import (
    DEFAULT_REASONING_TEMPERATURE,
    DEFAULT_SEEK_LIMIT,
    DEFAULT_SURVEY_LIMIT,
    SURVEY_CONTENT_PREVIEW,
)
from .memory import NoteWithThought
from .provider import Embedder, Provider
from .resolve import resolve_embedder, resolve_provider
from .signals import Signal, emit
from .step import Step
from .thought import Thought

logger = logging.getLogger(__name__)

NO_NOTES_FOUND = "No relevant historical notes found."
NO_TASKS_FOUND = "No related tasks found."


def truncate_content(content: str, limit: int) -> str:
    """Cut ``content`` to ``limit`` characters, ending in "..." when cut."""
    if len(content) <= limit:
        return content
    return content[: max(limit - 3, 0)] + "..."


@dataclass
class SeekResult:
    query: str
    notes: list[NoteWithThought] = field(default_factory=list)
    summary: str = ""


@dataclass
class SurveyResult:
    query: str
    thoughts: list[Thought] = field(default_factory=list)
    summary: str = ""


class _SearchStep(Step):
    default_limit = DEFAULT_SEEK_LIMIT
    instruction = ""
    style = ""

    def __init__(
        self,
        key: str,
        query: str,
        *,
        limit: int | None = None,
        summary_key: str | None = None,
        provider: Provider | None = None,
        embedder: Embedder | None = None,
        temperature: float | None = None,
    ):
        super().__init__(key)
        self.query = query
        self.limit = limit if limit and limit > 0 else self.default_limit
        self.summary_key = summary_key
        self.provider = provider
        self.embedder = embedder
        self.temperature = temperature

    def _started_fields(self, thought: Thought) -> dict[str, Any]:
        return {"search_query": self.query, "search_limit": self.limit}

    def _completed_fields(self, thought: Thought) -> dict[str, Any]:
        note = thought.get_note(self.summary_key or self.key)
        return {"result_count": int(note.metadata.get("result_count", 0)) if note else 0}

    async def _embed_query(self, thought: Thought) -> list[float]:
        try:
            embedder = resolve_embedder(self.embedder or thought.embedder)
        except Exception as e:
            raise self.error("failed to resolve embedder", e, phase="setup") from e
        try:
            return await embedder.embed(self.query)
        except Exception as e:
            raise self.error("failed to embed query", e, phase="embed") from e

    async def _synthesize(self, thought: Thought, text: str, context: str) -> str:
        try:
            provider = resolve_provider(self.provider)
        except Exception as e:
            raise self.error("failed to resolve provider", e, phase="setup") from e
        try:
            return await synapse.transform(
                provider,
                thought.session,
                self.instruction,
                text,
                context=context,
                style=self.style,
                temperature=(
                    self.temperature if self.temperature is not None
                    else DEFAULT_REASONING_TEMPERATURE
                ),
            )
        except Exception as e:
            raise self.error("synthesis failed", e, phase="reasoning") from e

    def _memory(self, thought: Thought):
        if thought.memory is None:
            raise self.error("thought has no memory store", phase="search")
        return thought.memory


class Seek(_SearchStep):
    """Find notes similar to ``query`` across all stored thoughts."""

    step_type = "seek"
    default_limit = DEFAULT_SEEK_LIMIT
    instruction = "Synthesize search results into relevant context"

    def __init__(self, key: str, query: str, **options):
        super().__init__(key, query, **options)
        self.last_result: SeekResult | None = None

    async def _run(self, thought: Thought) -> Thought:
        memory = self._memory(thought)
        vector = await self._embed_query(thought)
        try:
            hits = await memory.search_notes(vector, self.limit)
        except Exception as e:
            raise self.error("search failed", e, phase="search") from e

        emit(
            Signal.SEEK_RESULTS_FOUND,
            trace_id=thought.trace_id,
            step_name=self.key,
            search_query=self.query,
            result_count=len(hits),
        )

        if hits:
            blocks = [
                f"--- Result {i} ---\n"
                f"Thought: {hit.thought.intent}\n"
                f"Note Key: {hit.note.key}\n"
                f"Content: {hit.note.content}\n"
                for i, hit in enumerate(hits, start=1)
            ]
            summary = await self._synthesize(
                thought,
                "\n".join(blocks),
                f"Query: {self.query}\n\n"
                "Synthesize the relevant information from these search results.",
            )
        else:
            summary = NO_NOTES_FOUND

        self.last_result = SeekResult(query=self.query, notes=hits, summary=summary)
        await thought.set_note(
            self.summary_key or self.key,
            summary,
            self.step_type,
            {"result_count": str(len(hits))},
        )
        return thought

    def scan(self) -> SeekResult | None:
        return self.last_result


class Survey(_SearchStep):
    """Find related tasks: the most recent thought of each task with similar notes."""

    step_type = "survey"
    default_limit = DEFAULT_SURVEY_LIMIT
    instruction = "Synthesize task summaries into relevant context"
    style = "analytical summary identifying common themes and notable differences across tasks"

    def __init__(self, key: str, query: str, **options):
        super().__init__(key, query, **options)
        self.last_result: SurveyResult | None = None

    async def _run(self, thought: Thought) -> Thought:
        memory = self._memory(thought)
        vector = await self._embed_query(thought)
        try:
            thoughts = await memory.search_notes_by_task(vector, self.limit)
        except Exception as e:
            raise self.error("search failed", e, phase="search") from e

        emit(
            Signal.SURVEY_RESULTS_FOUND,
            trace_id=thought.trace_id,
            step_name=self.key,
            search_query=self.query,
            result_count=len(thoughts),
        )

        if thoughts:
            blocks = []
            for i, related in enumerate(thoughts, start=1):
                lines = [
                    f"--- Task {i} ---",
                    f"Intent: {related.intent}",
                    f"Created: {related.created_at.isoformat(timespec='seconds')}",
                    "Notes:",
                ]
                lines += [
                    f"  - {n.key}: {truncate_content(n.content, SURVEY_CONTENT_PREVIEW)}"
                    for n in related.all_notes()
                ]
                blocks.append("\n".join(lines) + "\n")
            summary = await self._synthesize(
                thought,
                "\n".join(blocks),
                f"Query: {self.query}\n\n"
                "Synthesize insights from these related tasks, highlighting patterns and key learnings.",
            )
        else:
            summary = NO_TASKS_FOUND

        self.last_result = SurveyResult(query=self.query, thoughts=thoughts, summary=summary)
        await thought.set_note(
            self.summary_key or self.key,
            summary,
            self.step_type,
            {"result_count": str(len(thoughts))},
        )
        return thought

    def scan(self) -> SurveyResult | None:
        return self.last_result
