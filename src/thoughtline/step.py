"""Base classes for primitives.

``Step`` is the chainable unit every primitive implements: it takes a
Thought, returns a Thought (the same one or a fork), and emits
started/completed/failed signals around the work.

``ReasoningStep`` adds the two-phase pattern:

1. Reasoning: a typed call at a deterministic temperature over the
   unpublished notes, whose result is stored as a note under ``key``.
2. Introspection (optional): a creative transform that turns the phase-1
   result plus the same unpublished notes into forward-looking context,
   stored under ``summary_key`` or ``{key}_summary``.

The publish cursor only moves after both phases succeed.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Generic, TypeVar

from .constants import (
    DEFAULT_INTROSPECTION,
    DEFAULT_INTROSPECTION_TEMPERATURE,
    DEFAULT_REASONING_TEMPERATURE,
)
from .errors import StepError
from .models import Note
from .provider import Provider
from .resolve import resolve_provider
from .signals import Signal, emit
from .synapse import transform
from .thought import Thought, render_notes

logger = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT")

INTROSPECTION_INSTRUCTION = "Synthesize this result into context for the next reasoning step."


def reasoning_metadata(confidence: float, reasoning: list[str]) -> dict[str, str]:
    """Derived note metadata: formatted confidence plus indexed reasoning."""
    metadata = {"confidence": f"{confidence:.2f}"}
    for i, reason in enumerate(reasoning):
        metadata[f"reasoning_{i}"] = reason
    return metadata


def numbered(lines: list[str]) -> str:
    return "".join(f"  {i}. {line}\n" for i, line in enumerate(lines, start=1))


class Step:
    """A unit of work over a Thought.

    Subclasses implement ``_run``; ``process`` wraps it with signals and
    turns unexpected failures into ``StepError``.
    """

    step_type = "step"

    def __init__(self, key: str):
        self.key = key

    @property
    def name(self) -> str:
        return self.key

    def __repr__(self) -> str:
        return f"{type(self).__name__}(key={self.key!r})"

    async def process(self, thought: Thought) -> Thought:
        start = time.perf_counter()
        emit(Signal.STEP_STARTED, **self._signal_fields(thought), **self._started_fields(thought))
        try:
            result = await self._run(thought)
        except StepError as e:
            self._emit_failed(thought, start, e)
            raise
        except Exception as e:
            error = self.error("failed", e)
            self._emit_failed(thought, start, error)
            raise error from e

        emit(
            Signal.STEP_COMPLETED,
            **self._signal_fields(result),
            step_duration=time.perf_counter() - start,
            note_count=len(result.all_notes()),
            **self._completed_fields(result),
        )
        return result

    async def _run(self, thought: Thought) -> Thought:
        raise NotImplementedError

    def close(self) -> None:
        """Release resources held by this unit. Default: nothing."""

    # --- helpers ---

    def error(
        self,
        message: str,
        cause: BaseException | None = None,
        *,
        phase: str | None = None,
        iteration: int | None = None,
    ) -> StepError:
        """Build a StepError for this step; use as ``raise self.error(...) from cause``."""
        err = StepError(self.step_type, message, key=self.key, phase=phase, iteration=iteration)
        err.__cause__ = cause
        return err

    def _signal_fields(self, thought: Thought) -> dict[str, Any]:
        return {"trace_id": thought.trace_id, "step_name": self.key, "step_type": self.step_type}

    def _started_fields(self, thought: Thought) -> dict[str, Any]:
        return {}

    def _completed_fields(self, thought: Thought) -> dict[str, Any]:
        return {}

    def _emit_failed(self, thought: Thought, start: float, error: Exception) -> None:
        logger.debug(f"{self.step_type} {self.key!r} failed: {error}")
        emit(
            Signal.STEP_FAILED,
            **self._signal_fields(thought),
            step_duration=time.perf_counter() - start,
            error=error,
        )


class ReasoningStep(Step, Generic[ResponseT]):
    """Two-phase primitive: reasoning call, optional introspection, publish.

    Subclasses implement ``reason`` (phase 1, which stores the result note
    and returns the typed response) and ``describe`` (the text handed to
    introspection). ``dispatch`` runs after publishing; routers override it.
    """

    default_temperature = DEFAULT_REASONING_TEMPERATURE
    response_model: Any = None
    introspection_style = (
        "Synthesize this result into rich semantic context for the next reasoning step. "
        "Focus on implications, actionable insights, and what future steps need to know. "
        "Be concise but comprehensive."
    )

    def __init__(
        self,
        key: str,
        *,
        provider: Provider | None = None,
        temperature: float | None = None,
        reasoning_temperature: float | None = None,
        introspection_temperature: float | None = None,
        introspection: bool | None = None,
        summary_key: str | None = None,
    ):
        super().__init__(key)
        self.provider = provider
        self.temperature = temperature
        self.reasoning_temperature = reasoning_temperature
        self.introspection_temperature = introspection_temperature
        self.introspection = DEFAULT_INTROSPECTION if introspection is None else introspection
        self.summary_key = summary_key

    @property
    def resolved_temperature(self) -> float:
        """Reasoning temperature: phase override, then step default, then type default."""
        if self.reasoning_temperature is not None:
            return self.reasoning_temperature
        if self.temperature is not None:
            return self.temperature
        return self.default_temperature

    @property
    def resolved_introspection_temperature(self) -> float:
        if self.introspection_temperature is not None:
            return self.introspection_temperature
        return DEFAULT_INTROSPECTION_TEMPERATURE

    @property
    def resolved_summary_key(self) -> str:
        return self.summary_key or f"{self.key}_summary"

    def _started_fields(self, thought: Thought) -> dict[str, Any]:
        return {
            "unpublished_count": len(thought.unpublished_notes()),
            "temperature": self.resolved_temperature,
        }

    def resolve(self) -> Provider:
        try:
            return resolve_provider(self.provider)
        except Exception as e:
            raise self.error("failed to resolve provider", e, phase="setup") from e

    async def reason(self, thought: Thought, provider: Provider, context: str) -> ResponseT:
        raise NotImplementedError

    def describe(self, response: ResponseT) -> str:
        raise NotImplementedError

    async def dispatch(self, thought: Thought, response: ResponseT) -> Thought:
        return thought

    def scan(self, thought: Thought) -> ResponseT:
        """Read back the typed response stored under ``key``."""
        return self.response_model.model_validate_json(thought.get_content(self.key))

    async def _run(self, thought: Thought) -> Thought:
        provider = self.resolve()
        unpublished = thought.unpublished_notes()
        context = render_notes(unpublished)

        try:
            response = await self.reason(thought, provider, context)
        except StepError:
            raise
        except Exception as e:
            raise self.error("reasoning failed", e, phase="reasoning") from e

        if self.introspection:
            try:
                await self.introspect(thought, provider, self.describe(response), unpublished)
            except Exception as e:
                raise self.error("introspection failed", e, phase="introspection") from e

        thought.mark_published()
        return await self.dispatch(thought, response)

    async def introspect(
        self,
        thought: Thought,
        provider: Provider,
        text: str,
        original_notes: list[Note],
    ) -> Note:
        """Phase 2: creative synthesis of ``text`` into a summary note."""
        summary = await transform(
            provider,
            thought.session,
            INTROSPECTION_INSTRUCTION,
            text,
            context=render_notes(original_notes),
            style=self.introspection_style,
            temperature=self.resolved_introspection_temperature,
        )
        note = await thought.set_content(
            self.resolved_summary_key, summary, f"{self.step_type}-introspection"
        )
        emit(
            Signal.INTROSPECTION_COMPLETED,
            trace_id=thought.trace_id,
            step_type=self.step_type,
            context_size=len(summary),
        )
        return note

