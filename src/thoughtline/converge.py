"""Converge: run several units in parallel and synthesize their findings."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Any

from . import synapse
from .constants import DEFAULT_REASONING_TEMPERATURE
from .provider import Provider
from .resolve import resolve_provider
from .signals import Signal, emit
from .step import Step
from .thought import Thought, render_notes

if TYPE_CHECKING:
    from .pipeline import Chainable

logger = logging.getLogger(__name__)


class Converge(Step):
    """Fan out to independent clones, merge the new notes, then synthesize.

    Each unit gets its own ``clone()`` of the thought. Notes a branch adds
    are copied back onto the original thought (in unit order) with the
    source tagged ``"{source}[{branch}]"``. The step fails only when every
    branch fails; partial failures are logged and skipped.
    """

    step_type = "converge"

    def __init__(
        self,
        key: str,
        synthesis_prompt: str,
        *units: Chainable,
        provider: Provider | None = None,
        temperature: float | None = None,
        synthesis_temperature: float | None = None,
    ):
        super().__init__(key)
        self.synthesis_prompt = synthesis_prompt
        self.provider = provider
        self.temperature = temperature
        self.synthesis_temperature = synthesis_temperature
        self._lock = threading.Lock()
        self._units: list[Chainable] = list(units)

    def add_unit(self, unit: Chainable) -> "Converge":
        with self._lock:
            self._units.append(unit)
        return self

    def remove_unit(self, name: str) -> "Converge":
        with self._lock:
            self._units = [u for u in self._units if u.name != name]
        return self

    def clear_units(self) -> "Converge":
        with self._lock:
            self._units = []
        return self

    def units(self) -> list[Chainable]:
        with self._lock:
            return list(self._units)

    @property
    def resolved_temperature(self) -> float:
        if self.synthesis_temperature is not None:
            return self.synthesis_temperature
        if self.temperature is not None:
            return self.temperature
        return DEFAULT_REASONING_TEMPERATURE

    def _started_fields(self, thought: Thought) -> dict[str, Any]:
        return {
            "unpublished_count": len(thought.unpublished_notes()),
            "branch_count": len(self.units()),
            "temperature": self.resolved_temperature,
        }

    def _completed_fields(self, thought: Thought) -> dict[str, Any]:
        note = thought.get_note(self.key)
        return {"branch_count": int(note.metadata.get("branch_count", 0)) if note else 0}

    async def _branch(self, unit: Chainable, thought: Thought) -> Thought:
        emit(
            Signal.CONVERGE_BRANCH_STARTED,
            trace_id=thought.trace_id,
            step_name=self.key,
            branch_name=unit.name,
        )
        error = None
        try:
            return await unit.process(thought.clone())
        except Exception as e:
            error = e
            raise
        finally:
            emit(
                Signal.CONVERGE_BRANCH_COMPLETED,
                trace_id=thought.trace_id,
                step_name=self.key,
                branch_name=unit.name,
                error=error,
            )

    async def _run(self, thought: Thought) -> Thought:
        units = self.units()
        if not units:
            return thought

        try:
            provider = resolve_provider(self.provider)
        except Exception as e:
            raise self.error("failed to resolve provider", e, phase="setup") from e

        unpublished = thought.unpublished_notes()
        original_count = len(thought.all_notes())

        outcomes = await asyncio.gather(
            *(self._branch(unit, thought) for unit in units), return_exceptions=True
        )

        succeeded: list[tuple[str, Thought]] = []
        failures: list[Exception] = []
        for unit, outcome in zip(units, outcomes):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome  # cancellation
            if isinstance(outcome, Exception):
                logger.warning(f"converge {self.key!r}: branch {unit.name!r} failed: {outcome}")
                failures.append(outcome)
            else:
                succeeded.append((unit.name, outcome))

        if not succeeded:
            raise self.error(
                "all branches failed",
                ExceptionGroup(f"converge {self.key!r} branches", failures),
                phase="branches",
            )

        # Merge
        sections = ["=== PARALLEL ANALYSIS RESULTS ===\n"]
        for name, branch in succeeded:
            new_notes = branch.all_notes()[original_count:]
            sections.append(
                f"--- Branch: {name} ---\n"
                + "".join(f"{n.key}: {n.content}\n" for n in new_notes)
            )
            for note in new_notes:
                await thought.set_note(note.key, note.content, f"{note.source}[{name}]", note.metadata)
        merged = "\n".join(sections)

        emit(
            Signal.CONVERGE_SYNTHESIS_STARTED,
            trace_id=thought.trace_id,
            step_name=self.key,
            branch_count=len(succeeded),
        )
        try:
            synthesis = await synapse.transform(
                provider,
                thought.session,
                self.synthesis_prompt,
                merged,
                context=render_notes(unpublished),
                temperature=self.resolved_temperature,
            )
        except Exception as e:
            raise self.error("synthesis failed", e, phase="synthesis") from e

        await thought.set_note(
            self.key, synthesis, self.step_type, {"branch_count": str(len(succeeded))}
        )
        thought.mark_published()
        return thought

    def close(self) -> None:
        """Close every unit, raising all failures together."""
        errors: list[Exception] = []
        for unit in self.units():
            try:
                unit.close()
            except Exception as e:
                logger.warning(f"converge {self.key!r}: closing {unit.name!r} failed: {e}")
                errors.append(e)
        if errors:
            raise ExceptionGroup(f"converge {self.key!r}: {len(errors)} close errors", errors)
