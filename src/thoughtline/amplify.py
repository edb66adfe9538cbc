"""Amplify: iterative refinement until a completion check passes."""

from __future__ import annotations

import logging

from . import synapse
from .constants import DEFAULT_MAX_ITERATIONS, DEFAULT_REASONING_TEMPERATURE
from .errors import NoteNotFoundError
from .models import AmplifyResult
from .provider import Provider
from .resolve import resolve_provider
from .signals import Signal, emit
from .step import Step
from .thought import Thought, render_notes

logger = logging.getLogger(__name__)


class Amplify(Step):
    """Refine the content of ``source_key`` until ``completion_criteria`` holds.

    Each iteration runs a transform (the refinement) followed by a binary
    completion check on the refined content. The loop ends on the first
    passing check or after ``max_iterations`` (values below 1 count as 1).
    Running out of iterations is not an error: the stored result has
    ``completed=False``.

    The stored ``AmplifyResult`` carries the reasoning of the last
    completion check only.
    """

    step_type = "amplify"

    def __init__(
        self,
        key: str,
        source_key: str,
        refinement_prompt: str,
        completion_criteria: str,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        *,
        provider: Provider | None = None,
        temperature: float | None = None,
        refinement_temperature: float | None = None,
        completion_temperature: float | None = None,
    ):
        super().__init__(key)
        self.source_key = source_key
        self.refinement_prompt = refinement_prompt
        self.completion_criteria = completion_criteria
        self.max_iterations = max(1, max_iterations)
        self.provider = provider
        self.temperature = temperature
        self.refinement_temperature = refinement_temperature
        self.completion_temperature = completion_temperature

    def _temperature(self, override: float | None) -> float:
        if override is not None:
            return override
        if self.temperature is not None:
            return self.temperature
        return DEFAULT_REASONING_TEMPERATURE

    def _started_fields(self, thought: Thought) -> dict:
        return {"unpublished_count": len(thought.unpublished_notes())}

    async def _run(self, thought: Thought) -> Thought:
        try:
            provider = resolve_provider(self.provider)
        except Exception as e:
            raise self.error("failed to resolve provider", e, phase="setup") from e

        try:
            content = thought.get_content(self.source_key)
        except NoteNotFoundError as e:
            raise self.error(f"source key {self.source_key!r} not found", e, phase="setup") from e

        note_context = render_notes(thought.unpublished_notes())
        refinement_temp = self._temperature(self.refinement_temperature)
        completion_temp = self._temperature(self.completion_temperature)

        iterations = 0
        completed = False
        reasoning: list[str] = []

        for iteration in range(1, self.max_iterations + 1):
            try:
                content = await synapse.transform(
                    provider,
                    thought.session,
                    self.refinement_prompt,
                    content,
                    context=note_context,
                    temperature=refinement_temp,
                )
            except Exception as e:
                raise self.error("refinement failed", e, phase="refinement", iteration=iteration) from e

            try:
                check = await synapse.binary(
                    provider,
                    thought.session,
                    self.completion_criteria,
                    context=f"Content to evaluate:\n{content}\n\nOriginal context:\n{note_context}",
                    temperature=completion_temp,
                )
            except Exception as e:
                raise self.error(
                    "completion check failed", e, phase="completion", iteration=iteration
                ) from e

            iterations = iteration
            reasoning = check.reasoning
            emit(
                Signal.AMPLIFY_ITERATION_COMPLETED,
                trace_id=thought.trace_id,
                step_name=self.key,
                iteration_count=iteration,
                decision=check.decision,
                confidence=check.confidence,
            )
            if check.decision:
                completed = True
                break

        if not completed:
            logger.info(f"amplify {self.key!r}: criteria not met after {iterations} iterations")

        result = AmplifyResult(
            content=content,
            iterations=iterations,
            completed=completed,
            reasoning=reasoning,
        )
        await thought.set_note(
            self.key,
            result.model_dump_json(),
            self.step_type,
            {"iterations": str(iterations), "completed": str(completed).lower()},
        )
        thought.mark_published()

        emit(
            Signal.AMPLIFY_COMPLETED,
            trace_id=thought.trace_id,
            step_name=self.key,
            iteration_count=iterations,
            decision=completed,
        )
        return thought

    def scan(self, thought: Thought) -> AmplifyResult:
        return AmplifyResult.model_validate_json(thought.get_content(self.key))
