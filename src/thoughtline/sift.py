"""Sift: run a wrapped unit only when a yes/no question is answered yes."""

from __future__ import annotations

from typing import TYPE_CHECKING

from . import synapse
from .models import BinaryResponse
from .provider import Provider
from .signals import Signal, emit
from .step import ReasoningStep, numbered, reasoning_metadata
from .thought import Thought

if TYPE_CHECKING:
    from .pipeline import Chainable


class Sift(ReasoningStep[BinaryResponse]):
    """Semantic gate.

    The decision note is stored and published whether or not the gate
    opens; on "no" the thought passes through untouched by ``unit``.
    """

    step_type = "sift"
    response_model = BinaryResponse

    def __init__(self, key: str, question: str, unit: Chainable, **options):
        super().__init__(key, **options)
        self.question = question
        self.unit = unit

    def set_unit(self, unit: Chainable) -> "Sift":
        self.unit = unit
        return self

    async def reason(self, thought: Thought, provider: Provider, context: str) -> BinaryResponse:
        response = await synapse.binary(
            provider,
            thought.session,
            self.question,
            context=context,
            temperature=self.resolved_temperature,
        )
        await thought.set_note(
            self.key,
            response.model_dump_json(),
            self.step_type,
            reasoning_metadata(response.confidence, response.reasoning),
        )
        emit(
            Signal.SIFT_DECIDED,
            trace_id=thought.trace_id,
            step_name=self.key,
            decision=response.decision,
            confidence=response.confidence,
        )
        return response

    def describe(self, response: BinaryResponse) -> str:
        return (
            f"Gate Decision: {response.decision} (confidence: {response.confidence:.2f})\n"
            f"Question: {self.question}\n"
            f"Reasoning:\n{numbered(response.reasoning)}"
        )

    async def dispatch(self, thought: Thought, response: BinaryResponse) -> Thought:
        if not response.decision:
            return thought
        try:
            return await self.unit.process(thought)
        except Exception as e:
            raise self.error(f"unit {self.unit.name!r} failed", e, phase="unit") from e

    def close(self) -> None:
        self.unit.close()
