"""Two-phase reasoning primitives.

Each primitive makes one typed reasoning call over the unpublished notes,
stores the JSON response under its key (with confidence and reasoning as
note metadata), optionally runs introspection, then publishes.

    decide = Decide("approved", "Is this refund request within policy?")
    thought = await decide.process(thought)
    decide.scan(thought).decision
"""

from __future__ import annotations

import json
import logging
from typing import Generic, TypeVar

from pydantic import BaseModel

from . import synapse
from .constants import TEMPERATURE_ANALYTICAL
from .errors import NoteNotFoundError, UpstreamError
from .models import BinaryResponse, ClassificationResponse, RankingResponse, SentimentResponse
from .provider import Provider
from .step import ReasoningStep, numbered, reasoning_metadata
from .thought import Thought

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class Decide(ReasoningStep[BinaryResponse]):
    """Binary yes/no decision on a question."""

    step_type = "decide"
    response_model = BinaryResponse

    def __init__(self, key: str, question: str, **options):
        super().__init__(key, **options)
        self.question = question

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
        return response

    def describe(self, response: BinaryResponse) -> str:
        return (
            f"Decision: {response.decision} (confidence: {response.confidence:.2f})\n"
            f"Reasoning:\n{numbered(response.reasoning)}"
        )


class Categorize(ReasoningStep[ClassificationResponse]):
    """Assign the unpublished context to one of a fixed set of categories."""

    step_type = "categorize"
    response_model = ClassificationResponse

    def __init__(self, key: str, question: str, categories: list[str], **options):
        super().__init__(key, **options)
        if not categories:
            raise ValueError("categorize requires at least one category")
        self.question = question
        self.categories = list(categories)

    async def reason(
        self, thought: Thought, provider: Provider, context: str
    ) -> ClassificationResponse:
        response = await synapse.classify(
            provider,
            thought.session,
            self.question,
            self.categories,
            context=context,
            temperature=self.resolved_temperature,
        )
        if response.primary not in self.categories:
            raise UpstreamError(
                f"categorize: category {response.primary!r} is not one of {self.categories}"
            )
        metadata = reasoning_metadata(response.confidence, response.reasoning)
        if response.secondary:
            metadata["secondary"] = response.secondary
        await thought.set_note(self.key, response.model_dump_json(), self.step_type, metadata)
        return response

    def describe(self, response: ClassificationResponse) -> str:
        text = f"Classification: {response.primary} (confidence: {response.confidence:.2f})\n"
        if response.secondary:
            text += f"Secondary: {response.secondary}\n"
        return text + f"Reasoning:\n{numbered(response.reasoning)}"


class Analyze(ReasoningStep[SchemaT], Generic[SchemaT]):
    """Extract structured data from the unpublished context into ``schema``."""

    step_type = "analyze"

    def __init__(self, key: str, what: str, schema: type[SchemaT], **options):
        super().__init__(key, **options)
        self.what = what
        self.schema = schema
        self.response_model = schema

    async def reason(self, thought: Thought, provider: Provider, context: str) -> SchemaT:
        extracted = await synapse.extract(
            provider,
            thought.session,
            self.what,
            self.schema,
            context=context,
            temperature=self.resolved_temperature,
        )
        await thought.set_content(self.key, extracted.model_dump_json(), self.step_type)
        return extracted

    def describe(self, response: SchemaT) -> str:
        return f"Extracted data:\n{response.model_dump_json(indent=2)}"


class Prioritize(ReasoningStep[RankingResponse]):
    """Rank items by criteria.

    Items come from ``items`` or from a note holding a JSON list of strings
    (``items_key``); explicit items win when both are given.
    """

    step_type = "prioritize"
    response_model = RankingResponse
    default_temperature = TEMPERATURE_ANALYTICAL

    def __init__(
        self,
        key: str,
        criteria: str,
        *,
        items: list[str] | None = None,
        items_key: str | None = None,
        **options,
    ):
        super().__init__(key, **options)
        self.criteria = criteria
        self.items = list(items) if items else None
        self.items_key = items_key

    def _items(self, thought: Thought) -> list[str]:
        if self.items:
            return self.items
        if not self.items_key:
            raise self.error("requires either explicit items or items_key", phase="setup")

        try:
            content = thought.get_content(self.items_key)
        except NoteNotFoundError as e:
            raise self.error(f"items note {self.items_key!r} not found", e, phase="setup") from e
        try:
            items = json.loads(content)
        except json.JSONDecodeError as e:
            raise self.error(
                f"failed to parse items from {self.items_key!r}", e, phase="setup"
            ) from e
        if not isinstance(items, list) or not all(isinstance(i, str) for i in items):
            raise self.error(f"items note {self.items_key!r} is not a list of strings", phase="setup")
        if not items:
            raise self.error("no items to rank", phase="setup")
        return items

    async def reason(self, thought: Thought, provider: Provider, context: str) -> RankingResponse:
        items = self._items(thought)
        response = await synapse.rank(
            provider,
            thought.session,
            self.criteria,
            items,
            context=context,
            temperature=self.resolved_temperature,
        )
        await thought.set_note(
            self.key,
            response.model_dump_json(),
            self.step_type,
            reasoning_metadata(response.confidence, response.reasoning),
        )
        return response

    def describe(self, response: RankingResponse) -> str:
        return (
            f"Ranked items (confidence: {response.confidence:.2f}):\n"
            f"{numbered(response.ranked)}"
            f"Reasoning:\n{numbered(response.reasoning)}"
        )


class Assess(ReasoningStep[SentimentResponse]):
    """Sentiment of the unpublished context."""

    step_type = "assess"
    response_model = SentimentResponse

    async def reason(self, thought: Thought, provider: Provider, context: str) -> SentimentResponse:
        response = await synapse.sentiment(
            provider,
            thought.session,
            context,
            temperature=self.resolved_temperature,
        )
        metadata = reasoning_metadata(response.confidence, response.reasoning)
        metadata["overall"] = response.overall
        await thought.set_note(self.key, response.model_dump_json(), self.step_type, metadata)
        return response

    def describe(self, response: SentimentResponse) -> str:
        text = f"Sentiment: {response.overall} (confidence: {response.confidence:.2f})\n"
        if response.emotions:
            text += f"Emotions: {', '.join(response.emotions)}\n"
        return text + f"Reasoning:\n{numbered(response.reasoning)}"
