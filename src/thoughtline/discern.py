"""Discern: classify the context and hand the thought to the matching route."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from . import synapse
from .models import ClassificationResponse
from .provider import Provider
from .step import ReasoningStep, numbered, reasoning_metadata
from .thought import Thought

if TYPE_CHECKING:
    from .pipeline import Chainable

logger = logging.getLogger(__name__)


class Discern(ReasoningStep[ClassificationResponse]):
    """Semantic router.

    The primary category picks the route. With no matching route the
    fallback runs; with no fallback the thought passes through, still
    carrying the classification note.

    Routes may be added or removed while the router is in use. Dispatch
    works on a snapshot taken under the lock, so a route removed mid-call
    still finishes the call it was chosen for.
    """

    step_type = "discern"
    response_model = ClassificationResponse

    def __init__(
        self,
        key: str,
        question: str,
        categories: list[str],
        *,
        routes: dict[str, Chainable] | None = None,
        fallback: Chainable | None = None,
        **options,
    ):
        super().__init__(key, **options)
        if not categories:
            raise ValueError("discern requires at least one category")
        self.question = question
        self.categories = list(categories)
        self._lock = threading.RLock()
        self._routes: dict[str, Chainable] = dict(routes or {})
        self._fallback = fallback

    # --- Route table ---

    def add_route(self, category: str, unit: Chainable) -> "Discern":
        with self._lock:
            self._routes[category] = unit
        return self

    def remove_route(self, category: str) -> "Discern":
        with self._lock:
            self._routes.pop(category, None)
        return self

    def set_fallback(self, unit: Chainable | None) -> "Discern":
        with self._lock:
            self._fallback = unit
        return self

    def has_route(self, category: str) -> bool:
        with self._lock:
            return category in self._routes

    def routes(self) -> dict[str, Chainable]:
        """Copy of the route table."""
        with self._lock:
            return dict(self._routes)

    def clear_routes(self) -> "Discern":
        with self._lock:
            self._routes.clear()
        return self

    # --- Processing ---

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
        metadata = reasoning_metadata(response.confidence, response.reasoning)
        if response.secondary:
            metadata["secondary"] = response.secondary
        await thought.set_note(self.key, response.model_dump_json(), self.step_type, metadata)
        return response

    def describe(self, response: ClassificationResponse) -> str:
        return (
            f"Routing Decision: {response.primary} (confidence: {response.confidence:.2f})\n"
            f"Alternative: {response.secondary}\n"
            f"Reasoning:\n{numbered(response.reasoning)}"
        )

    async def dispatch(self, thought: Thought, response: ClassificationResponse) -> Thought:
        with self._lock:
            route = self._routes.get(response.primary)
            fallback = self._fallback

        if route is not None:
            logger.debug(f"discern {self.key!r}: routing to {response.primary!r}")
            try:
                return await route.process(thought)
            except Exception as e:
                raise self.error(f"route {response.primary!r} failed", e, phase="route") from e

        if fallback is not None:
            logger.debug(f"discern {self.key!r}: no route for {response.primary!r}, using fallback")
            try:
                return await fallback.process(thought)
            except Exception as e:
                raise self.error("fallback failed", e, phase="fallback") from e

        logger.debug(f"discern {self.key!r}: no route for {response.primary!r}, passing through")
        return thought

    def close(self) -> None:
        """Close every route and the fallback, raising all failures together."""
        with self._lock:
            units = list(self._routes.items())
            fallback = self._fallback

        errors: list[Exception] = []
        for category, unit in units:
            try:
                unit.close()
            except Exception as e:
                logger.warning(f"discern {self.key!r}: closing route {category!r} failed: {e}")
                errors.append(e)
        if fallback is not None:
            try:
                fallback.close()
            except Exception as e:
                logger.warning(f"discern {self.key!r}: closing fallback failed: {e}")
                errors.append(e)

        if errors:
            raise ExceptionGroup(f"discern {self.key!r}: {len(errors)} close errors", errors)
