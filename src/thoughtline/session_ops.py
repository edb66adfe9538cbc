"""Session maintenance: Reset, Truncate and Compress.

These act on the conversational session only. Notes and the publish
cursor are untouched and no fork is made.
"""

from __future__ import annotations

import logging
from typing import Any

from . import synapse
from .constants import (
    DEFAULT_REASONING_TEMPERATURE,
    DEFAULT_TRUNCATE_KEEP_FIRST,
    DEFAULT_TRUNCATE_KEEP_LAST,
)
from .provider import Provider
from .resolve import resolve_provider
from .step import Step
from .thought import Thought

logger = logging.getLogger(__name__)


class Reset(Step):
    """Clear the session, optionally seeding one system message.

    The seed is ``system_message`` if given, else the content of the
    ``preserve_note`` note if that note exists, else nothing. A missing
    preserve note is not an error.
    """

    step_type = "reset"

    def __init__(
        self,
        key: str,
        *,
        system_message: str | None = None,
        preserve_note: str | None = None,
    ):
        super().__init__(key)
        self.system_message = system_message
        self.preserve_note = preserve_note

    def _seed(self, thought: Thought) -> str | None:
        if self.system_message:
            return self.system_message
        if self.preserve_note:
            note = thought.get_note(self.preserve_note)
            if note is not None:
                return note.content
            logger.debug(f"reset {self.key!r}: preserve note {self.preserve_note!r} not present")
        return None

    async def _run(self, thought: Thought) -> Thought:
        seed = self._seed(thought)
        thought.session.clear()
        if seed:
            thought.session.append("system", seed)
        return thought


class Truncate(Step):
    """Keep the first and last messages of a long session, dropping the middle.

    Acts only when the session has at least ``threshold`` messages (if a
    threshold is set) and more than ``keep_first + keep_last``. Otherwise
    the thought passes through with no signals emitted.
    """

    step_type = "truncate"

    def __init__(
        self,
        key: str,
        *,
        keep_first: int = DEFAULT_TRUNCATE_KEEP_FIRST,
        keep_last: int = DEFAULT_TRUNCATE_KEEP_LAST,
        threshold: int = 0,
    ):
        super().__init__(key)
        if keep_first < 0 or keep_last < 0:
            raise ValueError("keep_first and keep_last must be non-negative")
        self.keep_first = keep_first
        self.keep_last = keep_last
        self.threshold = threshold

    def applies_to(self, thought: Thought) -> bool:
        count = len(thought.session)
        if self.threshold > 0 and count < self.threshold:
            return False
        return count > self.keep_first + self.keep_last

    async def process(self, thought: Thought) -> Thought:
        if not self.applies_to(thought):
            return thought
        return await super().process(thought)

    def _started_fields(self, thought: Thought) -> dict[str, Any]:
        return {"message_count": len(thought.session)}

    async def _run(self, thought: Thought) -> Thought:
        removed = thought.session.truncate(self.keep_first, self.keep_last)
        logger.debug(f"truncate {self.key!r}: removed {removed} messages")
        return thought


class Compress(Step):
    """Replace a long session with a single system message summarizing it.

    The summary is also stored as a note under ``summary_key`` (or ``key``).
    Empty sessions and sessions shorter than ``threshold`` are left alone.
    """

    step_type = "compress"
    instruction = (
        "Summarize this conversation, preserving decisions made, facts established "
        "and open questions."
    )

    def __init__(
        self,
        key: str,
        *,
        threshold: int = 0,
        summary_key: str | None = None,
        provider: Provider | None = None,
        temperature: float | None = None,
    ):
        super().__init__(key)
        self.threshold = threshold
        self.summary_key = summary_key
        self.provider = provider
        self.temperature = temperature

    async def _run(self, thought: Thought) -> Thought:
        count = len(thought.session)
        if count == 0 or (self.threshold > 0 and count < self.threshold):
            return thought

        try:
            provider = resolve_provider(self.provider)
        except Exception as e:
            raise self.error("failed to resolve provider", e, phase="setup") from e

        history = "".join(f"{m.role}: {m.content}\n\n" for m in thought.session.messages())
        try:
            summary = await synapse.transform(
                provider,
                thought.session,
                self.instruction,
                history,
                temperature=(
                    self.temperature if self.temperature is not None
                    else DEFAULT_REASONING_TEMPERATURE
                ),
            )
        except Exception as e:
            raise self.error("summarization failed", e, phase="reasoning") from e

        await thought.set_content(self.summary_key or self.key, summary, self.step_type)

        thought.session.clear()
        thought.session.append("system", f"Previous conversation summary:\n{summary}")
        logger.info(f"compress {self.key!r}: {count} messages -> 1")
        return thought
