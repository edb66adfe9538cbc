"""Minimal composition surface for primitives.

Anything with a ``name``, an async ``process(thought)`` and a ``close()``
is a ``Chainable``; every primitive in this package is one. The wrappers
here (Retry, Backoff, Timeout) treat the inner unit as opaque and
delegate to it, so they stack in any order:

    unit = Timeout(Retry(Decide("ok", "Is the draft ready?"), attempts=3), seconds=30)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Protocol, runtime_checkable

from .thought import Thought

logger = logging.getLogger(__name__)


@runtime_checkable
class Chainable(Protocol):
    """A unit of work: takes a Thought, returns a Thought, or raises."""

    @property
    def name(self) -> str: ...

    async def process(self, thought: Thought) -> Thought: ...

    def close(self) -> None: ...


class Apply:
    """Wrap a function as a unit.

    ``fn`` may be sync or async and may return a Thought; returning None
    passes the input thought through (side-effect only).
    """

    def __init__(self, name: str, fn: Callable[[Thought], Thought | None | Awaitable[Thought | None]]):
        self._name = name
        self.fn = fn

    @property
    def name(self) -> str:
        return self._name

    async def process(self, thought: Thought) -> Thought:
        result = self.fn(thought)
        if inspect.isawaitable(result):
            result = await result
        return thought if result is None else result

    def close(self) -> None:
        pass


def do(name: str, fn: Callable[[Thought], Thought | None | Awaitable[Thought | None]]) -> Apply:
    return Apply(name, fn)


class Sequence:
    """Run units one after another, each receiving the previous output."""

    def __init__(self, name: str, *units: Chainable):
        self._name = name
        self.units = list(units)

    @property
    def name(self) -> str:
        return self._name

    async def process(self, thought: Thought) -> Thought:
        for unit in self.units:
            thought = await unit.process(thought)
        return thought

    def close(self) -> None:
        errors: list[Exception] = []
        for unit in self.units:
            try:
                unit.close()
            except Exception as e:
                errors.append(e)
        if errors:
            raise ExceptionGroup(f"sequence {self._name!r}: {len(errors)} close errors", errors)


class _Wrapper:
    """Base for decorators that delegate to one inner unit."""

    def __init__(self, unit: Chainable):
        self.unit = unit

    @property
    def name(self) -> str:
        return self.unit.name

    async def process(self, thought: Thought) -> Thought:
        return await self.unit.process(thought)

    def close(self) -> None:
        self.unit.close()


class Retry(_Wrapper):
    """Re-run the inner unit on failure, up to ``attempts`` times in total.

    Each attempt gets the same input thought, so units that fork are safe
    to retry; units that append in place may leave notes from a failed
    attempt behind.
    """

    def __init__(self, unit: Chainable, attempts: int = 3):
        super().__init__(unit)
        self.attempts = max(1, attempts)

    async def _pause(self, attempt: int) -> None:
        pass

    async def process(self, thought: Thought) -> Thought:
        attempt = 1
        while True:
            try:
                return await self.unit.process(thought)
            except Exception as e:
                if attempt >= self.attempts:
                    raise
                logger.info(f"{self.name}: attempt {attempt}/{self.attempts} failed: {e}")
                await self._pause(attempt)
                attempt += 1


class Backoff(Retry):
    """Retry with exponential delay: ``base_delay * 2 ** (attempt - 1)``."""

    def __init__(self, unit: Chainable, attempts: int = 3, base_delay: float = 0.5):
        super().__init__(unit, attempts)
        self.base_delay = base_delay

    async def _pause(self, attempt: int) -> None:
        await asyncio.sleep(self.base_delay * 2 ** (attempt - 1))


class Timeout(_Wrapper):
    """Cancel the inner unit if it runs longer than ``seconds``.

    Raises ``TimeoutError``. The inner unit is cancelled, so primitives
    never advance the publish cursor for a timed-out call.
    """

    def __init__(self, unit: Chainable, seconds: float):
        super().__init__(unit)
        self.seconds = seconds

    async def process(self, thought: Thought) -> Thought:
        return await asyncio.wait_for(self.unit.process(thought), timeout=self.seconds)
