"""Tests for composition: Apply, Sequence and the resilience wrappers."""

import asyncio

import pytest

from thoughtline.models import ProviderResponse
from thoughtline.pipeline import Apply, Backoff, Chainable, Retry, Sequence, Timeout, do
from thoughtline.reasoning import Decide
from thoughtline.session_ops import Truncate

from conftest import Recorder, add_notes, binary_reply


class Flaky:
    """Fails ``failures`` times, then succeeds."""

    name = "flaky"

    def __init__(self, failures):
        self.failures = failures
        self.attempts = 0

    async def process(self, thought):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise RuntimeError(f"attempt {self.attempts} failed")
        return thought

    def close(self):
        pass


class SlowProvider:
    async def call(self, messages, temperature):
        await asyncio.sleep(5)
        return ProviderResponse(content="{}")


class TestApply:
    """Function units."""

    async def test_sync_function(self, thought):
        seen = []
        result = await do("log", seen.append).process(thought)
        assert result is thought
        assert seen == [thought]

    async def test_async_function(self, thought):
        async def tag(t):
            await t.set_content("tag", "vip", "apply")
            return t

        result = await Apply("tag", tag).process(thought)
        assert result.get_content("tag") == "vip"

    def test_is_chainable(self):
        assert isinstance(Apply("x", lambda t: t), Chainable)
        assert isinstance(Truncate("trim"), Chainable)
        assert isinstance(Retry(Recorder(), 2), Chainable)


class TestSequence:
    """Units run in order on the previous output."""

    async def test_order(self, thought, provider):
        provider.queue(binary_reply(True))
        order = []
        unit = Sequence(
            "flow",
            do("first", lambda t: order.append("first")),
            Decide("ok", "Is it ok?"),
            do("last", lambda t: order.append(t.get_content("ok"))),
        )
        await unit.process(thought)
        assert order[0] == "first"
        assert '"decision":true' in order[1]

    def test_close_aggregates(self):
        class BadClose(Recorder):
            def close(self):
                raise RuntimeError("close failed")

        healthy = Recorder()
        with pytest.raises(ExceptionGroup):
            Sequence("flow", BadClose(), healthy).close()
        assert healthy.closed


class TestRetry:
    """Retry and Backoff."""

    async def test_succeeds_after_failures(self, thought):
        flaky = Flaky(failures=2)
        result = await Retry(flaky, attempts=3).process(thought)
        assert result is thought
        assert flaky.attempts == 3

    async def test_gives_up(self, thought):
        flaky = Flaky(failures=5)
        with pytest.raises(RuntimeError, match="attempt 3 failed"):
            await Retry(flaky, attempts=3).process(thought)
        assert flaky.attempts == 3

    async def test_attempts_floor(self, thought):
        flaky = Flaky(failures=1)
        with pytest.raises(RuntimeError):
            await Retry(flaky, attempts=0).process(thought)
        assert flaky.attempts == 1

    async def test_backoff_delays(self, thought, monkeypatch):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)
        await Backoff(Flaky(failures=2), attempts=3, base_delay=0.5).process(thought)
        assert delays == [0.5, 1.0]

    def test_name_and_close_delegate(self):
        inner = Recorder("inner")
        wrapped = Timeout(Retry(inner), seconds=1)
        assert wrapped.name == "inner"
        wrapped.close()
        assert inner.closed


class TestTimeout:
    """Timeout cancels the inner unit."""

    async def test_fast_unit(self, thought):
        result = await Timeout(Recorder(), seconds=1).process(thought)
        assert result.get_content("recorder_ran") == "yes"

    async def test_cancelled_step_does_not_publish(self, thought):
        await add_notes(thought, ("a", "1"))
        step = Decide("d", "q", provider=SlowProvider())

        with pytest.raises(TimeoutError):
            await Timeout(step, seconds=0.05).process(thought)

        assert thought.published_count == 0
        assert thought.get_note("d") is None
        assert len(thought.session) == 0
