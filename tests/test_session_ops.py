"""Tests for Session and the Reset / Truncate / Compress primitives."""

import pytest

from thoughtline.errors import StepError
from thoughtline.session import Session
from thoughtline.session_ops import Compress, Reset, Truncate
from thoughtline.signals import Signal

from conftest import ScriptedProvider, add_notes, signals_of


def fill(session: Session, count: int) -> None:
    for i in range(count):
        session.append("user" if i % 2 == 0 else "assistant", f"m{i}")


class TestSession:
    """Session basics."""

    def test_append_and_len(self):
        session = Session()
        session.append("system", "be terse")
        session.append("user", "hi")
        assert len(session) == 2
        assert session.messages()[0].role == "system"

    def test_messages_returns_copies(self):
        session = Session()
        session.append("user", "hi")
        session.messages()[0].content = "changed"
        assert session.messages()[0].content == "hi"

    def test_set_messages_and_copy(self):
        source = Session()
        source.append("user", "hi")
        target = Session()
        target.set_messages(source.messages())
        clone = target.copy()
        clone.append("assistant", "hello")
        assert len(target) == 1
        assert len(clone) == 2

    def test_truncate_keeps_head_and_tail(self):
        session = Session()
        fill(session, 10)
        removed = session.truncate(1, 3)
        assert removed == 6
        assert [m.content for m in session.messages()] == ["m0", "m7", "m8", "m9"]

    def test_truncate_zero_tail(self):
        session = Session()
        fill(session, 5)
        session.truncate(2, 0)
        assert [m.content for m in session.messages()] == ["m0", "m1"]

    def test_truncate_short_session_is_noop(self):
        session = Session()
        fill(session, 3)
        assert session.truncate(1, 3) == 0
        assert len(session) == 3

    def test_truncate_rejects_negative(self):
        with pytest.raises(ValueError):
            Session().truncate(-1, 2)


class TestTruncate:
    """Truncate primitive."""

    async def test_truncate_ten_to_four(self, thought):
        """keep_first=1, keep_last=3 on 10 messages leaves 4."""
        fill(thought.session, 10)
        first = thought.session.messages()[0]
        last = thought.session.messages()[-1]

        result = await Truncate("trim", keep_first=1, keep_last=3).process(thought)

        messages = result.session.messages()
        assert len(messages) == 4
        assert messages[0] == first
        assert messages[-1] == last

    async def test_below_threshold_is_noop(self, thought, events):
        fill(thought.session, 10)
        result = await Truncate("trim", keep_first=1, keep_last=3, threshold=20).process(thought)
        assert len(result.session) == 10
        assert signals_of(events, Signal.STEP_STARTED) == []

    async def test_already_short_is_noop(self, thought):
        fill(thought.session, 4)
        await Truncate("trim", keep_first=1, keep_last=3).process(thought)
        assert len(thought.session) == 4

    async def test_idempotent(self, thought):
        fill(thought.session, 10)
        step = Truncate("trim", keep_first=1, keep_last=3)
        await step.process(thought)
        snapshot = thought.session.messages()
        await step.process(thought)
        assert thought.session.messages() == snapshot

    async def test_notes_and_cursor_untouched(self, thought):
        await add_notes(thought, ("a", "1"))
        fill(thought.session, 15)
        await Truncate("trim").process(thought)
        assert len(thought.session) == 11
        assert len(thought.all_notes()) == 1
        assert thought.published_count == 0


class TestReset:
    """Reset clears or reseeds the session in place."""

    async def test_clears_session(self, thought):
        fill(thought.session, 6)
        trace_id = thought.trace_id
        result = await Reset("reset").process(thought)
        assert result is thought
        assert len(thought.session) == 0
        assert thought.trace_id == trace_id

    async def test_seeds_literal_system_message(self, thought):
        fill(thought.session, 6)
        await Reset("reset", system_message="You are a support agent").process(thought)
        messages = thought.session.messages()
        assert len(messages) == 1
        assert messages[0].role == "system"
        assert messages[0].content == "You are a support agent"

    async def test_seeds_from_note(self, thought):
        await add_notes(thought, ("persona", "Be concise"))
        fill(thought.session, 6)
        await Reset("reset", preserve_note="persona").process(thought)
        assert thought.session.messages()[0].content == "Be concise"

    async def test_literal_wins_over_note(self, thought):
        await add_notes(thought, ("persona", "Be concise"))
        await Reset("reset", system_message="literal", preserve_note="persona").process(thought)
        assert thought.session.messages()[0].content == "literal"

    async def test_missing_preserve_note_is_not_an_error(self, thought):
        fill(thought.session, 3)
        await Reset("reset", preserve_note="absent").process(thought)
        assert len(thought.session) == 0

    async def test_notes_untouched(self, thought):
        await add_notes(thought, ("a", "1"), ("b", "2"))
        thought.mark_published()
        await Reset("reset").process(thought)
        assert len(thought.all_notes()) == 2
        assert thought.published_count == 2


class TestCompress:
    """Compress summarizes the session into one system message."""

    async def test_compress_replaces_session(self, thought):
        provider = ScriptedProvider("User asked about refunds; agent approved.")
        fill(thought.session, 6)

        await Compress("history", provider=provider).process(thought)

        messages = thought.session.messages()
        assert len(messages) == 1
        assert messages[0].role == "system"
        assert messages[0].content.startswith("Previous conversation summary:\n")
        assert thought.get_content("history") == "User asked about refunds; agent approved."
        assert thought.get_note("history").source == "compress"
        assert "user: m0" in provider.prompt()

    async def test_summary_key(self, thought):
        provider = ScriptedProvider("summary")
        fill(thought.session, 2)
        await Compress("history", summary_key="recap", provider=provider).process(thought)
        assert thought.get_content("recap") == "summary"

    async def test_empty_session_is_noop(self, thought):
        provider = ScriptedProvider()
        await Compress("history", provider=provider).process(thought)
        assert provider.calls == []
        assert thought.all_notes() == []

    async def test_below_threshold_is_noop(self, thought):
        provider = ScriptedProvider()
        fill(thought.session, 3)
        await Compress("history", threshold=10, provider=provider).process(thought)
        assert provider.calls == []
        assert len(thought.session) == 3

    async def test_provider_failure_keeps_session(self, thought):
        provider = ScriptedProvider(RuntimeError("backend down"))
        fill(thought.session, 4)
        with pytest.raises(StepError):
            await Compress("history", provider=provider).process(thought)
        assert len(thought.session) == 4
