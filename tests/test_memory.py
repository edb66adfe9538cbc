"""Contract tests run against both memory stores."""

import asyncio
import sqlite3
from datetime import timedelta

import pytest

from thoughtline.errors import NotFoundError, PersistenceError, ThoughtNotFoundError
from thoughtline.memory import InMemoryMemory
from thoughtline.models import Note, utc_now
from thoughtline.store import SQLiteMemory
from thoughtline.thought import Thought

from conftest import KeywordEmbedder, add_notes


@pytest.fixture(params=["memory", "sqlite"])
async def store(request, temp_db_path):
    """Run each test against InMemoryMemory and SQLiteMemory."""
    if request.param == "memory":
        yield InMemoryMemory()
    else:
        sqlite_store = SQLiteMemory(temp_db_path)
        yield sqlite_store
        await sqlite_store.close()


async def create_at(store, intent, offset_seconds, **kwargs):
    """Create a thought with a created_at offset from now, for ordering."""
    stamp = utc_now() + timedelta(seconds=offset_seconds)
    thought = Thought(intent, memory=store, created_at=stamp, **kwargs)
    await store.create_thought(thought)
    return thought


class TestThoughtCrud:
    """Create, load, update and delete."""

    async def test_create_and_get(self, store):
        thought = await Thought.create(store, "triage", task_id="t1")
        loaded = await store.get_thought(thought.id)
        assert loaded.id == thought.id
        assert loaded.intent == "triage"
        assert loaded.trace_id == thought.trace_id
        assert loaded.task_id == "t1"
        assert loaded.memory is store

    async def test_get_missing(self, store):
        with pytest.raises(ThoughtNotFoundError) as exc:
            await store.get_thought("nope")
        assert isinstance(exc.value, NotFoundError)

    async def test_get_by_trace_id(self, store):
        thought = await Thought.create(store, "triage")
        loaded = await store.get_thought_by_trace_id(thought.trace_id)
        assert loaded.id == thought.id
        with pytest.raises(ThoughtNotFoundError):
            await store.get_thought_by_trace_id("missing-trace")

    async def test_loaded_thought_is_fresh(self, store):
        """Hydration gives a new session, the stored notes and the stored cursor."""
        thought = await Thought.create(store, "triage")
        await add_notes(thought, ("a", "1"), ("b", "2"), ("c", "3"))
        thought.set_published_count(2)
        thought.session.append("user", "hi")
        await thought.save()

        loaded = await store.get_thought(thought.id)
        assert [n.key for n in loaded.all_notes()] == ["a", "b", "c"]
        assert loaded.published_count == 2
        assert [n.key for n in loaded.unpublished_notes()] == ["c"]
        assert len(loaded.session) == 0

    async def test_notes_round_trip(self, store):
        thought = await Thought.create(store, "triage")
        await thought.set_note("k", "v", "decide", {"confidence": "0.90"})
        [note] = await store.get_notes(thought.id)
        assert note.key == "k"
        assert note.content == "v"
        assert note.source == "decide"
        assert note.metadata == {"confidence": "0.90"}
        assert note.thought_id == thought.id
        assert note.created is not None

    async def test_add_note_to_missing_thought(self, store):
        with pytest.raises(ThoughtNotFoundError):
            await store.add_note(Note(thought_id="nope", key="k", content="v", created=utc_now()))

    async def test_update_missing(self, store):
        with pytest.raises(ThoughtNotFoundError):
            await store.update_thought(Thought("ghost", id="nope"))

    async def test_delete(self, store):
        thought = await Thought.create(store, "triage")
        await add_notes(thought, ("a", "1"))
        await store.delete_thought(thought.id)
        with pytest.raises(ThoughtNotFoundError):
            await store.get_thought(thought.id)
        with pytest.raises(ThoughtNotFoundError):
            await store.delete_thought(thought.id)


class TestLineageQueries:
    """Task and parent queries."""

    async def test_thoughts_by_task_oldest_first(self, store):
        second = await create_at(store, "second", 10, task_id="t1")
        first = await create_at(store, "first", 0, task_id="t1")
        await create_at(store, "other", 5, task_id="t2")

        thoughts = await store.get_thoughts_by_task_id("t1")
        assert [t.id for t in thoughts] == [first.id, second.id]

    async def test_child_thoughts(self, store):
        parent = await Thought.create(store, "parent")
        child = await Thought.create(store, "child", parent_id=parent.id)
        await Thought.create(store, "unrelated")

        children = await store.get_child_thoughts(parent.id)
        assert [c.id for c in children] == [child.id]
        assert await store.get_child_thoughts(child.id) == []

    async def test_lineage(self, store):
        root = await Thought.create(store, "root")
        middle = await Thought.create(store, "middle", parent_id=root.id)
        leaf = await Thought.create(store, "leaf", parent_id=middle.id)

        chain = await store.lineage(leaf.id)
        assert [t.id for t in chain] == [leaf.id, middle.id, root.id]


class TestSearch:
    """Similarity search over embedded notes."""

    async def test_search_notes(self, store):
        embedder = KeywordEmbedder()
        billing = await Thought.create(store, "billing", embedder=embedder)
        outage = await Thought.create(store, "outage", embedder=embedder)
        await billing.set_content("issue", "billing refund invoice", "test")
        await outage.set_content("issue", "outage latency", "test")

        query = await embedder.embed("refund for billing")
        hits = await store.search_notes(query, 1)
        assert len(hits) == 1
        assert hits[0].note.content == "billing refund invoice"
        assert hits[0].thought.id == billing.id

    async def test_search_skips_unembedded_notes(self, store):
        thought = await Thought.create(store, "plain")
        await add_notes(thought, ("a", "billing"))
        assert await store.search_notes([1.0] * 8, 5) == []

    async def test_search_by_task_returns_latest_per_task(self, store):
        embedder = KeywordEmbedder()
        early = await create_at(store, "early", 0, task_id="t1", embedder=embedder)
        late = await create_at(store, "late", 60, task_id="t1", embedder=embedder)
        other = await create_at(store, "other", 30, task_id="t2", embedder=embedder)
        untasked = await create_at(store, "untasked", 30, embedder=embedder)
        await early.set_content("issue", "billing refund", "test")
        await other.set_content("issue", "billing", "test")
        await untasked.set_content("issue", "billing refund", "test")

        query = await embedder.embed("billing refund")
        thoughts = await store.search_notes_by_task(query, 5)
        assert [t.id for t in thoughts] == [late.id, other.id]

    async def test_search_by_task_limit(self, store):
        embedder = KeywordEmbedder()
        for i in range(3):
            thought = await create_at(store, f"t{i}", i, task_id=f"task-{i}", embedder=embedder)
            await thought.set_content("issue", "outage", "test")
        thoughts = await store.search_notes_by_task(await embedder.embed("outage"), 2)
        assert len(thoughts) == 2


class TestSQLiteMemory:
    """SQLite-specific behavior."""

    async def test_persists_across_instances(self, temp_db_path):
        first = SQLiteMemory(temp_db_path)
        thought = await Thought.create(first, "durable", embedder=KeywordEmbedder())
        await thought.set_content("k", "deploy", "test")
        await first.close()

        second = SQLiteMemory(temp_db_path)
        try:
            loaded = await second.get_thought(thought.id)
            assert loaded.get_content("k") == "deploy"
            assert loaded.get_note("k").embedding == [0.0] * 7 + [1.0]
        finally:
            await second.close()

    async def test_duplicate_trace_id_is_persistence_error(self, sqlite_memory):
        first = await Thought.create(sqlite_memory, "first")
        with pytest.raises(PersistenceError):
            await Thought.create(sqlite_memory, "second", trace_id=first.trace_id)

    async def test_cursor_clamped_on_load(self, sqlite_memory, temp_db_path):
        """A cursor past the stored notes is clamped to the note count."""
        thought = await Thought.create(sqlite_memory, "partial")
        await add_notes(thought, ("a", "1"))
        conn = sqlite3.connect(temp_db_path)
        conn.execute("UPDATE thoughts SET published_count = 5 WHERE id = ?", (thought.id,))
        conn.commit()
        conn.close()

        loaded = await sqlite_memory.get_thought(thought.id)
        assert loaded.published_count == 1

    async def test_malformed_embedding_is_skipped(self, sqlite_memory, temp_db_path):
        embedder = KeywordEmbedder()
        thought = await Thought.create(sqlite_memory, "t", embedder=embedder)
        await thought.set_content("good", "login", "test")
        await thought.set_content("bad", "login password", "test")
        conn = sqlite3.connect(temp_db_path)
        conn.execute("UPDATE notes SET embedding = '[1.0,oops]' WHERE key = 'bad'")
        conn.commit()
        conn.close()

        hits = await sqlite_memory.search_notes(await embedder.embed("login"), 5)
        assert [h.note.key for h in hits] == ["good"]

    async def test_locked_database_does_not_block_the_loop(self, sqlite_memory, temp_db_path):
        """A write waiting on another connection's lock can be timed out."""
        thought = await Thought.create(sqlite_memory, "busy")
        blocker = sqlite3.connect(temp_db_path, isolation_level=None)
        blocker.execute("BEGIN EXCLUSIVE")
        try:
            note = Note(thought_id=thought.id, key="k", content="v", created=utc_now())
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(sqlite_memory.add_note(note), timeout=0.2)
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()

        # The write still lands once the lock is released
        notes = await sqlite_memory.get_notes(thought.id)
        assert [n.key for n in notes] == ["k"]

    async def test_concurrent_writes(self, sqlite_memory):
        thought = await Thought.create(sqlite_memory, "parallel")
        await asyncio.gather(
            *(
                sqlite_memory.add_note(
                    Note(thought_id=thought.id, key=f"k{i}", content="v", created=utc_now())
                )
                for i in range(10)
            )
        )
        notes = await sqlite_memory.get_notes(thought.id)
        assert sorted(n.key for n in notes) == sorted(f"k{i}" for i in range(10))
