"""Shared test fixtures and helpers for thoughtline tests."""

import json
import tempfile
from pathlib import Path

import pytest

from thoughtline.memory import InMemoryMemory
from thoughtline.models import Message, ProviderResponse, Usage
from thoughtline.resolve import default_registry
from thoughtline.signals import bus
from thoughtline.store import SQLiteMemory
from thoughtline.thought import Thought


# --- Fake collaborators ---


class ScriptedProvider:
    """Provider that replays queued replies in order and records every call.

    Replies may be strings (sent verbatim), dicts/lists (sent as JSON) or
    exceptions (raised from ``call``).
    """

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: list[tuple[list[Message], float]] = []

    def queue(self, *replies) -> "ScriptedProvider":
        self.replies.extend(replies)
        return self

    @property
    def temperatures(self) -> list[float]:
        return [t for _, t in self.calls]

    def prompt(self, index: int = -1) -> str:
        """The user prompt of a recorded call."""
        return self.calls[index][0][-1].content

    async def call(self, messages, temperature):
        self.calls.append((list(messages), temperature))
        if not self.replies:
            raise RuntimeError("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, (dict, list)):
            reply = json.dumps(reply)
        return ProviderResponse(
            content=reply,
            usage=Usage(prompt_tokens=len(messages), completion_tokens=len(reply)),
        )


class KeywordEmbedder:
    """Deterministic embedder: one dimension per vocabulary word (occurrence counts)."""

    VOCAB = ("billing", "refund", "outage", "login", "invoice", "latency", "password", "deploy")

    def __init__(self, vocab=VOCAB, fail: bool = False):
        self.vocab = tuple(vocab)
        self.fail = fail
        self.calls: list[str] = []

    async def embed(self, text):
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding backend down")
        words = text.lower().replace(",", " ").replace(".", " ").split()
        return [float(words.count(w)) for w in self.vocab]


class Recorder:
    """Unit that records every thought it processes and leaves a marker note."""

    def __init__(self, name: str = "recorder", fail: bool = False):
        self.name = name
        self.fail = fail
        self.seen = []
        self.closed = False

    async def process(self, thought):
        self.seen.append(thought)
        if self.fail:
            raise RuntimeError(f"{self.name} exploded")
        await thought.set_content(f"{self.name}_ran", "yes", self.name)
        return thought

    def close(self):
        self.closed = True


# --- Reply builders ---


def binary_reply(decision: bool, confidence: float = 0.9, reasoning=("looks right",)) -> dict:
    return {"decision": decision, "confidence": confidence, "reasoning": list(reasoning)}


def classify_reply(primary: str, secondary: str = "", confidence: float = 0.85, reasoning=("matched",)) -> dict:
    return {
        "primary": primary,
        "secondary": secondary,
        "confidence": confidence,
        "reasoning": list(reasoning),
    }


# --- Fixtures ---


@pytest.fixture(autouse=True)
def clean_globals():
    """Reset the process-wide registry and signal bus around every test."""
    default_registry.clear()
    bus.clear()
    yield
    default_registry.clear()
    bus.clear()


@pytest.fixture
def memory():
    """Provide a fresh in-process memory store."""
    return InMemoryMemory()


@pytest.fixture
def provider():
    """Provide a ScriptedProvider registered as the process-wide default."""
    scripted = ScriptedProvider()
    default_registry.set_provider(scripted)
    return scripted


@pytest.fixture
def embedder():
    return KeywordEmbedder()


@pytest.fixture
async def thought(memory):
    """Provide a persisted thought with no notes."""
    return await Thought.create(memory, "test intent", task_id="task-1")


@pytest.fixture
def events():
    """Collect every emitted signal event into a list."""
    collected = []
    bus.subscribe(collected.append)
    return collected


@pytest.fixture
def temp_db_path():
    """Provide a database path inside a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "thoughts.db"


@pytest.fixture
async def sqlite_memory(temp_db_path):
    """Provide a SQLite-backed memory store, closed after the test."""
    store = SQLiteMemory(temp_db_path)
    yield store
    await store.close()


# --- Helper Functions (not fixtures) ---


async def add_notes(thought: Thought, *pairs, source: str = "test") -> Thought:
    """Append ``(key, content)`` notes to a thought."""
    for key, content in pairs:
        await thought.set_content(key, content, source)
    return thought


def signals_of(events, signal) -> list:
    return [e for e in events if e.signal == signal]
