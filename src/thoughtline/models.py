"""Core data models for thoughtline.

Uses Pydantic v2 for validation, ULID for sortable unique IDs.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field
from ulid import ULID


def generate_id() -> str:
    """Generate a ULID (sortable, unique identifier)."""
    return str(ULID())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


class Note(BaseModel):
    """An atomic knowledge unit in a thought's note log.

    Notes are never edited once appended. A later note with the same key
    shadows the earlier one for lookups, but both stay in the log.
    """

    id: str = Field(default_factory=generate_id)
    thought_id: str = ""
    key: str
    content: str
    metadata: dict[str, str] = Field(default_factory=dict)
    source: str = ""  # primitive that produced it: "decide", "checkpoint", ...
    created: datetime | None = None  # stamped on append when missing
    embedding: list[float] | None = None

    def copy_for(self, thought_id: str = "") -> "Note":
        """Return an independent copy with a fresh id, for another thought."""
        return Note(
            thought_id=thought_id,
            key=self.key,
            content=self.content,
            metadata=dict(self.metadata),
            source=self.source,
            created=self.created,
            embedding=list(self.embedding) if self.embedding is not None else None,
        )

    def to_summary(self) -> dict:
        """Return a compact summary of this note."""
        return {
            "id": self.id,
            "key": self.key,
            "source": self.source,
            "content_size": len(self.content),
            "created": self.created.isoformat() if self.created else None,
        }


Role = Literal["system", "user", "assistant"]


class Message(BaseModel):
    """One conversational turn with the reasoning backend."""

    role: Role
    content: str


class Usage(BaseModel):
    """Token accounting for a provider call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class ProviderResponse(BaseModel):
    """Generated text plus usage, as returned by a Provider."""

    content: str
    usage: Usage = Field(default_factory=Usage)


# --- Typed reasoning responses ---


class BinaryResponse(BaseModel):
    """Yes/no decision with confidence and supporting reasoning."""

    decision: bool
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: list[str] = Field(default_factory=list)


class ClassificationResponse(BaseModel):
    """Category assignment: best match plus runner-up."""

    primary: str
    secondary: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: list[str] = Field(default_factory=list)


class RankingResponse(BaseModel):
    """Items ordered best-first against some criteria."""

    ranked: list[str]
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: list[str] = Field(default_factory=list)


class SentimentScores(BaseModel):
    positive: float = 0.0
    negative: float = 0.0
    neutral: float = 0.0


class SentimentResponse(BaseModel):
    """Emotional tone of a body of text."""

    overall: Literal["positive", "negative", "neutral", "mixed"]
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    scores: SentimentScores = Field(default_factory=SentimentScores)
    emotions: list[str] = Field(default_factory=list)
    aspects: dict[str, str] = Field(default_factory=dict)
    reasoning: list[str] = Field(default_factory=list)


class AmplifyResult(BaseModel):
    """Outcome of an iterative refinement loop.

    ``reasoning`` comes from the final completion check only.
    """

    content: str
    iterations: int
    completed: bool
    reasoning: list[str] = Field(default_factory=list)


# --- Persistence records ---


class ThoughtRecord(BaseModel):
    """The persisted row behind a Thought (everything but notes and session)."""

    id: str = Field(default_factory=generate_id)
    intent: str
    trace_id: str = Field(default_factory=generate_id)
    parent_id: str | None = None
    task_id: str | None = None
    published_count: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def to_summary(self) -> dict:
        """Return a compact summary of this thought."""
        return {
            "id": self.id,
            "intent": self.intent,
            "trace_id": self.trace_id,
            "parent_id": self.parent_id,
            "task_id": self.task_id,
            "published_count": self.published_count,
            "created_at": self.created_at.isoformat(),
        }
