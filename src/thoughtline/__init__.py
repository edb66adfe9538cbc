"""Reasoning-context engine for LLM pipelines.

Public API:
- Thought, Note, render_notes: the context, its note log and publish cursor
- Checkpoint, Restore, Forget: branch a thought into a new lineage node
- Reset, Truncate, Compress: maintain the conversational session
- Decide, Categorize, Analyze, Prioritize, Assess: two-phase reasoning
- Amplify, Sift, Discern, Converge: refinement, gating, routing, fan-out
- Recall, Reflect, Seek, Survey: summarize and search stored notes
- InMemoryMemory, SQLiteMemory: memory stores
- set_provider, set_embedder, provider_scope, embedder_scope: backend resolution
"""

from .amplify import Amplify
from .branches import Checkpoint, Forget, Restore
from .converge import Converge
from .discern import Discern
from .errors import (
    NotConfiguredError,
    NotFoundError,
    NoteNotFoundError,
    PersistenceError,
    StepError,
    ThoughtlineError,
    ThoughtNotFoundError,
    UpstreamError,
)
from .memory import InMemoryMemory, Memory, NoteWithThought
from .models import AmplifyResult, Note
from .pipeline import Apply, Backoff, Retry, Sequence, Timeout, do
from .reasoning import Analyze, Assess, Categorize, Decide, Prioritize
from .recall import Recall, Reflect
from .resolve import (
    Registry,
    embedder_scope,
    provider_scope,
    resolve_embedder,
    resolve_provider,
    set_embedder,
    set_provider,
)
from .search import Seek, Survey
from .session import Session
from .session_ops import Compress, Reset, Truncate
from .sift import Sift
from .store import SQLiteMemory
from .thought import Thought, render_notes

__all__ = [
    "Amplify",
    "AmplifyResult",
    "Analyze",
    "Apply",
    "Assess",
    "Backoff",
    "Categorize",
    "Checkpoint",
    "Compress",
    "Converge",
    "Decide",
    "Discern",
    "Forget",
    "InMemoryMemory",
    "Memory",
    "Note",
    "NoteNotFoundError",
    "NoteWithThought",
    "NotConfiguredError",
    "NotFoundError",
    "PersistenceError",
    "Prioritize",
    "Recall",
    "Reflect",
    "Registry",
    "Reset",
    "Restore",
    "Retry",
    "SQLiteMemory",
    "Seek",
    "Sequence",
    "Session",
    "Sift",
    "StepError",
    "Survey",
    "Thought",
    "ThoughtNotFoundError",
    "ThoughtlineError",
    "Timeout",
    "Truncate",
    "UpstreamError",
    "do",
    "embedder_scope",
    "provider_scope",
    "render_notes",
    "resolve_embedder",
    "resolve_provider",
    "set_embedder",
    "set_provider",
]
