"""Lifecycle signals emitted by thoughts and primitives.

The core only emits; what listens (metrics, tracing, a UI) is up to the
application. Every emission is also logged at DEBUG.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from .models import utc_now

logger = logging.getLogger(__name__)


class Signal(str, Enum):
    """Names of emitted signals."""

    THOUGHT_CREATED = "thought.created"
    STEP_STARTED = "step.started"
    STEP_COMPLETED = "step.completed"
    STEP_FAILED = "step.failed"
    NOTE_ADDED = "note.added"
    NOTES_PUBLISHED = "notes.published"
    INTROSPECTION_COMPLETED = "introspection.completed"
    SIFT_DECIDED = "sift.decided"
    AMPLIFY_ITERATION_COMPLETED = "amplify.iteration_completed"
    AMPLIFY_COMPLETED = "amplify.completed"
    CONVERGE_BRANCH_STARTED = "converge.branch_started"
    CONVERGE_BRANCH_COMPLETED = "converge.branch_completed"
    CONVERGE_SYNTHESIS_STARTED = "converge.synthesis_started"
    SEEK_RESULTS_FOUND = "seek.results_found"
    SURVEY_RESULTS_FOUND = "survey.results_found"


@dataclass(frozen=True)
class Event:
    """One emitted signal with its fields (trace_id, step_name, ...)."""

    signal: Signal
    fields: dict[str, Any] = field(default_factory=dict)
    ts: datetime = field(default_factory=utc_now)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


Listener = Callable[[Event], None]


class SignalBus:
    """Fan-out of events to subscribed listeners.

    A listener is either subscribed to one signal or to all of them
    (``signal=None``). Listener failures are logged, never raised into
    the primitive that emitted.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: list[tuple[Signal | None, Listener]] = []

    def subscribe(self, listener: Listener, signal: Signal | None = None) -> Listener:
        with self._lock:
            self._listeners.append((signal, listener))
        return listener

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners = [(s, l) for s, l in self._listeners if l is not listener]

    def clear(self) -> None:
        with self._lock:
            self._listeners = []

    def emit(self, signal: Signal, **fields: Any) -> Event:
        event = Event(signal=signal, fields=fields)
        logger.debug(f"{signal.value} {fields}")

        with self._lock:
            targets = [l for s, l in self._listeners if s is None or s == signal]

        for listener in targets:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Signal listener failed for {signal.value}")
        return event


bus = SignalBus()


def emit(signal: Signal, **fields: Any) -> Event:
    """Emit on the process-wide bus."""
    return bus.emit(signal, **fields)
