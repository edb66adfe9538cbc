"""Conversational session: the ordered role-tagged messages sent to a provider."""

from __future__ import annotations

import threading

from .models import Message, Role


class Session:
    """Ordered list of messages owned by a single Thought.

    Replaced wholesale by Reset/Compress and trimmed from the middle by
    Truncate; neither involves the reasoning backend.
    """

    def __init__(self, messages: list[Message] | None = None):
        self._lock = threading.Lock()
        self._messages: list[Message] = [m.model_copy() for m in messages or []]

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def append(self, role: Role, content: str) -> None:
        with self._lock:
            self._messages.append(Message(role=role, content=content))

    def messages(self) -> list[Message]:
        """Return a copy of the messages."""
        with self._lock:
            return [m.model_copy() for m in self._messages]

    def set_messages(self, messages: list[Message]) -> None:
        with self._lock:
            self._messages = [m.model_copy() for m in messages]

    def clear(self) -> None:
        with self._lock:
            self._messages = []

    def truncate(self, keep_first: int, keep_last: int) -> int:
        """Drop the middle of the session, keeping the first and last messages.

        Returns:
            Number of messages removed (0 when already short enough).
        """
        if keep_first < 0 or keep_last < 0:
            raise ValueError("keep_first and keep_last must be non-negative")

        with self._lock:
            total = len(self._messages)
            if total <= keep_first + keep_last:
                return 0
            head = self._messages[:keep_first]
            tail = self._messages[total - keep_last:] if keep_last else []
            self._messages = head + tail
            return total - len(self._messages)

    def copy(self) -> Session:
        return Session(self.messages())
