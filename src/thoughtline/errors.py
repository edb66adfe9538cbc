"""Error taxonomy for thoughtline.

Four families: configuration, not-found, upstream and persistence.
``StepError`` wraps any of them with the primitive, phase and iteration
that failed.
"""


class ThoughtlineError(Exception):
    """Base class for every error raised by thoughtline."""


class NotConfiguredError(ThoughtlineError):
    """No provider or embedder could be resolved."""


class NotFoundError(ThoughtlineError, LookupError):
    """A referenced note or thought does not exist."""


class NoteNotFoundError(NotFoundError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"note not found: {key}")


class ThoughtNotFoundError(NotFoundError):
    def __init__(self, ref: str, by: str = "id"):
        self.ref = ref
        self.by = by
        super().__init__(f"thought not found ({by}={ref})")


class UpstreamError(ThoughtlineError):
    """The provider or embedder failed, or returned output we cannot parse."""


class PersistenceError(ThoughtlineError):
    """The memory store failed to create, update or append."""


class ThoughtNotWritableError(PersistenceError):
    """Notes cannot be added to a thought that has no persisted id or store."""


class StepError(ThoughtlineError):
    """A primitive failed; carries enough context to diagnose the failure.

    Attributes:
        step: Step type tag (e.g. "decide", "discern")
        key: The step's configured note key
        phase: "reasoning", "introspection", "route", ... or None
        iteration: 1-based iteration number for looping primitives
    """

    def __init__(
        self,
        step: str,
        message: str,
        *,
        key: str | None = None,
        phase: str | None = None,
        iteration: int | None = None,
    ):
        self.step = step
        self.key = key
        self.phase = phase
        self.iteration = iteration
        self.message = message
        super().__init__(self._format())

    def _format(self) -> str:
        where = [self.step]
        if self.key:
            where.append(f"key={self.key}")
        if self.phase:
            where.append(f"phase={self.phase}")
        if self.iteration is not None:
            where.append(f"iteration={self.iteration}")
        text = f"{' '.join(where)}: {self.message}"
        if self.__cause__ is not None:
            text += f": {self.__cause__}"
        return text

    def __str__(self) -> str:
        # __cause__ is attached after __init__ by ``raise ... from``
        return self._format()
