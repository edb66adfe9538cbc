"""Provider and embedder resolution.

Lookup order, for both backends:

1. An explicit value on the primitive instance
2. An ambient value bound to the current call context (``provider_scope``)
3. The process-wide default held by the active ``Registry``

If none is found, ``NotConfiguredError`` is raised.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from .errors import NotConfiguredError
from .provider import Embedder, Provider


class Registry:
    """Holder of the process-wide default provider and embedder.

    Set once at startup; tests use ``scoped_registry()`` to get a private
    instance instead of mutating the shared one.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._provider: Provider | None = None
        self._embedder: Embedder | None = None

    def set_provider(self, provider: Provider | None) -> None:
        with self._lock:
            self._provider = provider

    def get_provider(self) -> Provider | None:
        with self._lock:
            return self._provider

    def set_embedder(self, embedder: Embedder | None) -> None:
        with self._lock:
            self._embedder = embedder

    def get_embedder(self) -> Embedder | None:
        with self._lock:
            return self._embedder

    def clear(self) -> None:
        with self._lock:
            self._provider = None
            self._embedder = None


default_registry = Registry()

_active_registry: ContextVar[Registry | None] = ContextVar("thoughtline_registry", default=None)
_ambient_provider: ContextVar[Provider | None] = ContextVar("thoughtline_provider", default=None)
_ambient_embedder: ContextVar[Embedder | None] = ContextVar("thoughtline_embedder", default=None)


def active_registry() -> Registry:
    return _active_registry.get() or default_registry


@contextmanager
def scoped_registry(registry: Registry | None = None) -> Iterator[Registry]:
    """Use a private registry for the duration of the block."""
    registry = registry or Registry()
    token = _active_registry.set(registry)
    try:
        yield registry
    finally:
        _active_registry.reset(token)


@contextmanager
def provider_scope(provider: Provider) -> Iterator[Provider]:
    """Bind an ambient provider for everything awaited inside the block."""
    token = _ambient_provider.set(provider)
    try:
        yield provider
    finally:
        _ambient_provider.reset(token)


@contextmanager
def embedder_scope(embedder: Embedder) -> Iterator[Embedder]:
    """Bind an ambient embedder for everything awaited inside the block."""
    token = _ambient_embedder.set(embedder)
    try:
        yield embedder
    finally:
        _ambient_embedder.reset(token)


def set_provider(provider: Provider | None) -> None:
    """Set the process-wide default provider."""
    active_registry().set_provider(provider)


def set_embedder(embedder: Embedder | None) -> None:
    """Set the process-wide default embedder."""
    active_registry().set_embedder(embedder)


def resolve_provider(explicit: Provider | None = None) -> Provider:
    if explicit is not None:
        return explicit
    ambient = _ambient_provider.get()
    if ambient is not None:
        return ambient
    provider = active_registry().get_provider()
    if provider is None:
        raise NotConfiguredError(
            "no provider configured (pass one explicitly, use provider_scope(), or call set_provider())"
        )
    return provider


def resolve_embedder(explicit: Embedder | None = None) -> Embedder:
    if explicit is not None:
        return explicit
    ambient = _ambient_embedder.get()
    if ambient is not None:
        return ambient
    embedder = active_registry().get_embedder()
    if embedder is None:
        raise NotConfiguredError(
            "no embedder configured (pass one explicitly, use embedder_scope(), or call set_embedder())"
        )
    return embedder
