"""Boundary protocols for the external reasoning and embedding backends."""

from typing import Protocol, runtime_checkable

from .models import Message, ProviderResponse


@runtime_checkable
class Provider(Protocol):
    """A reasoning backend.

    Given role-tagged messages and a temperature, returns generated text
    plus token usage, or raises.
    """

    async def call(self, messages: list[Message], temperature: float) -> ProviderResponse: ...


@runtime_checkable
class Embedder(Protocol):
    """An embedding backend: text in, fixed-dimension float vector out."""

    async def embed(self, text: str) -> list[float]: ...
