"""Capability contracts for the embedding and text-generation providers."""

from abc import ABC, abstractmethod


class Embedder(ABC):
    """Turns text into a fixed-length vector.

    Implementations raise ``ProviderError`` on failure so callers can catch a
    single exception type regardless of the backing provider.
    """

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        ...


class TextGenerator(ABC):
    """Generates free text from a prompt and optional system prompt."""

    #: True for offline/deterministic implementations; the intent classifier
    #: skips LLM classification entirely when set.
    is_mock: bool = False

    @abstractmethod
    async def generate(self, prompt: str, system_prompt: str | None = None) -> str:
        ...
