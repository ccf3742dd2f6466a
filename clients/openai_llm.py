"""OpenAI-backed text generation and embeddings."""

import logging

from openai import AsyncOpenAI, OpenAIError

from clients.base import Embedder, TextGenerator
from router_engine.errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_CHAT_MODEL = "gpt-4o-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


class OpenAITextGenerator(TextGenerator):
    def __init__(self, api_key: str, model: str = DEFAULT_CHAT_MODEL, client: AsyncOpenAI | None = None):
        self._client = client or AsyncOpenAI(api_key=api_key)
        self._model = model

    async def generate(self, prompt: str, system_prompt: str | None = None) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                max_tokens=500,
                temperature=0.2,
            )
        except OpenAIError as e:
            raise ProviderError(f"OpenAI text generation failed: {e}") from e
        return response.choices[0].message.content or ""


class OpenAIEmbedder(Embedder):
    def __init__(self, api_key: str, model: str = DEFAULT_EMBEDDING_MODEL, client: AsyncOpenAI | None = None):
        self._client = client or AsyncOpenAI(api_key=api_key)
        self._model = model

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self._client.embeddings.create(model=self._model, input=text)
        except OpenAIError as e:
            raise ProviderError(f"OpenAI embedding failed: {e}") from e
        if not response.data:
            raise ProviderError("OpenAI embedding response contained no vectors")
        return list(response.data[0].embedding)
