"""Embedding and chat model backends, with OpenAI implementations."""

from __future__ import annotations

import os
from typing import AsyncIterator, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from ..errors import ProviderError
from ..models import ChatMessage


class EmbeddingBackend:
    """Protocol for embedding providers."""

    model_name: str

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:  # pragma: no cover - interface
        raise NotImplementedError

    def dimensions(self) -> int:  # pragma: no cover - interface
        raise NotImplementedError


class ChatModel:
    """Protocol for chat completion providers."""

    async def complete(self, messages: Sequence[ChatMessage]) -> str:  # pragma: no cover - interface
        raise NotImplementedError

    def complete_stream(self, messages: Sequence[ChatMessage]) -> AsyncIterator[str]:  # pragma: no cover - interface
        raise NotImplementedError


def _client(api_key: Optional[str], base_url: Optional[str]) -> AsyncOpenAI:
    return AsyncOpenAI(api_key=api_key or os.getenv("OPENAI_API_KEY"), base_url=base_url)


class OpenAIEmbedder(EmbeddingBackend):
    """Thin wrapper around OpenAI's embedding endpoint."""

    def __init__(
        self,
        *,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.client = client or _client(api_key, base_url)
        self.model_name = model
        self._dimensions = dimensions

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        try:
            response = await self.client.embeddings.create(model=self.model_name, input=list(texts))
        except openai.OpenAIError as exc:
            raise ProviderError(f"OpenAI Embeddings API error: {exc}") from exc
        items = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in items]

    def dimensions(self) -> int:
        return self._dimensions


class OpenAIChatModel(ChatModel):
    """Wrapper around OpenAI's Chat Completions API."""

    def __init__(
        self,
        *,
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
        max_tokens: int = 1000,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.client = client or _client(api_key, base_url)
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    def _payload(self, messages: Sequence[ChatMessage]) -> List[dict]:
        return [{"role": message.role, "content": message.content} for message in messages]

    async def complete(self, messages: Sequence[ChatMessage]) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=self._payload(messages),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except openai.OpenAIError as exc:
            raise ProviderError(f"OpenAI Chat API error: {exc}") from exc
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def complete_stream(self, messages: Sequence[ChatMessage]) -> AsyncIterator[str]:
        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=self._payload(messages),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                stream=True,
            )
            async for event in stream:
                if not event.choices:
                    continue
                content = event.choices[0].delta.content
                if content:
                    yield content
        except openai.OpenAIError as exc:
            raise ProviderError(f"OpenAI Chat API error: {exc}") from exc
