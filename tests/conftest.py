"""Shared pytest fixtures and deterministic fakes for the model providers."""

from __future__ import annotations

import re
from typing import AsyncIterator, List, Sequence

import pytest

from brand_assistant.chat.engine import ChatEngine
from brand_assistant.chat.llm import ChatModel, EmbeddingBackend
from brand_assistant.chat.memory import ConversationMemory
from brand_assistant.config import Settings
from brand_assistant.models import ChatMessage
from brand_assistant.storage.analytics import AnalyticsStore
from brand_assistant.storage.kv import InMemoryKeyValueStore
from brand_assistant.storage.leads import InMemoryLeadStore
from brand_assistant.storage.vector_store import KVVectorStore

DIMS = 32


class FakeEmbedder(EmbeddingBackend):
    """Bag-of-words hashing embedder: texts sharing words score high."""

    model_name = "fake-embedding"

    def __init__(self) -> None:
        self.calls: List[List[str]] = []

    @staticmethod
    def vector(text: str) -> List[float]:
        vector = [0.0] * DIMS
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            vector[sum(ord(char) for char in word) % DIMS] += 1.0
        return vector

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [self.vector(text) for text in texts]

    def dimensions(self) -> int:
        return DIMS


class ScriptedChatModel(ChatModel):
    """Returns canned replies and records every prompt it receives."""

    def __init__(self, reply: str = "Happy to help!") -> None:
        self.reply = reply
        self.calls: List[List[ChatMessage]] = []

    async def complete(self, messages: Sequence[ChatMessage]) -> str:
        self.calls.append(list(messages))
        return self.reply

    async def complete_stream(self, messages: Sequence[ChatMessage]) -> AsyncIterator[str]:
        self.calls.append(list(messages))
        for word in self.reply.split(" "):
            yield word + " "

    @property
    def last_user_message(self) -> str:
        return self.calls[-1][-1].content


@pytest.fixture
def kv():
    return InMemoryKeyValueStore()


@pytest.fixture
def store(kv):
    return KVVectorStore(kv)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def chat_model():
    return ScriptedChatModel()


@pytest.fixture
def memory(kv):
    return ConversationMemory(kv)


@pytest.fixture
def lead_store():
    return InMemoryLeadStore()


@pytest.fixture
def analytics(tmp_path):
    db = AnalyticsStore(tmp_path / "analytics.db")
    yield db
    db.close()


@pytest.fixture
def settings():
    return Settings(system_prompt="You are a test assistant.")


@pytest.fixture
def engine(store, embedder, chat_model, memory, lead_store, analytics, settings):
    return ChatEngine(
        store,
        embedder=embedder,
        chat_model=chat_model,
        memory=memory,
        lead_store=lead_store,
        analytics=analytics,
        settings=settings,
    )
