"""Tests for document ingestion into the vector store."""

from __future__ import annotations

import pytest

from brand_assistant.chat.llm import EmbeddingBackend
from brand_assistant.errors import ProviderError, ValidationError
from brand_assistant.ingestion.pipeline import ingest_document, ingest_documents, source_id_for

LONG_TEXT = " ".join(f"Sentence number {i} about our brand workshops." for i in range(60))


def test_source_id_from_url_is_stable():
    first = source_id_for({"url": "https://brand.test/about"})
    assert first == source_id_for({"url": "https://brand.test/about"})
    assert first != source_id_for({"url": "https://brand.test/contact"})
    assert first.isalnum()
    assert len(first) <= 32


def test_source_id_without_url_is_random():
    assert source_id_for(None) != source_id_for({"title": "notes"})


@pytest.mark.asyncio
async def test_ingest_document_chunks_and_embeds_once(store, embedder):
    result = await ingest_document(store, embedder, LONG_TEXT, {"url": "https://brand.test/about"})

    assert result.chunks > 1
    assert result.chunk_ids[0] == f"{result.source_id}_chunk_0"
    assert len(embedder.calls) == 1
    assert len(embedder.calls[0]) == result.chunks
    assert await store.stats() == {"count": result.chunks}


@pytest.mark.asyncio
async def test_reingesting_url_overwrites_chunks(store, embedder):
    metadata = {"url": "https://brand.test/about", "title": "About"}
    first = await ingest_document(store, embedder, LONG_TEXT, metadata)
    second = await ingest_document(store, embedder, LONG_TEXT, metadata)

    assert first.chunk_ids == second.chunk_ids
    assert await store.stats() == {"count": first.chunks}


@pytest.mark.asyncio
async def test_metadata_is_attached_to_chunks(store, embedder):
    await ingest_document(store, embedder, "We host craft fairs every spring.", {"url": "https://brand.test/fairs"})

    results = await store.search(embedder.vector("craft fairs every spring"), top_k=1)
    assert results[0].url == "https://brand.test/fairs"


@pytest.mark.asyncio
@pytest.mark.parametrize("content, error", [(None, "Content is required"), ("  \n ", "Content cannot be empty")])
async def test_ingest_document_validation(store, embedder, content, error):
    with pytest.raises(ValidationError, match=error):
        await ingest_document(store, embedder, content)


@pytest.mark.asyncio
async def test_ingest_documents_reports_failures(store, embedder):
    results = await ingest_documents(
        store,
        embedder,
        [
            {"content": "Our studio opens at nine.", "metadata": {"title": "Hours"}},
            {"content": ""},
        ],
    )

    assert results[0].error is None
    assert results[0].chunks == 1
    assert results[1].source_id == "unknown"
    assert results[1].error == "Content cannot be empty"


class ShortEmbedder(EmbeddingBackend):
    async def embed_batch(self, texts):
        return [[1.0, 0.0]]

    def dimensions(self):
        return 2


@pytest.mark.asyncio
async def test_missing_embeddings_raise(store):
    with pytest.raises(ProviderError):
        await ingest_document(store, ShortEmbedder(), LONG_TEXT)
    assert await store.stats() == {"count": 0}
