"""Turn raw documents into searchable chunks in the vector store."""

from __future__ import annotations

import base64
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..chat.llm import EmbeddingBackend
from ..errors import AssistantError, ProviderError, ValidationError
from ..storage.vector_store import VectorStore
from ..utils.chunking import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, chunk_text, generate_chunk_id

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    source_id: str
    chunk_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def chunks(self) -> int:
        return len(self.chunk_ids)


def source_id_for(metadata: Optional[Dict[str, str]]) -> str:
    """Stable id for sources with a URL so re-ingestion overwrites chunks."""

    url = (metadata or {}).get("url")
    if url:
        encoded = base64.b64encode(url.encode("utf-8")).decode("ascii")
        return re.sub(r"[^a-zA-Z0-9]", "", encoded)[:32]
    return str(uuid.uuid4())


async def ingest_document(
    store: VectorStore,
    embedder: EmbeddingBackend,
    content: Optional[str],
    metadata: Optional[Dict[str, str]] = None,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> IngestResult:
    """Chunk ``content``, embed the chunks in one batch and upsert them."""

    if not isinstance(content, str):
        raise ValidationError("Content is required")
    content = content.strip()
    if not content:
        raise ValidationError("Content cannot be empty")

    source_id = source_id_for(metadata)
    chunks = chunk_text(content, chunk_size=chunk_size, overlap=chunk_overlap)
    embeddings = await embedder.embed_batch([chunk.content for chunk in chunks])
    if len(embeddings) != len(chunks):
        raise ProviderError(
            f"Embedding service returned {len(embeddings)} vectors for {len(chunks)} chunks"
        )

    result = IngestResult(source_id=source_id)
    for chunk, embedding in zip(chunks, embeddings):
        chunk_id = generate_chunk_id(source_id, chunk.index)
        await store.upsert(chunk_id, chunk.content, embedding, metadata)
        result.chunk_ids.append(chunk_id)

    logger.info("Ingested %d chunks from source %s", result.chunks, source_id)
    return result


async def ingest_documents(
    store: VectorStore,
    embedder: EmbeddingBackend,
    documents: Iterable[Dict[str, object]],
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> List[IngestResult]:
    """Ingest several ``{"content", "metadata"}`` documents.

    A failing document is reported in its result and does not stop the batch.
    """

    results: List[IngestResult] = []
    for document in documents:
        try:
            results.append(
                await ingest_document(
                    store,
                    embedder,
                    document.get("content"),
                    document.get("metadata"),
                    chunk_size=chunk_size,
                    chunk_overlap=chunk_overlap,
                )
            )
        except AssistantError as exc:
            logger.warning("Skipping document: %s", exc)
            results.append(IngestResult(source_id="unknown", error=str(exc)))
    return results
