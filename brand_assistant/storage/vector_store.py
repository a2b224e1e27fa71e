"""Vector stores answering top-K cosine-similarity queries."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..errors import DimensionMismatchError, NotSupportedError
from ..models import SearchResult, StoredVector
from .kv import KeyValueStore

logger = logging.getLogger(__name__)

VECTORS_INDEX_KEY = "vectors_index"
VECTOR_PREFIX = "vec_"
CONTENT_PREFIX = "content_"
FETCH_BATCH_SIZE = 100


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; zero-norm vectors score 0."""

    if len(a) != len(b):
        raise DimensionMismatchError(
            f"Vectors must have the same length ({len(a)} != {len(b)})"
        )
    vec_a = np.asarray(a, dtype=np.float64)
    vec_b = np.asarray(b, dtype=np.float64)
    magnitude = float(np.linalg.norm(vec_a) * np.linalg.norm(vec_b))
    if magnitude == 0.0:
        return 0.0
    return float(np.dot(vec_a, vec_b) / magnitude)


def _chunk_prefix(source_id: str) -> str:
    return f"{source_id}_chunk_"


class VectorStore:
    """Interface shared by all vector store backends."""

    async def upsert(
        self,
        id: str,
        content: str,
        embedding: Sequence[float],
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def search(self, query_embedding: Sequence[float], top_k: int) -> List[SearchResult]:  # pragma: no cover - interface
        raise NotImplementedError

    async def delete(self, id: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def stats(self) -> Dict[str, int]:  # pragma: no cover - interface
        raise NotImplementedError

    async def clear(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def ids(self) -> List[str]:  # pragma: no cover - interface
        raise NotImplementedError

    async def delete_source(self, source_id: str) -> int:
        """Delete every chunk ingested from ``source_id``; return the count."""

        prefix = _chunk_prefix(source_id)
        doomed = [vector_id for vector_id in await self.ids() if vector_id.startswith(prefix)]
        for vector_id in doomed:
            await self.delete(vector_id)
        return len(doomed)


class KVVectorStore(VectorStore):
    """Brute-force store keeping one record per id in a key-value store.

    Search reads every record and scores it against the query, which is fine
    for small and medium knowledge bases.
    """

    def __init__(self, kv: KeyValueStore, *, batch_size: int = FETCH_BATCH_SIZE) -> None:
        self.kv = kv
        self.batch_size = batch_size

    async def _get_index(self) -> List[str]:
        raw = await self.kv.get(VECTORS_INDEX_KEY)
        return json.loads(raw) if raw else []

    async def _put_index(self, index: List[str]) -> None:
        await self.kv.put(VECTORS_INDEX_KEY, json.dumps(index))

    async def upsert(
        self,
        id: str,
        content: str,
        embedding: Sequence[float],
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        record = {
            "id": id,
            "content": content,
            "embedding": [float(value) for value in embedding],
            "metadata": metadata,
        }
        await self.kv.put(f"{VECTOR_PREFIX}{id}", json.dumps(record))

        index = await self._get_index()
        if id not in index:
            index.append(id)
            await self._put_index(index)

    async def _load_vectors(self, index: List[str]) -> List[StoredVector]:
        vectors: List[StoredVector] = []
        for offset in range(0, len(index), self.batch_size):
            batch = index[offset : offset + self.batch_size]
            raw_records = await self.kv.get_many(f"{VECTOR_PREFIX}{vector_id}" for vector_id in batch)
            for raw in raw_records:
                if raw:
                    vectors.append(StoredVector(**json.loads(raw)))
        return vectors

    async def search(self, query_embedding: Sequence[float], top_k: int) -> List[SearchResult]:
        """Return the ``top_k`` most similar records, best first."""

        index = await self._get_index()
        if not index or top_k <= 0:
            return []

        vectors = await self._load_vectors(index)
        scored = [
            SearchResult(
                content=vector.content,
                score=cosine_similarity(query_embedding, vector.embedding),
                metadata=vector.metadata,
            )
            for vector in vectors
        ]
        scored.sort(key=lambda result: result.score, reverse=True)
        return scored[:top_k]

    async def delete(self, id: str) -> None:
        await self.kv.delete(f"{VECTOR_PREFIX}{id}")
        index = await self._get_index()
        await self._put_index([vector_id for vector_id in index if vector_id != id])

    async def stats(self) -> Dict[str, int]:
        return {"count": len(await self._get_index())}

    async def clear(self) -> None:
        index = await self._get_index()
        for vector_id in index:
            await self.kv.delete(f"{VECTOR_PREFIX}{vector_id}")
        await self._put_index([])
        logger.info("Cleared %d vectors from the store", len(index))

    async def ids(self) -> List[str]:
        return await self._get_index()


class VectorIndex:
    """Protocol for external nearest-neighbour index services.

    Implementations keep vectors and metadata only; raw text is stored by the
    :class:`IndexVectorStore` next to the index.
    """

    def upsert(self, records: Sequence[StoredVector]) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def query(self, vector: Sequence[float], top_k: int) -> List[Tuple[str, float, Dict[str, str]]]:  # pragma: no cover - interface
        raise NotImplementedError

    def delete_by_ids(self, ids: Sequence[str]) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def describe(self) -> Dict[str, int]:  # pragma: no cover - interface
        raise NotImplementedError

    def list_ids(self) -> List[str]:  # pragma: no cover - interface
        raise NotImplementedError


class NumpyVectorIndex(VectorIndex):
    """Persist embeddings and their metadata on disk as a NumPy matrix.

    Called from worker threads, so reads and writes share one lock.
    """

    def __init__(self, storage_dir: str | Path = "data/index") -> None:
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._vectors_path = self.storage_dir / "vectors.npy"
        self._meta_path = self.storage_dir / "metadata.json"
        self._ids: List[str] = []
        self._metadata: List[Dict[str, str]] = []
        self._embeddings: np.ndarray | None = None
        self._lock = threading.Lock()
        self._load()

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------
    def _load(self) -> None:
        if self._meta_path.exists() and self._vectors_path.exists():
            with self._meta_path.open("r", encoding="utf-8") as fh:
                meta = json.load(fh)
            self._ids = list(meta.get("ids", []))
            self._metadata = list(meta.get("metadata", []))
            self._embeddings = np.load(self._vectors_path)

    def _save(self) -> None:
        payload = {"ids": self._ids, "metadata": self._metadata}
        with self._meta_path.open("w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
        if self._embeddings is not None:
            np.save(self._vectors_path, self._embeddings)

    # ------------------------------------------------------------------
    @property
    def dimension(self) -> int | None:
        if self._embeddings is None or not len(self._ids):
            return None
        return int(self._embeddings.shape[1])

    def upsert(self, records: Sequence[StoredVector]) -> None:
        with self._lock:
            for record in records:
                vector = np.asarray(record.embedding, dtype=np.float32)
                if vector.ndim != 1:
                    raise ValueError("Embeddings must be one-dimensional")
                if self.dimension is not None and vector.shape[0] != self.dimension:
                    raise DimensionMismatchError("Embedding dimension mismatch")

                if record.id in self._ids:
                    position = self._ids.index(record.id)
                    self._embeddings[position] = vector
                    self._metadata[position] = dict(record.metadata or {})
                elif self._embeddings is None or not len(self._ids):
                    self._embeddings = vector.reshape(1, -1)
                    self._ids = [record.id]
                    self._metadata = [dict(record.metadata or {})]
                else:
                    self._embeddings = np.vstack([self._embeddings, vector])
                    self._ids.append(record.id)
                    self._metadata.append(dict(record.metadata or {}))
            self._save()

    def query(self, vector: Sequence[float], top_k: int) -> List[Tuple[str, float, Dict[str, str]]]:
        with self._lock:
            if self._embeddings is None or not self._ids or top_k <= 0:
                return []

            query_vec = np.asarray(vector, dtype=np.float32)
            if query_vec.shape[0] != self._embeddings.shape[1]:
                raise DimensionMismatchError("Query embedding dimension mismatch")

            doc_norms = np.linalg.norm(self._embeddings, axis=1)
            query_norm = np.linalg.norm(query_vec)
            denominator = doc_norms * query_norm
            dots = self._embeddings @ query_vec
            similarities = np.divide(
                dots, denominator, out=np.zeros_like(dots), where=denominator != 0
            )

            top_indices = similarities.argsort()[::-1][:top_k]
            return [
                (self._ids[idx], float(similarities[idx]), dict(self._metadata[idx]))
                for idx in top_indices
            ]

    def delete_by_ids(self, ids: Sequence[str]) -> None:
        doomed = set(ids)
        with self._lock:
            keep = [position for position, vector_id in enumerate(self._ids) if vector_id not in doomed]
            if len(keep) == len(self._ids):
                return
            self._ids = [self._ids[position] for position in keep]
            self._metadata = [self._metadata[position] for position in keep]
            if self._embeddings is not None:
                self._embeddings = self._embeddings[keep]
            self._save()

    def describe(self) -> Dict[str, int]:
        with self._lock:
            return {"vectorsCount": len(self._ids), "dimensions": self.dimension or 0}

    def list_ids(self) -> List[str]:
        with self._lock:
            return list(self._ids)


class IndexVectorStore(VectorStore):
    """Delegate nearest-neighbour search to a :class:`VectorIndex`.

    The index may not retain raw text, so chunk content lives in the
    key-value store under ``content_<id>``.
    """

    def __init__(self, index: VectorIndex, kv: KeyValueStore) -> None:
        self.index = index
        self.kv = kv

    async def upsert(
        self,
        id: str,
        content: str,
        embedding: Sequence[float],
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        await self.kv.put(f"{CONTENT_PREFIX}{id}", content)
        record = StoredVector(id=id, content="", embedding=list(embedding), metadata=metadata or {})
        await asyncio.to_thread(self.index.upsert, [record])

    async def search(self, query_embedding: Sequence[float], top_k: int) -> List[SearchResult]:
        matches = await asyncio.to_thread(self.index.query, query_embedding, top_k)
        results: List[SearchResult] = []
        for vector_id, score, metadata in matches:
            content = await self.kv.get(f"{CONTENT_PREFIX}{vector_id}")
            if content:
                results.append(SearchResult(content=content, score=score, metadata=metadata or None))
        return results

    async def delete(self, id: str) -> None:
        await asyncio.to_thread(self.index.delete_by_ids, [id])
        await self.kv.delete(f"{CONTENT_PREFIX}{id}")

    async def stats(self) -> Dict[str, int]:
        described = await asyncio.to_thread(self.index.describe)
        return {"count": int(described["vectorsCount"])}

    async def clear(self) -> None:
        raise NotSupportedError(
            "Clear is not implemented for the external index backend. Please recreate the index."
        )

    async def ids(self) -> List[str]:
        return await asyncio.to_thread(self.index.list_ids)


def create_vector_store(backend: str, kv: KeyValueStore, *, index_dir: str | Path = "data/index") -> VectorStore:
    """Instantiate the configured vector store backend."""

    if backend == "kv":
        return KVVectorStore(kv)
    if backend == "index":
        return IndexVectorStore(NumpyVectorIndex(index_dir), kv)
    raise ValueError(f"Unknown vector store backend: {backend!r}")
