"""
Chunk embeddings through Ollama's ``/api/embed`` endpoint.

Chunks are sent in batches of EMBED_BATCH_SIZE, vectors are scaled to unit
length before they are stored, and a bounded LRU cache keyed on the text
hash avoids re-embedding repeated passages.  Similarity search runs in
pgvector and never returns chunks above the caller's sensitivity levels.
"""
from __future__ import annotations

import asyncio
import logging
import math
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from barkly.config import settings
from barkly.models.database_models import Chunk, CulturalSensitivity, Document
from barkly.utils.helpers import generate_hash

logger = logging.getLogger(__name__)


class EmbeddingError(RuntimeError):
    """Ollama answered, but not with usable vectors; retrying will not help."""


def _unit(vector: Sequence[float]) -> List[float]:
    magnitude = math.sqrt(sum(x * x for x in vector))
    if magnitude == 0.0:
        return list(vector)
    return [x / magnitude for x in vector]


class OllamaEmbeddingService:
    """Batching, retrying embedder with an in-process LRU cache."""

    MAX_RETRIES: int = 3

    def __init__(self) -> None:
        self.base_url = settings.OLLAMA_BASE_URL.rstrip("/")
        self.model = settings.OLLAMA_EMBED_MODEL
        self.dimension = settings.VECTOR_DIMENSION
        self.batch_size = max(1, settings.EMBED_BATCH_SIZE)
        self.timeout = httpx.Timeout(120.0, connect=10.0)
        self._cache: "OrderedDict[str, List[float]]" = OrderedDict()
        self._cache_size = settings.EMBED_CACHE_SIZE

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    async def embed_text(self, content: str) -> Optional[List[float]]:
        """Embed one string; ``None`` if it is blank or Ollama fails."""
        vectors = await self.embed_texts([content])
        return vectors[0]

    async def embed_texts(self, texts: Sequence[str]) -> List[Optional[List[float]]]:
        """
        Embed *texts*, returning one entry per input in the same order.

        Blank inputs and inputs in a batch that failed come back as ``None``.
        """
        results: List[Optional[List[float]]] = [None] * len(texts)
        missing: Dict[str, List[int]] = {}

        for position, raw in enumerate(texts):
            content = (raw or "").strip()
            if not content:
                continue
            key = generate_hash(content)
            cached = self._cache_get(key)
            if cached is not None:
                results[position] = cached
            else:
                missing.setdefault(content, []).append(position)

        pending = list(missing)
        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            vectors = await self._embed_batch(batch)
            if vectors is None:
                continue
            for content, vector in zip(batch, vectors):
                self._cache_put(generate_hash(content), vector)
                for position in missing[content]:
                    results[position] = vector

        return results

    async def embed_document_chunks(
        self,
        document_id: int,
        db: AsyncSession,
    ) -> Tuple[int, int]:
        """
        Store vectors for the document's chunks that have none yet.

        Returns ``(embedded_count, total_count)``; the count includes chunks
        that were already embedded.
        """
        result = await db.execute(
            select(Chunk).where(Chunk.document_id == document_id).order_by(Chunk.chunk_index)
        )
        chunks = result.scalars().all()
        if not chunks:
            logger.warning("Document %d has no chunks to embed", document_id)
            return 0, 0

        pending = [c for c in chunks if c.embedding is None]
        vectors = await self.embed_texts([c.content for c in pending])

        failed = 0
        for chunk, vector in zip(pending, vectors):
            if vector is None:
                failed += 1
            else:
                chunk.embedding = vector
        embedded = len(chunks) - failed

        document = await db.get(Document, document_id)
        if document is not None:
            metadata: Dict[str, Any] = dict(document.metadata_json or {})
            metadata["embedding_model"] = self.model
            metadata["embedded_chunks"] = embedded
            document.metadata_json = metadata

        await db.commit()
        if failed:
            logger.warning("Document %d: %d chunk(s) could not be embedded", document_id, failed)
        logger.info("Document %d: %d/%d chunks embedded", document_id, embedded, len(chunks))
        return embedded, len(chunks)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def find_similar_chunks(
        self,
        query_embedding: List[float],
        db: AsyncSession,
        levels: Sequence[CulturalSensitivity],
        top_k: int = 10,
        threshold: float = 0.7,
        document_id: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Up to *top_k* chunks whose cosine similarity to *query_embedding* is
        at least *threshold*, best first, from documents readable at *levels*.
        """
        distance = Chunk.embedding.cosine_distance(query_embedding).label("distance")
        query = (
            select(Chunk, Document.filename, distance)
            .join(Document, Document.id == Chunk.document_id)
            .where(
                Chunk.embedding.is_not(None),
                Document.cultural_sensitivity.in_(list(levels)),
                distance <= 1.0 - threshold,
            )
        )
        if document_id is not None:
            query = query.where(Chunk.document_id == document_id)

        result = await db.execute(query.order_by(distance).limit(top_k))
        return [
            {
                "chunk_id": chunk.id,
                "document_id": chunk.document_id,
                "chunk_index": chunk.chunk_index,
                "content": chunk.content,
                "start_char": chunk.start_char,
                "end_char": chunk.end_char,
                "filename": filename,
                "similarity": round(1.0 - float(dist), 4),
            }
            for chunk, filename, dist in result.all()
        ]

    async def check_ollama_health(self) -> bool:
        """True when Ollama answers ``/api/tags`` with HTTP 200."""
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(f"{self.base_url}/api/tags")
            return resp.status_code == 200
        except httpx.HTTPError as exc:
            logger.warning("Embedding service health check failed: %s", exc)
            return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _embed_batch(self, batch: List[str]) -> Optional[List[List[float]]]:
        """POST one batch, retrying transport errors with exponential backoff."""
        for attempt in range(1, self.MAX_RETRIES + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(
                        f"{self.base_url}/api/embed",
                        json={"model": self.model, "input": batch},
                    )
                resp.raise_for_status()
                return self._parse_vectors(resp.json(), len(batch))
            except EmbeddingError as exc:
                logger.error("Embedding batch of %d rejected: %s", len(batch), exc)
                return None
            except (httpx.TransportError, httpx.HTTPStatusError) as exc:
                logger.warning(
                    "Embedding request failed (attempt %d/%d): %s",
                    attempt,
                    self.MAX_RETRIES,
                    exc,
                )
            if attempt < self.MAX_RETRIES:
                await asyncio.sleep(2 ** (attempt - 1))

        logger.error("Giving up on embedding batch of %d text(s)", len(batch))
        return None

    def _parse_vectors(self, payload: Dict[str, Any], expected: int) -> List[List[float]]:
        vectors = payload.get("embeddings")
        if not isinstance(vectors, list) or len(vectors) != expected:
            raise EmbeddingError(f"expected {expected} embeddings in response")
        for vector in vectors:
            if len(vector) != self.dimension:
                raise EmbeddingError(
                    f"model {self.model} returned {len(vector)} dimensions, "
                    f"VECTOR_DIMENSION is {self.dimension}"
                )
        return [_unit(v) for v in vectors]

    def _cache_get(self, key: str) -> Optional[List[float]]:
        vector = self._cache.get(key)
        if vector is not None:
            self._cache.move_to_end(key)
        return vector

    def _cache_put(self, key: str, vector: List[float]) -> None:
        self._cache[key] = vector
        self._cache.move_to_end(key)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)


# Module-level singleton
embedding_service = OllamaEmbeddingService()
