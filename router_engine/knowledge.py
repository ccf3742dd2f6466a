"""In-process vector index used for catalog lookups and open-ended questions.

Entries are held in memory only; the caller rebuilds the index from the
product catalog on restart (see ``router_engine.catalog.load_catalog``).

Search is a linear cosine scan, O(n*d) per query, which is fine for a
pharmacy catalog of a few thousand entries.

Writers serialise on an ``asyncio.Lock`` and publish a fresh entries mapping
when they finish, so a concurrent search always scores a complete snapshot
and never a half-applied mutation.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from clients.base import Embedder
from router_engine.logutil import truncate

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.7
DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass
class KnowledgeEntry:
    id: str
    content: str
    metadata: dict[str, Any]
    vector: np.ndarray


@dataclass
class SearchResult:
    id: str
    content: str
    metadata: dict[str, Any]
    score: float


@dataclass
class SearchFilters:
    """Metadata predicate applied before ranking. ``None`` means "don't care"."""

    category: str | None = None
    requires_prescription: bool | None = None
    in_stock: bool | None = None
    price_range: tuple[float, float] | None = None
    type: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def matches(self, metadata: dict[str, Any]) -> bool:
        if self.category is not None and metadata.get("category") != self.category:
            return False
        if self.requires_prescription is not None and metadata.get("prescription_required") != self.requires_prescription:
            return False
        if self.in_stock is not None and metadata.get("in_stock") != self.in_stock:
            return False
        if self.type is not None and metadata.get("type") != self.type:
            return False
        if self.price_range is not None:
            price = metadata.get("price")
            low, high = self.price_range
            if price is None or price < low or price > high:
                return False
        for key, value in self.extra.items():
            if metadata.get(key) != value:
                return False
        return True


def cosine_similarity(v1, v2) -> float:
    """Cosine of the angle between two vectors.

    Mismatched lengths (e.g. entries embedded by a previous provider) and zero
    vectors score 0 so they sink out of results instead of failing the search.
    """
    a = np.asarray(v1, dtype=np.float64)
    b = np.asarray(v2, dtype=np.float64)
    if a.shape != b.shape:
        return 0.0
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.dot(a, b) / norm)


class KnowledgeIndex:
    def __init__(
        self,
        embedder: Embedder,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
    ):
        self._embedder = embedder
        self.similarity_threshold = similarity_threshold
        self._timeout = timeout
        self._entries: dict[str, KnowledgeEntry] = {}
        self._dimension: int | None = None
        self._write_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self._entries

    @property
    def dimension(self) -> int | None:
        return self._dimension

    async def _embed(self, text: str) -> np.ndarray:
        vector = await asyncio.wait_for(self._embedder.embed(text), timeout=self._timeout)
        return np.asarray(vector, dtype=np.float64)

    def _check_dimension(self, vector: np.ndarray, entries: dict[str, KnowledgeEntry]) -> None:
        if vector.ndim != 1 or vector.size == 0:
            raise ValueError("Embedding provider returned an empty or malformed vector")
        if not np.isfinite(vector).all():
            raise ValueError("Embedding provider returned a vector with NaN or infinite components")
        if entries and self._dimension is not None and vector.size != self._dimension:
            raise ValueError(
                f"Embedding has {vector.size} dimensions but the index holds {self._dimension}-dimensional vectors"
            )

    async def add(self, entry_id: str, content: str, metadata: dict[str, Any] | None = None) -> None:
        """Embed ``content`` and store it under ``entry_id``.

        Raises whatever the embedding provider raises (or ``TimeoutError``);
        nothing is stored in that case. Adding an id that already exists
        replaces it, same as :meth:`update`.
        """
        if not entry_id:
            raise ValueError("Knowledge entry id must be non-empty")
        if not content or not content.strip():
            raise ValueError(f"Knowledge entry {entry_id!r} has empty content")

        vector = await self._embed(content)
        entry = KnowledgeEntry(id=entry_id, content=content, metadata=dict(metadata or {}), vector=vector)

        async with self._write_lock:
            entries = dict(self._entries)
            entries.pop(entry_id, None)
            self._check_dimension(vector, entries)
            entries[entry_id] = entry
            if self._dimension is None or len(entries) == 1:
                self._dimension = vector.size
            self._entries = entries
        logger.info("Indexed entry %s (%d entries)", entry_id, len(entries))

    async def update(self, entry_id: str, content: str, metadata: dict[str, Any] | None = None) -> None:
        # The new vector is computed before the swap, so a failed embedding
        # leaves the previous entry in place.
        await self.add(entry_id, content, metadata)

    async def remove(self, entry_id: str) -> None:
        async with self._write_lock:
            if entry_id not in self._entries:
                return
            entries = dict(self._entries)
            del entries[entry_id]
            if not entries:
                self._dimension = None
            self._entries = entries
        logger.info("Removed entry %s from index", entry_id)

    async def clear(self) -> None:
        async with self._write_lock:
            self._entries = {}
            self._dimension = None

    async def add_document(
        self, content: str, metadata: dict[str, Any] | None = None, doc_type: str = "documentation"
    ) -> str:
        """Index a free-text document under a generated id and return the id."""
        doc_id = f"doc_{uuid.uuid4().hex[:12]}"
        meta = {**(metadata or {}), "source": "documentation", "type": doc_type}
        await self.add(doc_id, content, meta)
        return doc_id

    async def search(
        self, query: str, limit: int = 5, filters: SearchFilters | None = None
    ) -> list[SearchResult]:
        """Rank entries by cosine similarity to ``query``.

        Returns at most ``limit`` results, all scoring at or above the
        similarity threshold, best first; equal scores keep insertion order.
        Embedding failures and timeouts yield an empty list.
        """
        if limit <= 0 or not query or not query.strip():
            return []
        snapshot = self._entries
        if not snapshot:
            return []
        try:
            query_vec = await self._embed(query)
        except Exception as e:
            logger.warning("Knowledge search embedding failed for %r: %s", truncate(query, 100), e)
            return []

        scored = []
        for entry in snapshot.values():
            if filters is not None and not filters.matches(entry.metadata):
                continue
            score = cosine_similarity(query_vec, entry.vector)
            # NaN fails every comparison, so test for a pass rather than a miss.
            if not score >= self.similarity_threshold:
                continue
            scored.append(SearchResult(id=entry.id, content=entry.content, metadata=dict(entry.metadata), score=score))

        # sorted() is stable, so ties keep dict insertion order
        ranked = sorted(scored, key=lambda r: r.score, reverse=True)[:limit]
        logger.info(
            "Knowledge search returned %d/%d results (top score %s)",
            len(ranked), len(scored), f"{ranked[0].score:.3f}" if ranked else "-",
        )
        return ranked

    async def health(self) -> dict[str, Any]:
        try:
            await self._embed("health check")
            embeddings_working = True
            last_error = None
        except Exception as e:
            embeddings_working = False
            last_error = str(e) or type(e).__name__
        return {
            "is_healthy": embeddings_working,
            "embeddings_working": embeddings_working,
            "indexed_entries": len(self._entries),
            "last_error": last_error,
        }
