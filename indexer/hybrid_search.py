"""Hybrid retrieval for crawlsearch.

Fuses a full-text rank and a cosine similarity into one score, keeps the best
chunk per document, and tops up thin lexical results with a vector-only pass.
"""

import logging
import time
from typing import Any, Dict, List, Mapping, Optional

from config.settings import SearchConfig
from indexer.embeddings import HashEmbedder, format_vector_literal
from observability.prometheus_metrics import record_search_metrics
from services.shared.errors import EmptyQuery, ServiceShuttingDown, StorageError
from services.shared.models import ScoredResult
from services.shared.results import parse_metadata

logger = logging.getLogger(__name__)


def _as_float(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class ResultAggregator:
    """Keeps the highest-scoring result per document id."""

    def __init__(self):
        self._best: Dict[str, ScoredResult] = {}

    def __len__(self) -> int:
        return len(self._best)

    def add_row(self, row: Mapping[str, Any], text_weight: float, vector_weight: float) -> None:
        document_id = row.get("id")
        if not document_id:
            return
        document_id = str(document_id)

        text_score = _as_float(row.get("text_score"))
        vector_score = _as_float(row.get("vector_score"))
        score = text_weight * text_score + vector_weight * vector_score

        existing = self._best.get(document_id)
        if existing is not None and score <= existing.score:
            return

        metadata = parse_metadata(row.get("metadata"))
        if metadata.degraded:
            logger.warning(f"Document {document_id}: {metadata.warning}")

        self._best[document_id] = ScoredResult(
            document_id=document_id,
            url=str(row.get("url") or ""),
            title=str(row.get("title") or ""),
            snippet=str(row.get("chunk_content") or ""),
            score=score,
            text_score=text_score,
            vector_score=vector_score,
            metadata=metadata.value,
        )

    def ranked(self, limit: int) -> List[ScoredResult]:
        results = sorted(self._best.values(), key=lambda r: r.score, reverse=True)
        return results[:limit]


class HybridSearchEngine:
    """Stateless per call; ``store`` supplies ``read_session()``."""

    def __init__(self, store: Any, embedder: HashEmbedder, config: SearchConfig):
        self.store = store
        self.embedder = embedder
        self.config = config
        self._closing = False

    @property
    def closing(self) -> bool:
        return self._closing

    def close(self) -> None:
        """Refuse new searches; calls already running are allowed to finish."""
        self._closing = True

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.config.result_limit
        return min(max(int(limit), 1), self.config.result_limit)

    async def search(self, query: str, limit: Optional[int] = None) -> List[ScoredResult]:
        """Return up to ``limit`` results ranked by fused score.

        Raises:
            EmptyQuery: the query is blank
            ServiceShuttingDown: shutdown has begun
            StorageError: a query failed
        """
        if self._closing:
            raise ServiceShuttingDown("Search service is shutting down")

        query = (query or "").strip()
        if not query:
            raise EmptyQuery()

        limit = self.clamp_limit(limit)
        start_time = time.time()
        vector_literal = format_vector_literal(self.embedder.generate_embedding(query))
        aggregated = ResultAggregator()
        used_fallback = False

        try:
            async with self.store.read_session() as session:
                rows = await session.hybrid_search(
                    query, vector_literal,
                    self.config.text_weight, self.config.vector_weight, limit
                )
                for row in rows:
                    aggregated.add_row(row, self.config.text_weight, self.config.vector_weight)

                if len(aggregated) < limit:
                    used_fallback = True
                    rows = await session.vector_search(vector_literal, limit * 2)
                    for row in rows:
                        aggregated.add_row(row, 0.0, self.config.vector_weight)
        except StorageError:
            record_search_metrics("error", 0, time.time() - start_time, used_fallback)
            raise

        results = aggregated.ranked(limit)
        record_search_metrics("ok", len(results), time.time() - start_time, used_fallback)
        logger.debug(f"Search {query!r} returned {len(results)} results (fallback={used_fallback})")
        return results
