"""Read-only query operations over stored pool snapshots."""

import logging
import math
from typing import List, Optional, Sequence

from api_clients.exceptions import EmbeddingUnavailableError
from data_processing.normalize_pools import PoolRecord
from database.repositories.yield_record_repository import ScoredRecord

logger = logging.getLogger(__name__)

DEFAULT_MATCH_THRESHOLD = 0.5
DEFAULT_MATCH_COUNT = 5


class SimilaritySearch:
    """
    Validated list/search entry points for collaborators. Store failures
    propagate as RepositoryError; an outage is never reported as "no matches".
    """

    def __init__(self, repository, embedding_client=None):
        self.repository = repository
        self.embedding_client = embedding_client

    def list_records(self, limit: Optional[int] = None) -> List[PoolRecord]:
        """Newest snapshots first; every snapshot when limit is None."""
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
            raise ValueError(f"limit must be a positive integer or None, got {limit!r}")
        return self.repository.list_records(limit)

    def search_records(
        self,
        query_vector: Sequence[float],
        threshold: float = DEFAULT_MATCH_THRESHOLD,
        top_k: int = DEFAULT_MATCH_COUNT,
    ) -> List[ScoredRecord]:
        """
        Snapshots with an embedding whose similarity to query_vector is at
        least threshold, most similar first (newest first on ties), at most top_k.
        """
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {threshold}")
        if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k < 1:
            raise ValueError(f"top_k must be a positive integer, got {top_k!r}")
        if not query_vector:
            raise ValueError("query_vector must not be empty")
        if not all(math.isfinite(float(value)) for value in query_vector):
            raise ValueError("query_vector contains non-finite values")
        if not any(float(value) != 0.0 for value in query_vector):
            raise ValueError("query_vector must have a non-zero norm")

        results = self.repository.search(query_vector, threshold, top_k)
        logger.debug(f"Similarity search returned {len(results)} records (threshold={threshold}, top_k={top_k})")
        return results

    def search_by_text(
        self,
        text: str,
        threshold: float = DEFAULT_MATCH_THRESHOLD,
        top_k: int = DEFAULT_MATCH_COUNT,
    ) -> List[ScoredRecord]:
        """Embeds a free-text query and searches with the resulting vector."""
        if self.embedding_client is None:
            raise EmbeddingUnavailableError("No embedding client configured for text search")
        vector = self.embedding_client.embed(text)
        if vector is None:
            raise EmbeddingUnavailableError(f"Could not embed query text {text!r}")
        return self.search_records(vector, threshold=threshold, top_k=top_k)
