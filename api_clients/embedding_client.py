"""OpenAI embedding client for pool snapshot descriptions."""

import logging
from typing import List, Optional

import numpy as np
from openai import OpenAI, OpenAIError

from config import OPENAI_API_KEY, EMBEDDING_MODEL, EMBEDDING_DIMENSION, EMBEDDING_TIMEOUT_SECONDS
from api_clients.exceptions import EmbeddingError

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Wrapper around the OpenAI embeddings API returning fixed-length vectors."""

    def __init__(
        self,
        api_key: str,
        model: str = EMBEDDING_MODEL,
        dimension: int = EMBEDDING_DIMENSION,
        timeout: float = EMBEDDING_TIMEOUT_SECONDS,
        client=None,
    ):
        self._client = client if client is not None else OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self._model = model
        self.dimension = dimension

    def embed_strict(self, text: str) -> List[float]:
        """
        Embed a single text string.

        Raises:
            EmbeddingError: on any provider failure or a vector that is not
                exactly `dimension` finite floats with a non-zero norm.
        """
        try:
            response = self._client.embeddings.create(
                input=[text], model=self._model, dimensions=self.dimension
            )
            vector = response.data[0].embedding
        except OpenAIError as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e
        except (AttributeError, IndexError, TypeError) as e:
            raise EmbeddingError(f"Malformed embedding response: {e}") from e

        try:
            array = np.asarray(vector, dtype=float)
        except (TypeError, ValueError) as e:
            raise EmbeddingError(f"Malformed embedding vector: {e}") from e
        if array.ndim != 1 or array.shape[0] != self.dimension:
            raise EmbeddingError(
                f"Embedding has shape {array.shape}, expected ({self.dimension},)"
            )
        if not np.all(np.isfinite(array)):
            raise EmbeddingError("Embedding contains non-finite values")
        if not np.any(array):
            raise EmbeddingError("Embedding has zero norm")
        return array.tolist()

    def embed(self, text: str) -> Optional[List[float]]:
        """
        Embed a single text string, returning None instead of raising when
        the provider fails. Callers store the record without a vector.
        """
        try:
            return self.embed_strict(text)
        except EmbeddingError as e:
            logger.warning(f"Failed to generate embedding, continuing without it: {e}")
            return None


def get_embedding_client() -> Optional[EmbeddingClient]:
    """Create an EmbeddingClient from configuration.

    Returns:
        EmbeddingClient if OPENAI_API_KEY is set, else None.
    """
    if not OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set. Records will be stored without embeddings.")
        return None
    return EmbeddingClient(api_key=OPENAI_API_KEY)
