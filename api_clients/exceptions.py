from typing import Optional


class FeedError(Exception):
    """Base exception for upstream feed failures."""
    pass


class FeedHttpError(FeedError):
    """Raised on a non-2xx response or a transport failure (status_code is None)."""

    def __init__(self, status_code: Optional[int], message: str = ""):
        self.status_code = status_code
        detail = message or (f"HTTP error {status_code}" if status_code is not None else "request failed")
        super().__init__(detail)


class FeedMalformedError(FeedError):
    """Raised when the feed payload cannot be decoded into a pool list."""
    pass


class EmbeddingError(Exception):
    """Raised inside the embedding client when the provider call fails."""
    pass


class EmbeddingUnavailableError(Exception):
    """Raised on the query path when a text query cannot be embedded."""
    pass
