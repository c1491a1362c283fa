import logging
import requests
import json
from typing import Any, Dict, List

from config import DEFILLAMA_POOLS_URL, FEED_TIMEOUT_SECONDS
from api_clients.exceptions import FeedHttpError, FeedMalformedError

logger = logging.getLogger(__name__)


class DefiLlamaClient:
    """
    Fetches the raw DeFiLlama yields pool list. Transport only: no retry,
    no filtering, no normalization.
    """

    def __init__(self, url: str = DEFILLAMA_POOLS_URL, timeout: float = FEED_TIMEOUT_SECONDS, session=None):
        self.url = url
        self.timeout = timeout
        self._http = session if session is not None else requests

    def fetch_pools(self) -> List[Dict[str, Any]]:
        """
        Returns the `data` array of the pools endpoint.

        Raises:
            FeedHttpError: non-2xx status, or the request never completed (status_code None)
            FeedMalformedError: body is not JSON or has no `data` list
        """
        logger.info(f"Fetching DeFiLlama pools data from {self.url}...")
        try:
            response = self._http.get(self.url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise FeedHttpError(None, f"Error fetching DeFiLlama pools: {e}") from e

        if not 200 <= response.status_code < 300:
            raise FeedHttpError(response.status_code)

        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise FeedMalformedError(f"Error decoding JSON response: {e}") from e

        if not isinstance(payload, dict):
            raise FeedMalformedError(f"Expected a JSON object, got {type(payload).__name__}")
        pools = payload.get('data')
        if not isinstance(pools, list):
            raise FeedMalformedError("Response has no 'data' array")

        valid_pools = [pool for pool in pools if isinstance(pool, dict)]
        skipped = len(pools) - len(valid_pools)
        if skipped:
            logger.warning(f"⚠️ Dropped {skipped} non-object entries from DeFiLlama response")

        logger.info(f"📊 Total pools from API: {len(valid_pools):,}")
        return valid_pools
