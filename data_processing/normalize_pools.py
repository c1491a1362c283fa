import logging
import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"

# Upstream field name -> PoolRecord attribute, in embedding/text order
NUMERIC_FIELDS = [
    ("tvlUsd", "tvl_usd"),
    ("apy", "apy"),
    ("apyBase", "apy_base"),
    ("apyReward", "apy_reward"),
    ("apyMean30d", "apy_mean_30d"),
    ("apyPct1D", "apy_pct_1d"),
    ("apyPct7D", "apy_pct_7d"),
    ("apyPct30D", "apy_pct_30d"),
]

STRING_FIELDS = [
    ("chain", "chain"),
    ("project", "project"),
    ("symbol", "symbol"),
]


@dataclass(frozen=True)
class PoolRecord:
    """
    One observation of one pool at one point in time.

    Every numeric field is a float (never None) and every descriptive field a
    non-empty string. `embedding` is either a full vector or None.
    """
    id: uuid.UUID
    pool_id: str
    chain: str = UNKNOWN
    project: str = UNKNOWN
    symbol: str = UNKNOWN
    tvl_usd: float = 0.0
    apy: float = 0.0
    apy_base: float = 0.0
    apy_reward: float = 0.0
    apy_mean_30d: float = 0.0
    apy_pct_1d: float = 0.0
    apy_pct_7d: float = 0.0
    apy_pct_30d: float = 0.0
    reward_tokens: List[str] = field(default_factory=list)
    predictions: Dict[str, Any] = field(default_factory=dict)
    observed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    embedding: Optional[List[float]] = None

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None

    def with_embedding(self, embedding: Optional[List[float]]) -> "PoolRecord":
        return replace(self, embedding=embedding)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation (embedding reduced to its presence)."""
        return {
            "id": str(self.id),
            "pool_id": self.pool_id,
            "chain": self.chain,
            "project": self.project,
            "symbol": self.symbol,
            "tvl_usd": self.tvl_usd,
            "apy": self.apy,
            "apy_base": self.apy_base,
            "apy_reward": self.apy_reward,
            "apy_mean_30d": self.apy_mean_30d,
            "apy_pct_1d": self.apy_pct_1d,
            "apy_pct_7d": self.apy_pct_7d,
            "apy_pct_30d": self.apy_pct_30d,
            "reward_tokens": list(self.reward_tokens),
            "predictions": dict(self.predictions),
            "observed_at": self.observed_at.isoformat() if self.observed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "has_embedding": self.has_embedding,
        }


def _to_float(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def _to_label(value: Any) -> str:
    if value is None:
        return UNKNOWN
    label = str(value).strip()
    return label if label else UNKNOWN


def _to_reward_tokens(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(token) for token in value if token is not None]


def _to_predictions(value: Any) -> Dict[str, Any]:
    if not isinstance(value, dict):
        return {}
    return dict(value)


def _parse_observed_at(value: Any, fallback: datetime) -> datetime:
    """Upstream timestamp (ISO string or epoch seconds) if usable, else the fetch time."""
    if value is None or isinstance(value, bool):
        return fallback
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        if isinstance(value, str):
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
    except (ValueError, OverflowError, OSError):
        logger.debug(f"Unparseable upstream timestamp {value!r}, using fetch time")
    return fallback


def upstream_pool_id(raw_pool: Dict[str, Any]) -> Optional[str]:
    """The feed's own identifier for a pool: `pool`, else `poolId`, else None."""
    pool_id = raw_pool.get("pool") or raw_pool.get("poolId")
    return str(pool_id) if pool_id else None


def normalize_pool(raw_pool: Dict[str, Any], observed_at: Optional[datetime] = None) -> PoolRecord:
    """
    Maps one untyped upstream pool object into the fixed PoolRecord shape.
    This is the only place raw feed data is read.
    """
    if observed_at is None:
        observed_at = datetime.now(timezone.utc)

    record_id = uuid.uuid4()
    pool_id = upstream_pool_id(raw_pool) or str(record_id)

    values: Dict[str, Any] = {}
    for source_key, attr in STRING_FIELDS:
        values[attr] = _to_label(raw_pool.get(source_key))
    for source_key, attr in NUMERIC_FIELDS:
        values[attr] = _to_float(raw_pool.get(source_key))

    return PoolRecord(
        id=record_id,
        pool_id=str(pool_id),
        reward_tokens=_to_reward_tokens(raw_pool.get("rewardTokens")),
        predictions=_to_predictions(raw_pool.get("predictions")),
        observed_at=_parse_observed_at(raw_pool.get("timestamp"), observed_at),
        **values,
    )


def filter_pools_by_chain(raw_pools: List[Dict[str, Any]], target_chain: str) -> List[Dict[str, Any]]:
    """Keeps the raw pools whose `chain` equals the target chain identifier."""
    return [pool for pool in raw_pools if pool.get("chain") == target_chain]


def build_embedding_text(record: PoolRecord) -> str:
    """
    Fixed-order description of a pool used as embedding input, so pools with
    similar descriptive and numeric profiles produce nearby vectors.
    """
    return (
        f"{record.chain} {record.project} {record.symbol} "
        f"TVL: {record.tvl_usd} APY: {record.apy} "
        f"Base APY: {record.apy_base} Reward APY: {record.apy_reward} "
        f"30d Mean APY: {record.apy_mean_30d} "
        f"1d APY Change: {record.apy_pct_1d} 7d APY Change: {record.apy_pct_7d} "
        f"30d APY Change: {record.apy_pct_30d}"
    )
