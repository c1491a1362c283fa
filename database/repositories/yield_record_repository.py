import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from sqlalchemy import func, select, insert
from sqlalchemy.exc import DataError

from config import VECTOR_SEARCH_EF_SEARCH, VECTOR_SEARCH_ITERATIVE_SCAN
from data_processing.normalize_pools import PoolRecord
from database.models.yield_record import YieldRecord
from database.repositories.base_repository import BaseRepository
from database.repositories.exceptions import RepositoryError, SchemaMismatchError

logger = logging.getLogger(__name__)

# pgvector rejects hnsw.ef_search above this
HNSW_MAX_EF_SEARCH = 1000


@dataclass(frozen=True)
class ScoredRecord:
    """A stored snapshot with its cosine similarity (1 - cosine distance) to a query."""
    record: PoolRecord
    similarity: float


def _to_pool_record(row: YieldRecord) -> PoolRecord:
    embedding = row.embedding
    if embedding is not None:
        embedding = [float(value) for value in embedding]
    return PoolRecord(
        id=row.id,
        pool_id=row.pool_id,
        chain=row.chain,
        project=row.project,
        symbol=row.symbol,
        tvl_usd=row.tvl_usd,
        apy=row.apy,
        apy_base=row.apy_base,
        apy_reward=row.apy_reward,
        apy_mean_30d=row.apy_mean_30d,
        apy_pct_1d=row.apy_pct_1d,
        apy_pct_7d=row.apy_pct_7d,
        apy_pct_30d=row.apy_pct_30d,
        reward_tokens=list(row.reward_tokens or []),
        predictions=dict(row.predictions or {}),
        observed_at=row.observed_at,
        created_at=row.created_at,
        embedding=embedding,
    )


def build_list_statement(limit: Optional[int] = None):
    stmt = select(YieldRecord).order_by(YieldRecord.created_at.desc(), YieldRecord.id.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    return stmt


def build_search_statement(query_vector: Sequence[float], threshold: float, top_k: int):
    """
    Rows with an embedding whose cosine similarity to the query is at least
    `threshold`, best match first, newest first among equal scores.
    Distance is computed by pgvector's `<=>` operator inside the database.
    A zero-norm vector on either side yields a NaN distance, which PostgreSQL
    sorts above every number, so NaN distances are excluded explicitly.
    """
    distance = YieldRecord.embedding.cosine_distance(list(query_vector))
    similarity = (1 - distance).label("similarity")
    return (
        select(YieldRecord, similarity)
        .where(YieldRecord.embedding.is_not(None))
        .where(distance != float("nan"))
        .where(1 - distance >= threshold)
        .order_by(distance.asc(), YieldRecord.created_at.desc())
        .limit(top_k)
    )


def build_search_settings(top_k: int, ef_search: int = VECTOR_SEARCH_EF_SEARCH,
                          iterative_scan: Optional[str] = VECTOR_SEARCH_ITERATIVE_SCAN):
    """
    Transaction-local HNSW settings for one search. The index scan yields at
    most ef_search candidates before the threshold filter runs, so ef_search
    is raised to cover top_k and an iterative scan keeps fetching candidates
    until top_k rows pass the filter.
    """
    candidates = min(max(top_k, ef_search), HNSW_MAX_EF_SEARCH)
    statements = [select(func.set_config("hnsw.ef_search", str(candidates), True))]
    if iterative_scan and iterative_scan != "off":
        statements.append(select(func.set_config("hnsw.iterative_scan", iterative_scan, True)))
    return statements


class YieldRecordRepository(BaseRepository[YieldRecord]):
    """
    Append-only store of pool yield snapshots with cosine-similarity retrieval.
    """

    def __init__(self, engine, ef_search: int = VECTOR_SEARCH_EF_SEARCH,
                 iterative_scan: Optional[str] = VECTOR_SEARCH_ITERATIVE_SCAN):
        super().__init__(engine, model_class=YieldRecord)
        self.dimension = YieldRecord.__table__.c.embedding.type.dim
        self.ef_search = ef_search
        self.iterative_scan = iterative_scan

    def _check_dimension(self, vector: Sequence[float], context: str) -> None:
        if len(vector) != self.dimension:
            raise SchemaMismatchError(self.dimension, len(vector), context=context)

    def upsert(self, record: PoolRecord) -> None:
        """
        Inserts a new snapshot row. Never updates an existing row.

        Raises:
            DatabaseConnectionError, ConstraintViolationError, SchemaMismatchError
        """
        if record.embedding is not None:
            self._check_dimension(record.embedding, context=f"embedding for pool {record.pool_id}")

        stmt = insert(YieldRecord).values(
            id=record.id,
            pool_id=record.pool_id,
            chain=record.chain,
            project=record.project,
            symbol=record.symbol,
            tvl_usd=record.tvl_usd,
            apy=record.apy,
            apy_base=record.apy_base,
            apy_reward=record.apy_reward,
            apy_mean_30d=record.apy_mean_30d,
            apy_pct_1d=record.apy_pct_1d,
            apy_pct_7d=record.apy_pct_7d,
            apy_pct_30d=record.apy_pct_30d,
            reward_tokens=list(record.reward_tokens),
            predictions=dict(record.predictions),
            observed_at=record.observed_at,
            embedding=record.embedding,
        )

        try:
            with self.transaction() as conn:
                try:
                    conn.execute(stmt)
                except DataError as e:
                    # pgvector: "expected N dimensions, not M"
                    if "dimensions" in str(e):
                        raise SchemaMismatchError(
                            self.dimension, len(record.embedding or []),
                            context=f"embedding for pool {record.pool_id}",
                        ) from e
                    raise
        except RepositoryError as e:
            logger.error(f"❌ Failed to insert snapshot for pool {record.pool_id}: {e}")
            raise

    def list_records(self, limit: Optional[int] = None) -> List[PoolRecord]:
        """Snapshots ordered by created_at descending; all rows when limit is None."""
        with self.session() as session:
            rows = session.execute(build_list_statement(limit)).scalars().all()
            return [_to_pool_record(row) for row in rows]

    def search(self, query_vector: Sequence[float], threshold: float, top_k: int) -> List[ScoredRecord]:
        """
        Top-k snapshots by cosine similarity to query_vector, at or above threshold.
        Snapshots without an embedding are never returned.
        """
        self._check_dimension(query_vector, context="query vector")
        with self.session() as session:
            for setting in build_search_settings(top_k, self.ef_search, self.iterative_scan):
                session.execute(setting)
            rows = session.execute(build_search_statement(query_vector, threshold, top_k)).all()
            return [
                ScoredRecord(record=_to_pool_record(row[0]), similarity=float(row[1]))
                for row in rows
            ]
