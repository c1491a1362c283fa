import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from api_clients.exceptions import FeedError, FeedHttpError, FeedMalformedError
from data_processing.normalize_pools import (
    build_embedding_text,
    filter_pools_by_chain,
    normalize_pool,
    upstream_pool_id,
)
from database.repositories.exceptions import (
    RepositoryError,
    DatabaseConnectionError,
    ConstraintViolationError,
    SchemaMismatchError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ErrorReport:
    """What went wrong, where, and in which cycle."""
    kind: str
    message: str
    pool_id: Optional[str] = None
    cycle: Optional[int] = None


@dataclass
class CycleReport:
    cycle: int
    started_at: datetime
    finished_at: Optional[datetime] = None
    fetched: int = 0
    matched: int = 0
    attempted: int = 0
    written: int = 0
    embedding_failures: int = 0
    write_failures: int = 0
    error: Optional[ErrorReport] = None
    failures: List[ErrorReport] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "cycle": self.cycle,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "fetched": self.fetched,
            "matched": self.matched,
            "attempted": self.attempted,
            "written": self.written,
            "embedding_failures": self.embedding_failures,
            "write_failures": self.write_failures,
            "error": self.error.kind if self.error else None,
        }


@dataclass(frozen=True)
class _RecordOutcome:
    pool_id: str
    written: bool
    embedding_failed: bool
    failure: Optional[ErrorReport] = None


def error_kind(exc: Exception) -> str:
    if isinstance(exc, FeedHttpError):
        return "feed_http"
    if isinstance(exc, FeedMalformedError):
        return "feed_malformed"
    if isinstance(exc, DatabaseConnectionError):
        return "connection_lost"
    if isinstance(exc, ConstraintViolationError):
        return "constraint_violation"
    if isinstance(exc, SchemaMismatchError):
        return "schema_mismatch"
    if isinstance(exc, RepositoryError):
        return "store"
    return "unexpected"


def log_error_report(report: ErrorReport) -> None:
    """Default observability sink."""
    where = f" pool={report.pool_id}" if report.pool_id else ""
    if report.kind == "embedding":
        logger.warning(f"⚠️ [cycle {report.cycle}] {report.kind}{where}: {report.message}")
    else:
        logger.error(f"❌ [cycle {report.cycle}] {report.kind}{where}: {report.message}")


def _process_pool(raw_pool, observed_at, embedding_client, repository, report_error, cycle) -> _RecordOutcome:
    record = normalize_pool(raw_pool, observed_at=observed_at)

    embedding_failed = False
    if embedding_client is not None:
        embedding = embedding_client.embed(build_embedding_text(record))
        if embedding is None:
            embedding_failed = True
            report_error(ErrorReport(
                kind="embedding",
                message="embedding unavailable, storing snapshot without vector",
                pool_id=record.pool_id,
                cycle=cycle,
            ))
        else:
            record = record.with_embedding(embedding)

    try:
        repository.upsert(record)
    except RepositoryError as e:
        failure = ErrorReport(kind=error_kind(e), message=str(e), pool_id=record.pool_id, cycle=cycle)
        report_error(failure)
        return _RecordOutcome(record.pool_id, written=False, embedding_failed=embedding_failed, failure=failure)

    return _RecordOutcome(record.pool_id, written=True, embedding_failed=embedding_failed)


def _process_pool_isolated(raw_pool, observed_at, embedding_client, repository, report_error, cycle) -> _RecordOutcome:
    try:
        return _process_pool(raw_pool, observed_at, embedding_client, repository, report_error, cycle)
    except Exception as e:
        pool_id = upstream_pool_id(raw_pool)
        logger.exception(f"Unexpected error processing pool {pool_id}")
        failure = ErrorReport(kind="unexpected", message=str(e), pool_id=pool_id, cycle=cycle)
        report_error(failure)
        return _RecordOutcome(pool_id or "", written=False, embedding_failed=False, failure=failure)


def run_ingestion_cycle(
    feed_client,
    repository,
    embedding_client=None,
    target_chain: str = "Sonic",
    max_workers: int = 4,
    report_error: Callable[[ErrorReport], None] = log_error_report,
    cycle: int = 1,
    on_phase: Optional[Callable[[str], None]] = None,
) -> CycleReport:
    """
    One fetch -> filter -> normalize -> embed -> insert pass.

    A feed failure abandons the cycle before any write. Each matching pool is
    attempted exactly once; one pool's failure never stops the others.
    """
    report = CycleReport(cycle=cycle, started_at=datetime.now(timezone.utc))

    try:
        raw_pools = feed_client.fetch_pools()
    except FeedError as e:
        report.error = ErrorReport(kind=error_kind(e), message=str(e), cycle=cycle)
        report_error(report.error)
        report.finished_at = datetime.now(timezone.utc)
        return report

    observed_at = datetime.now(timezone.utc)
    report.fetched = len(raw_pools)

    if on_phase is not None:
        on_phase("processing")

    matching = filter_pools_by_chain(raw_pools, target_chain)
    report.matched = len(matching)
    if not matching:
        logger.warning(f"No {target_chain} chain pools found in DeFi Llama data")
        report.finished_at = datetime.now(timezone.utc)
        return report

    logger.info(f"Found {len(matching)} {target_chain} pools")

    args = (observed_at, embedding_client, repository, report_error, cycle)
    if max_workers <= 1:
        outcomes = [_process_pool_isolated(pool, *args) for pool in matching]
    else:
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ingest") as executor:
            outcomes = list(executor.map(lambda pool: _process_pool_isolated(pool, *args), matching))

    report.attempted = len(outcomes)
    report.written = sum(1 for o in outcomes if o.written)
    report.embedding_failures = sum(1 for o in outcomes if o.embedding_failed)
    report.write_failures = sum(1 for o in outcomes if not o.written)
    report.failures = [o.failure for o in outcomes if o.failure is not None]
    report.finished_at = datetime.now(timezone.utc)

    logger.info("\n" + "="*60)
    logger.info(f"📥 {target_chain.upper()} POOLS INGESTION SUMMARY (cycle {cycle})")
    logger.info("="*60)
    logger.info(f"📊 Total pools from API: {report.fetched:,}")
    logger.info(f"🔗 {target_chain} pools attempted: {report.attempted:,}")
    logger.info(f"✅ Snapshots written: {report.written:,}")
    logger.info(f"⚠️ Stored without embedding: {report.embedding_failures:,}")
    logger.info(f"❌ Failed writes: {report.write_failures:,}")
    logger.info("="*60)
    return report
