import logging
import time
from sqlalchemy import create_engine, text, Engine
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateTable, CreateIndex

from database.models.yield_record import YieldRecord
from database.repositories.base_repository import translate_db_error
from database.repositories.exceptions import DatabaseConnectionError, SchemaMismatchError

logger = logging.getLogger(__name__)


def create_db_engine(connection_string: str, max_retries: int = 3, retry_delay: float = 2) -> Engine:
    """
    Creates a database engine for the given connection string and verifies it
    with a test query. The caller owns the engine and must dispose it.
    """
    safe_url = make_url(connection_string).render_as_string(hide_password=True)
    logger.info(f"🔄 Establishing new database connection to {safe_url}")

    engine = create_engine(
        connection_string,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_size=10,
        max_overflow=20,
        connect_args={
            "connect_timeout": 30,
            "application_name": "yield_snapshot_ingestion",
            "keepalives": 1,
            "keepalives_idle": 30,
            "keepalives_interval": 10,
            "keepalives_count": 5
        }
    )

    for attempt in range(max_retries):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            break
        except SQLAlchemyError as e:
            if attempt < max_retries - 1:
                logger.warning(f"⚠️ Connection attempt {attempt + 1}/{max_retries} failed: {e}. Retrying in {retry_delay}s...")
                time.sleep(retry_delay)
            else:
                logger.error(f"❌ All connection attempts failed for {safe_url}.")
                engine.dispose()
                raise DatabaseConnectionError(f"Could not connect to {safe_url}: {e}") from e

    logger.info(f"✅ Database connection to {safe_url} established successfully.")
    return engine


def schema_statements():
    """DDL for the snapshot table, every statement guarded so re-running is a no-op."""
    table = YieldRecord.__table__
    statements = [
        text("CREATE EXTENSION IF NOT EXISTS vector"),
        CreateTable(table, if_not_exists=True),
    ]
    for index in sorted(table.indexes, key=lambda i: i.name):
        statements.append(CreateIndex(index, if_not_exists=True))
    return statements


def get_embedding_column_dimension(conn):
    """Reads the declared dimension of yield_data.embedding, or None if the table is absent."""
    result = conn.execute(text("""
        SELECT a.atttypmod
        FROM pg_attribute a
        WHERE a.attrelid = to_regclass('yield_data')
          AND a.attname = 'embedding'
          AND NOT a.attisdropped
    """))
    row = result.fetchone()
    if row is None:
        return None
    return int(row[0])


def apply_schema(engine: Engine) -> None:
    """
    Applies the yield_data schema. Safe to call on every process start.

    Raises:
        SchemaMismatchError: the existing embedding column has a different
            dimension than the configured one (fatal configuration defect).
    """
    expected_dimension = YieldRecord.__table__.c.embedding.type.dim
    logger.info("=== APPLYING YIELD DATA SCHEMA ===")

    try:
        with engine.begin() as conn:
            for statement in schema_statements():
                conn.execute(statement)

            actual_dimension = get_embedding_column_dimension(conn)
    except SQLAlchemyError as e:
        logger.error(f"❌ Error applying schema: {e}")
        raise translate_db_error(e) from e

    if actual_dimension is not None and actual_dimension != expected_dimension:
        logger.error(
            f"❌ yield_data.embedding is vector({actual_dimension}) but EMBEDDING_DIMENSION is {expected_dimension}"
        )
        raise SchemaMismatchError(expected_dimension, actual_dimension, context="yield_data.embedding column")

    logger.info(f"✅ Schema ready (embedding dimension {expected_dimension})")
