from sqlalchemy import Column, String, Float, DateTime, Index, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.sql import func
from pgvector.sqlalchemy import Vector

from config import EMBEDDING_DIMENSION
from database.models.base import Base


class YieldRecord(Base):
    """One immutable snapshot of a pool's yield metrics."""
    __tablename__ = 'yield_data'

    id = Column(UUID(as_uuid=True), primary_key=True)
    pool_id = Column(String(255), nullable=False)
    chain = Column(String(255), nullable=False, server_default='Unknown')
    project = Column(String(255), nullable=False, server_default='Unknown')
    symbol = Column(String(255), nullable=False, server_default='Unknown')

    tvl_usd = Column(Float, nullable=False, server_default=text('0'))
    apy = Column(Float, nullable=False, server_default=text('0'))
    apy_base = Column(Float, nullable=False, server_default=text('0'))
    apy_reward = Column(Float, nullable=False, server_default=text('0'))
    apy_mean_30d = Column(Float, nullable=False, server_default=text('0'))
    apy_pct_1d = Column(Float, nullable=False, server_default=text('0'))
    apy_pct_7d = Column(Float, nullable=False, server_default=text('0'))
    apy_pct_30d = Column(Float, nullable=False, server_default=text('0'))

    reward_tokens = Column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
    predictions = Column(JSONB, nullable=False, server_default=text("'{}'::jsonb"))

    observed_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    embedding = Column(Vector(EMBEDDING_DIMENSION), nullable=True)

    __table_args__ = (
        Index('ix_yield_data_created_at', 'created_at'),
        Index('ix_yield_data_pool_id', 'pool_id'),
        Index(
            'ix_yield_data_embedding_cosine', 'embedding',
            postgresql_using='hnsw',
            postgresql_ops={'embedding': 'vector_cosine_ops'},
        ),
    )
