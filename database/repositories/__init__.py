from database.repositories.base_repository import BaseRepository
from database.repositories.yield_record_repository import YieldRecordRepository, ScoredRecord

__all__ = [
    'BaseRepository',
    'YieldRecordRepository',
    'ScoredRecord',
]
