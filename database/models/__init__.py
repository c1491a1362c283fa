from database.models.base import Base
from database.models.yield_record import YieldRecord
