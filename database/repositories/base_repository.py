import logging
from contextlib import contextmanager
from typing import Optional, TypeVar, Generic, Type

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.exc import SQLAlchemyError, IntegrityError, OperationalError, InterfaceError, DBAPIError

from database.repositories.exceptions import (
    RepositoryError,
    DatabaseConnectionError,
    ConstraintViolationError,
)

# Set up logger
logger = logging.getLogger(__name__)

# Type variable for ORM models
T = TypeVar("T")


def translate_db_error(e: SQLAlchemyError) -> RepositoryError:
    """Maps a SQLAlchemy error onto the repository error taxonomy."""
    if isinstance(e, IntegrityError):
        return ConstraintViolationError(f"Database integrity error: {e}")
    if isinstance(e, (OperationalError, InterfaceError)):
        return DatabaseConnectionError(f"Database connection error: {e}")
    if isinstance(e, DBAPIError) and e.connection_invalidated:
        return DatabaseConnectionError(f"Database connection invalidated: {e}")
    return RepositoryError(f"Database error: {e}")


class BaseRepository(Generic[T]):
    """
    Base repository class providing transaction management over an engine the
    caller owns. The repository never creates its own connection pool.
    """

    def __init__(self, engine: Engine, model_class: Type[T] = None):
        """
        Initialize the repository.

        Args:
            engine: SQLAlchemy engine, already connected
            model_class: The SQLAlchemy model class this repository manages (optional)
        """
        self._engine: Optional[Engine] = engine
        self.model_class = model_class
        self._session_factory = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise DatabaseConnectionError("Repository has been closed")
        return self._engine

    @property
    def session_factory(self):
        """Lazy load the session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        return self._session_factory

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions using SQLAlchemy Connection.
        Useful for raw SQL execution.
        """
        conn = self.engine.connect()
        trans = conn.begin()
        try:
            yield conn
            trans.commit()
        except SQLAlchemyError as e:
            trans.rollback()
            logger.error(f"Database Error in transaction: {e}")
            raise translate_db_error(e) from e
        except Exception:
            trans.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def session(self) -> Session:
        """
        Context manager for ORM sessions.
        Handles commit/rollback automatically.
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database Error in session: {e}")
            raise translate_db_error(e) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Releases the engine's pooled connections. Safe to call more than once."""
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Database engine disposed.")
