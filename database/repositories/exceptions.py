class RepositoryError(Exception):
    """Base exception for all repository errors."""
    pass


class ConstraintViolationError(RepositoryError):
    """Raised when an insert violates a table constraint."""
    pass


class DatabaseConnectionError(RepositoryError):
    """Raised when the repository cannot reach the database or loses its connection."""
    pass


class SchemaMismatchError(RepositoryError):
    """
    Raised when a vector does not match the dimension of the embedding column,
    or when the existing column was created with a different dimension.
    """

    def __init__(self, expected: int, actual: int, context: str = "embedding"):
        self.expected = expected
        self.actual = actual
        super().__init__(f"{context} dimension mismatch: expected {expected}, got {actual}")
