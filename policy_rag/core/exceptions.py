"""Custom exception hierarchy."""


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class NotFoundError(AppError):
    """Raised when a referenced record does not exist."""
    pass


class PolicyNotFoundError(NotFoundError):
    """Raised when a policy is not found."""
    pass


class ChunkNotFoundError(NotFoundError):
    """Raised when a policy chunk is not found."""
    pass


class UpstreamUnavailableError(AppError):
    """Raised when an external dependency cannot be reached."""
    pass


class APIClientError(UpstreamUnavailableError):
    """Raised when an external API call fails."""
    pass


class APITimeoutError(APIClientError):
    """Raised when an external API call times out."""
    pass


class VectorIndexError(UpstreamUnavailableError):
    """Raised when the vector index rejects or fails an operation."""
    pass


class MalformedModelOutputError(AppError):
    """Raised when model output cannot be parsed into the expected shape."""
    pass


class DimensionMismatchError(AppError):
    """Raised when a vector does not match the index dimensionality."""

    def __init__(self, expected: int, actual: int, vector_id: str = None):
        target = f" for {vector_id}" if vector_id else ""
        super().__init__(
            f"Vector dimension mismatch{target}: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual
        self.vector_id = vector_id


class DatabaseError(AppError):
    """Raised when a database operation fails."""
    pass


class ValidationError(AppError):
    """Raised when input validation fails."""
    pass


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass


class PipelineError(AppError):
    """Base exception for pipeline errors."""
    pass


class IngestionError(PipelineError):
    """Raised when a document cannot be turned into indexed chunks."""
    pass


class RetrievalError(AppError):
    """Generic search or answer failure surfaced to callers."""
    pass
