"""Custom exceptions for Relay Memory."""


class RelayMemoryError(Exception):
    """Base exception for Relay Memory."""

    pass


class ConfigurationError(RelayMemoryError):
    """Configuration-related errors."""

    pass


class EmbeddingError(RelayMemoryError):
    """Embedding-related errors."""

    pass


class EmbeddingUnavailableError(EmbeddingError):
    """Embedding service could not produce a vector (retries exhausted or not configured)."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class StorageError(RelayMemoryError):
    """Persistent store read/write failed."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"Storage operation '{operation}' failed: {message}")
        self.operation = operation


class ValidationError(RelayMemoryError):
    """Record failed validation at the storage boundary."""

    pass
