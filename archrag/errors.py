"""Exception hierarchy for the indexing and retrieval pipeline."""


class ArchRagError(Exception):
    """Base exception for all archrag operations."""


class ConfigurationError(ArchRagError):
    """Raised when configuration values are missing or inconsistent."""


class ProviderError(ArchRagError):
    """Raised when an embedding or LLM provider call fails.

    Non-transient: retrying the same request will not help (bad request,
    authentication failure, malformed response).
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Raised for provider failures that are worth retrying.

    Network errors, timeouts, throttling (429) and server errors (5xx).
    """


class CircuitOpenError(ArchRagError):
    """Raised when a call is short-circuited by an open circuit breaker."""

    def __init__(self, name: str, retry_after: float):
        super().__init__(
            f"Circuit '{name}' is open; calls rejected for another {retry_after:.1f}s"
        )
        self.name = name
        self.retry_after = retry_after


class EmbeddingError(ArchRagError):
    """Raised when the embedding layer returns an unusable result."""


class IndexingError(ArchRagError):
    """Raised when a project indexing run fails."""

    def __init__(self, project_id: str, message: str):
        super().__init__(f"Indexing failed for project {project_id}: {message}")
        self.project_id = project_id


class OperationCancelledError(ArchRagError):
    """Raised when an operation observes a cancelled token."""

    def __init__(self, reason: str = "Operation was cancelled"):
        super().__init__(reason)
        self.reason = reason


__all__ = [
    "ArchRagError",
    "ConfigurationError",
    "ProviderError",
    "TransientProviderError",
    "CircuitOpenError",
    "EmbeddingError",
    "IndexingError",
    "OperationCancelledError",
]
