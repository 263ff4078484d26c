"""
Shared error types for Recall services.
"""


class ValidationIssue(ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.error_code = error_code
        self.data = data


class EmbeddingProviderError(RuntimeError):
    """Raised when the embedding provider is unavailable."""


class NotFoundError(LookupError):
    def __init__(self, message: str, field: str = "id", item_id: str | None = None):
        super().__init__(message)
        self.field = field
        self.item_id = item_id


class MemoryNotFoundError(NotFoundError):
    """Raised by mutating operations that target a missing memory."""


class RelationshipNotFoundError(NotFoundError):
    """Raised by mutating operations that target a missing relationship."""
