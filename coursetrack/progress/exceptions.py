"""Progress engine error taxonomy.

Every error carries a machine-readable ``code`` that the HTTP layer maps to a
status code.
"""


class ProgressError(Exception):
    """Base progress error."""

    def __init__(self, message: str, code: str = "progress_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class ProgressValidationError(ProgressError):
    """Malformed event or write (negative times, missing identifiers)."""

    def __init__(self, message: str = "Invalid progress event"):
        super().__init__(message, "validation_error")


class ProgressReferenceError(ProgressError):
    """User or lesson does not resolve in its owning collaborator.

    Never retried.
    """

    def __init__(self, message: str = "Unknown user or lesson"):
        super().__init__(message, "reference_error")


class ProgressStorageError(ProgressError):
    """Durable store unreachable or rejected the write. Retryable."""

    def __init__(self, message: str = "Progress storage unavailable"):
        super().__init__(message, "storage_error")
