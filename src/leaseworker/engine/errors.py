"""leaseworker engine errors."""


class LeaseWorkerError(Exception):
    """Base error for leaseworker operations."""

    def __init__(self, message: str, code: str = "LEASEWORKER_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class TransientProviderError(LeaseWorkerError):
    """Provider failure expected to succeed on retry (timeout, rate limit, 5xx)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message, "PROVIDER_TRANSIENT")
        self.status_code = status_code


class FatalProviderError(LeaseWorkerError):
    """Provider failure that will not succeed on retry, or retries exhausted."""

    def __init__(self, message: str, status_code: int | None = None, attempts: int = 1):
        super().__init__(message, "PROVIDER_FATAL")
        self.status_code = status_code
        self.attempts = attempts


class MalformedResultError(LeaseWorkerError):
    """Provider output could not be parsed into structured data."""

    def __init__(self, reason: str, preview: str = ""):
        super().__init__(f"Malformed result: {reason}", "MALFORMED_RESULT")
        self.reason = reason
        self.preview = preview


class PersistenceError(LeaseWorkerError):
    """A store read or write failed."""

    def __init__(self, operation: str, detail: str):
        super().__init__(f"Store operation {operation} failed: {detail}", "PERSISTENCE_ERROR")
        self.operation = operation
        self.detail = detail


class WorkItemNotFound(LeaseWorkerError):
    """Work item does not exist."""

    def __init__(self, item_id: int):
        super().__init__(f"Work item not found: {item_id}", "WORK_ITEM_NOT_FOUND")
        self.item_id = item_id
