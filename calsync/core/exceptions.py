"""
Exception hierarchy for the calendar sync queue
"""

from typing import Optional


class SyncQueueError(Exception):
    """Base class for all sync queue errors"""
    pass


class QueueUnavailableError(SyncQueueError):
    """The record store could not be reached; the processing pass did not start"""
    pass


class PermanentSyncError(SyncQueueError):
    """A failure that cannot heal by retrying the same item"""
    pass


class IntegrationNotFoundError(PermanentSyncError):
    """Raised when a queue item references an integration that no longer exists"""

    def __init__(self, integration_id: Optional[str]):
        self.integration_id = integration_id
        super().__init__(f"Integration not found: {integration_id}")


class InvalidPayloadError(PermanentSyncError):
    """Raised when a payload cannot be parsed for its operation"""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        super().__init__(f"Invalid {operation} payload: {detail}")


class UnknownOperationError(PermanentSyncError):
    """Raised when a queue item carries an operation nobody handles"""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Unknown operation: {operation}")


class ProviderError(SyncQueueError):
    """Transient failure talking to an external calendar provider"""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(message)
