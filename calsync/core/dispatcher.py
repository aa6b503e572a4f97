"""
Operation dispatcher: routes queue items to their sync handler and
normalizes whatever the handler returns into a SyncResult
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Union

from calsync.core.exceptions import UnknownOperationError
from calsync.core.models import QueueItem, QueueOperation, SyncResult

HandlerResult = Union[SyncResult, bool, None]
Handler = Callable[[QueueItem], Awaitable[HandlerResult]]


class OperationDispatcher:
    """Registry of handlers per queue operation"""

    def __init__(self, timeout_seconds: Optional[float] = 120):
        self.timeout_seconds = timeout_seconds
        self._handlers: Dict[QueueOperation, Handler] = {}
        self.logger = logging.getLogger(__name__)

    def register(self, operation: QueueOperation, handler: Handler):
        """Register a handler for an operation"""
        self._handlers[operation] = handler

    def has_handler(self, operation: QueueOperation) -> bool:
        return operation in self._handlers

    async def dispatch(self, item: QueueItem) -> SyncResult:
        """Run the item's handler.

        Raises UnknownOperationError when the operation is unrecognised or has
        no handler. Handler exceptions propagate to the caller; a handler that
        exceeds the timeout is reported as a failed result.
        """
        operation = item.operation_kind
        handler = self._handlers.get(operation) if operation else None
        if handler is None:
            self.logger.warning(f"Unknown operation {item.operation!r} on item {item.id}")
            raise UnknownOperationError(item.operation)

        try:
            outcome = await asyncio.wait_for(handler(item), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            return SyncResult.failed(
                f"{item.operation} timed out after {self.timeout_seconds}s",
                operation=item.operation
            )

        return self._normalize(item, outcome)

    @staticmethod
    def _normalize(item: QueueItem, outcome: HandlerResult) -> SyncResult:
        if isinstance(outcome, SyncResult):
            if outcome.operation is None:
                outcome.operation = item.operation
            if not outcome.success and not outcome.error:
                outcome.error = "Handler reported failure"
            return outcome
        if outcome is True:
            return SyncResult.ok(operation=item.operation)
        if outcome is False:
            return SyncResult.failed("Handler reported failure", operation=item.operation)
        return SyncResult.failed("Handler returned no result", operation=item.operation)
