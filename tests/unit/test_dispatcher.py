"""Unit tests for the OperationDispatcher."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from calsync.core.dispatcher import OperationDispatcher
from calsync.core.exceptions import UnknownOperationError
from calsync.core.models import QueueItem, QueueOperation, SyncResult


def _item(operation: str = "CREATE_EVENT") -> QueueItem:
    return QueueItem(operation=operation, id="item-1")


@pytest.mark.asyncio
async def test_bool_true_becomes_success():
    dispatcher = OperationDispatcher()
    dispatcher.register(QueueOperation.CREATE_EVENT, AsyncMock(return_value=True))

    result = await dispatcher.dispatch(_item())

    assert result.success is True
    assert result.operation == "CREATE_EVENT"


@pytest.mark.asyncio
async def test_bool_false_becomes_failure_with_message():
    dispatcher = OperationDispatcher()
    dispatcher.register(QueueOperation.CREATE_EVENT, AsyncMock(return_value=False))

    result = await dispatcher.dispatch(_item())

    assert result.success is False
    assert result.error == "Handler reported failure"


@pytest.mark.asyncio
async def test_missing_result_is_failure():
    dispatcher = OperationDispatcher()
    dispatcher.register(QueueOperation.CREATE_EVENT, AsyncMock(return_value=None))

    result = await dispatcher.dispatch(_item())

    assert result.success is False
    assert result.error == "Handler returned no result"


@pytest.mark.asyncio
async def test_sync_result_passes_through():
    dispatcher = OperationDispatcher()
    returned = SyncResult.failed("provider down", provider="MOCK")
    dispatcher.register(QueueOperation.PULL_CHANGES, AsyncMock(return_value=returned))

    result = await dispatcher.dispatch(_item("PULL_CHANGES"))

    assert result is returned
    assert result.error == "provider down"
    assert result.operation == "PULL_CHANGES"


@pytest.mark.asyncio
async def test_unregistered_operation_raises():
    dispatcher = OperationDispatcher()

    with pytest.raises(UnknownOperationError):
        await dispatcher.dispatch(_item("PUSH_CHANGES"))


@pytest.mark.asyncio
async def test_unrecognised_operation_raises():
    dispatcher = OperationDispatcher()
    dispatcher.register(QueueOperation.CREATE_EVENT, AsyncMock(return_value=True))

    with pytest.raises(UnknownOperationError, match="SEND_FAX"):
        await dispatcher.dispatch(_item("SEND_FAX"))


@pytest.mark.asyncio
async def test_handler_exception_propagates():
    dispatcher = OperationDispatcher()
    dispatcher.register(QueueOperation.CREATE_EVENT, AsyncMock(side_effect=RuntimeError("boom")))

    with pytest.raises(RuntimeError, match="boom"):
        await dispatcher.dispatch(_item())


@pytest.mark.asyncio
async def test_slow_handler_times_out_as_failure():
    async def slow_handler(item):
        await asyncio.sleep(5)
        return True

    dispatcher = OperationDispatcher(timeout_seconds=0.05)
    dispatcher.register(QueueOperation.CREATE_EVENT, slow_handler)

    result = await dispatcher.dispatch(_item())

    assert result.success is False
    assert "timed out" in result.error
