"""
Retry/backoff policy for failed queue items
Exponential backoff: 2^retry_count minutes
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from calsync.core.models import QueueItem

BACKOFF_BASE = 2


@dataclass(frozen=True)
class RetryDecision:
    """Next state of an item after a failed attempt"""
    terminal: bool
    retry_count: int
    next_schedule: Optional[datetime] = None


def backoff_delay(retry_count: int) -> timedelta:
    """Delay before the attempt following the `retry_count`-th failure"""
    return timedelta(minutes=BACKOFF_BASE ** retry_count)


def decide(item: QueueItem, now: datetime, permanent: bool = False) -> RetryDecision:
    """Decide whether a failed item is retried or goes terminal.

    The failure increments the retry count. Once the new count reaches the
    item's max_retries, or the failure is permanent, the item is terminal.
    Otherwise it is rescheduled at now + 2^new_count minutes.
    """
    new_retry_count = min(item.retry_count + 1, max(item.max_retries, 0))

    if permanent or new_retry_count >= item.max_retries:
        return RetryDecision(terminal=True, retry_count=new_retry_count)

    return RetryDecision(
        terminal=False,
        retry_count=new_retry_count,
        next_schedule=now + backoff_delay(new_retry_count)
    )
