# File: services/concurrency.py

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Dict, Optional, TypeVar
from uuid import UUID

from exceptions import ServiceTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

class TripLocks:
    """
    In-process serialization point keyed by trip id.

    Units of work that change one trip's seat counter or its requests queue up
    here, so within a worker they never race for the same row. The conditional
    UPDATE in crud.trip_crud.take_seat remains the guarantee across workers.
    Locks for different trips are independent.
    """

    def __init__(self):
        self._locks: Dict[UUID, asyncio.Lock] = {}
        self._holders: Dict[UUID, int] = {}

    @asynccontextmanager
    async def hold(self, trip_id: UUID) -> AsyncIterator[None]:
        lock = self._locks.get(trip_id)
        if lock is None:
            lock = self._locks[trip_id] = asyncio.Lock()
        self._holders[trip_id] = self._holders.get(trip_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[trip_id] -= 1
            if self._holders[trip_id] == 0:
                # Nobody waiting: drop the lock so the table does not grow with every trip
                del self._holders[trip_id]
                del self._locks[trip_id]

    def __len__(self) -> int:
        return len(self._locks)

async def run_with_timeout(
    awaitable: Awaitable[T],
    timeout: Optional[float],
    action: str,
) -> T:
    """Fails just this unit of work with a retryable error when it overruns."""
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        logger.warning(f"⏱️ {action} exceeded {timeout:.1f}s and was abandoned")
        raise ServiceTimeoutError(f"{action} timed out. Please retry.") from e
