"""Async iterator of per-entity status updates for one watched trip."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional

from freshness.status.record import FreshnessRecord

_CLOSED = object()


@dataclass(frozen=True, slots=True)
class StatusUpdate:
    entity_id: str
    record: FreshnessRecord


class StatusStream:
    """Consume with ``async for update in stream``; ends once ``close()`` is called.

    Updates pushed before ``close()`` are still delivered.
    """

    def __init__(self, trip_id: str, *, on_close: Optional[Callable[["StatusStream"], None]] = None) -> None:
        self.trip_id = trip_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._on_close = on_close
        self._closed = False
        self._drained = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, update: StatusUpdate) -> None:
        if not self._closed:
            self._queue.put_nowait(update)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        if self._on_close is not None:
            self._on_close(self)

    def __aiter__(self) -> "StatusStream":
        return self

    async def __anext__(self) -> StatusUpdate:
        if self._drained:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._drained = True
            raise StopAsyncIteration
        return item


__all__ = ["StatusStream", "StatusUpdate"]
