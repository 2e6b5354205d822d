# SPDX-License-Identifier: MIT
"""Multi-subscriber stream of configuration snapshots."""

from __future__ import annotations

import asyncio
import copy
from typing import Any, AsyncIterator, Dict

__all__ = ["ConfigStream", "ConfigSubscription"]

_END = object()


class ConfigSubscription:
    """Ordered view of the snapshots published after the subscription was made.

    Iterate with ``async for``; iteration ends when the subscription is
    cancelled or the stream is closed. Buffered snapshots published before
    the end are still delivered.
    """

    def __init__(self, stream: "ConfigStream") -> None:
        self._stream = stream
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._finished = False

    @property
    def closed(self) -> bool:
        return self._finished

    def _offer(self, snapshot: Dict[str, Any]) -> None:
        self._queue.put_nowait(copy.deepcopy(snapshot))

    def _end(self) -> None:
        self._queue.put_nowait(_END)

    async def next(self) -> Dict[str, Any]:
        """Wait for the next snapshot.

        Raises:
            StopAsyncIteration: once the subscription has ended.
        """
        if self._finished:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END:
            self._finished = True
            raise StopAsyncIteration
        return item

    def cancel(self) -> None:
        """Stop receiving snapshots and end iteration."""

        if self._stream._detach(self):
            self._end()

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self

    async def __anext__(self) -> Dict[str, Any]:
        return await self.next()

    async def __aenter__(self) -> "ConfigSubscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.cancel()


class ConfigStream:
    """Publish snapshots to every current subscriber without replay."""

    def __init__(self) -> None:
        self._subscribers: list[ConfigSubscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> ConfigSubscription:
        subscription = ConfigSubscription(self)
        if self._closed:
            subscription._end()
        else:
            self._subscribers.append(subscription)
        return subscription

    def publish(self, snapshot: Dict[str, Any]) -> None:
        if self._closed:
            return
        for subscription in tuple(self._subscribers):
            subscription._offer(snapshot)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        subscribers, self._subscribers = self._subscribers, []
        for subscription in subscribers:
            subscription._end()

    def _detach(self, subscription: ConfigSubscription) -> bool:
        try:
            self._subscribers.remove(subscription)
        except ValueError:
            return False
        return True
