from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Set

logger = logging.getLogger(__name__)


class StreamBus:
    """Lightweight in-process pub/sub for node events and health reports."""

    def __init__(self, max_queue: int = 0):
        self._subscribers: Set[asyncio.Queue] = set()
        self._max_queue = max_queue
        self.dropped = 0

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    def publish_nowait(self, message: Dict[str, Any]) -> None:
        """Deliver without waiting; a full subscriber queue drops the message."""
        for subscriber in list(self._subscribers):
            try:
                subscriber.put_nowait(message)
            except asyncio.QueueFull:
                self.dropped += 1
                logger.debug("Subscriber queue full, dropped %s", message.get("kind"))

    def subscriber_count(self) -> int:
        return len(self._subscribers)
