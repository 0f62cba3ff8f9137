# evoting/broadcast.py
# Realtime fan-out of area-level events to websocket subscribers.
# Publishing is best-effort and callable from worker threads.
import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

VOTE_UPDATE = "voteUpdate"
PORTAL_STATUS = "portalStatus"

QUEUE_SIZE = 100


class Broadcaster:
    def __init__(self):
        self._subscribers = set()
        self._lock = threading.Lock()

    def subscribe(self) -> asyncio.Queue:
        """Register a queue for the calling event loop; must be called from async code."""
        queue = asyncio.Queue(maxsize=QUEUE_SIZE)
        with self._lock:
            self._subscribers.add((asyncio.get_running_loop(), queue))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._subscribers = {(loop, q) for loop, q in self._subscribers if q is not queue}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: str, payload: Dict[str, Any]) -> int:
        """Queue ``event`` for every subscriber; returns how many were reached."""
        message = {"event": event, "data": jsonable_encoder(payload)}
        with self._lock:
            subscribers = list(self._subscribers)
        delivered = 0
        for loop, queue in subscribers:
            try:
                loop.call_soon_threadsafe(_offer, queue, message)
                delivered += 1
            except RuntimeError:
                # event loop already closed
                self.unsubscribe(queue)
        return delivered

    def vote_recorded(self, constituency: str, ward: str) -> int:
        return self.publish(
            VOTE_UPDATE,
            {"constituency": constituency, "ward": ward, "timestamp": datetime.now(timezone.utc)},
        )

    def portal_status(self, is_open: bool) -> int:
        return self.publish(
            PORTAL_STATUS,
            {"status": "open" if is_open else "closed", "timestamp": datetime.now(timezone.utc)},
        )


def _offer(queue: asyncio.Queue, message: Dict[str, Any]) -> None:
    try:
        queue.put_nowait(message)
    except asyncio.QueueFull:
        logger.debug("Dropping realtime event for a slow subscriber")


broadcaster = Broadcaster()


def get_broadcaster() -> Broadcaster:
    return broadcaster
