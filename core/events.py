"""
Round lifecycle events.

Two events are pushed to subscribers:
- round-start: round_id, round_number, start_time, end_time
- round-end:   round_id, round_number, result, multiplier

Delivery is best-effort and at-most-once. Clients that miss an event reconcile
by polling GET /api/game/active, so nothing here may affect game state.
"""
import asyncio
import logging
import threading
from typing import Any, Dict, List, Tuple

from models import Round

logger = logging.getLogger(__name__)

ROUND_START = "round-start"
ROUND_END = "round-end"


def round_start_payload(round_obj: Round) -> Dict[str, Any]:
    return {
        "round_id": round_obj.id,
        "round_number": round_obj.round_number,
        "start_time": round_obj.start_time.isoformat(),
        "end_time": round_obj.end_time.isoformat(),
    }


def round_end_payload(round_obj: Round) -> Dict[str, Any]:
    return {
        "round_id": round_obj.id,
        "round_number": round_obj.round_number,
        "result": round_obj.result.value if round_obj.result else None,
        "multiplier": str(round_obj.multiplier) if round_obj.multiplier is not None else None,
    }


class EventSink:
    """Receives round lifecycle events."""

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class NullEventSink(EventSink):
    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        logger.debug(f"Dropping event {event}: {payload}")


def safe_publish(sink: EventSink, event: str, payload: Dict[str, Any]) -> None:
    """Publish without letting a sink failure reach the caller."""
    try:
        sink.publish(event, payload)
    except Exception as e:
        logger.warning(f"Failed to publish {event} for round {payload.get('round_id')}: {e}")


class Broadcaster(EventSink):
    """
    Fans events out to asyncio subscribers (WebSocket connections).

    publish() is called from the scheduler thread, so each message is handed to
    the subscriber's event loop with call_soon_threadsafe. A full queue drops
    the message for that subscriber only.
    """

    def __init__(self, max_queue_size: int = 100):
        self._subscribers: List[Tuple[asyncio.AbstractEventLoop, asyncio.Queue]] = []
        self._lock = threading.Lock()
        self._max_queue_size = max_queue_size

    def subscribe(self) -> asyncio.Queue:
        """Register a subscriber; must be called from inside a running event loop."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        with self._lock:
            self._subscribers.append((loop, queue))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._subscribers = [(l, q) for l, q in self._subscribers if q is not queue]

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        message = {"event": event, "data": payload}
        with self._lock:
            subscribers = list(self._subscribers)

        for loop, queue in subscribers:
            try:
                loop.call_soon_threadsafe(self._offer, queue, message)
            except RuntimeError:
                # loop already closed, connection is gone
                self.unsubscribe(queue)

    @staticmethod
    def _offer(queue: asyncio.Queue, message: Dict[str, Any]) -> None:
        try:
            queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"Subscriber queue full, dropping {message['event']}")
