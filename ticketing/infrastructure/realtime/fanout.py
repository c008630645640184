# ticketing/infrastructure/realtime/fanout.py

import asyncio
import logging
import os
import threading
from typing import Any, Callable, Dict, Set
from uuid import uuid4

logger = logging.getLogger(__name__)

FANOUT_QUEUE_SIZE = int(os.getenv("FANOUT_QUEUE_SIZE", "100"))

Deliver = Callable[[dict], None]


class StreamClosedError(Exception):
    """Raised when a message is sent to a stream that can no longer take it."""


class EventStream:
    """One live subscriber connection registered against an event."""

    def __init__(self, event_id: str, deliver: Deliver):
        self.id = str(uuid4())
        self.event_id = event_id
        self._deliver = deliver
        self.closed = False

    def send(self, message: dict) -> None:
        if self.closed:
            raise StreamClosedError(f"stream {self.id} is closed")
        self._deliver(message)

    def close(self) -> None:
        self.closed = True


class BookingFanout:
    """
    Registry of event_id -> live streams.

    One lock guards the registry, so subscribe/unsubscribe never
    interleave with a publish walking the same set. Delivery must
    not block; async connections hand over through
    loop.call_soon_threadsafe (see queue_deliverer).
    """

    def __init__(self):
        self._streams: Dict[str, Set[EventStream]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_id: str, deliver: Deliver) -> EventStream:
        stream = EventStream(event_id, deliver)
        with self._lock:
            self._streams.setdefault(event_id, set()).add(stream)
            total = len(self._streams[event_id])
        logger.info(
            "Subscriber registered. event_id=%s stream_id=%s subscribers=%s",
            event_id,
            stream.id,
            total,
        )
        return stream

    def unsubscribe(self, stream: EventStream) -> None:
        stream.close()
        with self._lock:
            self._discard(stream)
        logger.info(
            "Subscriber removed. event_id=%s stream_id=%s",
            stream.event_id,
            stream.id,
        )

    def publish(self, booking_event: dict[str, Any]) -> int:
        """
        Push a booking to every stream of its event. A failed send
        evicts that stream only. Returns the number of deliveries.
        """
        event_id = booking_event["event_id"]
        message = {"type": "booking", "data": booking_event}
        delivered = 0

        with self._lock:
            for stream in list(self._streams.get(event_id, ())):
                try:
                    stream.send(message)
                    delivered += 1
                except Exception:
                    logger.warning(
                        "Evicting subscriber after failed send. event_id=%s stream_id=%s",
                        event_id,
                        stream.id,
                        exc_info=True,
                    )
                    stream.close()
                    self._discard(stream)

        return delivered

    def subscriber_count(self, event_id: str) -> int:
        with self._lock:
            return len(self._streams.get(event_id, ()))

    def event_ids(self) -> set[str]:
        with self._lock:
            return set(self._streams)

    def _discard(self, stream: EventStream) -> None:
        # Caller holds the lock.
        streams = self._streams.get(stream.event_id)
        if streams is None:
            return
        streams.discard(stream)
        if not streams:
            del self._streams[stream.event_id]


def queue_deliverer(
    loop: asyncio.AbstractEventLoop,
    queue: "asyncio.Queue[dict]",
) -> Deliver:
    """
    Bridge from any thread into one connection's event loop. A full
    queue or a closed loop raises, which the fanout treats as a
    disconnect.

    Puts scheduled on the loop but not yet run still hold a slot, so a
    burst of publishes cannot overrun the queue before the loop wakes.
    """
    lock = threading.Lock()
    in_flight = 0

    def put(message: dict) -> None:
        nonlocal in_flight
        with lock:
            in_flight -= 1
            queue.put_nowait(message)

    def deliver(message: dict) -> None:
        nonlocal in_flight
        with lock:
            if queue.maxsize > 0 and queue.qsize() + in_flight >= queue.maxsize:
                raise StreamClosedError("subscriber queue is full")
            in_flight += 1
        try:
            loop.call_soon_threadsafe(put, message)
        except RuntimeError:
            with lock:
                in_flight -= 1
            raise

    return deliver
