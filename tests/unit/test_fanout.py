import asyncio
import threading

import pytest

from ticketing.infrastructure.realtime.fanout import (
    BookingFanout,
    StreamClosedError,
    queue_deliverer,
)


def _booking(event_id, code="ABC1234"):
    return {"event_id": event_id, "booking_code": code}


# ---------------------
# REGISTRY
# ---------------------

def test_publish_reaches_only_the_event_subscribers():
    fanout = BookingFanout()
    first, second = [], []
    fanout.subscribe("event-1", first.append)
    fanout.subscribe("event-2", second.append)

    delivered = fanout.publish(_booking("event-2"))

    assert delivered == 1
    assert first == []
    assert second == [{"type": "booking", "data": _booking("event-2")}]


def test_publish_without_subscribers_delivers_nothing():
    assert BookingFanout().publish(_booking("event-1")) == 0


def test_unsubscribe_drops_empty_event_entry():
    fanout = BookingFanout()
    stream = fanout.subscribe("event-1", lambda message: None)
    assert fanout.event_ids() == {"event-1"}

    fanout.unsubscribe(stream)

    assert fanout.subscriber_count("event-1") == 0
    assert fanout.event_ids() == set()
    with pytest.raises(StreamClosedError):
        stream.send({"type": "booking"})


def test_failed_send_evicts_only_that_stream():
    fanout = BookingFanout()
    received = []

    def broken(message):
        raise ConnectionError("peer went away")

    fanout.subscribe("event-1", broken)
    fanout.subscribe("event-1", received.append)

    assert fanout.publish(_booking("event-1")) == 1
    assert fanout.subscriber_count("event-1") == 1
    assert len(received) == 1

    assert fanout.publish(_booking("event-1", code="XYZ9876")) == 1
    assert len(received) == 2


def test_concurrent_subscribe_and_publish():
    fanout = BookingFanout()
    stop = threading.Event()
    errors = []

    def churn():
        while not stop.is_set():
            stream = fanout.subscribe("event-1", lambda message: None)
            fanout.unsubscribe(stream)

    def publish():
        try:
            for _ in range(500):
                fanout.publish(_booking("event-1"))
        except Exception as exc:
            errors.append(exc)

    workers = [threading.Thread(target=churn) for _ in range(3)]
    for worker in workers:
        worker.start()
    publish()
    stop.set()
    for worker in workers:
        worker.join()

    assert errors == []
    assert fanout.subscriber_count("event-1") == 0


# ---------------------
# ASYNC BRIDGE
# ---------------------

def test_queue_deliverer_hands_message_to_loop():
    loop = asyncio.new_event_loop()
    try:
        queue = asyncio.Queue(maxsize=2)
        deliver = queue_deliverer(loop, queue)

        deliver({"type": "booking"})
        loop.run_until_complete(asyncio.sleep(0))

        assert queue.get_nowait() == {"type": "booking"}
    finally:
        loop.close()


def test_burst_before_loop_runs_evicts_on_overflow():
    loop = asyncio.new_event_loop()
    errors = []
    loop.set_exception_handler(lambda loop, context: errors.append(context.get("exception")))
    try:
        queue = asyncio.Queue(maxsize=1)
        fanout = BookingFanout()
        fanout.subscribe("event-1", queue_deliverer(loop, queue))

        delivered = [fanout.publish(_booking("event-1", code=f"B{n}")) for n in range(3)]
        loop.run_until_complete(asyncio.sleep(0))

        assert delivered == [1, 0, 0]
        assert fanout.subscriber_count("event-1") == 0
        assert queue.qsize() == 1
        assert queue.get_nowait()["data"]["booking_code"] == "B0"
        assert errors == []
    finally:
        loop.close()


def test_queue_slots_free_up_as_the_loop_drains():
    loop = asyncio.new_event_loop()
    try:
        queue = asyncio.Queue(maxsize=1)
        fanout = BookingFanout()
        fanout.subscribe("event-1", queue_deliverer(loop, queue))

        assert fanout.publish(_booking("event-1", code="B0")) == 1
        loop.run_until_complete(asyncio.sleep(0))
        queue.get_nowait()

        assert fanout.publish(_booking("event-1", code="B1")) == 1
        assert fanout.subscriber_count("event-1") == 1
    finally:
        loop.close()


def test_full_queue_counts_as_failed_send():
    loop = asyncio.new_event_loop()
    try:
        queue = asyncio.Queue(maxsize=1)
        queue.put_nowait({"type": "booking"})

        fanout = BookingFanout()
        fanout.subscribe("event-1", queue_deliverer(loop, queue))

        assert fanout.publish(_booking("event-1")) == 0
        assert fanout.subscriber_count("event-1") == 0
    finally:
        loop.close()
