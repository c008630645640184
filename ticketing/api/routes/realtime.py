import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ticketing.infrastructure.realtime.fanout import FANOUT_QUEUE_SIZE, queue_deliverer

router = APIRouter(tags=["realtime"])
logger = logging.getLogger(__name__)


async def _pump(websocket: WebSocket, queue: "asyncio.Queue[dict]") -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


async def _watch(websocket: WebSocket) -> None:
    # Returns once the client goes away; inbound frames are ignored.
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/events/{event_id}/subscribe")
async def subscribe_to_bookings(websocket: WebSocket, event_id: str):
    """
    Streams {"type": "booking", "data": ...} for every booking
    committed against the event until the client disconnects.
    """
    fanout = websocket.app.state.fanout
    await websocket.accept()

    queue: asyncio.Queue[dict] = asyncio.Queue(maxsize=FANOUT_QUEUE_SIZE)
    stream = fanout.subscribe(event_id, queue_deliverer(asyncio.get_running_loop(), queue))

    try:
        await websocket.send_json({"type": "subscribed", "event_id": event_id})

        tasks = {
            asyncio.create_task(_pump(websocket, queue)),
            asyncio.create_task(_watch(websocket)),
        }
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning(
                    "Subscriber stream ended with error. event_id=%s stream_id=%s error=%s",
                    event_id,
                    stream.id,
                    exc,
                )
    except WebSocketDisconnect:
        pass
    finally:
        fanout.unsubscribe(stream)
