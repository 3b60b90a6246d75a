import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, WebSocket

from app.api.dependencies import get_hub
from app.services.telemetry_service import TelemetryHub

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_PENDING_MESSAGES = 100


class WebSocketObserver:
    """Fan-out observer backed by a WebSocket connection.

    ``deliver`` may be called from any thread; messages are handed to the
    connection's event loop and written in order by ``run``. When the
    connection falls behind by more than ``max_pending`` messages, new
    messages are dropped.
    """

    def __init__(
        self,
        websocket: WebSocket,
        loop: asyncio.AbstractEventLoop,
        max_pending: int = MAX_PENDING_MESSAGES,
    ):
        self.websocket = websocket
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)

    def deliver(self, message: dict[str, Any]) -> None:
        self.loop.call_soon_threadsafe(self._enqueue, message)

    def _enqueue(self, message: dict[str, Any]) -> None:
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Observer is falling behind, dropping message")

    async def run(self):
        while True:
            message = await self.queue.get()
            try:
                await self.websocket.send_json(message)
            except Exception as e:
                logger.info(f"Stopped writing to observer: {e}")
                return


@router.websocket("/ws")
async def sensor_stream(websocket: WebSocket, hub: TelemetryHub = Depends(get_hub)):
    await websocket.accept()
    observer = WebSocketObserver(websocket, asyncio.get_running_loop())
    writer = asyncio.create_task(observer.run())
    hub.on_observer_connected(observer)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        hub.on_observer_disconnected(observer)
        writer.cancel()
        await asyncio.gather(writer, return_exceptions=True)
