"""WebSocket endpoints — live task progress for browser clients.

Learn: Each client connects to /ws/task/{task_id}. The handler:
1. Registers an Outbox for the task id in the BroadcastRegistry
2. Replays the cached status snapshot, if any (late joiners)
3. Streams every broadcast the forwarder routes into the outbox
4. Unregisters on disconnect, only if it still owns the key

Inbound text frames are accepted and ignored (keep-alive pings).
/ws/user/{user_id} does the same for the legacy per-user routing key.
"""

import asyncio
from typing import Optional

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from taskwire.broadcast.registry import BroadcastMessage, Outbox, user_key
from taskwire.cache.task_cache import CacheError
from taskwire.tasks.schemas import PROGRESS_EVENT

logger = structlog.get_logger()
router = APIRouter()


async def _replay_cached_status(websocket: WebSocket, task_id: str) -> None:
    cache = websocket.app.state.services.cache
    try:
        snapshot = await cache.get_status(task_id)
    except CacheError as e:
        logger.warning("ws.cache_unavailable", task_id=task_id, error=str(e))
        return
    if snapshot is None:
        return
    message = BroadcastMessage(event_type=PROGRESS_EVENT, data=snapshot)
    await websocket.send_text(message.model_dump_json())
    logger.info("ws.cached_status_sent", task_id=task_id)


async def _serve(websocket: WebSocket, key: str, replay_task_id: Optional[str] = None) -> None:
    """Pump the outbox to the socket until either side goes away.

    Learn: Two concurrent tasks run:
    1. Outbox sender — reads broadcasts, writes them to the WebSocket
    2. Client listener — reads from the WebSocket, discarding text

    When either side finishes, the other is cancelled.
    """
    await websocket.accept()

    registry = websocket.app.state.services.registry
    outbox = Outbox()
    registry.register(key, outbox)
    log = logger.bind(key=key)
    log.info("ws.connected")

    async def outbox_sender():
        while True:
            message = await outbox.get()
            await websocket.send_text(message.model_dump_json())

    async def client_listener():
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass

    sender_task = None
    client_task = None
    try:
        if replay_task_id is not None:
            await _replay_cached_status(websocket, replay_task_id)

        sender_task = asyncio.create_task(outbox_sender())
        client_task = asyncio.create_task(client_listener())

        done, pending = await asyncio.wait(
            [sender_task, client_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                log.warning("ws.send_failed", error=str(task.exception()))
    except WebSocketDisconnect:
        pass
    finally:
        registry.unregister(key, outbox)
        leftover = [t for t in (sender_task, client_task) if t is not None and not t.done()]
        for task in leftover:
            task.cancel()
        if leftover:
            await asyncio.gather(*leftover, return_exceptions=True)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
        log.info("ws.disconnected")


@router.websocket("/ws/task/{task_id}")
async def task_progress_websocket(websocket: WebSocket, task_id: str):
    await _serve(websocket, task_id, replay_task_id=task_id)


@router.websocket("/ws/user/{user_id}")
async def user_websocket(websocket: WebSocket, user_id: int):
    await _serve(websocket, user_key(user_id))
