"""
WebSocket：推送 round-start / round-end

連線後送出的每個訊息格式：
    {"event": "round-start" | "round-end", "data": {...}}

只是加速畫面更新，漏接的事件由前端輪詢 /api/game/active 補齊
"""
import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

router = APIRouter(tags=["websocket"])
logger = logging.getLogger(__name__)


@router.websocket("/ws/game")
async def game_events(websocket: WebSocket):
    broadcaster = websocket.app.state.broadcaster
    await websocket.accept()
    queue = broadcaster.subscribe()
    logger.info(f"Client connected ({broadcaster.subscriber_count} subscribers)")

    # 客戶端不需要送資料，這個 task 只用來偵測斷線
    receiver = asyncio.create_task(_drain(websocket))
    try:
        while not receiver.done():
            getter = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait(
                {getter, receiver}, return_when=asyncio.FIRST_COMPLETED
            )
            if getter in done:
                await websocket.send_json(getter.result())
            else:
                getter.cancel()
    except WebSocketDisconnect:
        pass
    finally:
        receiver.cancel()
        broadcaster.unsubscribe(queue)
        logger.info("Client disconnected")


async def _drain(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return
