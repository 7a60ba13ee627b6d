"""
WebSocket endpoints
WebSocket推送端点 - 连接时先补拉，再接收实时事件
"""

import json
import logging
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.api.deps import SessionManager, get_session_manager
from app.core.exceptions import GameRuleError
from app.schemas.common import WebSocketMessage
from app.websocket.connection_manager import connection_manager

logger = logging.getLogger(__name__)
router = APIRouter()


def _frame(message_type: str, data: dict) -> str:
    return WebSocketMessage(type=message_type, data=data).model_dump_json()


@router.websocket("/{room_id}")
async def websocket_room_endpoint(
    websocket: WebSocket,
    room_id: str,
    manager: SessionManager = Depends(get_session_manager)
):
    """
    房间推送通道
    查询参数: player_id, last_event_id（可选，默认 0）
    事件至少送达一次，客户端按事件ID去重
    """
    player_id = websocket.query_params.get("player_id")
    try:
        last_event_id = int(websocket.query_params.get("last_event_id", 0))
    except ValueError:
        last_event_id = 0

    player = manager.store.get_player(player_id) if player_id else None
    if player is None or player.room_id != room_id:
        logger.warning(f"[WS_CONNECT] Rejected player {player_id} for room {room_id}")
        await websocket.close(code=4004, reason="Player not in room")
        return

    connected = await connection_manager.connect(player_id, websocket, room_id)
    if not connected:
        await websocket.close(code=4002, reason="Connection failed")
        return

    try:
        # 先订阅再补拉，补拉与推送之间的重复由客户端按ID去重
        await websocket.send_text(_frame("catch_up", manager.catch_up(room_id, last_event_id)))

        while True:
            try:
                data = await websocket.receive_text()
                message = json.loads(data)

                if not isinstance(message, dict) or "type" not in message:
                    await websocket.send_text(_frame("error", {"message": "Invalid message format"}))
                    continue

                await handle_websocket_message(websocket, manager, room_id, player_id, message)

            except WebSocketDisconnect:
                logger.info(f"[WS] Player {player_id} disconnected from room {room_id}")
                break
            except json.JSONDecodeError:
                await websocket.send_text(_frame("error", {"message": "Invalid JSON format"}))
            except GameRuleError as e:
                await websocket.send_text(_frame("error", e.to_detail()))

    finally:
        # 只清理推送连接；离开房间需调用 leave 接口或等待心跳超时
        await connection_manager.disconnect(player_id, "Connection closed", websocket=websocket)


async def handle_websocket_message(websocket: WebSocket, manager: SessionManager,
                                   room_id: str, player_id: str, message: dict) -> None:
    message_type = message["type"]

    if message_type == "heartbeat":
        connection_manager.touch(player_id)
        ack = await manager.heartbeat(room_id, player_id)
        await websocket.send_text(_frame("heartbeat_ack", ack))
    elif message_type == "catch_up":
        try:
            last_event_id = int(message.get("last_event_id", 0))
        except (TypeError, ValueError):
            last_event_id = 0
        await websocket.send_text(_frame("catch_up", manager.catch_up(room_id, last_event_id)))
    else:
        await websocket.send_text(_frame("error", {"message": f"Unknown message type: {message_type}"}))
