"""
WebSocket连接管理器
管理玩家WebSocket连接，把房间事件推送给房间内所有连接
"""

import json
import logging
from typing import Any, Dict, List, Optional, Set
from datetime import datetime
from fastapi import WebSocket

from app.core.config import settings
from app.models import GameEvent

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    WebSocket连接管理器
    推送是尽力而为的；断线的客户端通过 last_event_id 补拉
    """

    def __init__(self, max_connections: Optional[int] = None):
        # 活跃连接: player_id -> WebSocket
        self.active_connections: Dict[str, WebSocket] = {}

        # 房间连接映射: room_id -> Set[player_id]
        self.room_connections: Dict[str, Set[str]] = {}

        # 玩家房间映射: player_id -> room_id
        self.user_rooms: Dict[str, str] = {}

        # 连接元数据: player_id -> connection_info
        self.connection_metadata: Dict[str, Dict[str, Any]] = {}

        self.max_connections = max_connections or settings.MAX_WEBSOCKET_CONNECTIONS

    async def connect(self, player_id: str, websocket: WebSocket, room_id: str) -> bool:
        """建立WebSocket连接并加入房间频道"""
        if len(self.active_connections) >= self.max_connections and player_id not in self.active_connections:
            logger.warning(f"[WS] Connection limit reached, rejecting player {player_id}")
            return False

        await websocket.accept()

        # 同一玩家的旧连接先断开
        if player_id in self.active_connections:
            await self.disconnect(player_id, "New connection established")

        self.active_connections[player_id] = websocket
        self.connection_metadata[player_id] = {
            "connected_at": datetime.now(),
            "last_ping": datetime.now(),
            "room_id": room_id,
        }
        self.room_connections.setdefault(room_id, set()).add(player_id)
        self.user_rooms[player_id] = room_id

        logger.info(f"[WS] Player {player_id} connected to room {room_id}")
        return True

    async def disconnect(self, player_id: str, reason: str = "Connection closed",
                         websocket: Optional[WebSocket] = None) -> None:
        """
        断开玩家连接
        传入 websocket 时只在它仍是该玩家的当前连接时才清理，旧连接退出不会影响重连后的新连接
        """
        if websocket is not None and self.active_connections.get(player_id) is not websocket:
            logger.debug(f"[WS] Stale connection for player {player_id} closed: {reason}")
            return

        room_id = self.user_rooms.pop(player_id, None)
        if room_id and room_id in self.room_connections:
            self.room_connections[room_id].discard(player_id)
            if not self.room_connections[room_id]:
                del self.room_connections[room_id]

        websocket = self.active_connections.pop(player_id, None)
        if websocket is not None:
            try:
                await websocket.close(code=1000, reason=reason)
            except Exception as e:
                # 连接可能已经关闭
                logger.debug(f"[WS] Close failed for player {player_id}: {e}")

        self.connection_metadata.pop(player_id, None)
        logger.info(f"[WS] Player {player_id} disconnected: {reason}")

    def touch(self, player_id: str) -> None:
        if player_id in self.connection_metadata:
            self.connection_metadata[player_id]["last_ping"] = datetime.now()

    async def send_to_user(self, player_id: str, message: dict) -> bool:
        websocket = self.active_connections.get(player_id)
        if websocket is None:
            return False
        try:
            await websocket.send_text(json.dumps(message, default=str))
            return True
        except Exception as e:
            logger.warning(f"[WS] Send to player {player_id} failed: {e}")
            await self.disconnect(player_id, "Send failed", websocket=websocket)
            return False

    async def broadcast_to_room(self, room_id: str, message: dict, exclude_user: Optional[str] = None) -> int:
        """广播消息到房间所有连接"""
        sent_count = 0
        for player_id in list(self.room_connections.get(room_id, set())):
            if exclude_user and player_id == exclude_user:
                continue
            if await self.send_to_user(player_id, message):
                sent_count += 1

        logger.debug(f"[BROADCAST] Sent '{message.get('type', 'unknown')}' to {sent_count} players in room {room_id}")
        return sent_count

    async def push_event(self, event: GameEvent) -> int:
        """事件日志监听器：把新事件推送给房间"""
        return await self.broadcast_to_room(event.room_id, {
            "type": "event",
            "data": event.model_dump(mode="json"),
        })

    def get_connection_count(self) -> int:
        return len(self.active_connections)

    def get_room_users(self, room_id: str) -> List[str]:
        return list(self.room_connections.get(room_id, set()))

    def is_user_connected(self, player_id: str) -> bool:
        return player_id in self.active_connections


# 全局连接管理器实例
connection_manager = ConnectionManager()
