"""
Game event model
房间事件日志模型
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """事件类型"""
    ROOM_CREATED = "room_created"
    PLAYER_JOINED = "player_joined"
    PLAYER_LEFT = "player_left"
    GAME_STARTED = "game_started"
    NEXT_ROUND_STARTED = "next_round_started"
    DRAWING_SUBMITTED = "drawing_submitted"
    AI_EVALUATION_STARTED = "ai_evaluation_started"
    AI_EVALUATION_FAILED = "ai_evaluation_failed"
    ROUND_COMPLETED = "round_completed"
    HOST_TRANSFERRED = "host_transferred"


class GameEvent(BaseModel):
    """Append-only room event; ids are global and strictly increasing."""

    id: int
    room_id: str
    event_type: str
    event_data: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=datetime.now)
