"""
Room model
房间数据模型（内存存储）
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class RoomStatus(str, Enum):
    """Room status enumeration"""
    WAITING = "waiting"
    PLAYING = "playing"
    SCORING = "scoring"
    FINISHED = "finished"


class JudgeModel(str, Enum):
    """评审后端，创建房间时选定且不可更改"""
    GEMINI = "gemini"
    CHATGPT = "chatgpt"
    CLAUDE = "claude"
    OFFLINE = "offline"


class Room(BaseModel):
    """Room model for drawing sessions"""

    id: str = Field(..., description="6位房间码")
    host_id: str = Field(..., description="当前房主ID")
    status: RoomStatus = RoomStatus.WAITING
    current_keyword: Optional[str] = Field(None, description="当前回合题目")
    time_left: int = Field(default=60, ge=0, description="剩余秒数")
    round_number: int = Field(default=1, ge=1)
    judge_model: JudgeModel = JudgeModel.GEMINI
    created_at: datetime = Field(default_factory=datetime.now)

    def __repr__(self):
        return f"<Room(id={self.id}, status={self.status.value}, round={self.round_number})>"
