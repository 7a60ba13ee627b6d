"""
Player model
玩家数据模型
"""

from datetime import datetime

from pydantic import BaseModel, Field

NICKNAME_MAX_LENGTH = 50


class Player(BaseModel):
    """A seated player. Exactly one room per player."""

    id: str = Field(..., description="调用方提供的玩家ID")
    room_id: str
    nickname: str = Field(..., min_length=1, max_length=NICKNAME_MAX_LENGTH)
    is_host: bool = False
    has_submitted: bool = False
    score: int = Field(default=0, ge=0, description="累计得分，只增不减")
    joined_at: datetime = Field(default_factory=datetime.now)
    join_seq: int = Field(default=0, description="全局加入序号，用于同一时刻加入的排序")
    last_active: datetime = Field(default_factory=datetime.now)

    def __repr__(self):
        return f"<Player(id={self.id}, nickname={self.nickname}, host={self.is_host})>"
