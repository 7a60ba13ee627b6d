"""
Drawing model
作品数据模型
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class Drawing(BaseModel):
    """One player's submission for one round."""

    id: int
    player_id: str
    room_id: str
    round_number: int
    canvas_data: str = ""  # 空字符串表示提交了但没有内容
    keyword: str = Field(..., description="提交时的题目副本")
    score: Optional[int] = Field(None, ge=0, le=100)
    submitted_at: datetime = Field(default_factory=datetime.now)
