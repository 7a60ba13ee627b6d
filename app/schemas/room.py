"""
Room Pydantic schemas
房间请求模型
"""

from pydantic import BaseModel, Field
from typing import Optional

from app.models.player import NICKNAME_MAX_LENGTH
from app.models.room import JudgeModel


class RoomCreate(BaseModel):
    """创建房间请求模型"""
    host_id: str = Field(..., alias="hostId", min_length=1, description="房主玩家ID")
    nickname: str = Field(..., min_length=1, max_length=NICKNAME_MAX_LENGTH, description="房主昵称")
    judge_model: Optional[JudgeModel] = Field(None, alias="judgeModel", description="评审后端")

    class Config:
        populate_by_name = True


class RoomJoinRequest(BaseModel):
    """加入房间请求模型"""
    player_id: str = Field(..., alias="playerId", min_length=1)
    nickname: str = Field(..., min_length=1, max_length=NICKNAME_MAX_LENGTH)

    class Config:
        populate_by_name = True


class RoomLeaveRequest(BaseModel):
    """离开房间请求模型"""
    player_id: str = Field(..., alias="playerId", min_length=1)

    class Config:
        populate_by_name = True
