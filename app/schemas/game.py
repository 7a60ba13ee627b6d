"""
Game Pydantic schemas
回合操作请求模型
"""

from pydantic import BaseModel, Field


class HostAction(BaseModel):
    """房主操作（开始游戏 / 下一回合）"""
    room_id: str = Field(..., alias="roomId", min_length=1)
    host_id: str = Field(..., alias="hostId", min_length=1)

    class Config:
        populate_by_name = True


class DrawingSubmit(BaseModel):
    """提交作品"""
    player_id: str = Field(..., alias="playerId", min_length=1)
    room_id: str = Field(..., alias="roomId", min_length=1)
    canvas_data: str = Field("", alias="canvasData", description="画布序列化数据，可以为空")

    class Config:
        populate_by_name = True


class Heartbeat(BaseModel):
    """心跳"""
    room_id: str = Field(..., alias="roomId", min_length=1)
    player_id: str = Field(..., alias="playerId", min_length=1)

    class Config:
        populate_by_name = True
