"""
Common Pydantic schemas
通用消息模型
"""

from pydantic import BaseModel, Field
from typing import Optional, Any, Dict
from datetime import datetime


class ErrorDetail(BaseModel):
    """错误详情"""
    reason: str = Field(..., description="错误原因代码")
    message: str = Field("", description="可读的错误信息")


class WebSocketMessage(BaseModel):
    """WebSocket消息模型"""
    type: str = Field(..., description="消息类型")
    data: Optional[Dict[str, Any]] = Field(None, description="消息数据")
    timestamp: datetime = Field(default_factory=datetime.now)
