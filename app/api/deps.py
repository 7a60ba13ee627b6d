"""
API dependencies
API 公共依赖与错误转换
"""

import logging

from fastapi import HTTPException

from app.core.exceptions import GameRuleError
from app.schemas.common import ErrorDetail
from app.services.session_manager import SessionManager, get_session_manager
from app.services.liveness import LivenessMonitor, get_liveness_monitor

logger = logging.getLogger(__name__)

__all__ = ["get_session_manager", "get_liveness_monitor", "SessionManager", "LivenessMonitor", "to_http_exception"]


def to_http_exception(e: GameRuleError) -> HTTPException:
    """把调用方错误转换为 HTTPException；未找到类错误不是系统故障，只记 info"""
    logger.info(f"[API] Rejected: {e.reason} - {e.message}")
    return HTTPException(
        status_code=e.status_code,
        detail=ErrorDetail(reason=e.reason, message=e.message).model_dump(),
    )
