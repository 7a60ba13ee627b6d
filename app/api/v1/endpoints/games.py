"""
Game flow API endpoints
回合流程API端点 - 开始、下一回合、提交作品、心跳
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from app.api.deps import SessionManager, get_session_manager, to_http_exception
from app.core.exceptions import GameRuleError
from app.schemas.game import DrawingSubmit, Heartbeat, HostAction

router = APIRouter()


@router.post("/games/start", response_model=Dict[str, Any])
async def start_game(
    action: HostAction,
    manager: SessionManager = Depends(get_session_manager)
):
    """
    开始游戏（仅房主）

    - **roomId**: 房间ID
    - **hostId**: 房主ID
    """
    try:
        return await manager.start_game(action.room_id, action.host_id)
    except GameRuleError as e:
        raise to_http_exception(e)


@router.post("/games/next-round", response_model=Dict[str, Any])
async def next_round(
    action: HostAction,
    manager: SessionManager = Depends(get_session_manager)
):
    """开始下一回合（仅房主，且上一回合已结束）"""
    try:
        return await manager.next_round(action.room_id, action.host_id)
    except GameRuleError as e:
        raise to_http_exception(e)


@router.post("/games/submit", response_model=Dict[str, Any])
async def submit_drawing(
    submission: DrawingSubmit,
    manager: SessionManager = Depends(get_session_manager)
):
    """
    提交作品

    - **playerId**: 玩家ID
    - **roomId**: 房间ID
    - **canvasData**: 画布数据

    所有玩家提交后立即评分，返回 scores / winner / evaluation
    """
    try:
        return await manager.submit_drawing(submission.player_id, submission.room_id, submission.canvas_data)
    except GameRuleError as e:
        raise to_http_exception(e)


@router.post("/players/heartbeat", response_model=Dict[str, Any])
async def heartbeat(
    beat: Heartbeat,
    manager: SessionManager = Depends(get_session_manager)
):
    """更新玩家最后活跃时间"""
    try:
        return await manager.heartbeat(beat.room_id, beat.player_id)
    except GameRuleError as e:
        raise to_http_exception(e)
