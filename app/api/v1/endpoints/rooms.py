"""
Room management API endpoints
房间管理API端点
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import SessionManager, get_session_manager, to_http_exception
from app.core.exceptions import GameRuleError
from app.schemas.room import RoomCreate, RoomJoinRequest, RoomLeaveRequest

router = APIRouter()


@router.post("", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def create_room(
    room_data: RoomCreate,
    manager: SessionManager = Depends(get_session_manager)
):
    """
    创建新房间

    - **hostId**: 房主玩家ID
    - **nickname**: 房主昵称
    - **judgeModel**: 评审后端 (gemini, chatgpt, claude, offline)
    """
    try:
        judge_model = room_data.judge_model.value if room_data.judge_model else None
        return await manager.create_room(room_data.host_id, room_data.nickname, judge_model)
    except GameRuleError as e:
        raise to_http_exception(e)


@router.get("/{room_id}", response_model=Dict[str, Any])
async def get_room(room_id: str, manager: SessionManager = Depends(get_session_manager)):
    """获取房间快照"""
    try:
        return manager.get_snapshot(room_id)
    except GameRuleError as e:
        raise to_http_exception(e)


@router.post("/{room_id}/join", response_model=Dict[str, Any])
async def join_room(
    room_id: str,
    join_data: RoomJoinRequest,
    manager: SessionManager = Depends(get_session_manager)
):
    """
    加入房间

    - **playerId**: 玩家ID
    - **nickname**: 昵称（房间内唯一）

    失败原因: not_found / not_waiting / nickname_taken
    """
    try:
        return await manager.join_room(room_id, join_data.player_id, join_data.nickname)
    except GameRuleError as e:
        raise to_http_exception(e)


@router.post("/{room_id}/leave", response_model=Dict[str, Any])
async def leave_room(
    room_id: str,
    leave_data: RoomLeaveRequest,
    manager: SessionManager = Depends(get_session_manager)
):
    """离开房间；房主离开时自动转移给最早加入的玩家"""
    try:
        return await manager.leave_room(room_id, leave_data.player_id)
    except GameRuleError as e:
        raise to_http_exception(e)


@router.get("/{room_id}/events", response_model=Dict[str, Any])
async def catch_up(
    room_id: str,
    after: int = Query(0, ge=0, description="上次收到的事件ID"),
    manager: SessionManager = Depends(get_session_manager)
):
    """补拉事件：返回快照和 id > after 的事件（旧的在前）"""
    try:
        return manager.catch_up(room_id, after)
    except GameRuleError as e:
        raise to_http_exception(e)


@router.get("/{room_id}/results", response_model=Dict[str, Any])
async def get_results(room_id: str, manager: SessionManager = Depends(get_session_manager)):
    """获取累计得分、当前领先者和最近一次评审结果"""
    try:
        return manager.get_results(room_id)
    except GameRuleError as e:
        raise to_http_exception(e)


@router.get("/{room_id}/drawings", response_model=List[Dict[str, Any]])
async def list_drawings(
    room_id: str,
    round_number: Optional[int] = Query(None, alias="round", ge=1),
    include_canvas: bool = Query(False, alias="includeCanvas"),
    manager: SessionManager = Depends(get_session_manager)
):
    """
    获取房间作品

    - **round**: 回合号（可选）
    - **includeCanvas**: 是否返回画布数据
    """
    try:
        return manager.get_drawings(room_id, round_number, include_canvas)
    except GameRuleError as e:
        raise to_http_exception(e)


@router.get("/{room_id}/debug", response_model=Dict[str, Any])
async def debug_room(room_id: str, manager: SessionManager = Depends(get_session_manager)):
    """调试信息：房主数量、倒计时状态、作品摘要和完整事件日志"""
    try:
        return manager.get_debug_info(room_id)
    except GameRuleError as e:
        raise to_http_exception(e)
