"""
Health check and maintenance endpoints
健康检查和维护端点
"""

from fastapi import APIRouter, Depends, HTTPException, status
from typing import Dict, Any

from app.api.deps import LivenessMonitor, SessionManager, get_liveness_monitor, get_session_manager
from app.core.config import settings
from app.services.llm import judge_status
from app.websocket.connection_manager import connection_manager

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint
    基础健康检查端点
    """
    return {
        "status": "healthy",
        "service": "sketch-judge-server",
        "version": "1.0.0"
    }


@router.get("/status")
async def service_status(
    manager: SessionManager = Depends(get_session_manager),
    monitor: LivenessMonitor = Depends(get_liveness_monitor)
) -> Dict[str, Any]:
    """
    Overall service status
    整体服务状态：存储规模、倒计时、评审后端配置、推送连接
    """
    return {
        "service": "sketch-judge-server",
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "store": manager.stats(),
        "judges": judge_status(),
        "liveness_monitor": {
            "running": monitor.is_running,
            "interval": monitor.interval,
            "threshold": monitor.threshold,
        },
        "websocket_connections": connection_manager.get_connection_count(),
    }


@router.post("/maintenance/inactive-players")
async def trigger_liveness_sweep(monitor: LivenessMonitor = Depends(get_liveness_monitor)):
    """
    Trigger a manual inactive-player sweep
    手动触发一次心跳巡检
    """
    try:
        return await monitor.sweep_with_stats()
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Sweep failed: {str(e)}"
        )
