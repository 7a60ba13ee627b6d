"""
API v1 router
API v1 路由配置
"""

from fastapi import APIRouter

# Import route modules
from app.api.v1.endpoints import rooms, games, health, websocket

api_router = APIRouter()

# Include endpoint routers
api_router.include_router(health.router, tags=["health"])
api_router.include_router(rooms.router, prefix="/rooms", tags=["rooms"])
api_router.include_router(games.router, tags=["games"])
api_router.include_router(websocket.router, prefix="/ws", tags=["websocket"])
