"""
FastAPI main application entry point
你画我评 - 多人实时绘画评分游戏服务入口
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from app.core.config import settings
from app.api.v1.api import api_router
from app.services.session_manager import session_manager
from app.services.liveness import start_background_tasks, stop_background_tasks
from app.websocket.connection_manager import connection_manager
import logging
import os

# Configure logging - 同时输出到控制台和文件
log_level = getattr(logging, settings.LOG_LEVEL.upper())
log_format = settings.LOG_FORMAT

handlers = [logging.StreamHandler()]  # 控制台输出
if settings.LOG_TO_FILE:
    # 确保日志目录存在
    log_dir = os.path.join(os.path.dirname(os.path.dirname(__file__)), 'logs')
    os.makedirs(log_dir, exist_ok=True)
    handlers.append(logging.FileHandler(os.path.join(log_dir, 'app.log'), encoding='utf-8'))

logging.basicConfig(level=log_level, format=log_format, handlers=handlers)
logger = logging.getLogger(__name__)

# 减少 httpx 的日志噪音
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting sketch judge server...")

    # 事件日志追加后推送到 WebSocket 连接
    session_manager.event_log.subscribe(connection_manager.push_event)
    await start_background_tasks()

    logger.info("Application startup completed")

    yield

    # Shutdown
    logger.info("Shutting down application...")

    try:
        await stop_background_tasks()
        session_manager.event_log.unsubscribe(connection_manager.push_event)
        logger.info("Application shutdown completed")
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


app = FastAPI(
    title="Sketch Judge",
    description="Real-time multiplayer drawing game with AI judging",
    version="1.0.0",
    lifespan=lifespan,
    redirect_slashes=False
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Sketch Judge API",
        "status": "running",
        "version": "1.0.0"
    }
