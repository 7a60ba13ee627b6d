"""
Application configuration settings
应用配置设置 - 房间、回合、评审与心跳参数
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment / .env"""

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Round configuration
    ROUND_DURATION_SEC: int = 60      # 每回合倒计时（秒）
    TIMER_TICK_SEC: float = 1.0       # 倒计时步进间隔
    MIN_CANVAS_DATA_LENGTH: int = 100  # 低于该长度视为未作画

    # Liveness configuration
    LIVENESS_CHECK_INTERVAL: int = 15   # 巡检间隔（秒）
    INACTIVE_PLAYER_TIMEOUT: int = 30   # 超过该时长无心跳即移除
    HOST_INACTIVE_WARNING: int = 20     # 房主心跳告警阈值

    # Judge configuration
    DEFAULT_JUDGE_MODEL: str = "gemini"
    JUDGE_MAX_RETRIES: int = 3
    JUDGE_RETRY_DELAY: float = 1.0   # seconds, doubled per attempt
    JUDGE_TIMEOUT: float = 30.0      # 单次评审超时（秒）
    JUDGE_TEMPERATURE: float = 0.7
    JUDGE_MAX_TOKENS: int = 8192

    # Gemini
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_MODEL: str = "gemini-2.5-flash"

    # OpenAI 兼容接口（chatgpt）
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4o-mini"

    # Anthropic（claude）
    ANTHROPIC_API_KEY: Optional[str] = None
    ANTHROPIC_BASE_URL: str = "https://api.anthropic.com/v1"
    ANTHROPIC_MODEL: str = "claude-3-5-sonnet-latest"
    ANTHROPIC_VERSION: str = "2023-06-01"

    # WebSocket configuration
    MAX_WEBSOCKET_CONNECTIONS: int = 200

    # CORS
    CORS_ORIGINS: str = "*"

    @property
    def cors_origins_list(self) -> list:
        """获取允许的跨域来源列表"""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    LOG_TO_FILE: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
