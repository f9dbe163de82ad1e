"""
配置文件 - 项目配置管理
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AliasChoices, BaseModel, Field, field_validator
from typing import Optional


class DatabaseSettings(BaseModel):
    url: str = "sqlite+aiosqlite:///./chat.db"
    echo: bool = False
    # Upper bound for a single store call (append / recent)
    timeout_s: float = 5.0


class PushSettings(BaseModel):
    enabled: bool = False
    base_url: str = "https://exp.host/--/api/v2"
    access_token: Optional[str] = None
    # Expo accepts at most 100 messages per push request
    batch_size: int = 100
    timeout_s: float = 10.0
    # 0 keeps delivery at-most-once
    max_retries: int = 0
    title_template: str = "{username} in {room}"


class Settings(BaseSettings):
    """项目配置"""

    # 基础配置
    PROJECT_NAME: str = Field(default="Chat Relay", validation_alias=AliasChoices("PROJECT_NAME", "APP_NAME"))
    VERSION: str = Field(default="1.0.0", validation_alias=AliasChoices("VERSION", "APP_VERSION"))
    DEBUG: bool = Field(default=True)
    ENVIRONMENT: str = Field(default="development")

    # 分组配置：Database/Push 采用嵌套模型
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    push: PushSettings = Field(default_factory=PushSettings)

    # CORS配置
    CORS_ORIGINS: list = Field(
        default=["http://localhost:5173", "https://chat-frontend1.netlify.app"]
    )

    # 聊天配置
    CHAT_HISTORY_LIMIT: int = Field(default=50)

    # 日志级别；为空时 DEBUG 下为 DEBUG，否则为 INFO
    LOG_LEVEL: Optional[str] = Field(default=None)

    # Realtime/WebSocket 配置
    REALTIME_WS_SEND_QUEUE_MAX: int = Field(default=100)
    REALTIME_WS_SEND_OVERFLOW_POLICY: str = Field(
        default="drop_oldest",
        description="队列溢出策略: drop_oldest | drop_new | disconnect"
    )
    REALTIME_WS_IDLE_PING_INTERVAL_S: float = Field(default=30.0)
    REALTIME_WS_PONG_GRACE_S: float = Field(default=10.0)
    REALTIME_WS_MISSED_PING_LIMIT: int = Field(default=2)
    REALTIME_STRICT_IDENTITY: bool = Field(
        default=True,
        description="sendMessage/typing 必须与连接已加入的 username/room 一致"
    )

    # pydantic-settings v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """允许 JSON 字符串或逗号分隔字符串两种格式。"""
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("[") and s.endswith("]"):
                import json
                try:
                    arr = json.loads(s)
                    if isinstance(arr, list):
                        return arr
                except Exception:
                    pass
            if "," in s:
                return [item.strip() for item in s.split(",") if item.strip()]
            return [s]
        return v

    @field_validator("CHAT_HISTORY_LIMIT")
    @classmethod
    def _validate_history_limit(cls, v: int) -> int:
        if v < 0:
            raise ValueError("CHAT_HISTORY_LIMIT must be >= 0")
        return v


settings = Settings()
