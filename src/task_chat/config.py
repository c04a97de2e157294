from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_BASE_URL: str = "http://localhost:5000"
    REALTIME_URL: str = "ws://localhost:5000/ws"
    ASSET_BASE_URL: str | None = None

    HTTP_TIMEOUT_SECONDS: float = 10.0

    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"

    CORS_ORIGINS: list[str] = ["*"]
    LOG_LEVEL: str = "info"

    SEND_TIMEOUT_SECONDS: float | None = 15.0
    STATUS_BUFFER_TTL_SECONDS: float = 30.0
    CONVERSATION_REFRESH_SECONDS: float = 30.0

    WS_HEARTBEAT_SECONDS: int = 30

    @property
    def asset_base_url(self) -> str:
        return (self.ASSET_BASE_URL or self.API_BASE_URL).rstrip("/")

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
