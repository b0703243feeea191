from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Edify Realtime API", env="APP_NAME", description="Human readable service name")
    environment: str = Field(default="development", env="ENVIRONMENT", description="Deployment environment name")
    debug: bool = Field(default=False, env="DEBUG", description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        env="CORS_ORIGINS",
        description="List of allowed CORS origins",
    )

    database_driver: str = Field(default="mysql+pymysql", env="DB_DRIVER")
    database_user: str = Field(default="edify", env="DB_USER")
    database_password: str = Field(default="edify", env="DB_PASSWORD")
    database_host: str = Field(default="db", env="DB_HOST")
    database_port: int = Field(default=3306, env="DB_PORT")
    database_name: str = Field(default="edify", env="DB_NAME")
    database_url_override: str | None = Field(
        default=None,
        validation_alias="DATABASE_URL",
        description="Full SQLAlchemy URL; takes precedence over the DB_* parts when set.",
    )

    jwt_secret_key: str = Field(default="changeme", env="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60, env="ACCESS_TOKEN_EXPIRE_MINUTES")

    chat_history_default_limit: int = Field(default=50, env="CHAT_HISTORY_DEFAULT_LIMIT")
    chat_history_max_limit: int = Field(default=100, env="CHAT_HISTORY_MAX_LIMIT")
    chat_message_max_length: int = Field(default=4000, env="CHAT_MESSAGE_MAX_LENGTH")
    chat_edit_window_minutes: int = Field(
        default=15,
        env="CHAT_EDIT_WINDOW_MINUTES",
        description="Minutes after creation during which the sender may edit a message; 0 disables the limit.",
    )

    websocket_keepalive_timeout_seconds: float = Field(
        default=30.0,
        env="WEBSOCKET_KEEPALIVE_TIMEOUT_SECONDS",
        description="Idle receive timeout before the server probes the client with a ping.",
    )
    websocket_keepalive_ping_interval_seconds: float = Field(
        default=15.0,
        env="WEBSOCKET_KEEPALIVE_PING_INTERVAL_SECONDS",
        description="Minimum interval between keepalive pings on an idle socket.",
    )

    realtime_typing_ttl_seconds: float = Field(
        default=5.0,
        env="REALTIME_TYPING_TTL_SECONDS",
        description="Server-side expiry for typing indicators without a refresh.",
    )
    realtime_client_typing_idle_seconds: float = Field(
        default=3.0,
        env="REALTIME_CLIENT_TYPING_IDLE_SECONDS",
        description="Silence after which the reference client sends StopTyping.",
    )
    realtime_notification_buffer_size: int = Field(
        default=50,
        env="REALTIME_NOTIFICATION_BUFFER_SIZE",
        description="Number of recent notifications kept by the reference client.",
    )
    realtime_reconnect_delays: Annotated[List[float], NoDecode] = Field(
        default_factory=lambda: [0.0, 2.0, 5.0, 10.0, 30.0],
        env="REALTIME_RECONNECT_DELAYS",
        description="Backoff schedule (seconds) used by the reference client when reconnecting.",
    )

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"{self.database_driver}://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @field_validator("realtime_reconnect_delays", mode="before")
    @classmethod
    def parse_delays(cls, value: Any) -> list[float] | Any:
        if value in (None, "", Ellipsis):
            return []
        if isinstance(value, str):
            return [float(item.strip()) for item in value.split(",") if item.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
