from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    debug: bool = False
    app_name: str = "Pulse Messaging"
    api_v1_prefix: str = "/v1"
    database_url: str = "sqlite:///./pulse.db"

    secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 15

    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"])

    message_max_length: int = 1000
    conversation_page_default: int = 20
    message_page_default: int = 50
    notification_page_default: int = 20
    page_limit_max: int = 100

    notification_debounce_seconds: int = 300
    notification_retention_days: int = 30

    default_display_name: str = "Unknown user"
    default_avatar_url: str = "/static/default-avatar.png"

    auth_rate_limit_window_seconds: int = 60
    auth_rate_limit_max_requests: int = 12

    realtime_dispatcher_enabled: bool = True
    realtime_dispatcher_poll_ms: int = 100
    realtime_dispatcher_batch_size: int = 100
    realtime_max_attempts: int = 1

    ws_heartbeat_sec: int = 25
    ws_idle_timeout_sec: int = 90
    ws_max_command_bytes: int = 4096
    ws_rate_limit_window_sec: int = 10
    ws_rate_limit_max_commands: int = 30
    ws_outgoing_queue_size: int = 200

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return []


@lru_cache
def get_settings() -> Settings:
    return Settings()
