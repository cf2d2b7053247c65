from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    debug: bool = False
    app_name: str = "Cadence"
    api_v1_prefix: str = "/v1"
    host: str = "0.0.0.0"
    port: int = 8000
    database_url: str = "sqlite:///./cadence.db"
    frontend_base_url: str = "https://cadence.com"

    secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000", "http://localhost:8081"])

    auth_rate_limit_window_seconds: int = 60
    auth_rate_limit_max_requests: int = 12

    ws_heartbeat_sec: float = 30.0
    ws_typing_timeout_sec: float = 3.0
    ws_typing_sweep_sec: float = 1.0
    ws_max_frame_bytes: int = 64 * 1024
    ws_outgoing_queue_size: int = 200
    message_max_length: int = 2000
    message_max_images: int = 10

    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str | None = None
    redis_db: int = 0
    queue_prefix: str = "cadence"

    workers_enabled: bool = False
    worker_poll_interval_ms: int = 500
    worker_job_timeout_sec: float = 300.0
    cleanup_notifications_hour: int = 3
    cleanup_notifications_older_than_days: int = 30

    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from_email: str = "no-reply@cadence.com"
    smtp_use_tls: bool = True
    smtp_timeout_sec: float = 30.0

    firebase_project_id: str | None = None

    event_bus_max_listeners: int = 20

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
