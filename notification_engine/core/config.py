from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized application configuration."""

    app_name: str = "Notification Engine"
    environment: str = "dev"
    debug: bool = True
    api_prefix: str = "/api"

    # Data paths
    data_dir: Path = Path("./data")
    sqlite_path: Path = Path("./data/notification_engine.db")

    # Security
    admin_api_token: str = "change-admin-token"
    allowed_origins: List[str] = ["*"]

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Dispatch workers
    dispatch_backend: str = "local"  # local | rq
    redis_url: str = "redis://localhost:6379/0"
    worker_count: int = 4
    start_workers: bool = True
    scheduler_interval_sec: int = 30
    batch_size: int = 50

    # Retry lifecycle
    max_retries: int = 3
    retry_base_seconds: int = 60
    retry_max_seconds: int = 3600
    non_retryable_reasons: List[str] = []
    delivery_expiry_hours: int = 24

    # Audience / rendering defaults
    default_locale: str = "en"
    default_timezone: str = "UTC"
    include_teachers: bool = False

    # Directory
    directory_base_url: str = "http://localhost:8080/api/directory"
    directory_timeout_sec: float = 10.0

    # Transports
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from: str = "no-reply@example.com"
    smtp_use_tls: bool = True
    push_webhook_url: str = ""
    in_app_webhook_url: str = ""
    transport_timeout_sec: float = 10.0

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    def ensure_dirs(self) -> None:
        """Create required local directories."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_dirs()
    return settings
