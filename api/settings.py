"""Process settings loaded from the environment (MISSION_ prefix) or .env."""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MISSION_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Where snapshots and mission configs live
    write_dir: Path = Path("./storage")

    # Scheduler
    tick_interval_s: float = 1.0
    failed_interval_s: float = 10.0

    # Delivered messages kept for /host/outbox
    outbox_size: int = 10000

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    log_file: Optional[Path] = None


settings = Settings()
