import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_currency: str,
        scheduler_enabled: bool,
        scheduler_hour: int,
        scheduler_minute: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_currency = default_currency
        self.scheduler_enabled = scheduler_enabled
        self.scheduler_hour = scheduler_hour
        self.scheduler_minute = scheduler_minute


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("NETWORTH_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "networth.db"
    database_url = os.getenv("NETWORTH_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("NETWORTH_TIMEZONE", "Asia/Dubai")
    default_currency = os.getenv("NETWORTH_DEFAULT_CURRENCY", "AED").upper()
    scheduler_enabled = _env_flag("NETWORTH_SCHEDULER_ENABLED", "1")
    scheduler_hour = int(os.getenv("NETWORTH_SCHEDULER_HOUR", "0"))
    scheduler_minute = int(os.getenv("NETWORTH_SCHEDULER_MINUTE", "5"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_currency=default_currency,
        scheduler_enabled=scheduler_enabled,
        scheduler_hour=scheduler_hour,
        scheduler_minute=scheduler_minute,
    )
