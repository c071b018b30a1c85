import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_currency: str,
        default_cycle_start: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_currency = default_currency
        self.default_cycle_start = default_cycle_start
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("CASHBACK_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "cashback.db"
    database_url = os.getenv("CASHBACK_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("CASHBACK_TIMEZONE", "Asia/Kolkata")
    default_currency = os.getenv("CASHBACK_DEFAULT_CURRENCY", "₹")
    default_cycle_start = int(os.getenv("CASHBACK_DEFAULT_CYCLE_START", "1"))
    if not 1 <= default_cycle_start <= 28:
        raise ValueError("CASHBACK_DEFAULT_CYCLE_START must be between 1 and 28")
    log_level = os.getenv("CASHBACK_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_currency=default_currency,
        default_cycle_start=default_cycle_start,
        log_level=log_level,
    )
