import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        week_start: int,
        max_catch_up: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.week_start = week_start
        self.max_catch_up = max_catch_up


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Berlin")
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    # 0 = Monday ... 6 = Sunday, same numbering as date.weekday()
    week_start = int(os.getenv("LEDGER_WEEK_START", "0")) % 7
    max_catch_up = int(os.getenv("LEDGER_MAX_CATCH_UP", "365"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        week_start=week_start,
        max_catch_up=max_catch_up,
    )
