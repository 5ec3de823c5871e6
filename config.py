import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        cache_ttl_summary_secs: int,
        cache_ttl_settlement_secs: int,
        timeline_window_months: int,
        currency_symbol: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.cache_ttl_summary_secs = cache_ttl_summary_secs
        self.cache_ttl_settlement_secs = cache_ttl_settlement_secs
        self.timeline_window_months = timeline_window_months
        self.currency_symbol = currency_symbol


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("HOUSEHOLD_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "household.db"
    database_url = os.getenv("HOUSEHOLD_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("HOUSEHOLD_TIMEZONE", "Europe/Berlin")
    csrf_secret = os.getenv(
        "HOUSEHOLD_CSRF_SECRET",
        "3f9d0c6b1e2a47a8b5c4d3e2f1a0b9c8d7e6f5a4b3c2d1e0f9a8b7c6d5e4f3a2",
    )
    cache_ttl_summary_secs = int(os.getenv("HOUSEHOLD_CACHE_TTL_SUMMARY_SECS", "120"))
    cache_ttl_settlement_secs = int(
        os.getenv("HOUSEHOLD_CACHE_TTL_SETTLEMENT_SECS", "120")
    )
    timeline_window_months = int(os.getenv("HOUSEHOLD_TIMELINE_WINDOW_MONTHS", "12"))
    currency_symbol = os.getenv("HOUSEHOLD_CURRENCY_SYMBOL", "€")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        cache_ttl_summary_secs=cache_ttl_summary_secs,
        cache_ttl_settlement_secs=cache_ttl_settlement_secs,
        timeline_window_months=timeline_window_months,
        currency_symbol=currency_symbol,
    )
