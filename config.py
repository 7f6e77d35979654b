import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        currency: str,
        budget_lookback_months: int,
        leaderboard_limit: int,
        insight_threshold: float,
        snapshot_cache_size: int,
        coach_url: str,
        coach_timeout_secs: float,
        refresh_minutes: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.currency = currency
        self.budget_lookback_months = budget_lookback_months
        self.leaderboard_limit = leaderboard_limit
        self.insight_threshold = insight_threshold
        self.snapshot_cache_size = snapshot_cache_size
        self.coach_url = coach_url
        self.coach_timeout_secs = coach_timeout_secs
        self.refresh_minutes = refresh_minutes


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SPENDING_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "spending.db"
    database_url = os.getenv("SPENDING_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("SPENDING_TIMEZONE", "America/New_York")
    currency = os.getenv("SPENDING_CURRENCY", "USD").upper()
    budget_lookback_months = int(os.getenv("SPENDING_BUDGET_LOOKBACK_MONTHS", "24"))
    leaderboard_limit = int(os.getenv("SPENDING_LEADERBOARD_LIMIT", "5"))
    insight_threshold = float(os.getenv("SPENDING_INSIGHT_THRESHOLD", "2.0"))
    snapshot_cache_size = int(os.getenv("SPENDING_SNAPSHOT_CACHE_SIZE", "64"))
    coach_url = os.getenv("SPENDING_COACH_URL", "")
    coach_timeout_secs = float(os.getenv("SPENDING_COACH_TIMEOUT_SECS", "20"))
    refresh_minutes = int(os.getenv("SPENDING_REFRESH_MINUTES", "0"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        currency=currency,
        budget_lookback_months=budget_lookback_months,
        leaderboard_limit=leaderboard_limit,
        insight_threshold=insight_threshold,
        snapshot_cache_size=snapshot_cache_size,
        coach_url=coach_url,
        coach_timeout_secs=coach_timeout_secs,
        refresh_minutes=refresh_minutes,
    )
