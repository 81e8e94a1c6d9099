import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        allow_overdraft: bool,
        ledger_max_attempts: int,
        ledger_retry_backoff_secs: float,
        ledger_lock_timeout_secs: float,
        timeline_day_entry_limit: int,
        prediction_retention_days: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.allow_overdraft = allow_overdraft
        self.ledger_max_attempts = ledger_max_attempts
        self.ledger_retry_backoff_secs = ledger_retry_backoff_secs
        self.ledger_lock_timeout_secs = ledger_lock_timeout_secs
        self.timeline_day_entry_limit = timeline_day_entry_limit
        self.prediction_retention_days = prediction_retention_days


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINCAL_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "fincal.db"
    database_url = os.getenv("FINCAL_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINCAL_TIMEZONE", "Asia/Ho_Chi_Minh")
    csrf_secret = os.getenv(
        "FINCAL_CSRF_SECRET",
        "6f0d3c1b9a2e4d7f8c5b1a0e9d3c7b2a4f6e8d0c1b3a5f7e9d2c4b6a8f0e1d3c",
    )
    allow_overdraft = _env_flag("FINCAL_ALLOW_OVERDRAFT", "false")
    ledger_max_attempts = int(os.getenv("FINCAL_LEDGER_MAX_ATTEMPTS", "4"))
    ledger_retry_backoff_secs = float(
        os.getenv("FINCAL_LEDGER_RETRY_BACKOFF_SECS", "0.05")
    )
    ledger_lock_timeout_secs = float(os.getenv("FINCAL_LEDGER_LOCK_TIMEOUT_SECS", "5"))
    timeline_day_entry_limit = int(os.getenv("FINCAL_TIMELINE_DAY_ENTRY_LIMIT", "3"))
    prediction_retention_days = int(
        os.getenv("FINCAL_PREDICTION_RETENTION_DAYS", "30")
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        allow_overdraft=allow_overdraft,
        ledger_max_attempts=ledger_max_attempts,
        ledger_retry_backoff_secs=ledger_retry_backoff_secs,
        ledger_lock_timeout_secs=ledger_lock_timeout_secs,
        timeline_day_entry_limit=timeline_day_entry_limit,
        prediction_retention_days=prediction_retention_days,
    )
