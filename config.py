import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        csrf_secret: str,
        sign_in_url: str,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.csrf_secret = csrf_secret
        self.sign_in_url = sign_in_url
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    csrf_secret = os.getenv(
        "BUDGET_CSRF_SECRET",
        "3f9c2d71b8a64e0f95d1c7a2e4b86f03d5a9e1c4b7f20d6e8a3c5b9f1e7d2a40",
    )
    sign_in_url = os.getenv("BUDGET_SIGN_IN_URL", "/oauth2/sign_in")
    log_level = os.getenv("BUDGET_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        csrf_secret=csrf_secret,
        sign_in_url=sign_in_url,
        log_level=log_level,
    )
