"""Runtime settings resolved from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parents[2]


@dataclass(frozen=True)
class Settings:
    app_name: str = "Rent Auction Engine"
    app_version: str = "1.0.0"
    log_level: str = "INFO"
    database_path: Path = BASE_DIR / "data" / "rent_auction.db"
    auction_contender_policy: str = "all"
    auction_default_strategy: str = "optimal_batch"
    auction_price_tolerance: float = 0.01


def _env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; tests call ``get_settings.cache_clear()``."""
    defaults = Settings()
    return Settings(
        app_name=_env("RENT_AUCTION_APP_NAME", defaults.app_name),
        app_version=_env("RENT_AUCTION_APP_VERSION", defaults.app_version),
        log_level=_env("RENT_AUCTION_LOG_LEVEL", defaults.log_level),
        database_path=Path(_env("RENT_AUCTION_DATABASE_PATH", str(defaults.database_path))),
        auction_contender_policy=_env(
            "RENT_AUCTION_CONTENDER_POLICY",
            defaults.auction_contender_policy,
        ).lower(),
        auction_default_strategy=_env(
            "RENT_AUCTION_DEFAULT_STRATEGY",
            defaults.auction_default_strategy,
        ).lower(),
        auction_price_tolerance=float(
            _env("RENT_AUCTION_PRICE_TOLERANCE", str(defaults.auction_price_tolerance))
        ),
    )
