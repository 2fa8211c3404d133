from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TAX_RULES_PATH = Path(__file__).resolve().parent.parent / "data" / "tax_rules.json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "Landed Tax Engine"
    environment: str = "local"
    api_prefix: str = "/api"

    redis_url: str = Field(default="redis://redis:6379/0", alias="REDIS_URL")
    rate_snapshot_ttl_seconds: int = 86400

    destination_currency: str = "INR"
    destination_country: str = "IN"

    debounce_ms: int = 500
    max_pending: int = 100
    minimum_valuation_rounding: Literal["up"] = "up"
    stale_minutes: int = 60
    very_stale_minutes: int = 1440
    rate_ttl_minutes: int = 10080
    fallback_rates: dict[str, str] = Field(default_factory=dict, alias="FALLBACK_RATES")

    fallback_customs_rate_percent: Decimal = Decimal("10")
    fallback_local_tax_rate_percent: Decimal = Decimal("18")
    fallback_confidence: float = 0.3

    classification_cache_ttl_seconds: int = 3600
    result_cache_seconds: int = 300
    result_cache_max_entries: int = 1000

    live_fetch_attempts: int = 3
    circuit_max_failures: int = 3
    circuit_reset_seconds: int = 30

    tax_rules_path: Path = Field(default=DEFAULT_TAX_RULES_PATH, alias="TAX_RULES_PATH")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
