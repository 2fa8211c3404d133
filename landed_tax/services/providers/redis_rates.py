from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from redis.exceptions import RedisError

from landed_tax.core.logging import get_logger
from landed_tax.models.enums import RateSource
from landed_tax.services.errors import LiveRateFetchError
from landed_tax.services.providers.base import LiveRate, redis_get_json, redis_set_json
from landed_tax.services.types import CurrencyPair, ExchangeRate

logger = get_logger("redis_rates")


def parse_timestamp(value: str) -> datetime:
    """Feed timestamps without an offset are UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RedisRateProvider:
    """Reads live rates published by the FX feed under ``fx:live:{base}:{quote}``."""

    async def fetch_live(self, pair: CurrencyPair) -> LiveRate:
        cache_key = f"fx:live:{pair.base}:{pair.quote}"
        try:
            payload = await redis_get_json(cache_key)
        except RedisError as exc:
            raise LiveRateFetchError(f"Live feed unreachable for {pair}") from exc
        if not payload or payload.get("rate") is None:
            raise LiveRateFetchError(f"No live rate published for {pair}")
        return LiveRate(
            rate=Decimal(str(payload["rate"])),
            fetched_at=parse_timestamp(payload["fetched_at"]),
        )


class RedisRateSnapshotStore:
    def __init__(self, ttl_seconds: int = 86400) -> None:
        self.ttl_seconds = ttl_seconds

    async def load(self, pair: CurrencyPair) -> ExchangeRate | None:
        try:
            cached = await redis_get_json(self._key(pair))
        except RedisError:
            logger.warning("rate_snapshot_load_failed", pair=str(pair))
            return None
        if not cached:
            return None
        return ExchangeRate(
            pair=pair,
            rate=Decimal(str(cached["rate"])),
            fetched_at=parse_timestamp(cached["fetched_at"]),
            source=RateSource.CACHED,
        )

    async def save(self, rate: ExchangeRate) -> None:
        payload = {"rate": str(rate.rate), "fetched_at": rate.fetched_at.isoformat()}
        try:
            await redis_set_json(self._key(rate.pair), payload, self.ttl_seconds)
        except RedisError:
            logger.warning("rate_snapshot_save_failed", pair=str(rate.pair))

    def _key(self, pair: CurrencyPair) -> str:
        return f"fx:snapshot:{pair.base}:{pair.quote}"
