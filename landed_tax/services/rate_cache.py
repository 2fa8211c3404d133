from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from landed_tax.core.logging import get_logger
from landed_tax.models.enums import RateSource, Staleness
from landed_tax.services.errors import RateUnavailable
from landed_tax.services.providers.base import RateProvider, RateSnapshotStore
from landed_tax.services.providers.resilience import CircuitBreaker, call_with_retry
from landed_tax.services.types import Conversion, CurrencyPair, ExchangeRate

logger = get_logger("rate_cache")

ONE = Decimal("1")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StalenessThresholds:
    stale_minutes: int = 60
    very_stale_minutes: int = 1440

    def __post_init__(self) -> None:
        if self.stale_minutes <= 0 or self.very_stale_minutes <= self.stale_minutes:
            raise ValueError("staleness thresholds must satisfy 0 < stale_minutes < very_stale_minutes")


@dataclass(frozen=True)
class RateLookup:
    rate: ExchangeRate
    api_call: bool = False
    cache_hit: bool = False


class RateCache:
    """Exchange rates per currency pair, with provenance and age tracking.

    Reads (``get_rate``, ``convert``) never touch the provider, so they are safe to
    use from synchronous code. ``ensure_rate`` is the only path that performs a live
    fetch; it is serialized per pair so concurrent items needing the same pair share
    one fetch.
    """

    def __init__(
        self,
        provider: RateProvider | None = None,
        snapshot_store: RateSnapshotStore | None = None,
        thresholds: StalenessThresholds | None = None,
        ttl_minutes: int = 10080,
        fallback_rates: dict[CurrencyPair, Decimal] | None = None,
        live_fetch_attempts: int = 3,
        retry_min_wait: float = 0.5,
        circuit_breaker: CircuitBreaker | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.provider = provider
        self.snapshot_store = snapshot_store
        self.thresholds = thresholds or StalenessThresholds()
        self.ttl = timedelta(minutes=ttl_minutes)
        self.fallback_rates = dict(fallback_rates or {})
        self.live_fetch_attempts = live_fetch_attempts
        self.retry_min_wait = retry_min_wait
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.clock = clock
        self._rates: dict[CurrencyPair, ExchangeRate] = {}
        self._locks: dict[CurrencyPair, asyncio.Lock] = {}

    def get_rate(self, pair: CurrencyPair) -> ExchangeRate | None:
        if pair.is_identity:
            return ExchangeRate(pair=pair, rate=ONE, fetched_at=self.clock(), source=RateSource.LIVE)
        held = self._rates.get(pair)
        if held is None:
            return None
        if self.clock() - held.fetched_at > self.ttl:
            del self._rates[pair]
            logger.info("rate_expired", pair=str(pair), fetched_at=held.fetched_at.isoformat())
            return None
        return held

    def put_rate(
        self,
        pair: CurrencyPair,
        rate: Decimal,
        source: RateSource,
        fetched_at: datetime | None = None,
    ) -> ExchangeRate:
        if rate <= 0:
            raise ValueError(f"Exchange rate for {pair} must be positive, got {rate}")
        entry = ExchangeRate(pair=pair, rate=rate, fetched_at=fetched_at or self.clock(), source=source)
        self._rates[pair] = entry
        return entry

    def is_stale(self, rate: ExchangeRate, now: datetime | None = None) -> Staleness:
        age = (now or self.clock()) - rate.fetched_at
        if age >= timedelta(minutes=self.thresholds.very_stale_minutes):
            return Staleness.VERY_STALE
        if age >= timedelta(minutes=self.thresholds.stale_minutes):
            return Staleness.STALE
        return Staleness.FRESH

    def age_minutes(self, rate: ExchangeRate, now: datetime | None = None) -> int:
        return int(((now or self.clock()) - rate.fetched_at).total_seconds() // 60)

    def fallback_rate(self, pair: CurrencyPair) -> ExchangeRate | None:
        configured = self.fallback_rates.get(pair)
        if configured is None:
            return None
        return ExchangeRate(pair=pair, rate=configured, fetched_at=self.clock(), source=RateSource.FALLBACK)

    def lookup(self, pair: CurrencyPair) -> ExchangeRate:
        rate = self.get_rate(pair) or self.fallback_rate(pair)
        if rate is None:
            raise RateUnavailable(pair)
        return rate

    def convert(self, amount: Decimal, pair: CurrencyPair) -> Conversion:
        rate = self.lookup(pair)
        return Conversion(amount=amount * rate.rate, rate=rate)

    def evict_expired(self) -> int:
        now = self.clock()
        expired = [pair for pair, rate in self._rates.items() if now - rate.fetched_at > self.ttl]
        for pair in expired:
            del self._rates[pair]
        return len(expired)

    def clear(self) -> None:
        self._rates.clear()

    async def ensure_rate(self, pair: CurrencyPair) -> RateLookup:
        """Return a usable rate for ``pair``, refreshing it from the provider when needed."""
        if pair.is_identity:
            return RateLookup(rate=self.lookup(pair), cache_hit=True)

        lock = self._locks.setdefault(pair, asyncio.Lock())
        async with lock:
            held = self.get_rate(pair)
            if held is not None and self.is_stale(held) == Staleness.FRESH:
                return RateLookup(rate=held, cache_hit=True)

            attempted = self.provider is not None and self.circuit_breaker.allow()
            if attempted:
                live = await self._fetch_live(pair)
                if live is not None:
                    return RateLookup(rate=live, api_call=True)

            if held is not None:
                if attempted:
                    held = self.put_rate(pair, held.rate, RateSource.FALLBACK, fetched_at=held.fetched_at)
                    logger.warning("rate_retained_as_fallback", pair=str(pair), fetched_at=held.fetched_at.isoformat())
                return RateLookup(rate=held, api_call=attempted)

            snapshot = await self._load_snapshot(pair)
            if snapshot is not None:
                return RateLookup(rate=snapshot, api_call=attempted, cache_hit=True)

            fallback = self.fallback_rate(pair)
            if fallback is not None:
                logger.warning("rate_configured_fallback", pair=str(pair), rate=str(fallback.rate))
                return RateLookup(rate=fallback, api_call=attempted)

        raise RateUnavailable(pair)

    async def _fetch_live(self, pair: CurrencyPair) -> ExchangeRate | None:
        provider = self.provider
        try:
            live = await call_with_retry(
                lambda: provider.fetch_live(pair),
                attempts=self.live_fetch_attempts,
                min_wait=self.retry_min_wait,
            )
        except Exception as exc:
            self.circuit_breaker.record_failure()
            logger.warning("rate_live_fetch_failed", pair=str(pair), error=str(exc))
            return None
        self.circuit_breaker.record_success()
        entry = self.put_rate(pair, live.rate, RateSource.LIVE, fetched_at=live.fetched_at)
        logger.info("rate_refreshed", pair=str(pair), rate=str(live.rate), source=RateSource.LIVE.value)
        if self.snapshot_store is not None:
            await self.snapshot_store.save(entry)
        return entry

    async def _load_snapshot(self, pair: CurrencyPair) -> ExchangeRate | None:
        if self.snapshot_store is None:
            return None
        snapshot = await self.snapshot_store.load(pair)
        if snapshot is None:
            return None
        if self.clock() - snapshot.fetched_at > self.ttl:
            return None
        entry = self.put_rate(pair, snapshot.rate, RateSource.CACHED, fetched_at=snapshot.fetched_at)
        logger.info("rate_loaded_from_snapshot", pair=str(pair), fetched_at=entry.fetched_at.isoformat())
        return entry
