from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from landed_tax.core.config import Settings
from landed_tax.services.calculator import QuoteCalculatorService, ResultCache
from landed_tax.services.classification import ClassificationCache, fallback_rule
from landed_tax.services.providers.base import (
    ClassificationResolver,
    RateProvider,
    RateSnapshotStore,
    TaxRuleStore,
)
from landed_tax.services.providers.resilience import CircuitBreaker
from landed_tax.services.rate_cache import RateCache, StalenessThresholds
from landed_tax.services.scheduler import ComputeFn, ExecutionOutcome, RecalculationScheduler
from landed_tax.services.types import CachedContext, CalculationOptions, CurrencyPair, Quote, QuoteCalculationResult


@dataclass(frozen=True)
class EngineConfig:
    debounce_ms: int = 500
    max_pending: int = 100
    minimum_valuation_rounding: str = "up"
    staleness_thresholds: StalenessThresholds = field(default_factory=StalenessThresholds)

    def __post_init__(self) -> None:
        if self.minimum_valuation_rounding != "up":
            raise ValueError("minimum_valuation_rounding only supports 'up'")

    @classmethod
    def from_settings(cls, settings: Settings) -> EngineConfig:
        return cls(
            debounce_ms=settings.debounce_ms,
            max_pending=settings.max_pending,
            minimum_valuation_rounding=settings.minimum_valuation_rounding,
            staleness_thresholds=StalenessThresholds(
                stale_minutes=settings.stale_minutes,
                very_stale_minutes=settings.very_stale_minutes,
            ),
        )


class ValuationEngine:
    """Entry point used by the business layer: calculation plus the scheduler surface."""

    def __init__(
        self,
        calculator: QuoteCalculatorService,
        scheduler: RecalculationScheduler,
        config: EngineConfig | None = None,
    ) -> None:
        self.calculator = calculator
        self.scheduler = scheduler
        self.config = config or EngineConfig()

    @property
    def rate_cache(self) -> RateCache:
        return self.calculator.rate_cache

    async def calculate(self, quote: Quote, options: CalculationOptions | None = None) -> QuoteCalculationResult:
        return await self.calculator.calculate(quote, options)

    def live_sync_calculate(
        self,
        quote: Quote,
        cached_context: CachedContext | None = None,
        options: CalculationOptions | None = None,
    ) -> QuoteCalculationResult:
        return self.calculator.live_sync_calculate(quote, cached_context, options)

    def schedule_calculation(self, identifier: str, compute_fn: ComputeFn, dependencies: Any) -> bool:
        return self.scheduler.schedule(identifier, compute_fn, dependencies)

    def cancel_calculation(self, identifier: str) -> bool:
        return self.scheduler.cancel(identifier)

    async def flush_calculations(self) -> dict[str, ExecutionOutcome]:
        return await self.scheduler.flush()

    async def close(self) -> None:
        await self.scheduler.close()


def build_engine(
    settings: Settings,
    rule_store: TaxRuleStore,
    classification_resolver: ClassificationResolver | None = None,
    rate_provider: RateProvider | None = None,
    snapshot_store: RateSnapshotStore | None = None,
) -> ValuationEngine:
    config = EngineConfig.from_settings(settings)
    rate_cache = RateCache(
        provider=rate_provider,
        snapshot_store=snapshot_store,
        thresholds=config.staleness_thresholds,
        ttl_minutes=settings.rate_ttl_minutes,
        fallback_rates={CurrencyPair.parse(pair): Decimal(rate) for pair, rate in settings.fallback_rates.items()},
        live_fetch_attempts=settings.live_fetch_attempts,
        circuit_breaker=CircuitBreaker(
            max_failures=settings.circuit_max_failures,
            reset_seconds=settings.circuit_reset_seconds,
        ),
    )
    classifier = None
    if classification_resolver is not None:
        classifier = ClassificationCache(classification_resolver, ttl_seconds=settings.classification_cache_ttl_seconds)
    calculator = QuoteCalculatorService(
        rate_cache=rate_cache,
        rule_store=rule_store,
        classifier=classifier,
        default_rule=fallback_rule(
            settings.fallback_customs_rate_percent,
            settings.fallback_local_tax_rate_percent,
            settings.fallback_confidence,
        ),
        fallback_confidence=settings.fallback_confidence,
        result_cache=ResultCache(settings.result_cache_seconds, settings.result_cache_max_entries),
    )
    scheduler = RecalculationScheduler(debounce_ms=config.debounce_ms, max_pending=config.max_pending)
    return ValuationEngine(calculator, scheduler, config)
