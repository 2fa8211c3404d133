from __future__ import annotations

import asyncio
import copy
import hashlib
import json
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime

from landed_tax.core.logging import get_logger
from landed_tax.models.enums import RunStatus
from landed_tax.services.classification import ClassificationCache, fallback_classification
from landed_tax.services.errors import QuoteCalculationFailed, RateUnavailable
from landed_tax.services.method_selector import select_method
from landed_tax.services.providers.base import TaxRuleStore
from landed_tax.services.rate_cache import RateCache, utcnow
from landed_tax.services.tax_composer import compose_breakdown, roll_up
from landed_tax.services.types import (
    CachedContext,
    CalculationOptions,
    Classification,
    CurrencyPair,
    Item,
    ItemFailure,
    ItemTaxBreakdown,
    Quote,
    QuoteCalculationResult,
    RealTimeStats,
    ValuationRule,
)
from landed_tax.services.valuation import REFERENCE_CURRENCY, ValuationCalculator

logger = get_logger("calculator")

_TRANSITIONS = {
    RunStatus.PENDING: {RunStatus.RESOLVING_CLASSIFICATIONS},
    RunStatus.RESOLVING_CLASSIFICATIONS: {RunStatus.COMPUTING_ITEMS},
    RunStatus.COMPUTING_ITEMS: {RunStatus.COMPOSING_TOTALS},
    RunStatus.COMPOSING_TOTALS: {RunStatus.DONE, RunStatus.PARTIAL_FAILURE},
}


@dataclass
class CalculationRun:
    quote_id: str
    status: RunStatus = RunStatus.PENDING
    history: list[RunStatus] = field(default_factory=lambda: [RunStatus.PENDING])

    def advance(self, status: RunStatus) -> None:
        if status not in _TRANSITIONS.get(self.status, set()):
            raise RuntimeError(f"Invalid run transition {self.status.value} -> {status.value}")
        logger.debug("run_transition", quote_id=self.quote_id, from_status=self.status.value, to_status=status.value)
        self.status = status
        self.history.append(status)


@dataclass
class ResolvedClassification:
    classification: Classification
    failed: bool = False


class ResultCache:
    def __init__(
        self,
        ttl_seconds: int = 300,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.clock = clock
        self._entries: dict[str, tuple[QuoteCalculationResult, float]] = {}

    def get(self, key: str) -> QuoteCalculationResult | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        result, stored_at = entry
        if self.clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return result

    def set(self, key: str, result: QuoteCalculationResult) -> None:
        self._entries.pop(key, None)
        if len(self._entries) >= self.max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k][1])
            del self._entries[oldest]
        self._entries[key] = (result, self.clock())

    def __len__(self) -> int:
        return len(self._entries)


def quote_fingerprint(quote: Quote, options: CalculationOptions) -> str:
    payload = {
        "quote": asdict(quote),
        "overrides": {item_id: method.value for item_id, method in sorted(options.admin_overrides.items())},
        "auto_classification": options.enable_auto_classification,
        "minimum_valuation": options.enable_minimum_valuation,
    }
    encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class QuoteCalculatorService:
    def __init__(
        self,
        rate_cache: RateCache,
        rule_store: TaxRuleStore,
        classifier: ClassificationCache | None = None,
        default_rule: ValuationRule | None = None,
        fallback_confidence: float = 0.3,
        result_cache: ResultCache | None = None,
        max_contexts: int = 1000,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.rate_cache = rate_cache
        self.rule_store = rule_store
        self.classifier = classifier
        self.valuation = ValuationCalculator(rate_cache, default_rule)
        self.fallback_confidence = fallback_confidence
        self.result_cache = result_cache or ResultCache()
        self.max_contexts = max_contexts
        self.clock = clock
        self._contexts: dict[str, CachedContext] = {}

    def cached_context(self, quote_id: str) -> CachedContext | None:
        return self._contexts.get(quote_id)

    async def calculate(self, quote: Quote, options: CalculationOptions | None = None) -> QuoteCalculationResult:
        options = options or CalculationOptions()
        if not quote.items:
            raise QuoteCalculationFailed(quote.id, "quote has no items")

        cache_key = quote_fingerprint(quote, options)
        if options.use_result_cache:
            cached = self.result_cache.get(cache_key)
            if cached is not None:
                logger.info("result_cache_hit", quote_id=quote.id)
                hit = copy.deepcopy(cached)
                hit.real_time_stats = RealTimeStats(cache_hits=1)
                return hit

        run = CalculationRun(quote.id)
        stats = RealTimeStats()

        run.advance(RunStatus.RESOLVING_CLASSIFICATIONS)
        resolved = await self._resolve_classifications(quote, options, stats)

        run.advance(RunStatus.COMPUTING_ITEMS)
        context = CachedContext(
            classifications={
                item_id: entry.classification for item_id, entry in resolved.items() if not entry.failed
            }
        )
        outcomes = await asyncio.gather(
            *(self._compute_item(item, resolved[item.id], quote, options, stats, context) for item in quote.items)
        )

        result = self._finish(run, quote, list(outcomes), stats, warnings=[])
        self._remember_context(quote.id, context)
        if options.use_result_cache:
            self.result_cache.set(cache_key, copy.deepcopy(result))
        return result

    def live_sync_calculate(
        self,
        quote: Quote,
        cached_context: CachedContext | None = None,
        options: CalculationOptions | None = None,
    ) -> QuoteCalculationResult:
        """Recompute from already-held classifications, rules and rates only.

        Never awaits and never reaches a resolver or rate provider. Items whose rule
        or classification is not in the context fall back to the default rule.
        """
        options = options or CalculationOptions()
        if not quote.items:
            raise QuoteCalculationFailed(quote.id, "quote has no items")
        context = cached_context or self._contexts.get(quote.id) or CachedContext()

        run = CalculationRun(quote.id)
        stats = RealTimeStats()
        warnings: list[str] = []

        run.advance(RunStatus.RESOLVING_CLASSIFICATIONS)
        outcomes: list[ItemTaxBreakdown | ItemFailure] = []
        resolved: dict[str, ResolvedClassification] = {}
        for item in quote.items:
            if item.classification_code:
                resolved[item.id] = ResolvedClassification(self._declared_classification(item))
            elif item.id in context.classifications:
                stats.cache_hits += 1
                resolved[item.id] = ResolvedClassification(context.classifications[item.id])
            else:
                resolved[item.id] = ResolvedClassification(
                    fallback_classification(item, self.fallback_confidence), failed=True
                )

        run.advance(RunStatus.COMPUTING_ITEMS)
        for item in quote.items:
            entry = resolved[item.id]
            rule = None
            if not entry.failed:
                if entry.classification.code in context.rules:
                    rule = context.rules[entry.classification.code]
                else:
                    warnings.append(
                        f"Valuation rule for {entry.classification.code} not cached; run a full calculation"
                    )
            try:
                outcomes.append(self._value_item(item, entry, rule, quote, options))
            except RateUnavailable as exc:
                logger.warning("item_failed", quote_id=quote.id, item_id=item.id, reason=str(exc))
                outcomes.append(ItemFailure(item_id=item.id, reason=str(exc)))

        return self._finish(run, quote, outcomes, stats, warnings)

    async def _resolve_classifications(
        self,
        quote: Quote,
        options: CalculationOptions,
        stats: RealTimeStats,
    ) -> dict[str, ResolvedClassification]:
        resolved: dict[str, ResolvedClassification] = {}
        pending: list[Item] = []
        for item in quote.items:
            if item.classification_code:
                resolved[item.id] = ResolvedClassification(self._declared_classification(item))
            elif options.enable_auto_classification and self.classifier is not None:
                pending.append(item)
            else:
                resolved[item.id] = ResolvedClassification(
                    fallback_classification(item, self.fallback_confidence), failed=True
                )

        async def classify(item: Item) -> None:
            try:
                lookup = await self.classifier.resolve(item)
            except Exception as exc:
                stats.classification_calls += 1
                logger.warning("classification_fallback", quote_id=quote.id, item_id=item.id, error=str(exc))
                resolved[item.id] = ResolvedClassification(
                    fallback_classification(item, self.fallback_confidence), failed=True
                )
                return
            if lookup.cache_hit:
                stats.cache_hits += 1
            else:
                stats.classification_calls += 1
            stats.items_classified += 1
            resolved[item.id] = ResolvedClassification(lookup.classification)

        await asyncio.gather(*(classify(item) for item in pending))
        return resolved

    async def _compute_item(
        self,
        item: Item,
        entry: ResolvedClassification,
        quote: Quote,
        options: CalculationOptions,
        stats: RealTimeStats,
        context: CachedContext,
    ) -> ItemTaxBreakdown | ItemFailure:
        try:
            rule = None
            if not entry.failed:
                rule = await self.rule_store.lookup(entry.classification.code, quote.destination_country)
                context.rules[entry.classification.code] = rule
                if rule is None:
                    logger.info("rule_not_found", quote_id=quote.id, code=entry.classification.code)

            for pair in self._pairs_needed(item, rule, quote, options):
                lookup = await self.rate_cache.ensure_rate(pair)
                if lookup.api_call:
                    stats.api_calls += 1
                if lookup.cache_hit:
                    stats.cache_hits += 1

            return self._value_item(item, entry, rule, quote, options)
        except RateUnavailable as exc:
            logger.warning("item_failed", quote_id=quote.id, item_id=item.id, reason=str(exc))
            return ItemFailure(item_id=item.id, reason=str(exc))
        except Exception as exc:
            logger.exception("item_failed", quote_id=quote.id, item_id=item.id)
            return ItemFailure(item_id=item.id, reason=f"unexpected error: {exc}")

    def _value_item(
        self,
        item: Item,
        entry: ResolvedClassification,
        rule: ValuationRule | None,
        quote: Quote,
        options: CalculationOptions,
    ) -> ItemTaxBreakdown:
        outcome = self.valuation.calculate(
            item,
            rule,
            quote.destination_currency,
            classification_failed=entry.failed,
            include_minimum=options.enable_minimum_valuation,
        )
        override = options.admin_overrides.get(item.id)
        selected = select_method(outcome.actual_price, outcome.minimum_valuation, override)
        return compose_breakdown(
            item,
            entry.classification,
            outcome,
            selected,
            computed_at=self.clock(),
            admin_override=override,
        )

    def _pairs_needed(
        self,
        item: Item,
        rule: ValuationRule | None,
        quote: Quote,
        options: CalculationOptions,
    ) -> list[CurrencyPair]:
        destination = quote.destination_currency.upper()
        pairs = []
        origin = CurrencyPair(item.currency.upper(), destination)
        if not origin.is_identity:
            pairs.append(origin)
        if options.enable_minimum_valuation and rule is not None and rule.minimum_valuation_usd is not None:
            reference = CurrencyPair(REFERENCE_CURRENCY, destination)
            if not reference.is_identity and reference not in pairs:
                pairs.append(reference)
        return pairs

    def _declared_classification(self, item: Item) -> Classification:
        return Classification(
            code=item.classification_code,
            category=item.category,
            confidence=item.classification_confidence,
        )

    def _finish(
        self,
        run: CalculationRun,
        quote: Quote,
        outcomes: list[ItemTaxBreakdown | ItemFailure],
        stats: RealTimeStats,
        warnings: list[str],
    ) -> QuoteCalculationResult:
        run.advance(RunStatus.COMPOSING_TOTALS)
        breakdowns = [outcome for outcome in outcomes if isinstance(outcome, ItemTaxBreakdown)]
        failures = [outcome for outcome in outcomes if isinstance(outcome, ItemFailure)]
        if not breakdowns:
            logger.error("quote_failed", quote_id=quote.id, failed_items=[f.item_id for f in failures])
            raise QuoteCalculationFailed(quote.id, "no item could be calculated", failures)

        if failures:
            run.advance(RunStatus.PARTIAL_FAILURE)
            warnings = warnings + [f"Item {failure.item_id} could not be calculated: {failure.reason}" for failure in failures]
        else:
            run.advance(RunStatus.DONE)

        return QuoteCalculationResult(
            quote_id=quote.id,
            status=run.status,
            item_breakdowns=breakdowns,
            failed_items=failures,
            totals=roll_up(breakdowns),
            real_time_stats=stats,
            warnings=list(dict.fromkeys(warnings)),
            computed_at=self.clock(),
        )

    def _remember_context(self, quote_id: str, context: CachedContext) -> None:
        self._contexts.pop(quote_id, None)
        if len(self._contexts) >= self.max_contexts:
            del self._contexts[next(iter(self._contexts))]
        self._contexts[quote_id] = context
