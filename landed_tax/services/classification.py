from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal

from landed_tax.services.providers.base import ClassificationResolver
from landed_tax.services.types import Classification, Item, ValuationRule

FALLBACK_CODE = "UNCLASSIFIED"


def fallback_rule(
    customs_rate_percent: Decimal = Decimal("10"),
    local_tax_rate_percent: Decimal = Decimal("18"),
    confidence: float = 0.3,
) -> ValuationRule:
    """Flat low-confidence rule used when an item cannot be classified or has no rule."""
    return ValuationRule(
        classification_code=FALLBACK_CODE,
        customs_rate_percent=customs_rate_percent,
        local_tax_rate_percent=local_tax_rate_percent,
        minimum_valuation_usd=None,
        rule_confidence=confidence,
        description="Default rates for unclassified goods",
    )


def fallback_classification(item: Item, confidence: float = 0.3) -> Classification:
    return Classification(code=FALLBACK_CODE, category=item.category, confidence=confidence)


def classification_key(item: Item) -> str:
    return f"{item.name.strip().lower()}|{(item.category or '').strip().lower()}"


@dataclass(frozen=True)
class ClassificationLookup:
    classification: Classification
    cache_hit: bool


class ClassificationCache:
    """TTL cache in front of a ClassificationResolver, keyed by item name and category."""

    def __init__(
        self,
        resolver: ClassificationResolver,
        ttl_seconds: int = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.resolver = resolver
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: dict[str, tuple[Classification, float]] = {}

    def get_cached(self, item: Item) -> Classification | None:
        key = classification_key(item)
        entry = self._entries.get(key)
        if entry is None:
            return None
        classification, stored_at = entry
        if self.clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            return None
        return classification

    async def resolve(self, item: Item) -> ClassificationLookup:
        cached = self.get_cached(item)
        if cached is not None:
            return ClassificationLookup(cached, cache_hit=True)
        classification = await self.resolver.resolve(item)
        self._entries[classification_key(item)] = (classification, self.clock())
        return ClassificationLookup(classification, cache_hit=False)

    def invalidate(self, item: Item) -> None:
        self._entries.pop(classification_key(item), None)
