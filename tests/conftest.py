from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from landed_tax.models.enums import RateSource
from landed_tax.services.providers.rule_store import InMemoryTaxRuleStore
from landed_tax.services.rate_cache import RateCache
from landed_tax.services.types import CurrencyPair, ValuationRule

USD_INR = CurrencyPair("USD", "INR")


class FixedClock:
    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2025, 7, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now = self.now + timedelta(minutes=minutes)


def make_rule(code, customs="20", local="12", minimum=None, confidence=0.9) -> ValuationRule:
    return ValuationRule(
        classification_code=code,
        customs_rate_percent=Decimal(customs),
        local_tax_rate_percent=Decimal(local),
        minimum_valuation_usd=Decimal(minimum) if minimum is not None else None,
        rule_confidence=confidence,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def rate_cache(clock) -> RateCache:
    cache = RateCache(clock=clock, live_fetch_attempts=1, retry_min_wait=0)
    cache.put_rate(USD_INR, Decimal("83"), RateSource.LIVE)
    return cache


@pytest.fixture
def rule_store() -> InMemoryTaxRuleStore:
    store = InMemoryTaxRuleStore()
    store.add("IN", make_rule("621142", "20", "12", "10"))
    store.add("IN", make_rule("851712", "20", "18", "50", confidence=0.95))
    store.add("IN", make_rule("4901", "0", "0", confidence=0.95))
    store.add("IN", make_rule("610910", "20", "12", "5"))
    return store
