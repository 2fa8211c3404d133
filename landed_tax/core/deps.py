from __future__ import annotations

from functools import lru_cache

from landed_tax.core.config import get_settings
from landed_tax.services.engine import ValuationEngine, build_engine
from landed_tax.services.providers.category_resolver import CategoryClassificationResolver
from landed_tax.services.providers.redis_rates import RedisRateProvider, RedisRateSnapshotStore
from landed_tax.services.providers.rule_store import InMemoryTaxRuleStore


@lru_cache(maxsize=1)
def get_engine() -> ValuationEngine:
    settings = get_settings()
    return build_engine(
        settings,
        rule_store=InMemoryTaxRuleStore.from_file(settings.tax_rules_path),
        classification_resolver=CategoryClassificationResolver.from_file(settings.tax_rules_path),
        rate_provider=RedisRateProvider(),
        snapshot_store=RedisRateSnapshotStore(settings.rate_snapshot_ttl_seconds),
    )
