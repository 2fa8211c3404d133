from decimal import Decimal

import pytest
from pydantic import ValidationError

from landed_tax.core.config import DEFAULT_TAX_RULES_PATH, Settings
from landed_tax.models.enums import RateSource, RunStatus
from landed_tax.services.engine import EngineConfig, build_engine
from landed_tax.services.providers.category_resolver import CategoryClassificationResolver
from landed_tax.services.providers.rule_store import InMemoryTaxRuleStore
from landed_tax.services.types import CurrencyPair, Item, Quote


@pytest.fixture
def settings():
    return Settings(_env_file=None, FALLBACK_RATES={"USD/INR": "83"}, debounce_ms=10, stale_minutes=30)


@pytest.fixture
def engine(settings):
    return build_engine(
        settings,
        rule_store=InMemoryTaxRuleStore.from_file(DEFAULT_TAX_RULES_PATH),
        classification_resolver=CategoryClassificationResolver.from_file(DEFAULT_TAX_RULES_PATH),
    )


def kurta_quote(price="500"):
    item = Item(id="kurta", name="Kurta", unit_price=Decimal(price), currency="INR", category="ethnic_wear")
    return Quote(id="q1", items=[item], destination_currency="INR", destination_country="IN")


def test_config_from_settings(settings):
    config = EngineConfig.from_settings(settings)

    assert config.debounce_ms == 10
    assert config.max_pending == 100
    assert config.staleness_thresholds.stale_minutes == 30


def test_config_rejects_other_rounding_modes():
    with pytest.raises(ValueError):
        EngineConfig(minimum_valuation_rounding="nearest")


@pytest.mark.asyncio
async def test_engine_uses_configured_fallback_rate(engine):
    result = await engine.calculate(kurta_quote())

    breakdown = result.item_breakdowns[0]
    assert breakdown.classification_code == "621142"
    assert breakdown.basis_amount == Decimal("830")
    assert breakdown.rates_used[0].source == RateSource.FALLBACK
    assert engine.rate_cache.get_rate(CurrencyPair("USD", "INR")) is None


@pytest.mark.asyncio
async def test_engine_schedules_and_flushes(engine):
    assert engine.schedule_calculation("q1", lambda: engine.calculate(kurta_quote("400")), {"price": "400"})
    assert engine.schedule_calculation("q2", lambda: engine.calculate(kurta_quote("900")), {"price": "900"})
    assert engine.cancel_calculation("q2")

    outcomes = await engine.flush_calculations()

    assert list(outcomes) == ["q1"]
    assert outcomes["q1"].result.status == RunStatus.DONE
    await engine.close()


def test_default_rule_rates_are_validated_decimals():
    settings = Settings(_env_file=None, fallback_customs_rate_percent="7.5")

    assert settings.fallback_customs_rate_percent == Decimal("7.5")
    assert settings.fallback_local_tax_rate_percent == Decimal("18")
    with pytest.raises(ValidationError):
        Settings(_env_file=None, fallback_local_tax_rate_percent="eighteen")


@pytest.mark.asyncio
async def test_engine_default_rule_uses_configured_rates():
    engine = build_engine(
        Settings(_env_file=None, fallback_customs_rate_percent="5", fallback_local_tax_rate_percent="12"),
        rule_store=InMemoryTaxRuleStore(),
    )
    item = Item(id="x", name="Widget", unit_price=Decimal("1000"), currency="INR", classification_code="999999")

    result = await engine.calculate(Quote(id="q", items=[item], destination_currency="INR", destination_country="IN"))

    assert result.item_breakdowns[0].total_tax == Decimal("170.00")
    assert result.item_breakdowns[0].classification_code == "999999"
