from decimal import Decimal

import pytest

from conftest import make_rule
from landed_tax.core.config import DEFAULT_TAX_RULES_PATH
from landed_tax.services.errors import ClassificationUnavailable
from landed_tax.services.providers.category_resolver import CategoryClassificationResolver
from landed_tax.services.providers.rule_store import InMemoryTaxRuleStore, candidate_codes
from landed_tax.services.types import Item


def test_candidate_codes_walk_down_the_hierarchy():
    assert candidate_codes("6211.42.10.00") == ["6211421000", "62114210", "621142", "6211", "62"]
    assert candidate_codes("4901") == ["4901", "49"]
    assert candidate_codes("n/a") == []


@pytest.mark.asyncio
async def test_lookup_falls_back_to_shorter_prefix():
    store = InMemoryTaxRuleStore()
    store.add("in", make_rule("4901", "0", "0"))

    assert (await store.lookup("49019900", "IN")).classification_code == "4901"
    assert await store.lookup("49019900", "US") is None
    assert await store.lookup("8517", "IN") is None


@pytest.mark.asyncio
async def test_exact_code_wins_over_prefix():
    store = InMemoryTaxRuleStore()
    store.add("IN", make_rule("8517", "10", "18"))
    store.add("IN", make_rule("851712", "20", "18", "50"))

    rule = await store.lookup("851712", "IN")

    assert rule.customs_rate_percent == Decimal("20")


@pytest.mark.asyncio
async def test_bundled_rules_load():
    store = InMemoryTaxRuleStore.from_file(DEFAULT_TAX_RULES_PATH)

    kurta = await store.lookup("621142", "IN")
    books = await store.lookup("490199", "IN")

    assert kurta.minimum_valuation_usd == Decimal("10")
    assert kurta.local_tax_rate_percent == Decimal("12")
    assert books.minimum_valuation_usd is None


def test_payload_without_minimum():
    store = InMemoryTaxRuleStore.from_payload(
        {
            "rules": [
                {
                    "classification_code": "9503",
                    "destination_country": "IN",
                    "customs_rate_percent": 60,
                    "local_tax_rate_percent": "12",
                }
            ]
        }
    )

    rule = store.rules[("9503", "IN")]
    assert rule.customs_rate_percent == Decimal("60")
    assert rule.minimum_valuation_usd is None
    assert rule.rule_confidence == 1.0


@pytest.mark.asyncio
async def test_category_resolver_maps_known_categories():
    resolver = CategoryClassificationResolver.from_file(DEFAULT_TAX_RULES_PATH)
    item = Item(id="1", name="Cotton kurta", unit_price=Decimal("500"), currency="INR", category="Ethnic_Wear")

    classification = await resolver.resolve(item)

    assert classification.code == "621142"
    assert classification.confidence == 0.7


@pytest.mark.asyncio
async def test_category_resolver_rejects_unknown_or_missing_category():
    resolver = CategoryClassificationResolver({"phones": "851712"})

    with pytest.raises(ClassificationUnavailable):
        await resolver.resolve(Item(id="1", name="Thing", unit_price=Decimal("1"), currency="INR"))
    with pytest.raises(ClassificationUnavailable):
        await resolver.resolve(Item(id="2", name="Toy", unit_price=Decimal("1"), currency="INR", category="toys"))
