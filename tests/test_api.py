from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from landed_tax.core.deps import get_engine
from landed_tax.main import app
from landed_tax.services.calculator import QuoteCalculatorService
from landed_tax.services.engine import ValuationEngine
from landed_tax.services.scheduler import RecalculationScheduler


@pytest.fixture
def client(rate_cache, rule_store, clock):
    engine = ValuationEngine(
        QuoteCalculatorService(rate_cache, rule_store, clock=clock),
        RecalculationScheduler(debounce_ms=10),
    )
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


def payload(*items, quote_id="q-api"):
    return {"quote_id": quote_id, "items": list(items)}


KURTA = {"id": "kurta", "name": "Kurta", "unit_price": "500", "currency": "INR", "classification_code": "621142"}


def test_calculate_returns_breakdown(client):
    response = client.post("/api/quotes/calculate", json=payload(KURTA))

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "done"
    breakdown = body["item_breakdowns"][0]
    assert breakdown["selected_method"] == "minimum_valuation"
    assert Decimal(breakdown["basis_amount"]) == Decimal("830")
    assert Decimal(body["totals"]["total_tax"]) == Decimal("265.60")
    assert breakdown["rates_used"][0]["pair"] == "USD/INR"
    assert body["failed_item_ids"] == []


def test_partial_failure_lists_failed_items(client):
    foreign = {"id": "eur", "name": "Jacket", "unit_price": "40", "currency": "EUR", "classification_code": "621142"}

    response = client.post("/api/quotes/calculate", json=payload(KURTA, foreign))

    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "partial_failure"
    assert body["failed_item_ids"] == ["eur"]
    assert body["failed_items"][0]["status"] == "failed"


def test_total_failure_is_unprocessable(client):
    foreign = {"id": "eur", "name": "Jacket", "unit_price": "40", "currency": "EUR"}

    response = client.post("/api/quotes/calculate", json=payload(foreign))

    assert response.status_code == 422
    assert response.json()["detail"]["failed_items"][0]["item_id"] == "eur"


def test_empty_quote_is_rejected(client):
    response = client.post("/api/quotes/calculate", json=payload())

    assert response.status_code == 422


def test_admin_override_via_api(client):
    phone = {"id": "phone", "name": "Phone", "unit_price": "25000", "currency": "INR", "classification_code": "851712"}
    request = payload(phone) | {"admin_overrides": {"phone": "minimum_valuation"}}

    body = client.post("/api/quotes/calculate", json=request).json()

    assert body["item_breakdowns"][0]["admin_override"] == "minimum_valuation"
    assert Decimal(body["item_breakdowns"][0]["basis_amount"]) == Decimal("4150")


def test_live_sync_after_calculate(client):
    client.post("/api/quotes/calculate", json=payload(KURTA))
    edited = KURTA | {"unit_price": "1000"}

    response = client.post("/api/quotes/live-sync", json=payload(edited))

    breakdown = response.json()["item_breakdowns"][0]
    assert response.status_code == 200
    assert breakdown["selected_method"] == "actual_price"
    assert Decimal(breakdown["total_tax"]) == Decimal("320.00")


def test_fx_rate_lookup(client):
    response = client.get("/api/rates/fx", params={"base": "usd", "quote": "inr"})

    assert response.status_code == 200
    body = response.json()
    assert Decimal(body["rate"]) == Decimal("83")
    assert body["source"] == "live"
    assert body["staleness"] == "fresh"


def test_fx_rate_unknown_pair(client):
    response = client.get("/api/rates/fx", params={"base": "GBP", "quote": "INR"})

    assert response.status_code == 404
