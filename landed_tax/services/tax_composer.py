from __future__ import annotations

from datetime import datetime

from landed_tax.models.enums import RateSource, Staleness, ValuationMethod
from landed_tax.services.types import (
    ZERO,
    Classification,
    ItemTaxBreakdown,
    Item,
    QuoteTotals,
)
from landed_tax.services.valuation import RateUsage, ValuationOutcome


def compose_breakdown(
    item: Item,
    classification: Classification,
    outcome: ValuationOutcome,
    selected_method: ValuationMethod,
    computed_at: datetime,
    admin_override: ValuationMethod | None = None,
) -> ItemTaxBreakdown:
    if selected_method == ValuationMethod.MINIMUM_VALUATION and outcome.minimum_valuation is not None:
        selected = outcome.minimum_valuation
    else:
        selected = outcome.actual_price

    warnings = list(outcome.warnings)
    if selected is outcome.minimum_valuation:
        warnings.append(f"Minimum valuation applied: {selected.conversion_details}")
    if admin_override is not None:
        if admin_override != selected_method:
            warnings.append(f"Override to {admin_override.value} ignored: no minimum valuation rule for this item")
        else:
            warnings.append(f"Valuation method set by administrator: {admin_override.value}")
    warnings.extend(_rate_warnings(outcome.rates_used))
    if outcome.rule.customs_rate_percent == ZERO and outcome.rule.local_tax_rate_percent == ZERO:
        warnings.append("No taxes calculated - item may be tax-exempt")

    total_customs = selected.customs_amount
    total_local_tax = selected.local_tax_amount
    return ItemTaxBreakdown(
        item_id=item.id,
        item_name=item.name,
        classification_code=classification.code,
        category=classification.category or item.category,
        quantity=item.quantity,
        actual_price_calculation=outcome.actual_price,
        minimum_valuation_calculation=outcome.minimum_valuation,
        selected_method=selected_method,
        admin_override=admin_override,
        customs_rate_percent=outcome.rule.customs_rate_percent,
        local_tax_rate_percent=outcome.rule.local_tax_rate_percent,
        basis_amount=selected.basis_amount,
        total_customs=total_customs,
        total_local_tax=total_local_tax,
        total_tax=total_customs + total_local_tax,
        confidence_score=min(classification.confidence, outcome.rule.rule_confidence),
        warnings=list(dict.fromkeys(warnings)),
        computed_at=computed_at,
        rates_used=[usage.rate for usage in outcome.rates_used],
    )


def _rate_warnings(rates_used: list[RateUsage]) -> list[str]:
    warnings = []
    for usage in rates_used:
        pair = usage.rate.pair
        if usage.rate.source == RateSource.FALLBACK:
            warnings.append(f"Exchange rate {pair} is a fallback rate - actual rates may vary")
        if usage.staleness == Staleness.VERY_STALE:
            warnings.append(f"Exchange rate {pair} is very stale ({usage.age_minutes} minutes old)")
        elif usage.staleness == Staleness.STALE:
            warnings.append(f"Exchange rate {pair} is stale ({usage.age_minutes} minutes old)")
    return warnings


def roll_up(breakdowns: list[ItemTaxBreakdown]) -> QuoteTotals:
    """Sum per-item breakdowns into quote totals without recomputing any item."""
    totals = QuoteTotals(total_items=len(breakdowns))
    if not breakdowns:
        return totals
    confidence = 0.0
    for breakdown in breakdowns:
        totals.total_customs += breakdown.total_customs
        totals.total_local_tax += breakdown.total_local_tax
        totals.total_tax += breakdown.total_tax
        confidence += breakdown.confidence_score
        if breakdown.selected_method == ValuationMethod.MINIMUM_VALUATION:
            totals.items_with_minimum_valuation += 1
        if breakdown.warnings:
            totals.items_with_warnings += 1
        if breakdown.rates_used:
            totals.currency_conversions_applied += 1
    totals.average_confidence = round(confidence / len(breakdowns), 4)
    return totals
