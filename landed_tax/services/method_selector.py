from __future__ import annotations

from landed_tax.models.enums import ValuationMethod
from landed_tax.services.types import CalculationResult


def select_method(
    actual_price: CalculationResult,
    minimum_valuation: CalculationResult | None,
    admin_override: ValuationMethod | None = None,
) -> ValuationMethod:
    """Pick the authoritative valuation basis.

    An administrator override always wins. Otherwise the higher basis is assessed,
    with the actual price winning ties so the customer is not penalized.
    A minimum-valuation override on an item without a minimum rule has no basis
    to select and resolves to the actual price; callers record the override as given.
    """
    if admin_override is not None:
        if admin_override == ValuationMethod.MINIMUM_VALUATION and minimum_valuation is None:
            return ValuationMethod.ACTUAL_PRICE
        return admin_override
    if minimum_valuation is None:
        return ValuationMethod.ACTUAL_PRICE
    if actual_price.basis_amount >= minimum_valuation.basis_amount:
        return ValuationMethod.ACTUAL_PRICE
    return ValuationMethod.MINIMUM_VALUATION
