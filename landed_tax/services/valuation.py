from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal

from landed_tax.models.enums import Staleness
from landed_tax.services.classification import fallback_rule
from landed_tax.services.rate_cache import RateCache
from landed_tax.services.types import CalculationResult, CurrencyPair, ExchangeRate, Item, ValuationRule

REFERENCE_CURRENCY = "USD"
HUNDRED = Decimal("100")


def round2(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def ceil_whole(value: Decimal) -> Decimal:
    """Round up to a whole currency unit, in favour of the tax authority."""
    return value.quantize(Decimal("1"), rounding=ROUND_CEILING)


@dataclass(frozen=True)
class RateUsage:
    rate: ExchangeRate
    staleness: Staleness
    age_minutes: int


@dataclass
class ValuationOutcome:
    rule: ValuationRule
    actual_price: CalculationResult
    minimum_valuation: CalculationResult | None
    rates_used: list[RateUsage] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    fallback_rule_used: bool = False


def calculate_on_basis(
    basis: Decimal,
    rule: ValuationRule,
    conversion_details: str | None = None,
) -> CalculationResult:
    customs = round2(basis * rule.customs_rate_percent / HUNDRED)
    local_tax = round2(basis * rule.local_tax_rate_percent / HUNDRED)
    return CalculationResult(
        basis_amount=basis,
        customs_amount=customs,
        local_tax_amount=local_tax,
        total_tax=customs + local_tax,
        conversion_details=conversion_details,
    )


class ValuationCalculator:
    """Computes the actual-price and minimum-valuation bases for one item.

    Both bases are per-unit values multiplied by quantity, so the minimum valuation
    acts as a per-unit floor. All conversions go through the rate cache's held
    rates; the calculator itself never fetches.
    """

    def __init__(self, rate_cache: RateCache, default_rule: ValuationRule | None = None) -> None:
        self.rate_cache = rate_cache
        self.default_rule = default_rule or fallback_rule()

    def calculate(
        self,
        item: Item,
        rule: ValuationRule | None,
        destination_currency: str,
        classification_failed: bool = False,
        include_minimum: bool = True,
    ) -> ValuationOutcome:
        warnings: list[str] = []
        fallback_used = False
        if rule is None:
            rule = self.default_rule
            fallback_used = True
            if classification_failed:
                warnings.append(
                    f"Classification unavailable for {item.name}; default rates "
                    f"({rule.customs_rate_percent}% customs, {rule.local_tax_rate_percent}% local tax) applied"
                )
            else:
                warnings.append(
                    f"No valuation rule for classification {item.classification_code}; default rates applied"
                )

        destination = destination_currency.upper()
        rates_used: list[RateUsage] = []

        unit_price = item.unit_price
        origin = item.currency.upper()
        if origin != destination:
            conversion = self.rate_cache.convert(unit_price, CurrencyPair(origin, destination))
            unit_price = round2(conversion.amount)
            rates_used.append(self._usage(conversion.rate))
        actual = calculate_on_basis(unit_price * item.quantity, rule)

        minimum = None
        if include_minimum and rule.minimum_valuation_usd is not None:
            pair = CurrencyPair(REFERENCE_CURRENCY, destination)
            conversion = self.rate_cache.convert(rule.minimum_valuation_usd, pair)
            unit_minimum = ceil_whole(conversion.amount)
            if not pair.is_identity:
                rates_used.append(self._usage(conversion.rate))
            details = f"${rule.minimum_valuation_usd} {REFERENCE_CURRENCY} -> {unit_minimum} {destination}"
            minimum = calculate_on_basis(unit_minimum * item.quantity, rule, details)

        return ValuationOutcome(
            rule=rule,
            actual_price=actual,
            minimum_valuation=minimum,
            rates_used=rates_used,
            warnings=warnings,
            fallback_rule_used=fallback_used,
        )

    def _usage(self, rate: ExchangeRate) -> RateUsage:
        return RateUsage(
            rate=rate,
            staleness=self.rate_cache.is_stale(rate),
            age_minutes=self.rate_cache.age_minutes(rate),
        )
