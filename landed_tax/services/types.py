from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from landed_tax.models.enums import ItemStatus, RateSource, RunStatus, ValuationMethod

ZERO = Decimal("0")


@dataclass(frozen=True)
class CurrencyPair:
    base: str
    quote: str

    @classmethod
    def parse(cls, value: str) -> CurrencyPair:
        base, _, quote = value.partition("/")
        if not base or not quote:
            raise ValueError(f"Currency pair must look like 'USD/INR', got {value!r}")
        return cls(base.strip().upper(), quote.strip().upper())

    @property
    def is_identity(self) -> bool:
        return self.base == self.quote

    def __str__(self) -> str:
        return f"{self.base}/{self.quote}"


@dataclass
class Item:
    id: str
    name: str
    unit_price: Decimal
    currency: str
    quantity: int = 1
    weight_kg: Decimal | None = None
    category: str | None = None
    classification_code: str | None = None
    classification_confidence: float = 1.0

    def __post_init__(self) -> None:
        if self.quantity < 1:
            raise ValueError(f"Item {self.id}: quantity must be >= 1")
        if not 0 <= self.classification_confidence <= 1:
            raise ValueError(f"Item {self.id}: classification_confidence must be within 0..1")


@dataclass
class Quote:
    id: str
    items: list[Item]
    destination_currency: str
    destination_country: str


@dataclass(frozen=True)
class Classification:
    code: str
    category: str | None
    confidence: float


@dataclass(frozen=True)
class ValuationRule:
    classification_code: str
    customs_rate_percent: Decimal
    local_tax_rate_percent: Decimal
    minimum_valuation_usd: Decimal | None = None
    rule_confidence: float = 1.0
    description: str | None = None


@dataclass(frozen=True)
class ExchangeRate:
    pair: CurrencyPair
    rate: Decimal
    fetched_at: datetime
    source: RateSource


@dataclass(frozen=True)
class Conversion:
    amount: Decimal
    rate: ExchangeRate


@dataclass(frozen=True)
class CalculationResult:
    basis_amount: Decimal
    customs_amount: Decimal
    local_tax_amount: Decimal
    total_tax: Decimal
    conversion_details: str | None = None


@dataclass
class ItemTaxBreakdown:
    item_id: str
    item_name: str
    classification_code: str
    category: str | None
    quantity: int
    actual_price_calculation: CalculationResult
    minimum_valuation_calculation: CalculationResult | None
    selected_method: ValuationMethod
    admin_override: ValuationMethod | None
    customs_rate_percent: Decimal
    local_tax_rate_percent: Decimal
    basis_amount: Decimal
    total_customs: Decimal
    total_local_tax: Decimal
    total_tax: Decimal
    confidence_score: float
    warnings: list[str]
    computed_at: datetime
    rates_used: list[ExchangeRate] = field(default_factory=list)
    status: ItemStatus = ItemStatus.OK


@dataclass(frozen=True)
class ItemFailure:
    item_id: str
    reason: str
    status: ItemStatus = ItemStatus.FAILED


@dataclass
class QuoteTotals:
    total_items: int = 0
    total_customs: Decimal = ZERO
    total_local_tax: Decimal = ZERO
    total_tax: Decimal = ZERO
    average_confidence: float = 0.0
    items_with_minimum_valuation: int = 0
    items_with_warnings: int = 0
    currency_conversions_applied: int = 0


@dataclass
class RealTimeStats:
    classification_calls: int = 0
    cache_hits: int = 0
    api_calls: int = 0
    items_classified: int = 0


@dataclass
class CachedContext:
    """Classifications and rules a previous run used, keyed for sync recomputation."""

    classifications: dict[str, Classification] = field(default_factory=dict)
    rules: dict[str, ValuationRule | None] = field(default_factory=dict)


@dataclass
class QuoteCalculationResult:
    quote_id: str
    status: RunStatus
    item_breakdowns: list[ItemTaxBreakdown]
    failed_items: list[ItemFailure]
    totals: QuoteTotals
    real_time_stats: RealTimeStats
    warnings: list[str]
    computed_at: datetime

    @property
    def failed_item_ids(self) -> list[str]:
        return [failure.item_id for failure in self.failed_items]

    @property
    def is_partial(self) -> bool:
        return self.status == RunStatus.PARTIAL_FAILURE


@dataclass
class CalculationOptions:
    admin_overrides: dict[str, ValuationMethod] = field(default_factory=dict)
    enable_auto_classification: bool = True
    enable_minimum_valuation: bool = True
    use_result_cache: bool = True
