from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from landed_tax.models.enums import ItemStatus, RateSource, RunStatus, ValuationMethod
from landed_tax.schemas.common import BaseSchema
from landed_tax.services.types import CalculationOptions, Item, Quote


class QuoteItemRequest(BaseModel):
    id: str
    name: str
    unit_price: Decimal = Field(ge=0)
    currency: str = Field(min_length=3, max_length=3)
    quantity: int = Field(default=1, ge=1)
    weight_kg: Decimal | None = Field(default=None, ge=0)
    category: str | None = None
    classification_code: str | None = None
    classification_confidence: float = Field(default=1.0, ge=0, le=1)

    def to_item(self) -> Item:
        return Item(
            id=self.id,
            name=self.name,
            unit_price=self.unit_price,
            currency=self.currency.upper(),
            quantity=self.quantity,
            weight_kg=self.weight_kg,
            category=self.category,
            classification_code=self.classification_code,
            classification_confidence=self.classification_confidence,
        )


class QuoteCalculationRequest(BaseModel):
    quote_id: str
    destination_currency: str | None = None
    destination_country: str | None = None
    items: list[QuoteItemRequest] = Field(min_length=1)
    admin_overrides: dict[str, ValuationMethod] = Field(default_factory=dict)
    enable_auto_classification: bool = True
    enable_minimum_valuation: bool = True
    use_result_cache: bool = True

    def to_quote(self, default_currency: str, default_country: str) -> Quote:
        return Quote(
            id=self.quote_id,
            items=[item.to_item() for item in self.items],
            destination_currency=(self.destination_currency or default_currency).upper(),
            destination_country=(self.destination_country or default_country).upper(),
        )

    def to_options(self) -> CalculationOptions:
        return CalculationOptions(
            admin_overrides=dict(self.admin_overrides),
            enable_auto_classification=self.enable_auto_classification,
            enable_minimum_valuation=self.enable_minimum_valuation,
            use_result_cache=self.use_result_cache,
        )


class CalculationResultResponse(BaseSchema):
    basis_amount: Decimal
    customs_amount: Decimal
    local_tax_amount: Decimal
    total_tax: Decimal
    conversion_details: str | None = None


class ExchangeRateResponse(BaseSchema):
    pair: str
    rate: Decimal
    fetched_at: datetime
    source: RateSource

    @field_validator("pair", mode="before")
    @classmethod
    def _pair_to_str(cls, value: object) -> str:
        return str(value)


class ItemTaxBreakdownResponse(BaseSchema):
    item_id: str
    item_name: str
    classification_code: str
    category: str | None
    quantity: int
    actual_price_calculation: CalculationResultResponse
    minimum_valuation_calculation: CalculationResultResponse | None
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
    rates_used: list[ExchangeRateResponse] = Field(default_factory=list)
    status: ItemStatus


class ItemFailureResponse(BaseSchema):
    item_id: str
    reason: str
    status: ItemStatus


class QuoteTotalsResponse(BaseSchema):
    total_items: int
    total_customs: Decimal
    total_local_tax: Decimal
    total_tax: Decimal
    average_confidence: float
    items_with_minimum_valuation: int
    items_with_warnings: int
    currency_conversions_applied: int


class RealTimeStatsResponse(BaseSchema):
    classification_calls: int
    cache_hits: int
    api_calls: int
    items_classified: int


class QuoteCalculationResponse(BaseSchema):
    quote_id: str
    status: RunStatus
    item_breakdowns: list[ItemTaxBreakdownResponse]
    failed_items: list[ItemFailureResponse]
    failed_item_ids: list[str]
    totals: QuoteTotalsResponse
    real_time_stats: RealTimeStatsResponse
    warnings: list[str]
    computed_at: datetime
