from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from landed_tax.services.types import CurrencyPair, ItemFailure


class LandedTaxError(Exception):
    pass


class RateUnavailable(LandedTaxError):
    """No rate of any provenance is held for the pair and no fallback is configured."""

    def __init__(self, pair: CurrencyPair) -> None:
        super().__init__(f"No exchange rate available for {pair}")
        self.pair = pair


class LiveRateFetchError(LandedTaxError):
    """Raised by rate provider adapters when a live rate cannot be produced."""


class ClassificationUnavailable(LandedTaxError):
    def __init__(self, item_id: str, reason: str = "classification unavailable") -> None:
        super().__init__(f"{item_id}: {reason}")
        self.item_id = item_id
        self.reason = reason


class QuoteCalculationFailed(LandedTaxError):
    def __init__(self, quote_id: str, message: str, failures: list[ItemFailure] | None = None) -> None:
        super().__init__(f"Quote {quote_id}: {message}")
        self.quote_id = quote_id
        self.failures = failures or []
