from __future__ import annotations

from enum import Enum


class RateSource(str, Enum):
    LIVE = "live"
    CACHED = "cached"
    FALLBACK = "fallback"


class Staleness(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    VERY_STALE = "very_stale"


class ValuationMethod(str, Enum):
    ACTUAL_PRICE = "actual_price"
    MINIMUM_VALUATION = "minimum_valuation"


class RunStatus(str, Enum):
    PENDING = "pending"
    RESOLVING_CLASSIFICATIONS = "resolving_classifications"
    COMPUTING_ITEMS = "computing_items"
    COMPOSING_TOTALS = "composing_totals"
    DONE = "done"
    PARTIAL_FAILURE = "partial_failure"


class ItemStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
