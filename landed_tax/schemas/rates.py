from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from landed_tax.models.enums import RateSource, Staleness


class FxRateResponse(BaseModel):
    base: str
    quote: str
    rate: Decimal
    source: RateSource
    fetched_at: datetime
    staleness: Staleness
