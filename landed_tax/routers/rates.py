from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from landed_tax.core.deps import get_engine
from landed_tax.schemas.rates import FxRateResponse
from landed_tax.services.engine import ValuationEngine
from landed_tax.services.errors import RateUnavailable
from landed_tax.services.types import CurrencyPair

router = APIRouter(prefix="/rates", tags=["rates"])


@router.get("/fx", response_model=FxRateResponse)
def fx_rate(base: str, quote: str, engine: ValuationEngine = Depends(get_engine)):
    pair = CurrencyPair(base.upper(), quote.upper())
    cache = engine.rate_cache
    try:
        rate = cache.lookup(pair)
    except RateUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return FxRateResponse(
        base=pair.base,
        quote=pair.quote,
        rate=rate.rate,
        source=rate.source,
        fetched_at=rate.fetched_at,
        staleness=cache.is_stale(rate),
    )
