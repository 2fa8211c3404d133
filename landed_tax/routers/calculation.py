from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from landed_tax.core.config import Settings, get_settings
from landed_tax.core.deps import get_engine
from landed_tax.schemas.calculation import QuoteCalculationRequest, QuoteCalculationResponse
from landed_tax.services.engine import ValuationEngine
from landed_tax.services.errors import QuoteCalculationFailed

router = APIRouter(prefix="/quotes", tags=["calculation"])


def _unprocessable(exc: QuoteCalculationFailed) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={
            "message": str(exc),
            "failed_items": [{"item_id": f.item_id, "reason": f.reason} for f in exc.failures],
        },
    )


@router.post("/calculate", response_model=QuoteCalculationResponse)
async def calculate(
    payload: QuoteCalculationRequest,
    engine: ValuationEngine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
):
    quote = payload.to_quote(settings.destination_currency, settings.destination_country)
    try:
        result = await engine.calculate(quote, payload.to_options())
    except QuoteCalculationFailed as exc:
        raise _unprocessable(exc) from exc
    return QuoteCalculationResponse.model_validate(result)


@router.post("/live-sync", response_model=QuoteCalculationResponse)
def live_sync(
    payload: QuoteCalculationRequest,
    engine: ValuationEngine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
):
    quote = payload.to_quote(settings.destination_currency, settings.destination_country)
    try:
        result = engine.live_sync_calculate(quote, options=payload.to_options())
    except QuoteCalculationFailed as exc:
        raise _unprocessable(exc) from exc
    return QuoteCalculationResponse.model_validate(result)
