from fastapi import APIRouter, HTTPException, Request

from ticker.config.settings import get_settings
from ticker.schemas.calculator import CompareRequest
from ticker.services.calculator import compare_prices

router = APIRouter()


def _orchestrator(request: Request):
    orchestrator = getattr(request.app.state, 'ticker_orchestrator', None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail='TICKER_NOT_STARTED')
    return orchestrator


@router.get('/ticker')
def get_ticker(request: Request):
    return _orchestrator(request).state().model_dump()


@router.post('/ticker/refresh')
async def refresh_ticker(request: Request):
    orchestrator = _orchestrator(request)
    await orchestrator.refresh()
    return orchestrator.state().model_dump()


@router.get('/metrics/ticker')
def ticker_metrics(request: Request):
    return _orchestrator(request).metrics()


@router.post('/calculator/compare')
def compare(req: CompareRequest):
    result = compare_prices(
        req.price_1,
        req.price_2,
        req.investment,
        req.currency,
        eur_to_usd=get_settings().CALCULATOR_EUR_TO_USD,
    )
    if result is None:
        raise HTTPException(status_code=422, detail='INVALID_CALCULATOR_INPUT')
    return result.model_dump()
