import json

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response

from tradeville_prices.errors import TradevillePricesError, WeightsScrapeError
from tradeville_prices.integrations.bvb_weights import format_weights
from tradeville_prices.services.dashboard import render_dashboard, sort_quotes

router = APIRouter()

_DIRECTIONS = {"ascending", "descending"}


def _sorted_rows(snapshot: dict, sort: str, direction: str):
    return sort_quotes(
        snapshot["symbols"],
        snapshot["quotes"],
        snapshot["weights"],
        key=sort,
        direction=direction,
    )


@router.get('/', response_class=HTMLResponse)
def dashboard(request: Request, sort: str = 'weight', direction: str = 'descending'):
    if direction not in _DIRECTIONS:
        direction = 'descending'
    settings = request.app.state.get_settings()
    snapshot = request.app.state.dashboard_service.load()
    page = render_dashboard(
        _sorted_rows(snapshot, sort, direction),
        sort_key=sort,
        direction=direction,
        last_update=snapshot["last_update"],
        error=snapshot["error"],
        refresh_sec=settings.DASHBOARD_REFRESH_SEC,
    )
    return HTMLResponse(page, headers={'Cache-Control': 'no-store'})


@router.get('/api/quotes')
def get_quotes(request: Request, sort: str = 'weight', direction: str = 'descending'):
    if direction not in _DIRECTIONS:
        raise HTTPException(status_code=400, detail='INVALID_DIRECTION')
    snapshot = request.app.state.dashboard_service.load()
    return [row.model_dump() for row in _sorted_rows(snapshot, sort, direction)]


@router.get('/api/weights', response_class=PlainTextResponse)
def get_weights(request: Request):
    client = request.app.state.weights_client
    try:
        weights = client.fetch_weights()
    except WeightsScrapeError as exc:
        print(f"[API][weights_error] error={exc}", flush=True)
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    return PlainTextResponse(format_weights(weights))


@router.get('/api/{symbol}', response_class=PlainTextResponse)
def get_price(symbol: str, request: Request):
    service = request.app.state.price_service
    try:
        price = service.get_price(symbol)
    except TradevillePricesError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
    return Response(content=json.dumps(price), media_type='text/plain')
