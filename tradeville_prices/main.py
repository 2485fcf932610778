from __future__ import annotations

from fastapi import FastAPI

from tradeville_prices.api.routes import router
from tradeville_prices.config.settings import get_settings
from tradeville_prices.integrations.bvb_weights import BvbWeightsClient
from tradeville_prices.integrations.tradeville_ws import TradevilleWsClient
from tradeville_prices.services.dashboard import DashboardService
from tradeville_prices.services.price_service import PriceService


def _bind_runtime_clients(app: FastAPI) -> None:
    settings = app.state.get_settings()
    ws_client = TradevilleWsClient.from_settings(settings)
    weights_client = BvbWeightsClient(url=settings.BVB_WEIGHTS_URL)

    app.state.ws_client = ws_client
    app.state.weights_client = weights_client
    app.state.price_service = PriceService.from_settings(settings, ws_client=ws_client)
    app.state.dashboard_service = DashboardService.from_settings(
        settings,
        ws_client=ws_client,
        weights_client=weights_client,
    )


app = FastAPI(title="Tradeville Prices", version="0.1.0")
app.include_router(router)

app.state.get_settings = get_settings
_bind_runtime_clients(app)
