from __future__ import annotations

import json
import threading
from typing import Any, Callable, Dict, Optional


def _first(data: Dict[str, Any], field_name: str) -> Any:
    values = data.get(field_name)
    if isinstance(values, list) and values:
        return values[0]
    return None


def _to_float_default(value: Any, default: float = 0.0) -> float:
    try:
        if value is None or value == "":
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_reply(payload: dict | str | bytes) -> Dict[str, Any]:
    """Decode one vendor reply frame into ``{cmd, OK?, data?}``."""
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")

    if isinstance(payload, str):
        try:
            decoded = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValueError("reply must be valid JSON") from exc
    elif isinstance(payload, dict):
        decoded = payload
    else:
        raise ValueError("reply must be dict or JSON string")

    if not isinstance(decoded, dict):
        raise ValueError("decoded reply must be an object")
    if not isinstance(decoded.get("cmd"), str):
        raise ValueError("missing cmd in reply")

    data = decoded.get("data")
    if data is not None and not isinstance(data, dict):
        raise ValueError("reply data must be an object")
    return decoded


def has_symbol_record(data: Optional[Dict[str, Any]]) -> bool:
    return isinstance(data, dict) and _first(data, "Symbol") not in (None, "")


def extract_price(data: Dict[str, Any]) -> float | int:
    """First non-null of Price[0], LastPrice[0]; 0 when both are absent."""
    for field_name in ("Price", "LastPrice"):
        value = _first(data, field_name)
        if value is None:
            continue
        if isinstance(value, bool):
            raise ValueError(f"invalid numeric value for {field_name}: {value!r}")
        if isinstance(value, (int, float)):
            return value
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"invalid numeric value for {field_name}: {value!r}") from exc
    return 0


def parse_symbol_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten the vendor's parallel single-element arrays into quote fields."""
    symbol = _first(data, "Symbol")
    if not symbol:
        raise ValueError("missing symbol in reply data")

    return {
        "symbol": str(symbol).upper(),
        "name": str(_first(data, "Name") or ""),
        "price": _to_float_default(_first(data, "Price")),
        "ref_price": _to_float_default(_first(data, "RefPrice")),
        "bid": _to_float_default(_first(data, "Bid")),
        "ask": _to_float_default(_first(data, "Ask")),
        "day_min": _to_float_default(_first(data, "DayMin")),
        "day_max": _to_float_default(_first(data, "DayMax")),
        "volume": _to_float_default(_first(data, "DayVolume")),
        "currency": str(_first(data, "Ccy") or ""),
    }


class TradevilleWsClient:
    """Builds vendor messages and opens one websocket session per caller."""

    def __init__(
        self,
        *,
        url: str = "wss://api.tradeville.ro:443",
        subprotocol: str = "apitv",
        user: str = "!DemoAPITDV",
        password: str = "DemoAPITDV",
        demo: bool = True,
        market: str = "REGS",
        websocket_app_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.url = url
        self.subprotocol = subprotocol
        self.user = user
        self.password = password
        self.demo = demo
        self.market = market
        self._websocket_app_factory = websocket_app_factory or self._default_websocket_app_factory

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "TradevilleWsClient":
        return cls(
            url=settings.TRADEVILLE_WS_URL,
            subprotocol=settings.TRADEVILLE_WS_SUBPROTOCOL,
            user=settings.TRADEVILLE_USER,
            password=settings.TRADEVILLE_PASSWORD,
            demo=settings.TRADEVILLE_DEMO,
            market=settings.TRADEVILLE_MARKET,
            **kwargs,
        )

    def _default_websocket_app_factory(self, *args: Any, **kwargs: Any) -> Any:
        from websocket import WebSocketApp

        return WebSocketApp(*args, **kwargs)

    def build_login_message(self) -> Dict[str, Any]:
        return {
            "cmd": "login",
            "prm": {
                "coduser": self.user,
                "parola": self.password,
                "demo": self.demo,
            },
        }

    def build_symbol_message(self, symbol: str) -> Dict[str, Any]:
        return {
            "cmd": "Symbol",
            "prm": {
                "symbol": symbol.upper(),
                "market": self.market,
            },
        }

    def open_session(
        self,
        *,
        on_open: Callable[[Any], None],
        on_message: Callable[[Any, Any], None],
        on_error: Callable[[Any, Any], None],
        on_close: Callable[[Any, Any, Any], None],
    ) -> Any:
        return self._websocket_app_factory(
            self.url,
            subprotocols=[self.subprotocol],
            on_open=on_open,
            on_message=on_message,
            on_error=on_error,
            on_close=on_close,
        )

    def start_session(self, ws_app: Any, *, name: str = "tradeville-ws") -> threading.Thread:
        worker = threading.Thread(target=ws_app.run_forever, daemon=True, name=name)
        worker.start()
        return worker
