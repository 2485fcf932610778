from __future__ import annotations

import html
import json
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict

from tradeville_prices.errors import WeightsScrapeError
from tradeville_prices.integrations.bvb_weights import BvbWeightsClient
from tradeville_prices.integrations.tradeville_ws import (
    TradevilleWsClient,
    has_symbol_record,
    parse_reply,
    parse_symbol_data,
)
from tradeville_prices.schemas.quote import SymbolQuote

SORT_KEYS = ("symbol", "name", "price", "change", "bid", "ask", "volume", "day_min", "day_max", "weight")

_COLUMNS = [
    ("symbol", "Symbol"),
    ("name", "Name"),
    ("price", "Price"),
    ("change", "Change %"),
    ("bid", "Bid"),
    ("ask", "Ask"),
    ("volume", "Volume"),
    ("day_min", "Day Min"),
    ("day_max", "Day Max"),
    ("weight", "Weight %"),
]


class _Connection:
    def __init__(self) -> None:
        self.active = True
        self.complete = False
        self.clean = False
        self.done = threading.Event()
        self.ws_app: Any = None


class DashboardSession:
    """One long-lived socket that collects a quote for every dashboard symbol."""

    def __init__(
        self,
        ws_client: TradevilleWsClient,
        symbols: list[str],
        *,
        weights: Dict[str, float] | None = None,
        max_reconnects: int = 3,
        reconnect_delay_sec: float = 2.0,
        timeout_sec: float = 15.0,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ws_client = ws_client
        self.symbols = [s.upper() for s in symbols]
        self.expected = set(self.symbols)
        self.weights = weights or {}
        self.max_reconnects = max_reconnects
        self.reconnect_delay_sec = reconnect_delay_sec
        self.timeout_sec = timeout_sec
        self.sleep_fn = sleep_fn
        self.quotes: Dict[str, SymbolQuote] = {}
        self.reconnect_count = 0
        self.last_error: str | None = None
        self._received: set[str] = set()
        self._lock = threading.Lock()

    def _send(self, ws: Any, message: dict) -> None:
        try:
            ws.send(json.dumps(message))
        except Exception as exc:
            print(f"[DASH][send_error] error={exc}", flush=True)

    def _update_quote(self, data: dict) -> str:
        fields = parse_symbol_data(data)
        symbol = fields["symbol"]
        quote = SymbolQuote(**fields, weight=self.weights.get(symbol, 0.0))
        with self._lock:
            self.quotes[symbol] = quote
            self._received.add(symbol)
        return symbol

    def _connect_once(self, timeout_sec: float) -> bool:
        conn = _Connection()

        def _on_open(ws: Any) -> None:
            if not conn.active:
                return
            with self._lock:
                self._received.clear()
            self._send(ws, self.ws_client.build_login_message())

        def _on_message(ws: Any, raw_message: Any) -> None:
            if not conn.active:
                return
            try:
                reply = parse_reply(raw_message)
                if reply["cmd"] == "login" and reply.get("OK"):
                    for symbol in self.symbols:
                        self._send(ws, self.ws_client.build_symbol_message(symbol))
                elif reply["cmd"] == "Symbol" and has_symbol_record(reply.get("data")):
                    self._update_quote(reply["data"])
                    if self.expected <= self._received:
                        conn.complete = True
                        conn.done.set()
            except ValueError as exc:
                print(f"[DASH][message_skip] reason={exc}", flush=True)

        def _on_error(_: Any, error: Any) -> None:
            if not conn.active:
                return
            self.last_error = str(error)
            print(f"[DASH][ws_error] {self.last_error}", flush=True)
            conn.done.set()

        def _on_close(_: Any, code: Any, reason: Any) -> None:
            if not conn.active:
                return
            conn.clean = conn.complete or code == 1000
            print(f"[DASH][ws_close] code={code} reason={reason} complete={conn.complete}", flush=True)
            conn.done.set()

        try:
            conn.ws_app = self.ws_client.open_session(
                on_open=_on_open,
                on_message=_on_message,
                on_error=_on_error,
                on_close=_on_close,
            )
            self.ws_client.start_session(conn.ws_app, name="tradeville-dashboard")
        except Exception as exc:
            self.last_error = str(exc)
            print(f"[DASH][connect_error] {self.last_error}", flush=True)
            return False

        if not conn.done.wait(timeout_sec):
            self.last_error = "timeout"
            print("[DASH][timeout] closing session", flush=True)
        conn.active = False
        conn.ws_app.close()
        return conn.complete or conn.clean

    def run(self) -> Dict[str, SymbolQuote]:
        deadline = time.monotonic() + self.timeout_sec
        print(f"[DASH][session_start] symbols={len(self.symbols)}", flush=True)

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            if self._connect_once(remaining):
                break
            if self.reconnect_count >= self.max_reconnects:
                break
            self.reconnect_count += 1
            print(
                f"[DASH][reconnect] attempt={self.reconnect_count}/{self.max_reconnects} "
                f"delay={self.reconnect_delay_sec}",
                flush=True,
            )
            self.sleep_fn(self.reconnect_delay_sec)

        print(
            f"[DASH][session_end] received={len(self.quotes)}/{len(self.expected)} "
            f"reconnects={self.reconnect_count} last_error={self.last_error}",
            flush=True,
        )
        return dict(self.quotes)


class DashboardService:
    """Loads the symbol list and weights, then runs one session per page load."""

    def __init__(
        self,
        *,
        ws_client: TradevilleWsClient,
        weights_client: BvbWeightsClient,
        fallback_symbols: list[str],
        max_reconnects: int = 3,
        reconnect_delay_sec: float = 2.0,
        session_timeout_sec: float = 15.0,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ws_client = ws_client
        self.weights_client = weights_client
        self.fallback_symbols = list(fallback_symbols)
        self.max_reconnects = max_reconnects
        self.reconnect_delay_sec = reconnect_delay_sec
        self.session_timeout_sec = session_timeout_sec
        self.sleep_fn = sleep_fn

    @classmethod
    def from_settings(
        cls, settings: Any, *, ws_client: TradevilleWsClient, weights_client: BvbWeightsClient
    ) -> "DashboardService":
        return cls(
            ws_client=ws_client,
            weights_client=weights_client,
            fallback_symbols=settings.DASHBOARD_SYMBOLS,
            max_reconnects=settings.DASHBOARD_MAX_RECONNECTS,
            reconnect_delay_sec=settings.DASHBOARD_RECONNECT_DELAY_SEC,
            session_timeout_sec=settings.DASHBOARD_SESSION_TIMEOUT_SEC,
        )

    def load(self) -> dict:
        try:
            index_weights = self.weights_client.fetch_weights()
            symbols = [w.symbol.upper() for w in index_weights]
            weights = {w.symbol.upper(): w.weight * 100 for w in index_weights}
        except WeightsScrapeError as exc:
            print(f"[DASH][weights_fallback] error={exc}", flush=True)
            symbols = list(self.fallback_symbols)
            weights = {}

        session = DashboardSession(
            self.ws_client,
            symbols,
            weights=weights,
            max_reconnects=self.max_reconnects,
            reconnect_delay_sec=self.reconnect_delay_sec,
            timeout_sec=self.session_timeout_sec,
            sleep_fn=self.sleep_fn,
        )
        quotes = session.run()

        error = None
        if session.last_error and len(quotes) < len(session.expected):
            error = "Connection error occurred"

        return {
            "symbols": symbols,
            "quotes": quotes,
            "weights": weights,
            "error": error,
            "last_update": datetime.now().strftime("%Y-%m-%d %H:%M:%S") if quotes else None,
        }


def _sort_value(row: SymbolQuote, key: str) -> Any:
    if key == "change":
        return row.change_pct
    return getattr(row, key)


def sort_quotes(
    symbols: list[str],
    quotes: Dict[str, SymbolQuote],
    weights: Dict[str, float],
    *,
    key: str = "weight",
    direction: str = "descending",
) -> list[SymbolQuote]:
    """Rows for every listed symbol, placeholders where no quote arrived."""
    rows = [quotes.get(s) or SymbolQuote(symbol=s, weight=weights.get(s, 0.0)) for s in symbols]
    if key not in SORT_KEYS:
        return rows
    return sorted(rows, key=lambda r: _sort_value(r, key), reverse=direction == "descending")


def _fmt(value: Any) -> str:
    return html.escape(str(value)) if value is not None else ""


def _header_cell(key: str, label: str, sort_key: str, direction: str) -> str:
    next_direction = "ascending"
    arrow = ""
    if key == sort_key:
        arrow = " &uarr;" if direction == "ascending" else " &darr;"
        if direction == "ascending":
            next_direction = "descending"
    aria = direction if key == sort_key else "none"
    return (
        f'<th scope="col" aria-sort="{aria}">'
        f'<a href="/?sort={key}&amp;direction={next_direction}">{label}{arrow}</a></th>'
    )


def _row_html(row: SymbolQuote) -> str:
    change = row.change_pct
    change_class = "positive" if change > 0 else "negative" if change < 0 else ""
    symbol = _fmt(row.symbol)
    return (
        "<tr>"
        f'<td><a href="/api/{symbol}" target="_blank" rel="noopener noreferrer">{symbol}</a></td>'
        f"<td>{_fmt(row.name)}</td>"
        f"<td>{row.price:.2f} {_fmt(row.currency)}</td>"
        f'<td class="{change_class}">{change:.2f}%</td>'
        f"<td>{row.bid:.2f}</td>"
        f"<td>{row.ask:.2f}</td>"
        f"<td>{row.volume:.0f}</td>"
        f"<td>{row.day_min:.2f}</td>"
        f"<td>{row.day_max:.2f}</td>"
        f"<td>{row.weight:.2f}%</td>"
        "</tr>"
    )


def render_dashboard(
    rows: list[SymbolQuote],
    *,
    sort_key: str = "weight",
    direction: str = "descending",
    last_update: str | None = None,
    error: str | None = None,
    refresh_sec: int = 300,
) -> str:
    header = "".join(_header_cell(key, label, sort_key, direction) for key, label in _COLUMNS)
    body = "".join(_row_html(r) for r in rows) or '<tr><td colspan="10">Loading data...</td></tr>'
    status = f'<p class="sub" role="status">Last updated: {_fmt(last_update)}</p>' if last_update else ""
    alert = f'<p class="error" role="alert">{_fmt(error)}</p>' if error else ""
    return f"""<!doctype html><html lang="en"><head><meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta http-equiv="refresh" content="{int(refresh_sec)}">
<title>Tradeville Stock Prices - Real-time BVB Stock Market Data</title>
<style>
 body{{font-family:system-ui,-apple-system,Segoe UI,Roboto,Ubuntu,Arial,sans-serif;margin:24px}}
 table{{width:100%;border-collapse:collapse;margin-top:12px}}
 th,td{{border-bottom:1px solid #ddd;padding:8px;text-align:left;font-size:14px}}
 th a{{color:inherit;text-decoration:none}}
 .positive{{color:#1a7f37}}
 .negative{{color:#cf222e}}
 .error{{color:#cf222e}}
 .sub{{color:#6e7781;font-size:.9rem}}
 pre{{background:#f6f8fa;padding:8px}}
</style>
</head><body>
<h1>BET Index Stock Data</h1>
{status}{alert}
<table aria-label="BET Index Stocks">
  <thead><tr>{header}</tr></thead>
  <tbody>{body}</tbody>
</table>
<h2>API Integration</h2>
<h3>Stock Price Endpoint:</h3>
<pre><code>GET /api/[symbol]</code></pre>
<p>Returns just the price number, e.g. <code>0.523</code>.</p>
<h3>BET Index Weights Endpoint:</h3>
<pre><code>GET /api/weights</code></pre>
<pre><code>SNP, 0.33000000
TLV, 0.19800000</code></pre>
<h3>Google Sheets Formulas:</h3>
<pre><code>=IMPORTDATA("https://your-host/api/SNP")
=IMPORTDATA("https://your-host/api/weights")</code></pre>
<p class="sub">Data provided by <a href="https://api.tradeville.ro">TradeVille API</a></p>
</body></html>"""
