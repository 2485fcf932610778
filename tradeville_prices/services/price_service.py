from __future__ import annotations

import json
import re
import threading
import time
from typing import Any, Callable, Dict

from tradeville_prices.errors import (
    InvalidSymbolError,
    SymbolNotFoundError,
    TradevillePricesError,
    UpstreamConnectionError,
    UpstreamInternalError,
    UpstreamTimeoutError,
)
from tradeville_prices.integrations.tradeville_ws import (
    TradevilleWsClient,
    extract_price,
    has_symbol_record,
    parse_reply,
)

_SYMBOL_RE = re.compile(r"^[A-Za-z0-9]{1,10}$")

_TERMINAL_ERRORS = {
    "timeout": UpstreamTimeoutError,
    "connection_error": UpstreamConnectionError,
    "internal_error": UpstreamInternalError,
}


def normalize_symbol(symbol: str) -> str:
    value = str(symbol or "").strip()
    if not _SYMBOL_RE.match(value):
        raise InvalidSymbolError(f"invalid symbol: {symbol!r}")
    return value.upper()


class PendingRequest:
    """Single unsettled outcome of one price request; settles exactly once."""

    def __init__(self, symbol: str, max_attempts: int) -> None:
        self.symbol = symbol
        self.max_attempts = max_attempts
        self.attempts = 0
        self.price: float | int | None = None
        self.error: TradevillePricesError | None = None
        self._settled = False
        self._lock = threading.Lock()

    @property
    def settled(self) -> bool:
        return self._settled

    @property
    def final_attempt(self) -> bool:
        return self.attempts >= self.max_attempts

    def settle(self, *, price: float | int | None = None, error: TradevillePricesError | None = None) -> bool:
        with self._lock:
            if self._settled:
                return False
            self._settled = True
            self.price = price
            self.error = error
        outcome = f"error={error.detail}" if error is not None else f"price={price}"
        print(f"[TV][settled] symbol={self.symbol} attempts={self.attempts} {outcome}", flush=True)
        return True

    def outcome(self) -> float | int:
        if not self._settled:
            raise RuntimeError("request is not settled")
        if self.error is not None:
            raise self.error
        return self.price


class PriceAttempt:
    """One Connecting -> Authenticating -> Requesting exchange on its own socket.

    Callbacks run on the websocket thread; the first one to produce a result
    wins and every later event (including a reply arriving after the timeout)
    is dropped.
    """

    def __init__(self, ws_client: TradevilleWsClient, symbol: str, *, attempt_no: int = 1) -> None:
        self.ws_client = ws_client
        self.symbol = symbol.upper()
        self.attempt_no = attempt_no
        self.state = "CONNECTING"
        self._ws_app: Any = None
        self._result: Dict[str, Any] | None = None
        self._closed = False
        self._done = threading.Event()
        self._lock = threading.Lock()

    @property
    def finished(self) -> bool:
        return self._result is not None

    def _finish(self, result: Dict[str, Any]) -> bool:
        with self._lock:
            if self._result is not None:
                return False
            self._result = result
            self.state = "SETTLED"
        self._done.set()
        return True

    def close(self) -> None:
        with self._lock:
            if self._closed or self._ws_app is None:
                return
            self._closed = True
            ws_app = self._ws_app
        ws_app.close()

    def _on_open(self, ws: Any) -> None:
        if self.finished:
            return
        self.state = "AUTHENTICATING"
        ws.send(json.dumps(self.ws_client.build_login_message()))

    def _on_message(self, ws: Any, raw_message: Any) -> None:
        if self.finished:
            return
        try:
            reply = parse_reply(raw_message)
            cmd = reply["cmd"]
            if cmd == "login":
                if not reply.get("OK"):
                    self._finish({"status": "internal_error", "reason": "login_rejected"})
                    return
                self.state = "REQUESTING"
                ws.send(json.dumps(self.ws_client.build_symbol_message(self.symbol)))
            elif cmd == "Symbol":
                if self.state != "REQUESTING":
                    print(f"[TV][reply_skip] symbol={self.symbol} reason=symbol_before_login", flush=True)
                    return
                data = reply.get("data")
                if has_symbol_record(data):
                    self._finish({"status": "ok", "price": extract_price(data)})
                else:
                    self._finish({"status": "not_found"})
        except ValueError as exc:
            self._finish({"status": "internal_error", "reason": str(exc)})

    def _on_error(self, _: Any, error: Any) -> None:
        if self._finish({"status": "connection_error", "reason": str(error)}):
            print(f"[TV][ws_error] symbol={self.symbol} attempt={self.attempt_no} {error}", flush=True)

    def _on_close(self, _: Any, code: Any, reason: Any) -> None:
        self._finish({"status": "connection_error", "reason": f"closed code={code} reason={reason}"})

    def run(self, timeout_sec: float) -> Dict[str, Any]:
        try:
            self._ws_app = self.ws_client.open_session(
                on_open=self._on_open,
                on_message=self._on_message,
                on_error=self._on_error,
                on_close=self._on_close,
            )
            self.ws_client.start_session(self._ws_app, name=f"tradeville-ws-{self.symbol}")
        except Exception as exc:
            self._finish({"status": "connection_error", "reason": str(exc)})

        if not self._done.wait(timeout_sec):
            self._finish({"status": "timeout", "reason": f"no reply within {timeout_sec}s"})

        self.close()
        return self._result


class PriceService:
    """Bounded retry supervisor around :class:`PriceAttempt`."""

    def __init__(
        self,
        *,
        ws_client: TradevilleWsClient,
        max_attempts: int = 10,
        attempt_timeout_sec: float = 10.0,
        retry_delay_sec: float = 1.0,
        retry_not_found: bool = True,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.ws_client = ws_client
        self.max_attempts = max_attempts
        self.attempt_timeout_sec = attempt_timeout_sec
        self.retry_delay_sec = retry_delay_sec
        self.retry_not_found = retry_not_found
        self.sleep_fn = sleep_fn

    @classmethod
    def from_settings(cls, settings: Any, *, ws_client: TradevilleWsClient) -> "PriceService":
        return cls(
            ws_client=ws_client,
            max_attempts=settings.QUOTE_MAX_ATTEMPTS,
            attempt_timeout_sec=settings.QUOTE_ATTEMPT_TIMEOUT_SEC,
            retry_delay_sec=settings.QUOTE_RETRY_DELAY_SEC,
            retry_not_found=settings.QUOTE_RETRY_NOT_FOUND,
        )

    def _resolve(self, pending: PendingRequest, result: Dict[str, Any]) -> None:
        status = result["status"]
        if status == "ok":
            pending.settle(price=result["price"])
            return

        if status == "not_found":
            if pending.final_attempt or not self.retry_not_found:
                pending.settle(error=SymbolNotFoundError(f"symbol not found: {pending.symbol}"))
                return
        elif pending.final_attempt:
            error_cls = _TERMINAL_ERRORS.get(status, UpstreamInternalError)
            pending.settle(error=error_cls(result.get("reason") or status))
            return

        print(
            f"[TV][attempt_failed] symbol={pending.symbol} attempt={pending.attempts}/{pending.max_attempts} "
            f"status={status} reason={result.get('reason')}",
            flush=True,
        )

    def get_price(self, symbol: str) -> float | int:
        pending = PendingRequest(normalize_symbol(symbol), self.max_attempts)

        while not pending.settled:
            pending.attempts += 1
            print(
                f"[TV][attempt_start] symbol={pending.symbol} attempt={pending.attempts}/{pending.max_attempts}",
                flush=True,
            )
            attempt = PriceAttempt(self.ws_client, pending.symbol, attempt_no=pending.attempts)
            self._resolve(pending, attempt.run(self.attempt_timeout_sec))
            if not pending.settled:
                self.sleep_fn(self.retry_delay_sec)

        return pending.outcome()
