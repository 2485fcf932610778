import json
import unittest

from tradeville_fakes import FakeUpstream, NOT_FOUND_REPLY, symbol_reply

from tradeville_prices.errors import (
    InvalidSymbolError,
    SymbolNotFoundError,
    UpstreamConnectionError,
    UpstreamInternalError,
    UpstreamTimeoutError,
)
from tradeville_prices.integrations.tradeville_ws import TradevilleWsClient
from tradeville_prices.services.price_service import (
    PendingRequest,
    PriceAttempt,
    PriceService,
    normalize_symbol,
)


def _service(upstream, *, max_attempts=10, timeout=0.5, retry_not_found=True, sleeps=None):
    sleeps = [] if sleeps is None else sleeps
    return PriceService(
        ws_client=TradevilleWsClient(websocket_app_factory=upstream),
        max_attempts=max_attempts,
        attempt_timeout_sec=timeout,
        retry_delay_sec=1.0,
        retry_not_found=retry_not_found,
        sleep_fn=lambda sec: sleeps.append(sec),
    )


class TestPriceServiceHappyPath(unittest.TestCase):
    def test_returns_vendor_price_and_speaks_vendor_protocol(self):
        upstream = FakeUpstream({"reply": symbol_reply("SNP", Price=0.523)})

        price = _service(upstream).get_price("snp")

        self.assertEqual(price, 0.523)
        self.assertEqual(len(upstream.apps), 1)
        app = upstream.apps[0]
        self.assertEqual(app.url, "wss://api.tradeville.ro:443")
        self.assertEqual(app.subprotocols, ["apitv"])
        login, request = app.sent_payloads()
        self.assertEqual(
            login,
            {"cmd": "login", "prm": {"coduser": "!DemoAPITDV", "parola": "DemoAPITDV", "demo": True}},
        )
        self.assertEqual(request, {"cmd": "Symbol", "prm": {"symbol": "SNP", "market": "REGS"}})
        self.assertEqual(app.close_calls, 1)

    def test_falls_back_to_last_price_when_price_missing(self):
        upstream = FakeUpstream({"reply": symbol_reply("TLV", LastPrice=31.5)})
        self.assertEqual(_service(upstream).get_price("TLV"), 31.5)

    def test_null_price_uses_last_price(self):
        upstream = FakeUpstream({"reply": symbol_reply("TLV", Price=None, LastPrice=30)})
        self.assertEqual(_service(upstream).get_price("TLV"), 30)

    def test_zero_price_is_kept(self):
        upstream = FakeUpstream({"reply": symbol_reply("TLV", Price=0, LastPrice=30)})
        self.assertEqual(_service(upstream).get_price("TLV"), 0)

    def test_record_without_any_price_returns_zero(self):
        upstream = FakeUpstream({"reply": symbol_reply("TLV")})
        self.assertEqual(_service(upstream).get_price("TLV"), 0)

    def test_recovers_after_transient_failures(self):
        sleeps = []
        upstream = FakeUpstream(
            {"refuse": True},
            {"silent": True},
            {"reply": symbol_reply("BRD", Price=19.2)},
        )

        price = _service(upstream, timeout=0.05, sleeps=sleeps).get_price("BRD")

        self.assertEqual(price, 19.2)
        self.assertEqual(len(upstream.apps), 3)
        self.assertEqual(sleeps, [1.0, 1.0])


class TestPriceServiceTerminalFailures(unittest.TestCase):
    def test_not_found_only_after_attempt_budget_is_exhausted(self):
        sleeps = []
        upstream = FakeUpstream({"reply": NOT_FOUND_REPLY})

        with self.assertRaises(SymbolNotFoundError):
            _service(upstream, max_attempts=4, sleeps=sleeps).get_price("XYZ")

        self.assertEqual(len(upstream.apps), 4)
        # delay between attempts only, never after the last one
        self.assertEqual(sleeps, [1.0, 1.0, 1.0])

    def test_not_found_settles_immediately_when_retry_disabled(self):
        upstream = FakeUpstream({"reply": {"cmd": "Symbol", "data": {"Symbol": []}}})

        with self.assertRaises(SymbolNotFoundError):
            _service(upstream, retry_not_found=False).get_price("XYZ")

        self.assertEqual(len(upstream.apps), 1)

    def test_persistent_connection_errors_use_exactly_the_attempt_budget(self):
        upstream = FakeUpstream({"refuse": True})

        with self.assertRaises(UpstreamConnectionError):
            _service(upstream, max_attempts=10).get_price("SNP")

        self.assertEqual(len(upstream.apps), 10)

    def test_persistent_timeouts_raise_timeout_and_close_every_socket(self):
        upstream = FakeUpstream({"silent": True})

        with self.assertRaises(UpstreamTimeoutError) as ctx:
            _service(upstream, max_attempts=3, timeout=0.02).get_price("SNP")

        self.assertEqual(ctx.exception.status_code, 504)
        self.assertEqual(len(upstream.apps), 3)
        self.assertEqual([a.close_calls for a in upstream.apps], [1, 1, 1])

    def test_final_failure_kind_decides_the_error(self):
        upstream = FakeUpstream({"silent": True}, {"refuse": True})

        with self.assertRaises(UpstreamConnectionError):
            _service(upstream, max_attempts=2, timeout=0.02).get_price("SNP")

    def test_login_rejection_is_retried_then_internal_error(self):
        upstream = FakeUpstream({"login_ok": False})

        with self.assertRaises(UpstreamInternalError):
            _service(upstream, max_attempts=2).get_price("SNP")

        self.assertEqual(len(upstream.apps), 2)
        # no symbol request after a rejected login
        self.assertEqual(len(upstream.apps[0].sent_messages), 1)

    def test_malformed_reply_counts_as_attempt_failure(self):
        upstream = FakeUpstream({"raw_login": "not-json"}, {"reply": symbol_reply("SNP", Price=1.5)})

        self.assertEqual(_service(upstream).get_price("SNP"), 1.5)
        self.assertEqual(len(upstream.apps), 2)

    def test_factory_failure_is_a_connection_error(self):
        def broken_factory(*args, **kwargs):
            raise OSError("dns failure")

        service = PriceService(
            ws_client=TradevilleWsClient(websocket_app_factory=broken_factory),
            max_attempts=2,
            attempt_timeout_sec=0.5,
            sleep_fn=lambda _sec: None,
        )

        with self.assertRaises(UpstreamConnectionError):
            service.get_price("SNP")

    def test_invalid_symbol_never_opens_a_socket(self):
        upstream = FakeUpstream({"reply": symbol_reply("SNP", Price=1.0)})

        for bad in ("", "SN-P", "ABCDEFGHIJK", "SNP;DROP"):
            with self.assertRaises(InvalidSymbolError):
                _service(upstream).get_price(bad)

        self.assertEqual(upstream.apps, [])

    def test_service_rejects_empty_attempt_budget(self):
        with self.assertRaises(ValueError):
            PriceService(ws_client=TradevilleWsClient(), max_attempts=0)


class TestSettlementExactlyOnce(unittest.TestCase):
    def test_reply_after_timeout_is_ignored(self):
        upstream = FakeUpstream({"hold_symbol": True})
        attempt = PriceAttempt(TradevilleWsClient(websocket_app_factory=upstream), "snp")

        result = attempt.run(0.05)

        self.assertEqual(result["status"], "timeout")
        app = upstream.apps[0]
        app.on_message(app, json.dumps(symbol_reply("SNP", Price=0.523)))
        app.on_error(app, RuntimeError("late error"))
        app.on_close(app, 1000, "bye")
        self.assertEqual(attempt._result, result)
        self.assertEqual(attempt.state, "SETTLED")

    def test_close_is_idempotent(self):
        upstream = FakeUpstream({"reply": symbol_reply("SNP", Price=2.0)})
        attempt = PriceAttempt(TradevilleWsClient(websocket_app_factory=upstream), "SNP")

        attempt.run(0.5)
        attempt.close()
        attempt.close()

        self.assertEqual(upstream.apps[0].close_calls, 1)

    def test_symbol_reply_before_login_is_skipped(self):
        attempt = PriceAttempt(TradevilleWsClient(), "SNP")

        attempt._on_message(None, json.dumps(symbol_reply("SNP", Price=2.0)))

        self.assertFalse(attempt.finished)
        self.assertEqual(attempt.state, "CONNECTING")

    def test_pending_request_settles_once(self):
        pending = PendingRequest("SNP", max_attempts=3)

        self.assertTrue(pending.settle(price=1.0))
        self.assertFalse(pending.settle(error=UpstreamTimeoutError("late")))
        self.assertEqual(pending.outcome(), 1.0)

    def test_unsettled_pending_request_has_no_outcome(self):
        with self.assertRaises(RuntimeError):
            PendingRequest("SNP", max_attempts=1).outcome()


class TestNormalizeSymbol(unittest.TestCase):
    def test_accepts_alphanumeric_case_insensitive(self):
        self.assertEqual(normalize_symbol("snp"), "SNP")
        self.assertEqual(normalize_symbol("H2O"), "H2O")
        self.assertEqual(normalize_symbol("ABCDEFGHIJ"), "ABCDEFGHIJ")


if __name__ == "__main__":
    unittest.main()
