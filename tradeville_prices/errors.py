class TradevillePricesError(Exception):
    status_code = 500
    detail = "INTERNAL_ERROR"


class InvalidSymbolError(TradevillePricesError):
    status_code = 400
    detail = "INVALID_SYMBOL"


class SymbolNotFoundError(TradevillePricesError):
    status_code = 404
    detail = "SYMBOL_NOT_FOUND"


class UpstreamConnectionError(TradevillePricesError):
    status_code = 500
    detail = "UPSTREAM_CONNECTION_FAILED"


class UpstreamInternalError(TradevillePricesError):
    """Malformed or rejected vendor reply on the final attempt."""

    status_code = 500
    detail = "UPSTREAM_INTERNAL_ERROR"


class UpstreamTimeoutError(TradevillePricesError):
    status_code = 504
    detail = "UPSTREAM_TIMEOUT"


class WeightsScrapeError(TradevillePricesError):
    status_code = 500
    detail = "WEIGHTS_FETCH_FAILED"
