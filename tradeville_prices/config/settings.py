import os
from functools import lru_cache

from pydantic import BaseModel, field_validator

BET_SYMBOLS = [
    "TLV", "H2O", "SNP", "SNG", "BRD", "SNN", "TGN", "EL", "DIGI", "M",
    "ONE", "TTS", "TRP", "FP", "AQ", "WINE", "ATB", "TEL", "SFG", "PE",
]


def _env_bool(name: str, default: str) -> str:
    return os.getenv(name, default).strip().lower()


class Settings(BaseModel):
    TRADEVILLE_WS_URL: str = "wss://api.tradeville.ro:443"
    TRADEVILLE_WS_SUBPROTOCOL: str = "apitv"
    TRADEVILLE_USER: str = "!DemoAPITDV"
    TRADEVILLE_PASSWORD: str = "DemoAPITDV"
    TRADEVILLE_DEMO: bool = True
    TRADEVILLE_MARKET: str = "REGS"

    QUOTE_MAX_ATTEMPTS: int = 10
    QUOTE_ATTEMPT_TIMEOUT_SEC: float = 10.0
    QUOTE_RETRY_DELAY_SEC: float = 1.0
    QUOTE_RETRY_NOT_FOUND: bool = True

    BVB_WEIGHTS_URL: str = "https://bvb.ro/financialinstruments/indices/indicesprofiles"

    DASHBOARD_SYMBOLS: list[str] = BET_SYMBOLS
    DASHBOARD_REFRESH_SEC: int = 300
    DASHBOARD_MAX_RECONNECTS: int = 3
    DASHBOARD_RECONNECT_DELAY_SEC: float = 2.0
    DASHBOARD_SESSION_TIMEOUT_SEC: float = 15.0

    @field_validator("QUOTE_MAX_ATTEMPTS")
    @classmethod
    def _attempts_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("QUOTE_MAX_ATTEMPTS must be >= 1")
        return value

    @field_validator("QUOTE_ATTEMPT_TIMEOUT_SEC", "DASHBOARD_SESSION_TIMEOUT_SEC", "DASHBOARD_REFRESH_SEC")
    @classmethod
    def _timeout_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be > 0")
        return value

    @field_validator("QUOTE_RETRY_DELAY_SEC", "DASHBOARD_RECONNECT_DELAY_SEC", "DASHBOARD_MAX_RECONNECTS")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("delays and reconnect counts must be >= 0")
        return value

    @classmethod
    def from_env(cls) -> "Settings":
        raw_symbols = os.getenv("DASHBOARD_SYMBOLS", "")
        symbols = [s.strip().upper() for s in raw_symbols.split(",") if s.strip()]
        if not symbols:
            symbols = list(BET_SYMBOLS)

        values = {
            "TRADEVILLE_DEMO": _env_bool("TRADEVILLE_DEMO", "true"),
            "QUOTE_RETRY_NOT_FOUND": _env_bool("QUOTE_RETRY_NOT_FOUND", "true"),
            "DASHBOARD_SYMBOLS": symbols,
        }
        for name in (
            "TRADEVILLE_WS_URL",
            "TRADEVILLE_WS_SUBPROTOCOL",
            "TRADEVILLE_USER",
            "TRADEVILLE_PASSWORD",
            "TRADEVILLE_MARKET",
            "QUOTE_MAX_ATTEMPTS",
            "QUOTE_ATTEMPT_TIMEOUT_SEC",
            "QUOTE_RETRY_DELAY_SEC",
            "BVB_WEIGHTS_URL",
            "DASHBOARD_REFRESH_SEC",
            "DASHBOARD_MAX_RECONNECTS",
            "DASHBOARD_RECONNECT_DELAY_SEC",
            "DASHBOARD_SESSION_TIMEOUT_SEC",
        ):
            raw = os.getenv(name)
            if raw is not None:
                values[name] = raw

        return cls.model_validate(values)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
