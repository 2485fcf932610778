from __future__ import annotations

import math
from typing import Any, Optional

import requests
from bs4 import BeautifulSoup

from tradeville_prices.errors import WeightsScrapeError
from tradeville_prices.schemas.quote import IndexWeight

_HEADER_TOKENS = ("Pondere", "Simbol")

_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


def _parse_percent(text: str) -> float:
    value = float(text.strip().replace(",", "."))
    if not math.isfinite(value):
        raise ValueError(f"non-finite weight: {text!r}")
    return value


def parse_weights(html: str) -> list[IndexWeight]:
    """Extract index weights (as fractions) from the BVB indices profile page."""
    soup = BeautifulSoup(html, "html.parser")

    target = None
    for table in soup.find_all("table"):
        markup = table.decode_contents()
        if all(token in markup for token in _HEADER_TOKENS):
            target = table
            break
    if target is None:
        raise WeightsScrapeError("weights table not found")

    weights: list[IndexWeight] = []
    for row in target.find_all("tr")[1:]:
        cells = row.find_all("td")
        if not cells:
            continue
        symbol = cells[0].get_text(strip=True)
        try:
            percent = _parse_percent(cells[-1].get_text())
        except ValueError:
            continue
        if not symbol:
            continue
        weights.append(IndexWeight(symbol=symbol, weight=percent / 100))

    if not weights:
        raise WeightsScrapeError("no weights found in the page")

    weights.sort(key=lambda w: w.weight, reverse=True)
    return weights


def format_weights(weights: list[IndexWeight]) -> str:
    return "\n".join(f"{w.symbol}, {w.weight:.8f}" for w in weights)


class BvbWeightsClient:
    """Fetches BET constituent weights from the public BVB page."""

    def __init__(
        self,
        url: str = "https://bvb.ro/financialinstruments/indices/indicesprofiles",
        session: Optional[Any] = None,
        timeout_sec: float = 10.0,
    ) -> None:
        self.url = url
        self.session = session or requests
        self.timeout_sec = timeout_sec

    def fetch_html(self) -> str:
        try:
            response = self.session.get(self.url, headers=_BROWSER_HEADERS, timeout=self.timeout_sec)
            response.raise_for_status()
        except requests.RequestException as exc:
            print(f"[WEIGHTS][fetch_error] url={self.url} error={exc}", flush=True)
            raise WeightsScrapeError(f"failed to fetch BVB data: {exc}") from exc
        return response.text

    def fetch_weights(self) -> list[IndexWeight]:
        weights = parse_weights(self.fetch_html())
        print(f"[WEIGHTS][fetched] count={len(weights)}", flush=True)
        return weights
