# market_sources/alpha_vantage.py
from __future__ import annotations
import logging
from datetime import date, datetime
from typing import Optional, Tuple, Dict

import requests

from .base import (
    NOT_FOUND,
    RATE_LIMITED,
    NETWORK_ERROR,
    PARSE_ERROR,
    UNSUPPORTED,
    DividendHistory,
    HistoryPoint,
    NormalizedQuote,
    PriceHistory,
    RawDividend,
    sort_points,
)

log = logging.getLogger("market-gateway")

ALPHA_URL = "https://www.alphavantage.co/query"
DEMO_KEY = "demo"

# compact output covers roughly the last 100 trading days
COMPACT_SPAN_DAYS = 140


def _f(x):
    """Coerce to float or None (handles '', None, 'None')."""
    try:
        return None if x in (None, "", "None") else float(x)
    except Exception:
        return None


def _i(x):
    """Coerce to int or None via float first (handles '', None, 'None')."""
    try:
        return None if x in (None, "", "None") else int(float(x))
    except Exception:
        return None


def _day(x) -> Optional[date]:
    try:
        return datetime.strptime(str(x).strip(), "%Y-%m-%d").date()
    except Exception:
        return None


class AlphaVantageProvider:
    """
    Alpha Vantage provider (secondary source).

    Rules:
      - Never invent values. If a field is unavailable, leave it as None.
      - Throttling shows up as a "Note"/"Information" body, not an HTTP status.
        It is reported as "rate_limited" but only counts against this provider:
        the free key quota is per key, not per process.
      - Without ALPHA_VANTAGE_KEY the public demo key is used. Its notice for
        symbols outside the demo set is reported as "unsupported".
    """
    name = "alpha_vantage"
    trips_breaker = False

    def __init__(self, api_key: Optional[str] = None, timeout: int = 12):
        self.api_key = (api_key or "").strip() or DEMO_KEY
        self.timeout = timeout

    def is_ready(self) -> bool:
        return bool(self.api_key)

    # ---- internal helpers ----
    def _get(self, params: Dict) -> Tuple[Optional[dict], Optional[str]]:
        try:
            r = requests.get(ALPHA_URL, params={**params, "apikey": self.api_key}, timeout=self.timeout)
            r.raise_for_status()
        except Exception as e:
            log.warning(f"Alpha Vantage {params.get('function')} failed: {e}")
            return None, NETWORK_ERROR
        try:
            j = r.json()
        except ValueError:
            return None, RATE_LIMITED

        if isinstance(j, dict) and "Information" in j and self.api_key == DEMO_KEY:
            # demo key only serves Alpha Vantage's sample symbols
            return None, UNSUPPORTED
        if isinstance(j, dict) and ("Note" in j or "Information" in j):
            return None, RATE_LIMITED
        if isinstance(j, dict) and "Error Message" in j:
            return None, NOT_FOUND
        return j, None

    def _overview(self, symbol: str) -> Dict:
        """Company name/currency; best-effort, never fails the caller."""
        j, err = self._get({"function": "OVERVIEW", "symbol": symbol})
        if err or not isinstance(j, dict):
            return {}
        return j

    def _daily_closes(self, symbol: str, start: date, end: date) -> Tuple[Optional[list], Optional[str]]:
        size = "full" if (end - start).days > COMPACT_SPAN_DAYS else "compact"
        j, err = self._get({"function": "TIME_SERIES_DAILY", "symbol": symbol, "outputsize": size})
        if err:
            return None, err
        series = (j or {}).get("Time Series (Daily)") if isinstance(j, dict) else None
        if not isinstance(series, dict):
            return None, NOT_FOUND

        points = []
        for day_str, row in series.items():
            d = _day(day_str)
            close = _f((row or {}).get("4. close"))
            if d is None or close is None or d < start or d > end:
                continue
            points.append(HistoryPoint(date=d, close=close, volume=_i(row.get("5. volume"))))
        return sort_points(points), None

    # ---- provider protocol ----
    def get_quote(self, symbol: str) -> Tuple[Optional[NormalizedQuote], Optional[str]]:
        s = symbol.upper().strip()
        j, err = self._get({"function": "GLOBAL_QUOTE", "symbol": s})
        if err:
            return None, err
        q = (j or {}).get("Global Quote", {}) if isinstance(j, dict) else {}
        if not q:
            # Alpha Vantage answers unknown symbols with an empty "Global Quote"
            return None, NOT_FOUND
        price = _f(q.get("05. price"))
        if price is None:
            return None, PARSE_ERROR

        ov = self._overview(s)
        ltd = q.get("07. latest trading day")
        return NormalizedQuote(
            symbol=q.get("01. symbol", s),
            display_name=(ov.get("Name") or None),
            price=price,
            currency=(ov.get("Currency") or None),
            as_of=f"{ltd}T00:00:00+00:00" if _day(ltd) else None,
        ), None

    def get_history(self, symbol: str, start: date, end: date) -> Tuple[Optional[PriceHistory], Optional[str]]:
        s = symbol.upper().strip()
        points, err = self._daily_closes(s, start, end)
        if err:
            return None, err
        if not points:
            return None, NOT_FOUND
        currency = self._overview(s).get("Currency") or None
        return PriceHistory(symbol=s, currency=currency, points=points), None

    def get_dividends(self, symbol: str, start: date, end: date) -> Tuple[Optional[DividendHistory], Optional[str]]:
        s = symbol.upper().strip()
        j, err = self._get({"function": "DIVIDENDS", "symbol": s})
        if err:
            return None, err
        rows = (j or {}).get("data") if isinstance(j, dict) else None
        if not isinstance(rows, list):
            return None, PARSE_ERROR

        currency = self._overview(s).get("Currency") or None
        events = []
        for row in rows:
            d = _day((row or {}).get("ex_dividend_date"))
            # undated rows are kept so enrichment can flag them
            if d is not None and (d < start or d > end):
                continue
            events.append(RawDividend(date=d, amount_per_share=_f(row.get("amount")), currency=currency))
        if not events:
            return None, NOT_FOUND

        prices, perr = self._daily_closes(s, start, end)
        if perr:
            log.info(f"Alpha Vantage closes unavailable for {s} ({perr}); dividends returned unpriced")
            prices = []
        return DividendHistory(symbol=s, currency=currency, events=events, prices=prices), None

    def get_fx_rate(self, base: str, quote: str) -> Tuple[Optional[float], Optional[str]]:
        j, err = self._get({
            "function": "CURRENCY_EXCHANGE_RATE",
            "from_currency": base.upper(),
            "to_currency": quote.upper(),
        })
        if err:
            return None, err
        block = (j or {}).get("Realtime Currency Exchange Rate", {}) if isinstance(j, dict) else {}
        rate = _f(block.get("5. Exchange Rate"))
        if rate is None or rate <= 0:
            return None, NOT_FOUND
        return rate, None
