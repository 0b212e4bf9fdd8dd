# market_sources/yahoo_chart.py
from __future__ import annotations
import logging
import math
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple, Dict, List

import requests

from .base import (
    NOT_FOUND,
    RATE_LIMITED,
    NETWORK_ERROR,
    PARSE_ERROR,
    DividendHistory,
    HistoryPoint,
    NormalizedQuote,
    PriceHistory,
    RawDividend,
    sort_points,
)

log = logging.getLogger("market-gateway")

CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"
HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "*/*",
}


def _f(x) -> Optional[float]:
    try:
        v = None if x is None else float(x)
    except Exception:
        return None
    return v if v is not None and math.isfinite(v) else None


def _i(x) -> Optional[int]:
    v = _f(x)
    return None if v is None else int(v)


def _epoch(d: date) -> int:
    return int(datetime(d.year, d.month, d.day, tzinfo=timezone.utc).timestamp())


def _utc_day(ts) -> Optional[date]:
    try:
        return datetime.fromtimestamp(int(ts), tz=timezone.utc).date()
    except Exception:
        return None


class YahooChartProvider:
    """
    Direct fetch of Yahoo's chart JSON, bypassing the yfinance library.

    When Yahoo throttles it serves an HTML error page where the JSON should be;
    a body that does not decode is reported as "rate_limited".
    """
    name = "yahoo_chart"
    trips_breaker = True

    def __init__(self, timeout: int = 12, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def _chart(self, symbol: str, params: Dict) -> Tuple[Optional[dict], Optional[str]]:
        url = CHART_URL.format(symbol=symbol)
        try:
            r = self.session.get(url, params=params, headers=HEADERS, timeout=self.timeout)
        except requests.RequestException as e:
            log.warning(f"Yahoo chart request failed for {symbol}: {e}")
            return None, NETWORK_ERROR

        if r.status_code == 404:
            return None, NOT_FOUND
        if r.status_code == 429:
            return None, RATE_LIMITED
        try:
            j = r.json()
        except ValueError:
            # throttle page, whatever status it came with
            log.warning(f"Yahoo chart returned a non-JSON body for {symbol} ({r.status_code})")
            return None, RATE_LIMITED
        if r.status_code // 100 != 2:
            log.warning(f"Yahoo chart non-2xx for {symbol}: {r.status_code}")
            return None, NETWORK_ERROR

        chart = (j or {}).get("chart") if isinstance(j, dict) else None
        if not isinstance(chart, dict):
            return None, PARSE_ERROR
        if chart.get("error"):
            code = str((chart["error"] or {}).get("code") or "")
            return None, NOT_FOUND if code.lower().replace(" ", "") == "notfound" else NETWORK_ERROR
        results = chart.get("result") or []
        if not results:
            return None, NOT_FOUND
        return results[0], None

    def _window(self, symbol: str, start: date, end: date, events: str = "") -> Tuple[Optional[dict], Optional[str]]:
        params = {
            "period1": _epoch(start),
            "period2": _epoch(end + timedelta(days=1)),
            "interval": "1d",
        }
        if events:
            params["events"] = events
        return self._chart(symbol, params)

    @staticmethod
    def _points(result: dict) -> List[HistoryPoint]:
        timestamps = result.get("timestamp") or []
        quotes = ((result.get("indicators") or {}).get("quote") or [{}])[0] or {}
        closes = quotes.get("close") or []
        volumes = quotes.get("volume") or []
        points = []
        for idx, ts in enumerate(timestamps):
            d = _utc_day(ts)
            close = _f(closes[idx]) if idx < len(closes) else None
            if d is None or close is None:
                continue
            volume = _i(volumes[idx]) if idx < len(volumes) else None
            points.append(HistoryPoint(date=d, close=close, volume=volume))
        return sort_points(points)

    # ---- provider protocol ----
    def get_quote(self, symbol: str) -> Tuple[Optional[NormalizedQuote], Optional[str]]:
        result, err = self._chart(symbol, {"range": "5d", "interval": "1d"})
        if err:
            return None, err
        meta = result.get("meta") or {}
        price = _f(meta.get("regularMarketPrice"))
        if price is None:
            return None, NOT_FOUND
        ts = meta.get("regularMarketTime")
        return NormalizedQuote(
            symbol=meta.get("symbol") or symbol,
            display_name=meta.get("longName") or meta.get("shortName"),
            price=price,
            currency=meta.get("currency"),
            as_of=datetime.fromtimestamp(int(ts), tz=timezone.utc).isoformat() if ts else None,
        ), None

    def get_history(self, symbol: str, start: date, end: date) -> Tuple[Optional[PriceHistory], Optional[str]]:
        result, err = self._window(symbol, start, end)
        if err:
            return None, err
        points = self._points(result)
        if not points:
            return None, NOT_FOUND
        meta = result.get("meta") or {}
        return PriceHistory(symbol=meta.get("symbol") or symbol, currency=meta.get("currency"), points=points), None

    def get_dividends(self, symbol: str, start: date, end: date) -> Tuple[Optional[DividendHistory], Optional[str]]:
        result, err = self._window(symbol, start, end, events="div")
        if err:
            return None, err
        meta = result.get("meta") or {}
        currency = meta.get("currency")
        raw = ((result.get("events") or {}).get("dividends") or {})
        events = []
        for item in raw.values():
            item = item or {}
            events.append(RawDividend(
                date=_utc_day(item.get("date")),
                amount_per_share=_f(item.get("amount")),
                currency=item.get("currency") or currency,
            ))
        if not events:
            return None, NOT_FOUND
        return DividendHistory(
            symbol=meta.get("symbol") or symbol,
            currency=currency,
            events=events,
            prices=self._points(result),
        ), None

    def get_fx_rate(self, base: str, quote: str) -> Tuple[Optional[float], Optional[str]]:
        # Yahoo quotes "THB=X" as USD-base: 1 USD = x THB
        pair = f"{quote}=X" if base == "USD" else f"{base}{quote}=X"
        result, err = self._chart(pair, {"range": "1d", "interval": "1d"})
        if err:
            return None, err
        rate = _f((result.get("meta") or {}).get("regularMarketPrice"))
        if rate is None or rate <= 0:
            return None, NOT_FOUND
        return rate, None
