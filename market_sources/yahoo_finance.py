# market_sources/yahoo_finance.py
from __future__ import annotations
import json
import logging
import math
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple, List

import yfinance as yf
from yfinance.exceptions import YFRateLimitError

from .base import (
    NOT_FOUND,
    RATE_LIMITED,
    NETWORK_ERROR,
    DividendHistory,
    HistoryPoint,
    NormalizedQuote,
    PriceHistory,
    RawDividend,
    sort_points,
)

log = logging.getLogger("market-gateway")
logging.getLogger("yfinance").setLevel(logging.CRITICAL)


def _f(x) -> Optional[float]:
    try:
        v = None if x is None else float(x)
    except Exception:
        return None
    return v if v is not None and math.isfinite(v) else None


def _classify(e: Exception) -> str:
    """Map a yfinance failure onto the shared error codes."""
    if isinstance(e, YFRateLimitError):
        return RATE_LIMITED
    # Yahoo serves an HTML page when throttling; yfinance then fails to decode it
    if isinstance(e, json.JSONDecodeError) or "Expecting value" in str(e):
        return RATE_LIMITED
    msg = str(e)
    if "404" in msg or "Not Found" in msg or "delisted" in msg:
        return NOT_FOUND
    return NETWORK_ERROR


class YFinanceProvider:
    """Primary source: Yahoo Finance through the yfinance library."""
    name = "yfinance"
    trips_breaker = True

    def __init__(self, timeout: int = 12):
        self.timeout = timeout

    def _frame(self, symbol: str, start: date, end: date, actions: bool = False):
        ticker = yf.Ticker(symbol)
        frame = ticker.history(
            start=start.isoformat(),
            end=(end + timedelta(days=1)).isoformat(),
            interval="1d",
            auto_adjust=False,
            actions=actions,
            timeout=self.timeout,
        )
        currency = (getattr(ticker, "history_metadata", None) or {}).get("currency")
        return frame, currency

    @staticmethod
    def _points(frame) -> List[HistoryPoint]:
        points = []
        for idx, row in frame.iterrows():
            close = _f(row.get("Close"))
            if close is None:
                continue
            volume = _f(row.get("Volume"))
            points.append(HistoryPoint(
                date=idx.date(),
                close=close,
                volume=int(volume) if volume is not None else None,
            ))
        return sort_points(points)

    # ---- provider protocol ----
    def get_quote(self, symbol: str) -> Tuple[Optional[NormalizedQuote], Optional[str]]:
        try:
            info = yf.Ticker(symbol).info or {}
        except Exception as e:
            log.warning(f"yfinance quote failed for {symbol}: {e}")
            return None, _classify(e)

        price = _f(info.get("regularMarketPrice"))
        if price is None:
            price = _f(info.get("currentPrice"))
        if price is None:
            return None, NOT_FOUND
        ts = info.get("regularMarketTime")
        return NormalizedQuote(
            symbol=info.get("symbol") or symbol,
            display_name=info.get("longName") or info.get("shortName"),
            price=price,
            currency=info.get("currency"),
            as_of=datetime.fromtimestamp(int(ts), tz=timezone.utc).isoformat() if ts else None,
        ), None

    def get_history(self, symbol: str, start: date, end: date) -> Tuple[Optional[PriceHistory], Optional[str]]:
        try:
            frame, currency = self._frame(symbol, start, end)
        except Exception as e:
            log.warning(f"yfinance history failed for {symbol}: {e}")
            return None, _classify(e)
        if frame is None or frame.empty:
            return None, NOT_FOUND
        points = self._points(frame)
        if not points:
            return None, NOT_FOUND
        return PriceHistory(symbol=symbol, currency=currency, points=points), None

    def get_dividends(self, symbol: str, start: date, end: date) -> Tuple[Optional[DividendHistory], Optional[str]]:
        try:
            frame, currency = self._frame(symbol, start, end, actions=True)
        except Exception as e:
            log.warning(f"yfinance dividends failed for {symbol}: {e}")
            return None, _classify(e)
        if frame is None or frame.empty or "Dividends" not in frame.columns:
            return None, NOT_FOUND

        events = []
        for idx, amount in frame["Dividends"].items():
            value = _f(amount)
            if not value:
                continue
            events.append(RawDividend(date=idx.date(), amount_per_share=value, currency=currency))
        if not events:
            return None, NOT_FOUND
        return DividendHistory(symbol=symbol, currency=currency, events=events, prices=self._points(frame)), None

    def get_fx_rate(self, base: str, quote: str) -> Tuple[Optional[float], Optional[str]]:
        pair = f"{quote}=X" if base == "USD" else f"{base}{quote}=X"
        try:
            rate = _f(yf.Ticker(pair).fast_info.last_price)
        except Exception as e:
            log.warning(f"yfinance FX failed for {pair}: {e}")
            return None, _classify(e)
        if rate is None or rate <= 0:
            return None, NOT_FOUND
        return rate, None
