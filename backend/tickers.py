# backend/tickers.py

from typing import List

from backend.errors import InvalidTickerError

DEFAULT_MARKET_SUFFIX = ".BK"  # Stock Exchange of Thailand
MARKET_DELIMITER = "."


def normalize_ticker(raw: str) -> str:
    return (raw or "").strip().upper()


def build_ticker_variants(raw: str, suffix: str = DEFAULT_MARKET_SUFFIX) -> List[str]:
    """
    Exact-as-typed first, then the market-suffixed alternate when the input
    carries no market qualifier ("PTT" -> ["PTT", "PTT.BK"], "AAPL.MX" -> ["AAPL.MX"]).
    """
    ticker = normalize_ticker(raw)
    if not ticker:
        raise InvalidTickerError("Ticker must be a non-empty string.")
    if MARKET_DELIMITER in ticker or not suffix:
        return [ticker]
    return [ticker, f"{ticker}{suffix.upper()}"]
