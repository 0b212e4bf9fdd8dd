# market_sources/__init__.py
from __future__ import annotations
import logging
import os
from typing import Optional, List

from .base import (
    MarketDataProvider,
    NormalizedQuote,
    HistoryPoint,
    PriceHistory,
    RawDividend,
    DividendHistory,
    NOT_FOUND,
    RATE_LIMITED,
    NETWORK_ERROR,
    PARSE_ERROR,
    UNSUPPORTED,
)
from .alpha_vantage import AlphaVantageProvider
from .yahoo_chart import YahooChartProvider
from .yahoo_finance import YFinanceProvider

log = logging.getLogger("market-gateway")

DEFAULT_PROVIDERS = "yfinance,yahoo_chart,alpha_vantage"


def _build(name: str, timeout: int, alpha_key: Optional[str]) -> Optional[MarketDataProvider]:
    if name in ("yfinance", "yahoo"):
        return YFinanceProvider(timeout=timeout)
    if name in ("yahoo_chart", "yahoo_direct"):
        return YahooChartProvider(timeout=timeout)
    if name in ("alpha_vantage", "alphavantage"):
        return AlphaVantageProvider(api_key=alpha_key, timeout=timeout)
    return None


def get_providers(
    names: Optional[str] = None,
    timeout: int = 12,
    alpha_key: Optional[str] = None,
) -> List[MarketDataProvider]:
    """
    Ordered provider list from a comma-separated list such as
    "yfinance,yahoo_chart,alpha_vantage". Unknown names are skipped.
    """
    wanted = names if names is not None else (os.getenv("MARKET_PROVIDERS") or DEFAULT_PROVIDERS)
    providers: List[MarketDataProvider] = []
    for raw in wanted.split(","):
        name = raw.lower().strip()
        if not name:
            continue
        p = _build(name, timeout, alpha_key)
        if p is None:
            log.warning(f"Unknown market data provider '{name}' ignored")
            continue
        providers.append(p)
    if not providers:
        log.warning(f"No usable providers in '{wanted}'; using defaults")
        return get_providers(DEFAULT_PROVIDERS, timeout=timeout, alpha_key=alpha_key)
    return providers
