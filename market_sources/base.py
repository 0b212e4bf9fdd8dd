# market_sources/base.py
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date
from typing import Protocol, Tuple, Optional, List

# Standardized error codes across providers:
# "not_found" | "rate_limited" | "network_error" | "parse_error" | "unsupported"
NOT_FOUND = "not_found"
RATE_LIMITED = "rate_limited"
NETWORK_ERROR = "network_error"
PARSE_ERROR = "parse_error"
UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class NormalizedQuote:
    symbol: str
    display_name: Optional[str]
    price: float
    currency: Optional[str]
    as_of: Optional[str]  # ISO-8601 UTC timestamp of the last trade, if known


@dataclass(frozen=True)
class HistoryPoint:
    date: date
    close: float
    volume: Optional[int]


@dataclass(frozen=True)
class PriceHistory:
    symbol: str
    currency: Optional[str]
    points: List[HistoryPoint]


@dataclass(frozen=True)
class RawDividend:
    date: Optional[date]
    amount_per_share: Optional[float]
    currency: Optional[str]


@dataclass(frozen=True)
class DividendHistory:
    symbol: str
    currency: Optional[str]
    events: List[RawDividend]
    prices: List[HistoryPoint] = field(default_factory=list)


def sort_points(points: List[HistoryPoint]) -> List[HistoryPoint]:
    """Ascending by date, keeping the last point seen for a duplicated day."""
    by_day = {}
    for p in points:
        by_day[p.date] = p
    return [by_day[d] for d in sorted(by_day)]


class MarketDataProvider(Protocol):
    name: str
    # True when the upstream answers throttling with an HTML page instead of JSON;
    # such a response trips the shared circuit breaker.
    trips_breaker: bool

    def get_quote(self, symbol: str) -> Tuple[Optional[NormalizedQuote], Optional[str]]:
        """Returns: (quote, error_code_or_None)"""

    def get_history(
        self, symbol: str, start: date, end: date
    ) -> Tuple[Optional[PriceHistory], Optional[str]]:
        """Daily closes for [start, end] inclusive, sorted ascending."""

    def get_dividends(
        self, symbol: str, start: date, end: date
    ) -> Tuple[Optional[DividendHistory], Optional[str]]:
        """
        Dividend payouts for [start, end] plus the daily closes over the same
        window (used to price each payout). An empty payout list is reported
        as "not_found".
        """

    def get_fx_rate(self, base: str, quote: str) -> Tuple[Optional[float], Optional[str]]:
        """Returns: (units of `quote` per 1 `base`, error_code_or_None)"""
