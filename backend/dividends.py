# backend/dividends.py

import bisect
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

from backend.dateranges import span_days
from backend.fx import FxResolver
from market_sources.base import HistoryPoint, RawDividend

YIELD_SANITY_LIMIT = 20.0

# per-event warning -> aggregate issue
WARN_DATE_UNPARSEABLE = "Dividend date could not be parsed"
ISSUE_DATE_UNPARSEABLE = "Some dividend events have dates that could not be parsed"
WARN_AMOUNT_MISSING = "Dividend amount per share is missing"
ISSUE_AMOUNT_MISSING = "Some events are missing the dividend amount per share"
WARN_PRICE_MISSING = "No close price found near the dividend date"
ISSUE_PRICE_MISSING = "Some events have no close price to compute dividend yield"
WARN_PRICE_EARLIER = "Used the last close before the dividend date"
ISSUE_PRICE_EARLIER = "Some events had to use a close price from before the dividend date"
WARN_YIELD_HIGH = "Dividend yield is unusually high (>20%), please verify"
ISSUE_YIELD_HIGH = "Found dividend yield above 20% in some events"


def _iso(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


def _ccy(value: Optional[str]) -> Optional[str]:
    return (value or "").strip().upper() or None


def _round(value: Optional[float], digits: int) -> Optional[float]:
    return None if value is None else round(value, digits)


@dataclass(frozen=True)
class EnrichedDividend:
    date: Optional[date]
    amount_per_share: Optional[float]
    currency: Optional[str]
    within_requested_range: bool
    price_at_event: Optional[float] = None
    price_date: Optional[date] = None
    yield_percent: Optional[float] = None
    amount_usd: Optional[float] = None
    amount_thb: Optional[float] = None
    price_usd: Optional[float] = None
    price_thb: Optional[float] = None
    fx_rate_used: Optional[float] = None
    quality_warnings: Tuple[str, ...] = field(default_factory=tuple)

    def to_json(self) -> Dict[str, Any]:
        return {
            "date": _iso(self.date),
            "withinRequestedRange": self.within_requested_range,
            "amountPerShare": self.amount_per_share,
            "currency": self.currency,
            "priceAtEvent": self.price_at_event,
            "priceDate": _iso(self.price_date),
            "yieldPercent": self.yield_percent,
            "amountUSD": self.amount_usd,
            "amountTHB": self.amount_thb,
            "priceUSD": self.price_usd,
            "priceTHB": self.price_thb,
            "fxRateUsed": self.fx_rate_used,
            "qualityWarnings": list(self.quality_warnings),
        }


def find_close_at_or_before(points: Sequence[HistoryPoint], target: date) -> Optional[HistoryPoint]:
    """Most recent close on or before `target`; `points` sorted ascending."""
    days = [p.date for p in points]
    idx = bisect.bisect_right(days, target)
    return points[idx - 1] if idx else None


def _assess(
    event: RawDividend,
    prices: Sequence[HistoryPoint],
    start: date,
    end: date,
    default_currency: Optional[str],
    issues: Dict[str, None],
) -> Dict[str, Any]:
    warnings: List[str] = []

    event_date = event.date
    if event_date is None:
        warnings.append(WARN_DATE_UNPARSEABLE)
        issues[ISSUE_DATE_UNPARSEABLE] = None

    amount = event.amount_per_share
    if amount is None or not math.isfinite(amount):
        amount = None
        warnings.append(WARN_AMOUNT_MISSING)
        issues[ISSUE_AMOUNT_MISSING] = None

    point = find_close_at_or_before(prices, event_date) if event_date and prices else None
    price = None
    price_date = None
    if point:
        price = point.close
        price_date = point.date
        if point.date < event_date:
            warnings.append(WARN_PRICE_EARLIER)
            issues[ISSUE_PRICE_EARLIER] = None
    else:
        warnings.append(WARN_PRICE_MISSING)
        issues[ISSUE_PRICE_MISSING] = None

    yield_percent = None
    if price is not None and amount is not None and price > 0:
        yield_percent = round(amount / price * 100.0, 2)
        if yield_percent > YIELD_SANITY_LIMIT:
            warnings.append(WARN_YIELD_HIGH)
            issues[ISSUE_YIELD_HIGH] = None

    return {
        "date": event_date,
        "amount_per_share": amount,
        # rates come back keyed by upper-case codes
        "currency": _ccy(event.currency) or _ccy(default_currency),
        "within_requested_range": bool(event_date and start <= event_date <= end),
        "price_at_event": _round(price, 4),
        "price_date": price_date,
        "yield_percent": yield_percent,
        "quality_warnings": tuple(warnings),
    }


def _convert(value: Optional[float], rate: Optional[float]) -> Optional[float]:
    if value is None or rate is None:
        return None
    return round(value * rate, 4)


def enrich_dividends(
    events: Sequence[RawDividend],
    prices: Sequence[HistoryPoint],
    start: date,
    end: date,
    fx: FxResolver,
    default_currency: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Returns {"events": [...], "quality": {...}}; events are most recent first,
    undated ones last.
    """
    issues: Dict[str, None] = {}
    assessed = [_assess(e, prices, start, end, default_currency, issues) for e in events]

    currencies = sorted({a["currency"] for a in assessed if a["currency"]})
    rates = fx.resolve_many([(c, t) for c in currencies for t in ("USD", "THB")])

    enriched: List[EnrichedDividend] = []
    for a in assessed:
        ccy = a["currency"]
        to_usd = rates.get((ccy, "USD")) if ccy else None
        to_thb = rates.get((ccy, "THB")) if ccy else None
        enriched.append(EnrichedDividend(
            amount_usd=_convert(a["amount_per_share"], to_usd),
            amount_thb=_convert(a["amount_per_share"], to_thb),
            price_usd=_convert(a["price_at_event"], to_usd),
            price_thb=_convert(a["price_at_event"], to_thb),
            fx_rate_used=to_thb,
            **a,
        ))

    flagged = sum(1 for e in enriched if e.quality_warnings)
    if flagged:
        issues[f"{flagged} event(s) carry additional warnings"] = None

    covered = sorted(e.date for e in enriched if e.date and e.within_requested_range)
    actual_start = covered[0] if covered else None
    actual_end = covered[-1] if covered else None
    actual_days = span_days(actual_start, actual_end) if covered else 0
    requested_days = span_days(start, end)
    ratio = 0.0
    if requested_days > 0 and actual_days > 0:
        ratio = round(min(max(actual_days / requested_days, 0.0), 1.0), 3)

    dated = sorted((e for e in enriched if e.date), key=lambda e: e.date, reverse=True)
    undated = [e for e in enriched if not e.date]

    return {
        "events": [e.to_json() for e in dated + undated],
        "quality": {
            "requestedRange": {"start": _iso(start), "end": _iso(end)},
            "actualRange": {"start": _iso(actual_start), "end": _iso(actual_end)},
            "requestedRangeDays": requested_days,
            "actualRangeDays": actual_days,
            "coverageRatio": ratio,
            "flaggedEvents": flagged,
            "issues": list(issues),
        },
    }
