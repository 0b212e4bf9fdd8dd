# backend/gateway.py

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from backend.cache_store import CacheStore
from backend.circuit_breaker import CircuitBreaker
from backend.dateranges import (
    DIVIDEND_FALLBACK_DAYS,
    HISTORY_FALLBACK_DAYS,
    build_date_range,
)
from backend.dividends import enrich_dividends
from backend.errors import FxUnavailableError
from backend.fx import FxResolver
from backend.provider_chain import (
    PROVIDER_MAJOR,
    VARIANT_MAJOR,
    ProviderChain,
    check_breaker,
)
from backend.tickers import DEFAULT_MARKET_SUFFIX, build_ticker_variants
from market_sources.base import DividendHistory, MarketDataProvider, NormalizedQuote, PriceHistory

log = logging.getLogger("market-gateway")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MarketDataGateway:
    """
    Single entry point used by the HTTP routes. Owns the shared cache and
    circuit breaker; each operation has its own provider chain ordering.
    """

    def __init__(
        self,
        cache: CacheStore,
        breaker: CircuitBreaker,
        providers: Sequence[MarketDataProvider],
        fx: Optional[FxResolver] = None,
        market_suffix: str = DEFAULT_MARKET_SUFFIX,
    ):
        self.cache = cache
        self.breaker = breaker
        self.providers = list(providers)
        self.market_suffix = market_suffix
        self.fx = fx or FxResolver(cache, self.providers, breaker)
        # quote/history: keep the primary provider on every variant first
        self.quote_chain = ProviderChain(self.providers, breaker, PROVIDER_MAJOR)
        self.history_chain = ProviderChain(self.providers, breaker, PROVIDER_MAJOR)
        self.dividend_chain = ProviderChain(self.providers, breaker, VARIANT_MAJOR)

    def _first_cached(self, keys: List[str]) -> Optional[Any]:
        for key in keys:
            hit = self.cache.get(key)
            if hit is not None:
                return hit
        return None

    # =========================
    # Quote
    # =========================

    def get_quote(self, raw_ticker: str) -> Dict[str, Any]:
        variants = build_ticker_variants(raw_ticker, self.market_suffix)
        check_breaker(self.breaker)

        hit = self._first_cached([f"quote_{v}" for v in variants])
        if hit is not None:
            return hit

        result = self.quote_chain.run(variants, lambda p, s: p.get_quote(s), ticker=variants[0])
        quote: NormalizedQuote = result.data
        payload = {
            "symbol": quote.symbol,
            "longName": quote.display_name,
            "currentPrice": round(quote.price, 2),
            "currency": quote.currency,
            "timestamp": quote.as_of,
            "provider": result.provider,
        }
        self.cache.set(f"quote_{result.symbol}", payload)
        return payload

    # =========================
    # History
    # =========================

    def get_history(
        self,
        raw_ticker: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Dict[str, Any]:
        variants = build_ticker_variants(raw_ticker, self.market_suffix)
        start, end = build_date_range(start_date, end_date, HISTORY_FALLBACK_DAYS)
        check_breaker(self.breaker)

        suffix = f"{start_date or f'{HISTORY_FALLBACK_DAYS}d'}_{end_date or 'today'}"
        hit = self._first_cached([f"history_{v}_{suffix}" for v in variants])
        if hit is not None:
            return hit

        result = self.history_chain.run(
            variants, lambda p, s: p.get_history(s, start, end), ticker=variants[0]
        )
        history: PriceHistory = result.data
        payload = {
            "symbol": result.symbol,
            "history": [
                {"date": p.date.isoformat(), "close": p.close, "volume": p.volume}
                for p in history.points
            ],
            "currency": history.currency,
        }
        self.cache.set(f"history_{result.symbol}_{suffix}", payload)
        return payload

    # =========================
    # Dividends
    # =========================

    def get_dividends(
        self,
        raw_ticker: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Dict[str, Any]:
        variants = build_ticker_variants(raw_ticker, self.market_suffix)
        start, end = build_date_range(start_date, end_date, DIVIDEND_FALLBACK_DAYS)
        check_breaker(self.breaker)

        suffix = f"{start_date or 'max'}_{end_date or 'today'}"
        hit = self._first_cached([f"dividends_{v}_{suffix}" for v in variants])
        if hit is not None:
            return hit

        result = self.dividend_chain.run(
            variants, lambda p, s: p.get_dividends(s, start, end), ticker=variants[0]
        )
        series: DividendHistory = result.data
        report = enrich_dividends(
            series.events, series.prices, start, end, self.fx, default_currency=series.currency
        )
        usd_thb = self.fx.rate("USD", "THB")
        events = report["events"]

        payload = {
            "ticker": variants[0],
            "resolvedTicker": result.symbol,
            "currency": (events[0]["currency"] if events else None) or series.currency,
            "meta": {
                "currentUsdThbRate": round(usd_thb, 4) if usd_thb else None,
                "fxTimestamp": _now_iso(),
            },
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "events": events,
            "quality": report["quality"],
        }
        self.cache.set(f"dividends_{result.symbol}_{suffix}", payload)
        return payload

    # =========================
    # Forex
    # =========================

    def get_usd_thb(self) -> Dict[str, Any]:
        check_breaker(self.breaker)
        rate = self.fx.rate("USD", "THB")
        if not rate:
            raise FxUnavailableError("Unable to fetch USD/THB rate at this time.")
        return {"currencyPair": "USD/THB", "rate": round(rate, 4), "timestamp": _now_iso()}

    # =========================
    # Maintenance
    # =========================

    def maintenance(self) -> None:
        """Drop expired entries and keep the USD/THB leg warm."""
        self.cache.purge_expired()
        if self.breaker.should_block()[0]:
            log.info("[Maintenance] Breaker open; skipping FX warm-up")
            return
        rate = self.fx.rate("USD", "THB")
        log.info(f"[Maintenance] USD/THB warm: {rate if rate else 'unavailable'}")
