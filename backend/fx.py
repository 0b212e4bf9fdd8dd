# backend/fx.py

import logging
import math
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from typing import Dict, Iterable, Optional, Sequence, Tuple

from backend.cache_store import CacheStore, FX_KEY_PREFIX
from backend.circuit_breaker import CircuitBreaker
from market_sources.base import MarketDataProvider, RATE_LIMITED

log = logging.getLogger("market-gateway")

HUB = "USD"

Pair = Tuple[str, str]


def fx_cache_key(from_ccy: str, to_ccy: str) -> str:
    return f"{FX_KEY_PREFIX}{from_ccy}{to_ccy}"


def _code(value: Optional[str]) -> Optional[str]:
    code = (value or "").strip().upper()
    return code or None


def _usable(rate) -> bool:
    return isinstance(rate, (int, float)) and math.isfinite(rate) and rate > 0


class FxResolver:
    """
    rate(from, to): 1 unit of `from` = rate units of `to`.

    Only USD-base pairs are fetched upstream ("USD -> THB"). X -> USD is the
    reciprocal of USD -> X, and X -> Y composes X -> USD -> Y once. Anything
    unresolvable is None, never an exception.
    """

    def __init__(
        self,
        cache: CacheStore,
        sources: Sequence[MarketDataProvider],
        breaker: CircuitBreaker,
        max_workers: int = 4,
        leg_timeout: float = 30.0,
    ):
        self.cache = cache
        self.sources = list(sources)
        self.breaker = breaker
        self.max_workers = max_workers
        self.leg_timeout = leg_timeout

    def rate(self, from_ccy: Optional[str], to_ccy: Optional[str]) -> Optional[float]:
        src, dst = _code(from_ccy), _code(to_ccy)
        if not src or not dst:
            return None
        if src == dst:
            return 1.0
        if src == HUB:
            return self._usd_leg(dst)
        if dst == HUB:
            leg = self._usd_leg(src)
            return 1.0 / leg if leg else None
        return self._cross(src, dst)

    def _cross(self, src: str, dst: str) -> Optional[float]:
        key = fx_cache_key(src, dst)
        cached = self.cache.get(key)
        if _usable(cached):
            return float(cached)

        # exactly one hop through the hub; never recurse further
        usd_src = self._usd_leg(src)
        usd_dst = self._usd_leg(dst)
        if not usd_src or not usd_dst:
            return None
        cross = (1.0 / usd_src) * usd_dst
        self.cache.set(key, cross)
        log.info(f"[FX] Cross {src}->{dst} via {HUB}: {cross}")
        return cross

    def _usd_leg(self, code: str) -> Optional[float]:
        """USD -> code, from the cache or the first source that answers."""
        key = fx_cache_key(HUB, code)
        cached = self.cache.get(key)
        if _usable(cached):
            return float(cached)

        for source in self.sources:
            if source.trips_breaker and self.breaker.should_block()[0]:
                continue
            try:
                rate, err = source.get_fx_rate(HUB, code)
            except Exception as e:
                log.warning(f"[FX] {source.name} raised for {HUB}/{code}: {e}")
                continue
            if err is None and _usable(rate):
                log.info(f"[FX] Fetched {HUB}/{code} from {source.name}: {rate}")
                self.cache.set(key, float(rate))
                return float(rate)
            if err == RATE_LIMITED and source.trips_breaker:
                self.breaker.trip()
            log.warning(f"[FX] Failed to fetch {HUB}/{code} from {source.name}: {err}")
        return None

    def resolve_many(self, pairs: Iterable[Pair]) -> Dict[Pair, Optional[float]]:
        """Resolve several pairs concurrently; each leg gets a bounded wait."""
        unique = list(dict.fromkeys((_code(a) or "", _code(b) or "") for a, b in pairs))
        if not unique:
            return {}

        out: Dict[Pair, Optional[float]] = {}
        pool = ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(unique))))
        try:
            futures = {pair: pool.submit(self.rate, *pair) for pair in unique}
            for pair, fut in futures.items():
                try:
                    out[pair] = fut.result(timeout=self.leg_timeout)
                except FuturesTimeout:
                    log.warning(f"[FX] Gave up on {pair[0]}->{pair[1]} after {self.leg_timeout}s")
                    out[pair] = None
                except Exception as e:
                    log.warning(f"[FX] {pair[0]}->{pair[1]} failed: {e}")
                    out[pair] = None
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        return out
