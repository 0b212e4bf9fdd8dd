# backend/provider_chain.py

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from backend.circuit_breaker import CircuitBreaker, retry_after
from backend.errors import (
    NotFoundError,
    RateLimitedError,
    ServiceUnavailableError,
    UpstreamError,
)
from market_sources.base import (
    MarketDataProvider,
    NETWORK_ERROR,
    NOT_FOUND,
    RATE_LIMITED,
    UNSUPPORTED,
)

log = logging.getLogger("market-gateway")

# Primary provider across every variant before the next provider is tried.
PROVIDER_MAJOR = "provider_major"
# Every provider for a variant before moving to the next variant.
VARIANT_MAJOR = "variant_major"

Call = Callable[[MarketDataProvider, str], Tuple[Optional[Any], Optional[str]]]


@dataclass(frozen=True)
class ChainResult:
    symbol: str
    provider: str
    data: Any


def check_breaker(breaker: CircuitBreaker) -> None:
    """Raise ServiceUnavailableError, without any I/O, while the breaker is open."""
    blocked, remaining = breaker.should_block()
    if blocked:
        secs = retry_after(remaining)
        log.warning(f"[Circuit Breaker] Request rejected. Blocked for {secs} more seconds.")
        raise ServiceUnavailableError(
            "Service is temporarily unavailable due to rate limiting. "
            f"Please try again in {secs} seconds.",
            retry_after=remaining,
        )


class ProviderChain:
    def __init__(
        self,
        providers: Sequence[MarketDataProvider],
        breaker: CircuitBreaker,
        order: str = PROVIDER_MAJOR,
    ):
        if order not in (PROVIDER_MAJOR, VARIANT_MAJOR):
            raise ValueError(f"unknown chain order: {order}")
        self.providers = list(providers)
        self.breaker = breaker
        self.order = order

    def candidates(self, variants: Sequence[str]) -> List[Tuple[str, MarketDataProvider]]:
        if self.order == PROVIDER_MAJOR:
            return [(v, p) for p in self.providers for v in variants]
        return [(v, p) for v in variants for p in self.providers]

    def run(self, variants: Sequence[str], call: Call, ticker: Optional[str] = None) -> ChainResult:
        """
        Walk the candidates until one yields data.

        not_found / other errors move on to the next candidate; a rate-limit
        signature from a breaker-guarded provider trips the breaker and aborts.
        """
        label = ticker or (variants[0] if variants else "")
        last_code: Optional[str] = None
        last_message: Optional[str] = None

        for symbol, provider in self.candidates(variants):
            if provider.trips_breaker:
                check_breaker(self.breaker)

            try:
                data, code = call(provider, symbol)
            except Exception as e:
                log.warning(f"[Fetch] {provider.name} raised for {symbol}: {e}")
                data, code = None, NETWORK_ERROR

            if code is None and data is not None:
                if last_code:
                    log.info(f"[Fetch] {label} resolved as {symbol} via {provider.name} after fallback")
                return ChainResult(symbol=symbol, provider=provider.name, data=data)

            code = code or NOT_FOUND
            if code == UNSUPPORTED:
                continue
            if code == RATE_LIMITED and provider.trips_breaker:
                self.breaker.trip()
                raise RateLimitedError(
                    "Too many requests to external API. Please wait a moment.",
                    retry_after=self.breaker.cooldown_seconds,
                )
            if code == RATE_LIMITED and last_code == NOT_FOUND:
                # a per-key quota says nothing about whether the symbol exists
                log.info(f"[Fetch] {provider.name} throttled for {symbol}; keeping not_found")
                continue

            last_code = code
            last_message = f"{provider.name}: {code} for {symbol}"
            log.info(f"[Fetch] {last_message}; trying next candidate")

        if last_code is None or last_code == NOT_FOUND:
            raise NotFoundError(f"Ticker '{label}' not found.")
        raise UpstreamError(last_message or f"Failed to fetch data for {label}.")
