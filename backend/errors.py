# backend/errors.py

import math
from typing import Optional


class MarketDataError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(MarketDataError):
    """No ticker variant / provider produced data."""

    status_code = 404


class UpstreamError(MarketDataError):
    """Any other provider failure; carries the last provider's message."""

    status_code = 500


class RateLimitedError(MarketDataError):
    """Upstream served its throttling signature; the breaker has been tripped."""

    status_code = 429

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after

    @property
    def retry_after_seconds(self) -> Optional[int]:
        if self.retry_after is None:
            return None
        return max(1, math.ceil(self.retry_after))


class ServiceUnavailableError(RateLimitedError):
    """Breaker is open: rejected before any upstream I/O."""

    status_code = 503


class DateRangeError(MarketDataError, ValueError):
    status_code = 400


class InvalidTickerError(MarketDataError, ValueError):
    status_code = 400


class FxUnavailableError(MarketDataError):
    """No path could resolve the requested exchange rate."""

    status_code = 503
