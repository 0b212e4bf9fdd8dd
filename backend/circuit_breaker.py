# backend/circuit_breaker.py

import logging
import math
import threading
import time
from typing import Any, Callable, Dict, Tuple

log = logging.getLogger("market-gateway")

DEFAULT_COOLDOWN_SECONDS = 1.0


def retry_after(remaining_seconds: float) -> int:
    """Whole seconds to tell the caller to wait (never 0 while still blocked)."""
    return max(1, math.ceil(remaining_seconds))


class CircuitBreaker:
    """
    Closed -> Open on trip(), for a fixed cool-down -> Closed again the first
    time should_block() is evaluated after the cool-down has elapsed.

    One instance is shared by every request: the rate-limit signature means
    the upstream is throttling the whole process, not a single ticker.
    """

    def __init__(
        self,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._tripped = False
        self._blocked_until = 0.0

    def trip(self) -> None:
        with self._lock:
            self._tripped = True
            self._blocked_until = self._clock() + self.cooldown_seconds
        log.error(
            f"[Circuit Breaker] Tripped! Blocking requests for {retry_after(self.cooldown_seconds)} seconds."
        )

    def should_block(self) -> Tuple[bool, float]:
        """Returns (blocked, remaining_seconds)."""
        with self._lock:
            if not self._tripped:
                return False, 0.0
            remaining = self._blocked_until - self._clock()
            if remaining > 0:
                return True, remaining
            self._tripped = False
            self._blocked_until = 0.0
        log.info("[Circuit Breaker] Cool-down elapsed; closing the circuit.")
        return False, 0.0

    @property
    def tripped(self) -> bool:
        with self._lock:
            return self._tripped

    def status(self) -> Dict[str, Any]:
        with self._lock:
            remaining = max(0.0, self._blocked_until - self._clock()) if self._tripped else 0.0
            return {
                "tripped": self._tripped,
                "remaining_seconds": round(remaining, 3),
                "cooldown_seconds": self.cooldown_seconds,
            }
