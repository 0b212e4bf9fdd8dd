# main.py — market data gateway (quotes, history, dividends, USD/THB)

import os
import time
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from backend.cache_store import CacheStore
from backend.circuit_breaker import CircuitBreaker
from backend.errors import MarketDataError, RateLimitedError
from backend.gateway import MarketDataGateway
from market_sources import get_providers


# =========================
# Logging / Configuration
# =========================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")
log = logging.getLogger("market-gateway")

PORT = int(os.getenv("PORT", "7860"))
ALPHA_VANTAGE_KEY = (os.getenv("ALPHA_VANTAGE_KEY") or "").strip()
ALLOWED_ORIGINS = [
    o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()
]  # empty = allow all
CACHE_FILE = os.getenv("CACHE_FILE", "data/market_cache.json")
CACHE_TTL_SECONDS = float(os.getenv("CACHE_TTL_SECONDS", str(60 * 60)))
FX_CACHE_TTL_SECONDS = float(os.getenv("FX_CACHE_TTL_SECONDS", str(15 * 60)))
BREAKER_COOLDOWN_SECONDS = float(os.getenv("BREAKER_COOLDOWN_SECONDS", "1"))
DEFAULT_MARKET_SUFFIX = os.getenv("DEFAULT_MARKET_SUFFIX", ".BK").strip()
MARKET_PROVIDERS = os.getenv("MARKET_PROVIDERS", "yfinance,yahoo_chart,alpha_vantage")
PROVIDER_TIMEOUT_SECONDS = int(os.getenv("PROVIDER_TIMEOUT_SECONDS", "12"))
MAINTENANCE_INTERVAL_MINUTES = int(os.getenv("MAINTENANCE_INTERVAL_MINUTES", "15"))

STARTED_AT = time.time()


def _mask_key(k: Optional[str]) -> str:
    if not k:
        return "<DEMO>"
    return (k[:4] + "…" + k[-4:]) if len(k) > 8 else "****"


# =========================
# Shared state
# =========================


def build_gateway() -> MarketDataGateway:
    cache = CacheStore(
        CACHE_FILE,
        ttl_seconds=CACHE_TTL_SECONDS,
        fx_ttl_seconds=FX_CACHE_TTL_SECONDS,
    )
    breaker = CircuitBreaker(cooldown_seconds=BREAKER_COOLDOWN_SECONDS)
    providers = get_providers(
        MARKET_PROVIDERS,
        timeout=PROVIDER_TIMEOUT_SECONDS,
        alpha_key=ALPHA_VANTAGE_KEY or None,
    )
    log.info(f"Providers: {', '.join(p.name for p in providers)}")
    log.info(f"Alpha Vantage key: {_mask_key(ALPHA_VANTAGE_KEY)}")
    return MarketDataGateway(cache, breaker, providers, market_suffix=DEFAULT_MARKET_SUFFIX)


GATEWAY = build_gateway()


# =========================
# Scheduler
# =========================


def run_maintenance() -> None:
    try:
        GATEWAY.maintenance()
    except Exception as e:
        log.exception(f"maintenance job failed: {e}")


scheduler = BackgroundScheduler()


def schedule_jobs(sched: BackgroundScheduler) -> None:
    if MAINTENANCE_INTERVAL_MINUTES <= 0:
        log.info("Maintenance job disabled (MAINTENANCE_INTERVAL_MINUTES <= 0)")
        return
    trig = IntervalTrigger(minutes=MAINTENANCE_INTERVAL_MINUTES)
    sched.add_job(run_maintenance, trig, name="cache_maintenance", coalesce=True, max_instances=1)
    log.info(f"Scheduled cache maintenance every {MAINTENANCE_INTERVAL_MINUTES} min")


# =========================
# FastAPI App / Routes
# =========================

app = FastAPI(title="Market Data Gateway")
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS or ["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
)


@app.exception_handler(MarketDataError)
async def market_data_error_handler(request: Request, exc: MarketDataError):
    headers = {}
    if isinstance(exc, RateLimitedError) and exc.retry_after_seconds is not None:
        headers["Retry-After"] = str(exc.retry_after_seconds)
    if exc.status_code >= 500:
        log.error(f"{request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse({"error": exc.message}, status_code=exc.status_code, headers=headers)


@app.get("/health")
def health():
    return {
        "ok": True,
        "uptime": round(time.time() - STARTED_AT, 3),
        "providers": [p.name for p in GATEWAY.providers],
        "breaker": GATEWAY.breaker.status(),
        "cache": GATEWAY.cache.stats(),
    }


@app.get("/api/forex/usd-thb")
def usd_thb():
    return GATEWAY.get_usd_thb()


@app.get("/api/stock/history/{ticker}")
def stock_history(ticker: str, startDate: Optional[str] = None, endDate: Optional[str] = None):
    return GATEWAY.get_history(ticker, startDate, endDate)


@app.get("/api/stock/dividends/{ticker}")
def stock_dividends(ticker: str, startDate: Optional[str] = None, endDate: Optional[str] = None):
    return GATEWAY.get_dividends(ticker, startDate, endDate)


@app.get("/api/stock/{ticker}")
def stock_quote(ticker: str):
    return GATEWAY.get_quote(ticker)


# =========================
# Startup / Shutdown Hooks
# =========================


@app.on_event("startup")
def _on_startup():
    if not scheduler.running:
        schedule_jobs(scheduler)
        scheduler.start()


@app.on_event("shutdown")
def _on_shutdown():
    if scheduler.running:
        scheduler.shutdown(wait=False)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=PORT)
