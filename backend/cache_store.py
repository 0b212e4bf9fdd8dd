# backend/cache_store.py

import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

log = logging.getLogger("market-gateway")

FX_KEY_PREFIX = "fx_"
DEFAULT_TTL_SECONDS = 60 * 60
DEFAULT_FX_TTL_SECONDS = 15 * 60


class CacheStore:
    """
    key -> (value, timestamp) store. FX keys ("fx_" prefix) use the short TTL,
    everything else the long one.

    The in-memory dict is authoritative; the snapshot file is rewritten after
    every mutation and only read once, at construction. Snapshot failures are
    logged and never reach the caller.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        fx_ttl_seconds: float = DEFAULT_FX_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(path) if path else None
        self.ttl_seconds = ttl_seconds
        self.fx_ttl_seconds = fx_ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._version = 0
        self._written_version = 0
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._load()

    def ttl_for(self, key: str) -> float:
        return self.fx_ttl_seconds if key.startswith(FX_KEY_PREFIX) else self.ttl_seconds

    def _expired(self, key: str, entry: Dict[str, Any], now: float) -> bool:
        return now - entry["timestamp"] >= self.ttl_for(key)

    def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not self._expired(key, entry, now):
                log.debug(f"[Cache] HIT for: {key}")
                return entry["value"]
            del self._entries[key]
            snapshot = self._snapshot()
        log.debug(f"[Cache] EXPIRED for: {key}")
        self._persist(*snapshot)
        return None

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = {"value": value, "timestamp": self._clock()}
            snapshot = self._snapshot()
        self._persist(*snapshot)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [k for k, e in self._entries.items() if self._expired(k, e, now)]
            for k in stale:
                del self._entries[k]
            snapshot = self._snapshot() if stale else None
        if stale:
            log.info(f"[Cache] Purged {len(stale)} expired entr{'y' if len(stale) == 1 else 'ies'}")
            self._persist(*snapshot)
        return len(stale)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            size = len(self._entries)
            fx = sum(1 for k in self._entries if k.startswith(FX_KEY_PREFIX))
        return {"entries": size, "fx_entries": fx, "file": str(self.path) if self.path else None}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # =========================
    # Snapshot file
    # =========================

    def _load(self) -> None:
        if not self.path or not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning(f"[Cache] Ignoring unreadable snapshot {self.path}: {e}")
            return
        if not isinstance(raw, dict):
            log.warning(f"[Cache] Ignoring snapshot {self.path}: not a JSON object")
            return

        loaded = 0
        for key, entry in raw.items():
            if not isinstance(entry, dict) or "value" not in entry:
                continue
            try:
                ts = float(entry.get("timestamp"))
            except (TypeError, ValueError):
                continue
            self._entries[str(key)] = {"value": entry["value"], "timestamp": ts}
            loaded += 1
        log.info(f"[Cache] Loaded {loaded} entr{'y' if loaded == 1 else 'ies'} from {self.path}")

    def _snapshot(self):
        # caller holds self._lock
        self._version += 1
        return self._version, dict(self._entries)

    def _persist(self, version: int, snapshot: Dict[str, Dict[str, Any]]) -> None:
        if not self.path:
            return
        with self._write_lock:
            if version <= self._written_version:
                # a newer snapshot already reached the disk
                return
            self._written_version = version
            tmp_name = None
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".cache-", suffix=".tmp")
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(snapshot, fh, default=str)
                os.replace(tmp_name, self.path)
                tmp_name = None
            except (OSError, TypeError, ValueError) as e:
                log.warning(f"[Cache] Snapshot write to {self.path} failed: {e}")
            finally:
                if tmp_name:
                    try:
                        os.unlink(tmp_name)
                    except OSError:
                        pass
