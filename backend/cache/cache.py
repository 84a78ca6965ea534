import os
import time
import json
import hashlib
import threading
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Optional, Dict


REPORT_CACHE_ENABLED = os.getenv("REPORT_CACHE_ENABLED", "true").lower() != "false"
REPORT_CACHE_TTL_SECONDS = int(os.getenv("REPORT_CACHE_TTL_SECONDS", "3600"))  # 1h


def _json_default(obj: Any) -> Any:
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    return str(obj)


def stable_hash(obj: Any) -> str:
    txt = json.dumps(obj, sort_keys=True, separators=(",", ":"), default=_json_default)
    return hashlib.sha256(txt.encode("utf-8")).hexdigest()


class ReportCache:
    """In-memory report cache keyed by input content hash.

    Entries never go stale on their own (a changed input yields a new key);
    the TTL only bounds how long unused entries are kept in memory.
    """

    def __init__(self, enabled: bool = REPORT_CACHE_ENABLED, ttl_seconds: Optional[int] = REPORT_CACHE_TTL_SECONDS):
        self.enabled = enabled
        self.ttl_seconds = ttl_seconds
        self.store: Dict[str, tuple[Optional[float], Any]] = {}
        self.lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        now = time.time()
        with self.lock:
            val = self.store.get(key)
            if not val:
                self.misses += 1
                return None
            exp, data = val
            if exp is not None and exp < now:
                self.store.pop(key, None)
                self.misses += 1
                return None
            self.hits += 1
            return data

    def set(self, key: str, value: Any):
        if not self.enabled:
            return
        now = time.time()
        exp = now + self.ttl_seconds if self.ttl_seconds else None
        with self.lock:
            self._evict_expired(now)
            self.store[key] = (exp, value)

    def _evict_expired(self, now: float):
        # caller holds the lock
        expired = [k for k, (exp, _) in self.store.items() if exp is not None and exp < now]
        for k in expired:
            del self.store[k]

    def clear(self):
        with self.lock:
            self.store.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        return len(self.store)
