"""
EduPath Consult — Analysis Cache

Process-local memo of LLM analysis results, keyed by document type and a
digest of the normalized document text. Bounded (LRU order on overflow) and
time-limited. Entries go in and come out as deep copies, so records built
from a hit never share state with the cache or each other.
"""
import copy as _copy
import hashlib
import re
import threading
import time

from cachetools import TTLCache

from edupath.config import ANALYSIS_CACHE_SIZE, ANALYSIS_CACHE_TTL_MINUTES


def make_cache_key(document_type: str, text: str) -> str:
    """'<type>:<sha256>' of the lowercased, whitespace-collapsed text."""
    normalized = re.sub(r"\s+", " ", (text or "").strip().lower())
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()
    return f"{document_type}:{digest}"


class AnalysisCache:
    def __init__(self, maxsize: int = ANALYSIS_CACHE_SIZE,
                 ttl_seconds: float = ANALYSIS_CACHE_TTL_MINUTES * 60, timer=time.monotonic):
        self.maxsize = maxsize
        self.ttl = ttl_seconds
        self._store = TTLCache(maxsize=maxsize, ttl=ttl_seconds, timer=timer)
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str):
        with self._lock:
            value = self._store.get(key)
            if value is None:
                self.misses += 1
            else:
                self.hits += 1
            return _copy.deepcopy(value)

    def put(self, key: str, analysis: dict):
        with self._lock:
            self._store[key] = _copy.deepcopy(analysis)

    def clear(self) -> int:
        """Drop every entry. Returns the number removed."""
        with self._lock:
            n = len(self._store)
            self._store.clear()
            self.hits = self.misses = 0
        print(f"[CACHE] Cleared {n} cached analyses")
        return n

    def __len__(self):
        with self._lock:
            # expire() drops stale entries so the count is accurate
            self._store.expire()
            return len(self._store)

    def __contains__(self, key):
        with self._lock:
            return key in self._store

    def stats(self) -> dict:
        size = len(self)
        return {"size": size, "maxsize": self.maxsize, "ttlSeconds": self.ttl,
                "hits": self.hits, "misses": self.misses}


analysis_cache = AnalysisCache()
