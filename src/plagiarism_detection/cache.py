import copy
import hashlib
import json
import threading
from collections import OrderedDict
from typing import Any, Optional

from .models import PlagiarismReport


def make_cache_key(normalized_text: str, **parts: Any) -> str:
    payload = json.dumps({"text": normalized_text, **parts}, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ReportCache:
    """Small LRU cache of finished reports.

    Keys include the index generation and threshold version, so a report
    computed before a mutation or a threshold change is never returned.
    """

    def __init__(self, max_size: int = 128) -> None:
        self.max_size = max(0, max_size)
        self._entries: "OrderedDict[str, PlagiarismReport]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[PlagiarismReport]:
        with self._lock:
            report = self._entries.get(key)
            if report is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return copy.deepcopy(report)

    def put(self, key: str, report: PlagiarismReport) -> None:
        if self.max_size == 0 or report.partial:
            return
        with self._lock:
            self._entries[key] = copy.deepcopy(report)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def stats(self) -> dict:
        with self._lock:
            lookups = self.hits + self.misses
            return {
                "hits": self.hits,
                "misses": self.misses,
                "size": len(self._entries),
                "max_size": self.max_size,
                "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
            }
