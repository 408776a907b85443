import time
from collections import defaultdict
import numpy as np

_WINDOW = 1000


class MetricsCollector:
    def __init__(self):
        self.search_latencies = []
        self.qdrant_query_latencies = []
        self.cache_hits = 0
        self.cache_misses = 0
        self.stores = 0
        self.soft_failures = 0
        self.errors = defaultdict(int)
        self.start_time = time.time()

    @staticmethod
    def _push(window: list, value: float):
        window.append(value)
        if len(window) > _WINDOW:
            window.pop(0)

    def record_search_latency(self, duration_ms: float):
        self._push(self.search_latencies, duration_ms)

    def record_qdrant_query(self, duration_ms: float):
        self._push(self.qdrant_query_latencies, duration_ms)

    def record_cache_hit(self):
        self.cache_hits += 1

    def record_cache_miss(self):
        self.cache_misses += 1

    def record_store(self):
        self.stores += 1

    def record_soft_failures(self, count: int):
        self.soft_failures += count

    def record_error(self, error_type: str):
        self.errors[error_type] += 1

    def get_report(self):
        uptime_seconds = time.time() - self.start_time
        latencies_np = np.array(self.search_latencies)
        qdrant_latencies_np = np.array(self.qdrant_query_latencies)
        lookups = self.cache_hits + self.cache_misses

        return {
            "uptime_seconds": uptime_seconds,
            "search_requests_total": len(self.search_latencies),
            "store_requests_total": self.stores,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "cache_hit_ratio": self.cache_hits / lookups if lookups > 0 else 0,
            "soft_failures_total": self.soft_failures,
            "errors": dict(self.errors),
            "qdrant_query_latency_p99_ms": float(np.percentile(qdrant_latencies_np, 99)) if len(qdrant_latencies_np) > 0 else 0,
            "search_latency_p50_ms": float(np.percentile(latencies_np, 50)) if len(latencies_np) > 0 else 0,
            "search_latency_p90_ms": float(np.percentile(latencies_np, 90)) if len(latencies_np) > 0 else 0,
            "search_latency_p99_ms": float(np.percentile(latencies_np, 99)) if len(latencies_np) > 0 else 0,
        }
