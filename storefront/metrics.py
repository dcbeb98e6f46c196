"""
In-process metrics for the order core.

Tracks:
- Latency percentiles (p50, p95, p99) per endpoint
- Request and error counts per endpoint
- Order lifecycle counters (orders placed, stock conflicts, signature failures, restorations)
"""

from collections import defaultdict, deque
from datetime import datetime, timezone
import statistics
import threading
from typing import Dict, Optional


class MetricsCollector:
    """
    In-memory metrics collector.

    Counters are per process; with several workers each reports its own view.
    """

    def __init__(self, window_size: int = 1000):
        """
        Initialize metrics collector.

        Args:
            window_size: Number of recent samples to keep for percentiles
        """
        self.window_size = window_size
        self._lock = threading.Lock()

        # Latency tracking (sliding window)
        self.latencies: Dict[str, deque] = defaultdict(lambda: deque(maxlen=window_size))

        # Request counters
        self.request_counts: Dict[str, int] = defaultdict(int)
        self.error_counts: Dict[str, int] = defaultdict(int)

        # Domain counters: orders_placed, stock_conflicts, signature_failures, ...
        self.counters: Dict[str, int] = defaultdict(int)

        self.start_time = datetime.now(timezone.utc)

    def record_latency(self, endpoint: str, latency_ms: float):
        """Record a latency sample for an endpoint."""
        with self._lock:
            self.latencies[endpoint].append(latency_ms)
            self.request_counts[endpoint] += 1

    def record_error(self, endpoint: str):
        """Record an error for an endpoint."""
        with self._lock:
            self.error_counts[endpoint] += 1

    def increment(self, name: str, amount: int = 1):
        """Bump a named domain counter."""
        with self._lock:
            self.counters[name] += amount

    def get_percentile(self, endpoint: str, percentile: float) -> Optional[float]:
        """
        Get a latency percentile for an endpoint.

        Returns:
            Latency in ms, or None with fewer than 10 samples
        """
        values = sorted(self.latencies.get(endpoint, ()))
        if len(values) < 10:
            return None
        index = min(int(len(values) * (percentile / 100.0)), len(values) - 1)
        return values[index]

    def get_error_rate(self, endpoint: str) -> float:
        """Get the error rate for an endpoint as a percentage."""
        total_requests = self.request_counts.get(endpoint, 0)
        if total_requests == 0:
            return 0.0
        return (self.error_counts.get(endpoint, 0) / total_requests) * 100.0

    def get_summary(self) -> Dict:
        """Snapshot of all metrics."""
        summary = {
            "uptime_seconds": (datetime.now(timezone.utc) - self.start_time).total_seconds(),
            "counters": dict(self.counters),
            "endpoints": {},
        }

        for endpoint in list(self.request_counts.keys()):
            endpoint_metrics = {
                "total_requests": self.request_counts[endpoint],
                "total_errors": self.error_counts.get(endpoint, 0),
                "error_rate_pct": round(self.get_error_rate(endpoint), 2),
            }
            for pct in (50, 95, 99):
                value = self.get_percentile(endpoint, pct)
                if value is not None:
                    endpoint_metrics[f"latency_p{pct}_ms"] = round(value, 2)
            if self.latencies[endpoint]:
                endpoint_metrics["latency_avg_ms"] = round(statistics.mean(self.latencies[endpoint]), 2)
            summary["endpoints"][endpoint] = endpoint_metrics

        return summary

    def reset(self):
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self.latencies.clear()
            self.request_counts.clear()
            self.error_counts.clear()
            self.counters.clear()


# Global metrics collector instance
metrics_collector = MetricsCollector()


def record_request_metrics(endpoint: str, latency_ms: float, is_error: bool = False):
    """
    Record latency and, when the request failed, an error for an endpoint.

    Args:
        endpoint: Endpoint name (e.g. "create_order", "verify_payment")
        latency_ms: Total request latency in milliseconds
        is_error: Whether this request resulted in an error
    """
    metrics_collector.record_latency(endpoint, latency_ms)
    if is_error:
        metrics_collector.record_error(endpoint)
