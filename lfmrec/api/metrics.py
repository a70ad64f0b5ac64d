"""Metrics service for tracking prediction traffic.

Singleton service counting prediction calls and their latency.
"""

import threading
from typing import Dict


class MetricsService:
    """Thread-safe prediction counter and latency tracker."""

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(MetricsService, cls).__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._lock = threading.Lock()
        self._prediction_count = 0
        self._unknown_id_count = 0
        self._total_latency_ms = 0.0
        self._max_latency_ms = 0.0
        self._initialized = True

    def record_prediction(self, latency_ms: float, known: bool = True) -> None:
        """Record one scoring call.

        Args:
            latency_ms: Latency in milliseconds
            known: False when the user or item was not in the model
        """
        with self._lock:
            self._prediction_count += 1
            if not known:
                self._unknown_id_count += 1
            self._total_latency_ms += latency_ms
            if latency_ms > self._max_latency_ms:
                self._max_latency_ms = latency_ms

    def get_metrics(self) -> Dict:
        with self._lock:
            avg_latency = (
                self._total_latency_ms / self._prediction_count
                if self._prediction_count > 0
                else 0.0
            )
            return {
                "prediction_count": self._prediction_count,
                "unknown_id_count": self._unknown_id_count,
                "average_latency_ms": round(avg_latency, 2),
                "max_latency_ms": round(self._max_latency_ms, 2),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._prediction_count = 0
            self._unknown_id_count = 0
            self._total_latency_ms = 0.0
            self._max_latency_ms = 0.0


# Global singleton instance
metrics_service = MetricsService()
