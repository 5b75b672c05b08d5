"""
Observability module for Corgi
Provides decode timing, decode statistics and structured decode events.
"""
import time
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from collections import defaultdict
from datetime import datetime, timezone
import json

logger = logging.getLogger(__name__)


@dataclass
class DecodeMetric:
    """Single decode metric."""
    vin: str
    timestamp: str
    valid: bool
    duration_ms: float
    confidence: float
    error_codes: List[str] = field(default_factory=list)


@dataclass
class MetricsStore:
    """In-memory decode statistics."""
    decodes: List[DecodeMetric] = field(default_factory=list)
    max_entries: int = 1000

    # Aggregated stats
    _error_counts: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _total_decodes: int = 0
    _valid_decodes: int = 0
    _total_duration_ms: float = 0.0

    def record(self, metric: DecodeMetric) -> None:
        """Record a decode metric."""
        self.decodes.append(metric)

        # Trim if too many
        if len(self.decodes) > self.max_entries:
            self.decodes = self.decodes[-self.max_entries:]

        self._total_decodes += 1
        self._total_duration_ms += metric.duration_ms
        if metric.valid:
            self._valid_decodes += 1
        for code in metric.error_codes:
            self._error_counts[code] += 1

    def get_summary(self) -> Dict:
        """Get metrics summary."""
        avg_duration = self._total_duration_ms / max(self._total_decodes, 1)

        return {
            "total_decodes": self._total_decodes,
            "valid_decodes": self._valid_decodes,
            "avg_duration_ms": round(avg_duration, 2),
            "error_breakdown": dict(self._error_counts),
            "recent_decodes": len(self.decodes),
        }

    def get_recent(self, limit: int = 10) -> List[Dict]:
        """Get recent decodes."""
        recent = self.decodes[-limit:]
        return [
            {
                "vin": d.vin,
                "timestamp": d.timestamp,
                "valid": d.valid,
                "confidence": d.confidence,
                "duration_ms": d.duration_ms,
            }
            for d in reversed(recent)
        ]

    def reset(self):
        """Reset all metrics."""
        self.decodes.clear()
        self._error_counts.clear()
        self._total_decodes = 0
        self._valid_decodes = 0
        self._total_duration_ms = 0.0


# Global metrics instance
metrics = MetricsStore()


class DecodeTimer:
    """Context manager for timing a decode."""

    def __init__(self, vin: str):
        self.vin = vin
        self.start_time: Optional[float] = None
        self.duration_ms: float = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

    def stop(self) -> float:
        """Freeze the elapsed time; later calls keep the first value."""
        if self.start_time is not None and not self.duration_ms:
            self.duration_ms = round((time.perf_counter() - self.start_time) * 1000, 3)
        return self.duration_ms

    def record(self, valid: bool, confidence: float, error_codes: Optional[List[str]] = None):
        """Record the completed decode."""
        metric = DecodeMetric(
            vin=self.vin,
            timestamp=datetime.now(timezone.utc).isoformat(),
            valid=valid,
            duration_ms=self.stop(),
            confidence=confidence,
            error_codes=list(error_codes or []),
        )
        metrics.record(metric)
        log_decode_event(self.vin, valid, confidence, metric.error_codes, metric.duration_ms)


def log_decode_event(
    vin: str,
    valid: bool,
    confidence: float,
    error_codes: List[str],
    duration_ms: float = 0.0,
):
    """Log a structured decode event."""
    event = {
        "event_type": "decode",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "vin": vin,
        "output": {
            "valid": valid,
            "confidence": confidence,
            "errors": error_codes,
        },
        "duration_ms": round(duration_ms, 2),
    }

    # Log as JSON for easy parsing by log aggregators
    logger.info(f"DECODE_EVENT: {json.dumps(event)}")
