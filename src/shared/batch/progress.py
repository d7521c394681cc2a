"""Progress tracking for batch processing pipelines."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ProgressTracker:
    """Tracks finished work items and derives rate/ETA metrics.

    Example:
        tracker = ProgressTracker(total_items=12, label="deck")

        tracker.increment(success=True)
        if tracker.should_log():
            tracker.log_progress(extra_stats={"in_flight": 3})

        tracker.log_summary()
    """

    def __init__(
        self,
        total_items: int,
        label: str,
        *,
        log_interval: int = 5,
        log_time_interval: int = 30,
    ):
        """Initialize progress tracker.

        Args:
            total_items: Total number of items to process
            label: Name used in log lines
            log_interval: Number of finished items between logs
            log_time_interval: Seconds between time-based logs
        """
        self.total_items = total_items
        self.label = label
        self.log_interval = log_interval
        self.log_time_interval = log_time_interval

        self.start_time = time.time()
        self.processed_count = 0
        self.success_count = 0
        self.error_count = 0
        self.lock = threading.Lock()
        self.last_log_time = self.start_time
        self.last_log_count = 0

    def increment(self, success: bool = True) -> None:
        with self.lock:
            self.processed_count += 1
            if success:
                self.success_count += 1
            else:
                self.error_count += 1

    def set_total(self, total_items: int) -> None:
        with self.lock:
            self.total_items = total_items

    def should_log(self) -> bool:
        with self.lock:
            count_trigger = self.processed_count - self.last_log_count >= self.log_interval
            time_trigger = time.time() - self.last_log_time >= self.log_time_interval
            return count_trigger or time_trigger

    def log_progress(self, extra_stats: Optional[Dict[str, Any]] = None) -> None:
        """Log current progress.

        Args:
            extra_stats: Optional additional stats to include in log
        """
        stats = self.get_stats()
        parts = [
            f"Progress: {stats['processed']}/{stats['total']} ({stats['percent']:.1f}%)",
            f"Rate: {stats['rate_per_minute']:.1f}/min",
        ]
        if extra_stats:
            for key, value in extra_stats.items():
                if isinstance(value, float):
                    parts.append(f"{key}: {value:.1f}")
                else:
                    parts.append(f"{key}: {value}")
        parts.extend([
            f"Errors: {stats['errors']}",
            f"ETA: {stats['eta_seconds']:.0f}s",
            f"Run: {self.label}",
        ])
        logger.info(" | ".join(parts))

        with self.lock:
            self.last_log_time = time.time()
            self.last_log_count = self.processed_count

    def log_summary(self) -> None:
        stats = self.get_stats()
        summary_parts = [
            f"Total processed: {stats['processed']}",
            f"Successful: {stats['successful']}",
            f"Errors: {stats['errors']}",
            f"Time: {stats['elapsed_seconds']:.1f}s",
            f"Run: {self.label}",
        ]
        logger.info("Processing complete:\n  " + "\n  ".join(summary_parts))

    def get_stats(self) -> Dict[str, Any]:
        with self.lock:
            elapsed = time.time() - self.start_time
            rate = self.processed_count / elapsed * 60 if elapsed > 0 else 0.0
            remaining = max(0, self.total_items - self.processed_count)
            eta_seconds = remaining / rate * 60 if rate > 0 else 0.0

            return {
                "processed": self.processed_count,
                "successful": self.success_count,
                "errors": self.error_count,
                "total": self.total_items,
                "percent": (
                    self.processed_count / self.total_items * 100
                    if self.total_items > 0
                    else 0.0
                ),
                "rate_per_minute": rate,
                "elapsed_seconds": elapsed,
                "eta_seconds": eta_seconds,
                "label": self.label,
            }
