"""Timing utilities for clone, sync and release operations."""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Generator


@dataclass
class PerformanceMetrics:
    """Timing of one archive operation."""
    operation: str
    subject: str
    duration: float
    start_time: float
    end_time: float
    success: bool = True


class PerformanceLogger:
    """
    Collects timings for the phases of an archive run.

    One instance is owned by the orchestrator for the duration of a run and
    handed to the components it drives.
    """

    def __init__(self, logger_name: str = 'orgarchive.performance', slow_threshold: float = 60.0):
        """
        Args:
            logger_name: Name for the logger instance
            slow_threshold: Seconds after which an operation is reported as slow
        """
        self.logger = logging.getLogger(logger_name)
        self.slow_threshold = slow_threshold
        self._metrics: List[PerformanceMetrics] = []

    @contextmanager
    def time_operation(
        self,
        operation: str,
        subject: str,
        log_level: int = logging.DEBUG
    ) -> Generator[None, None, None]:
        """
        Context manager for timing operations.

        Args:
            operation: Name of the operation being timed (``clone``, ``sync`` ...)
            subject: What it operates on, usually ``org/repo``
            log_level: Logging level for completion messages
        """
        start_time = time.time()
        self.logger.log(log_level, f"Starting {operation} of {subject}")

        success = True
        try:
            yield
        except Exception:
            success = False
            raise
        finally:
            end_time = time.time()
            duration = end_time - start_time
            self._metrics.append(PerformanceMetrics(
                operation=operation,
                subject=subject,
                duration=duration,
                start_time=start_time,
                end_time=end_time,
                success=success
            ))

            status = "completed" if success else "failed"
            self.logger.log(log_level, f"{operation} of {subject} {status} in {duration:.3f}s")
            if duration > self.slow_threshold:
                self.logger.warning(f"Slow {operation} of {subject}: {duration:.1f}s")

    def get_performance_summary(self) -> Dict[str, Any]:
        """
        Get a summary of performance metrics.

        Returns:
            Dictionary containing performance summary
        """
        if not self._metrics:
            return {"total_operations": 0, "total_duration": 0.0, "average_duration": 0.0}

        total_operations = len(self._metrics)
        total_duration = sum(m.duration for m in self._metrics)
        slowest = max(self._metrics, key=lambda m: m.duration)

        return {
            "total_operations": total_operations,
            "total_duration": total_duration,
            "average_duration": total_duration / total_operations,
            "success_rate": sum(1 for m in self._metrics if m.success) / total_operations,
            "slowest_operation": {
                "name": f"{slowest.operation} {slowest.subject}",
                "duration": slowest.duration
            }
        }

    def log_performance_summary(self) -> None:
        """Log a summary of all performance metrics."""
        summary = self.get_performance_summary()

        if summary["total_operations"] == 0:
            self.logger.debug("No performance metrics available")
            return

        self.logger.info(
            f"Performance: {summary['total_operations']} operations in "
            f"{summary['total_duration']:.1f}s, {summary['success_rate']:.1%} succeeded"
        )
        slowest = summary["slowest_operation"]
        self.logger.info(f"Slowest operation: {slowest['name']} ({slowest['duration']:.3f}s)")


def format_data_size(size_bytes: Optional[int]) -> str:
    """Format data size in human-readable format."""
    if not size_bytes:
        return "0 bytes"
    if size_bytes < 1024:
        return f"{size_bytes} bytes"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    else:
        return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"
