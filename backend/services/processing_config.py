"""Batch tuning per conversion mode, rolling error-rate tracking and progress ranges."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable

from models import ConversionMode

logger = logging.getLogger("zpl.processing")

ERROR_WINDOW = 10  # batches considered for the rolling error rate
FALLBACK_ERROR_RATE = 0.3


@dataclass(frozen=True)
class ProcessingConfig:
    labels_per_batch: int
    delay_between_batches: float  # seconds
    max_retries: int
    fallback_delay: float  # seconds
    parallel_batches: int = 1

    def fallback(self) -> "ProcessingConfig":
        """Slower variant used once the error rate crosses the threshold."""
        return replace(self, delay_between_batches=self.fallback_delay)


# The renderer accepts at most 50 labels per request
DEFAULT_CONFIG = ProcessingConfig(
    labels_per_batch=50, delay_between_batches=1.0, max_retries=3, fallback_delay=3.0,
)
A4_CONFIG = ProcessingConfig(
    labels_per_batch=50, delay_between_batches=1.0, max_retries=3, fallback_delay=2.5,
)
HD_CONFIG = ProcessingConfig(
    labels_per_batch=12, delay_between_batches=1.0, max_retries=3, fallback_delay=3.0,
    parallel_batches=2,
)
FAST_CONFIG = ProcessingConfig(
    labels_per_batch=50, delay_between_batches=0.8, max_retries=2, fallback_delay=2.0,
)

MODE_CONFIGS = {
    ConversionMode.STANDARD: DEFAULT_CONFIG,
    ConversionMode.A4: A4_CONFIG,
    ConversionMode.HD: HD_CONFIG,
    ConversionMode.FAST: FAST_CONFIG,
}


def config_for_mode(mode: ConversionMode) -> ProcessingConfig:
    return MODE_CONFIGS[mode]


@dataclass
class BatchMetric:
    start: float
    end: float
    size: int
    success: bool
    error_count: int = 0

    @property
    def failed(self) -> bool:
        return not self.success or self.error_count > 0


@dataclass
class ProcessingMetricsTracker:
    config: ProcessingConfig = DEFAULT_CONFIG
    clock: Callable[[], float] = time.monotonic
    metrics: list[BatchMetric] = field(default_factory=list)
    error_rate: float = 0.0

    def start_batch(self, size: int) -> float:
        logger.debug("Starting batch of %d labels", size)
        return self.clock()

    def end_batch(self, start: float, size: int, success: bool, error_count: int = 0) -> BatchMetric:
        metric = BatchMetric(start=start, end=self.clock(), size=size,
                             success=success, error_count=error_count)
        self.metrics.append(metric)
        self._update_error_rate()
        logger.info(
            "Batch completed in %.0fms | success=%s errors=%d | error rate %.1f%%",
            (metric.end - metric.start) * 1000, success, error_count, self.error_rate * 100,
        )
        return metric

    def _update_error_rate(self) -> None:
        recent = self.metrics[-ERROR_WINDOW:]
        if recent:
            self.error_rate = sum(1 for m in recent if m.failed) / len(recent)

    def should_use_fallback(self) -> bool:
        return self.error_rate > FALLBACK_ERROR_RATE

    def update_config(self, new_config: ProcessingConfig) -> None:
        logger.info("Updating processing config: %s -> %s", self.config, new_config)
        self.config = new_config

    def average_processing_time(self) -> float:
        if not self.metrics:
            return 0.0
        return sum(m.end - m.start for m in self.metrics) / len(self.metrics)

    def stats(self) -> dict:
        total_batches = len(self.metrics)
        total_labels = sum(m.size for m in self.metrics)
        average = self.average_processing_time()
        return {
            "total_batches": total_batches,
            "successful_batches": sum(1 for m in self.metrics if m.success),
            "total_labels": total_labels,
            "average_time": average,
            "error_rate": self.error_rate,
            "estimated_time_per_label": (
                average / (total_labels / total_batches) if total_labels else 0.0
            ),
        }

    def log_performance_report(self) -> None:
        logger.info("Performance report: %s config=%s", self.stats(), self.config)


# ---------------------------------------------------------------------------
# Progress ranges (percent) per pipeline stage
# ---------------------------------------------------------------------------
_STANDARD_RANGES = {
    "parsing": (0, 5),
    "converting": (5, 70),
    "upscaling": (70, 70),
    "organizing": (70, 80),
    "uploading": (80, 95),
    "complete": (100, 100),
}
_HD_RANGES = {
    "parsing": (0, 5),
    "converting": (5, 45),
    "upscaling": (45, 70),
    "organizing": (70, 80),
    "uploading": (80, 95),
    "complete": (100, 100),
}


def calculate_progress(mode: ConversionMode, stage: str, stage_progress: float = 100) -> int:
    """Overall percentage for ``stage_progress`` percent through ``stage``."""
    start, end = (_HD_RANGES if mode is ConversionMode.HD else _STANDARD_RANGES)[stage]
    clamped = max(0.0, min(100.0, stage_progress))
    return int(start + (clamped / 100) * (end - start))
