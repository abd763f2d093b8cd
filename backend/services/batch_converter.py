"""Batch orchestration – rate-limited fan-out of label batches to a renderer."""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from services.processing_config import ProcessingConfig, ProcessingMetricsTracker

logger = logging.getLogger("zpl.batches")

# A renderer turns one batch of labels into artifacts; None marks a failed output
BatchRenderer = Callable[[list[str]], list[Optional[bytes]]]


def partition(labels: list[str], size: int) -> Iterator[list[str]]:
    """Yield ceil(len(labels) / size) consecutive, order-preserving batches."""
    if size < 1:
        raise ValueError("batch size must be positive")
    for i in range(0, len(labels), size):
        yield labels[i:i + size]


def batch_count(total: int, size: int) -> int:
    return math.ceil(total / size)


@dataclass
class BatchOutcome:
    index: int
    start: int  # index of the batch's first label
    size: int
    outputs: list[Optional[bytes]]
    success: bool
    error: str | None = None

    @property
    def error_count(self) -> int:
        return sum(1 for o in self.outputs if o is None)


class BatchConverter:
    """
    Send label batches to a renderer in rounds of ``parallel_batches``.

    Each round is joined before the next; outcomes come back ordered by batch
    index. A batch whose renderer raises degrades to ``[None] * len(batch)``.
    Once the tracker's rolling error rate exceeds its threshold the delay
    between rounds switches to the fallback configuration.
    """

    def __init__(
        self,
        config: ProcessingConfig,
        tracker: ProcessingMetricsTracker | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.tracker = tracker or ProcessingMetricsTracker(config=config)
        self.sleep = sleep
        self.using_fallback = False

    def run(
        self,
        labels: list[str],
        render: BatchRenderer,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> list[BatchOutcome]:
        size = self.config.labels_per_batch
        batches = list(partition(labels, size))
        parallel = max(1, self.config.parallel_batches)
        logger.info(
            "Converting %d labels in %d batch(es) of up to %d (%d in parallel)",
            len(labels), len(batches), size, parallel,
        )

        outcomes: list[BatchOutcome] = []
        processed = 0
        with ThreadPoolExecutor(max_workers=parallel, thread_name_prefix="batch") as pool:
            for round_start in range(0, len(batches), parallel):
                if round_start > 0:
                    self._apply_fallback_if_needed()
                    self.sleep(self.tracker.config.delay_between_batches)

                futures = [
                    pool.submit(self._run_batch, i, i * size, batches[i], render, len(batches))
                    for i in range(round_start, min(round_start + parallel, len(batches)))
                ]
                for future in futures:
                    outcome = future.result()
                    outcomes.append(outcome)
                    processed += outcome.size
                    if on_progress:
                        on_progress(processed, len(labels))

        self.tracker.log_performance_report()
        return outcomes

    def _run_batch(
        self,
        index: int,
        start: int,
        batch: list[str],
        render: BatchRenderer,
        total_batches: int,
    ) -> BatchOutcome:
        started = self.tracker.start_batch(len(batch))
        logger.info("Sending batch %d/%d (%d labels)", index + 1, total_batches, len(batch))
        try:
            outputs = list(render(batch))
            outcome = BatchOutcome(index, start, len(batch), outputs, success=True)
        except Exception as e:
            logger.error("Batch %d/%d failed: %s", index + 1, total_batches, e)
            outcome = BatchOutcome(
                index, start, len(batch), [None] * len(batch), success=False, error=str(e),
            )
        self.tracker.end_batch(started, len(batch), outcome.success, outcome.error_count)
        return outcome

    def _apply_fallback_if_needed(self) -> None:
        if not self.using_fallback and self.tracker.should_use_fallback():
            logger.warning(
                "Error rate %.0f%% over recent batches – switching to fallback delay %.1fs",
                self.tracker.error_rate * 100, self.config.fallback_delay,
            )
            self.tracker.update_config(self.config.fallback())
            self.using_fallback = True


def flatten_outputs(outcomes: list[BatchOutcome], total: int) -> list[Optional[bytes]]:
    """Lay per-label outputs back into label order (``None`` for failures)."""
    results: list[Optional[bytes]] = [None] * total
    for outcome in outcomes:
        for offset, output in enumerate(outcome.outputs[:outcome.size]):
            results[outcome.start + offset] = output
    return results
