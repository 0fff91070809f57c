"""
Adaptive batch-size selection from observed service performance.

Every completed service call reports (size, terms, duration, successes).
Until enough candidate sizes have been sampled the selector explores,
always picking the least-sampled candidate. Afterwards it exploits the
size with the best speed x reliability score.
"""
import logging
import random
import threading
from typing import Any, Dict, List, Optional

from core.config import (
    DEFAULT_BATCH_SIZE,
    EXPLORATION_BATCH_SIZES,
    FIRST_BATCH_SIZE,
    MAX_BATCH_SIZE,
    MIN_BATCH_SIZE,
    MIN_EXPLORED_SIZES,
    MIN_SAMPLES_PER_SIZE,
    TOOLTIP_METRICS_KEY,
)
from models.tooltip_models import BatchSizeMetric

logger = logging.getLogger(__name__)


def score_metric(metric: BatchSizeMetric) -> float:
    """
    Score a batch size; higher is better.

    speed (1000 / ms-per-term) multiplied by reliability (success rate x 10).
    """
    time_per_term = max(metric.average_time_per_term, 1e-6)
    speed_score = 1000.0 / time_per_term
    reliability_score = metric.success_rate * 10
    return speed_score * reliability_score


def combine_metrics(existing: BatchSizeMetric, observed: BatchSizeMetric) -> BatchSizeMetric:
    """Fold observed into existing, weighting averages by number of terms."""
    total_terms = existing.total_terms + observed.total_terms
    if total_terms <= 0:
        return BatchSizeMetric(batch_size=existing.batch_size, samples=existing.samples + observed.samples)

    return BatchSizeMetric(
        batch_size=existing.batch_size,
        average_time_per_term=(
            existing.average_time_per_term * existing.total_terms
            + observed.average_time_per_term * observed.total_terms
        ) / total_terms,
        success_rate=(
            existing.success_rate * existing.total_terms
            + observed.success_rate * observed.total_terms
        ) / total_terms,
        total_terms=total_terms,
        samples=existing.samples + observed.samples,
    )


class BatchSizeSelector:
    """Chooses the size of the next batch and learns from batch telemetry."""

    def __init__(
        self,
        backend,
        key: str = TOOLTIP_METRICS_KEY,
        candidate_sizes: Optional[List[int]] = None,
        min_batch_size: int = MIN_BATCH_SIZE,
        max_batch_size: int = MAX_BATCH_SIZE,
        default_batch_size: int = DEFAULT_BATCH_SIZE,
        small_run_threshold: int = FIRST_BATCH_SIZE,
        min_samples: int = MIN_SAMPLES_PER_SIZE,
        min_explored_sizes: int = MIN_EXPLORED_SIZES,
        rng: Optional[random.Random] = None,
    ):
        self.backend = backend
        self.key = key
        self.candidate_sizes = list(candidate_sizes or EXPLORATION_BATCH_SIZES)
        self.min_batch_size = min_batch_size
        self.max_batch_size = max_batch_size
        self.default_batch_size = default_batch_size
        self.small_run_threshold = small_run_threshold
        self.min_samples = min_samples
        self.min_explored_sizes = min_explored_sizes
        self.rng = rng or random.Random()
        self._metrics: Optional[Dict[int, BatchSizeMetric]] = None
        # Observations recorded while the persisted metrics could not be read
        self._pending: Dict[int, BatchSizeMetric] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> Dict[int, BatchSizeMetric]:
        if self._metrics is not None:
            return self._metrics

        try:
            stored = self.backend.get(self.key)
        except Exception as e:
            # Stay unloaded so the next call reads again
            logger.warning(f"Metrics read error, using unsaved observations only: {e}")
            return self._pending

        metrics: Dict[int, BatchSizeMetric] = {}
        if isinstance(stored, dict):
            for raw_size, raw_metric in stored.items():
                try:
                    metric = BatchSizeMetric.from_dict(raw_metric)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed metric for size {raw_size}: {e}")
                    continue
                metrics[metric.batch_size] = metric

        for size, observed in self._pending.items():
            metrics[size] = combine_metrics(metrics.get(size) or BatchSizeMetric(batch_size=size), observed)
        self._pending = {}
        self._metrics = metrics
        return self._metrics

    def _persist(self, metrics: Dict[int, BatchSizeMetric]) -> None:
        if self._metrics is None:
            # Never write a partial map over history we could not read
            logger.warning("Metrics not loaded, observation kept in memory only")
            return
        document = {str(size): metric.to_dict() for size, metric in metrics.items()}
        try:
            self.backend.set(self.key, document)
        except Exception as e:
            logger.warning(f"Metrics write error (kept in memory only): {e}")

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def is_exploring(self) -> bool:
        """True while fewer than min_explored_sizes candidates have enough samples."""
        with self._lock:
            return self._is_exploring(self._load())

    def _is_exploring(self, metrics: Dict[int, BatchSizeMetric]) -> bool:
        sufficiently_sampled = [
            size for size in self.candidate_sizes
            if size in metrics and metrics[size].samples >= self.min_samples
        ]
        return len(sufficiently_sampled) < self.min_explored_sizes

    def choose_size(self, remaining_term_count: int) -> int:
        """Pick the batch size for the next run over remaining_term_count terms."""
        with self._lock:
            metrics = self._load()

            if self._is_exploring(metrics):
                sample_counts = {
                    size: metrics[size].samples if size in metrics else 0
                    for size in self.candidate_sizes
                }
                fewest = min(sample_counts.values())
                least_sampled = [size for size in self.candidate_sizes if sample_counts[size] == fewest]
                chosen = self.rng.choice(least_sampled)
                logger.info(f"EXPLORING: Selected batch size {chosen} (has {fewest} samples)")
            else:
                chosen = self.default_batch_size
                best_score = float("-inf")
                for size in sorted(metrics):
                    metric = metrics[size]
                    if metric.samples < self.min_samples:
                        continue
                    score = score_metric(metric)
                    if score > best_score:
                        best_score = score
                        chosen = size
                best = metrics.get(chosen)
                if best is not None:
                    logger.info(
                        f"OPTIMIZED: Selected batch size {chosen} "
                        f"(time: {round(best.average_time_per_term)}ms, "
                        f"success: {best.success_rate:.2f})"
                    )

        return self._clamp(chosen, remaining_term_count)

    def _clamp(self, size: int, remaining_term_count: int) -> int:
        # Very small term sets never need a batch larger than themselves
        if 0 < remaining_term_count <= self.small_run_threshold:
            return max(1, min(remaining_term_count, size))
        return max(self.min_batch_size, min(size, self.max_batch_size))

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def record(self, size: int, term_count: int, duration_ms: float, success_count: int) -> None:
        """Fold one completed service call into the running averages for size."""
        if term_count <= 0:
            return

        time_per_term = duration_ms / term_count
        success_rate = min(max(success_count, 0), term_count) / term_count

        with self._lock:
            metrics = self._load()
            existing = metrics.get(size) or BatchSizeMetric(batch_size=size)
            metrics[size] = combine_metrics(
                existing,
                BatchSizeMetric(
                    batch_size=size,
                    average_time_per_term=time_per_term,
                    success_rate=success_rate,
                    total_terms=term_count,
                    samples=1,
                ),
            )
            self._persist(metrics)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def metrics(self) -> Dict[int, BatchSizeMetric]:
        """Copy of the current per-size statistics."""
        with self._lock:
            return {
                size: BatchSizeMetric(**vars(metric))
                for size, metric in self._load().items()
            }

    def formatted_metrics(self) -> List[Dict[str, Any]]:
        """Compact per-size summary for logs and the metrics endpoint."""
        rows = [
            {
                "size": metric.batch_size,
                "time": round(metric.average_time_per_term),
                "success": round(metric.success_rate, 2),
                "samples": metric.samples,
            }
            for metric in self.metrics().values()
            if metric.samples > 0
        ]
        return sorted(rows, key=lambda row: row["size"])

    def reset(self) -> None:
        """Forget all accumulated metrics."""
        with self._lock:
            self._metrics = {}
            self._pending = {}
            try:
                self.backend.delete(self.key)
            except Exception as e:
                logger.warning(f"Metrics delete error: {e}")
        logger.info("Batch metrics have been reset")
