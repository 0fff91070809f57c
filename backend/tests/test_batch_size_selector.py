"""
Unit tests for adaptive batch-size selection.
"""
import logging
import random

import pytest

from core.database import InMemoryStore
from models.tooltip_models import BatchSizeMetric
from services.tooltips.batch_size_selector import BatchSizeSelector, score_metric

from conftest import FailingStore, FlakyReadStore


def seeded_store(metrics):
    """Store pre-populated with {size: (ms_per_term, success_rate, samples)}."""
    document = {
        str(size): BatchSizeMetric(
            batch_size=size,
            average_time_per_term=time_per_term,
            success_rate=success,
            total_terms=samples * size,
            samples=samples,
        ).to_dict()
        for size, (time_per_term, success, samples) in metrics.items()
    }
    return InMemoryStore({"tooltip-batch-metrics": document})


class TestExploration:
    """Test the explore phase on an empty metrics store."""

    def test_empty_store_explores(self, selector):
        assert selector.is_exploring() is True
        assert selector.choose_size(100) in [4, 8, 12, 16]

    def test_least_sampled_size_wins(self):
        """Sizes with fewer samples are always picked first."""
        store = seeded_store({4: (50.0, 1.0, 3), 8: (50.0, 1.0, 3), 12: (50.0, 1.0, 1)})
        selector = BatchSizeSelector(store, rng=random.Random(0))

        # 16 has zero samples
        assert selector.choose_size(100) == 16

    def test_exploration_visits_candidates_evenly(self, store):
        """Sample counts never drift more than one apart while exploring."""
        selector = BatchSizeSelector(store, rng=random.Random(42))
        rounds = 0

        while selector.is_exploring():
            size = selector.choose_size(100)
            selector.record(size, size, size * 100.0, size)
            rounds += 1

            counts = [selector.metrics().get(s, BatchSizeMetric(s)).samples for s in [4, 8, 12, 16]]
            assert max(counts) - min(counts) <= 1
            assert rounds < 50

        # Three sizes need three samples each; even rotation gets there after 11 rounds
        assert rounds == 11
        sampled = [m for m in selector.metrics().values() if m.samples >= 3]
        assert len(sampled) >= 3

    def test_undersampled_sizes_do_not_end_exploration(self):
        store = seeded_store({4: (50.0, 1.0, 2), 8: (50.0, 1.0, 2), 12: (50.0, 1.0, 2), 16: (50.0, 1.0, 2)})
        selector = BatchSizeSelector(store)
        assert selector.is_exploring() is True

    def test_exploring_log(self, selector, caplog):
        with caplog.at_level(logging.INFO):
            selector.choose_size(100)
        assert "EXPLORING" in caplog.text


class TestExploitation:
    """Test picking the best-scoring size."""

    def test_fastest_reliable_size_wins(self, caplog):
        store = seeded_store({
            4: (120.0, 1.0, 3),
            8: (60.0, 1.0, 3),
            12: (55.0, 0.5, 3),
        })
        selector = BatchSizeSelector(store)

        with caplog.at_level(logging.INFO):
            chosen = selector.choose_size(100)

        assert selector.is_exploring() is False
        assert chosen == 8
        assert "OPTIMIZED" in caplog.text

    def test_score_combines_speed_and_reliability(self):
        fast_flaky = BatchSizeMetric(batch_size=12, average_time_per_term=50.0, success_rate=0.4)
        slow_solid = BatchSizeMetric(batch_size=4, average_time_per_term=100.0, success_rate=1.0)

        assert score_metric(fast_flaky) == pytest.approx(20.0 * 4.0)
        assert score_metric(slow_solid) > score_metric(fast_flaky)

    def test_zero_time_does_not_divide_by_zero(self):
        metric = BatchSizeMetric(batch_size=4, average_time_per_term=0.0, success_rate=1.0)
        assert score_metric(metric) > 0

    def test_non_candidate_size_can_win(self):
        """Sizes recorded during retries are scored like any other."""
        store = seeded_store({
            3: (20.0, 1.0, 5),
            4: (100.0, 1.0, 3),
            8: (100.0, 1.0, 3),
            12: (100.0, 1.0, 3),
        })
        selector = BatchSizeSelector(store)
        assert selector.choose_size(100) == 3


class TestClamp:
    """Test bounds on the chosen size."""

    def test_small_remaining_count_caps_size(self):
        store = seeded_store({4: (90.0, 1.0, 3), 8: (90.0, 1.0, 3), 16: (10.0, 1.0, 3)})
        selector = BatchSizeSelector(store)

        assert selector.choose_size(2) == 2
        assert selector.choose_size(4) == 4

    def test_clamped_to_max(self):
        store = seeded_store({4: (90.0, 1.0, 3), 8: (90.0, 1.0, 3), 40: (10.0, 1.0, 3)})
        selector = BatchSizeSelector(store, candidate_sizes=[4, 8, 40])
        assert selector.choose_size(100) == 20

    def test_clamped_to_min(self):
        selector = BatchSizeSelector(InMemoryStore(), candidate_sizes=[1], min_explored_sizes=1)
        assert selector.choose_size(100) == 3


class TestRecord:
    """Test folding observations into running averages."""

    def test_weighted_running_average(self, store, selector):
        selector.record(8, 8, 800.0, 8)   # 100 ms/term, all succeeded
        selector.record(8, 4, 200.0, 2)   # 50 ms/term, half succeeded

        metric = selector.metrics()[8]
        assert metric.samples == 2
        assert metric.total_terms == 12
        assert metric.average_time_per_term == pytest.approx(1000.0 / 12)
        assert metric.success_rate == pytest.approx(10 / 12)

    def test_persisted_schema(self, store, selector):
        selector.record(4, 4, 400.0, 3)

        assert store.get("tooltip-batch-metrics") == {
            "4": {
                "batchSize": 4,
                "averageTimePerConcept": 100.0,
                "successRate": 0.75,
                "totalConcepts": 4,
                "samples": 1,
            }
        }

    def test_zero_terms_ignored(self, selector):
        selector.record(4, 0, 100.0, 0)
        assert selector.metrics() == {}

    def test_history_survives_new_instance(self, store, selector):
        selector.record(12, 12, 600.0, 12)
        reloaded = BatchSizeSelector(store)
        assert reloaded.metrics()[12].samples == 1

    def test_malformed_entries_skipped(self):
        store = InMemoryStore({"tooltip-batch-metrics": {"4": {"samples": 2}, "8": {"batchSize": 8, "samples": 1}}})
        selector = BatchSizeSelector(store)
        assert list(selector.metrics()) == [8]

    def test_store_failure_keeps_learning_in_memory(self):
        selector = BatchSizeSelector(FailingStore())
        selector.record(8, 8, 80.0, 8)
        assert selector.metrics()[8].samples == 1


class TestInspection:
    """Test formatted metrics and reset."""

    def test_formatted_metrics(self, selector):
        selector.record(8, 8, 800.0, 6)
        selector.record(4, 4, 200.0, 4)

        assert selector.formatted_metrics() == [
            {"size": 4, "time": 50, "success": 1.0, "samples": 1},
            {"size": 8, "time": 100, "success": 0.75, "samples": 1},
        ]

    def test_reset(self, store, selector):
        selector.record(8, 8, 800.0, 8)
        selector.reset()

        assert selector.metrics() == {}
        assert store.get("tooltip-batch-metrics") is None
        assert selector.is_exploring() is True


class TestReadFailureRecovery:
    """Test that a failed read never erases learned metrics."""

    def test_failed_first_read_does_not_overwrite(self):
        store = seeded_store({4: (100.0, 1.0, 3), 8: (50.0, 1.0, 3), 12: (40.0, 0.9, 3)})
        flaky = FlakyReadStore({"tooltip-batch-metrics": store.get("tooltip-batch-metrics")}, failing_reads=1)
        selector = BatchSizeSelector(flaky, rng=random.Random(1))

        selector.choose_size(100)
        selector.record(16, 16, 1600.0, 16)

        persisted = flaky.get("tooltip-batch-metrics")
        assert sorted(persisted) == ["12", "16", "4", "8"]
        assert persisted["8"]["samples"] == 3
        assert persisted["16"]["samples"] == 1

    def test_no_write_while_reads_keep_failing(self):
        flaky = FlakyReadStore({"tooltip-batch-metrics": {"8": {"batchSize": 8, "samples": 5}}}, failing_reads=10)
        selector = BatchSizeSelector(flaky)

        selector.record(8, 8, 800.0, 8)

        assert flaky.writes == 0
        assert selector.metrics()[8].samples == 1

    def test_unsaved_observations_fold_into_history(self):
        history = seeded_store({8: (100.0, 1.0, 2)}).get("tooltip-batch-metrics")
        flaky = FlakyReadStore({"tooltip-batch-metrics": history}, failing_reads=2)
        selector = BatchSizeSelector(flaky)

        # record reads once and persists nothing
        selector.record(8, 8, 400.0, 4)
        assert flaky.writes == 0

        # Second read fails too, third succeeds and merges everything
        selector.metrics()
        selector.record(8, 8, 400.0, 8)

        metric = BatchSizeSelector(flaky).metrics()[8]
        assert metric.samples == 4
        assert metric.total_terms == 32
        assert metric.average_time_per_term == pytest.approx((100.0 * 16 + 50.0 * 16) / 32)
        assert metric.success_rate == pytest.approx((16 + 4 + 8) / 32)
