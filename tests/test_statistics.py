"""
Tests for affect.statistics.

Tests cover:
- Distribution stats, quartiles, histogram on normal and degenerate input
- Outlier detection
- Nested path lookup
- Wilson and Clopper-Pearson interval bounds
"""

import math

import pytest

from affect.statistics import (
    clopper_pearson_interval,
    compute_distribution_stats,
    compute_histogram,
    compute_quartiles,
    detect_outliers,
    get_nested_value,
    wilson_interval,
)


class TestDistributionStats:
    """compute_distribution_stats."""

    def test_basic(self):
        """Mean, median, min and max of a small sample."""
        stats = compute_distribution_stats([1, 2, 3, 4, 5])
        assert stats["count"] == 5
        assert stats["mean"] == 3.0
        assert stats["median"] == 3.0
        assert stats["min"] == 1.0
        assert stats["max"] == 5.0

    def test_empty(self):
        """Empty input yields count 0 and None elsewhere."""
        stats = compute_distribution_stats([])
        assert stats["count"] == 0
        assert stats["mean"] is None

    def test_ignores_non_finite(self):
        """NaN and inf are dropped."""
        stats = compute_distribution_stats([1.0, math.nan, 3.0, math.inf])
        assert stats["count"] == 2
        assert stats["mean"] == 2.0


class TestQuartilesAndHistogram:
    """compute_quartiles / compute_histogram."""

    def test_quartiles(self):
        """Linear interpolation quartiles."""
        q = compute_quartiles([1, 2, 3, 4])
        assert q["q1"] == pytest.approx(1.75)
        assert q["median"] == pytest.approx(2.5)
        assert q["q3"] == pytest.approx(3.25)
        assert q["iqr"] == pytest.approx(1.5)

    def test_quartiles_empty(self):
        """Empty input yields None quartiles."""
        assert compute_quartiles(None)["q1"] is None

    def test_histogram_sorted_bins(self):
        """Discrete bins ascending with counts."""
        hist = compute_histogram([3, 1, 3, 2, 3])
        assert hist == [{"value": 1, "count": 1}, {"value": 2, "count": 1},
                        {"value": 3, "count": 3}]

    def test_histogram_empty(self):
        """Empty input yields no bins."""
        assert compute_histogram([]) == []


class TestOutliers:
    """detect_outliers."""

    def test_high_outlier(self):
        """A value far above the rest is flagged high with its label."""
        values = [3] * 10 + [20]
        labels = [f"p{i}" for i in range(11)]
        result = detect_outliers(values, k=2.0, labels=labels)
        assert [e["label"] for e in result["high"]] == ["p10"]
        assert result["low"] == []

    def test_constant_values(self):
        """Zero spread flags nothing."""
        result = detect_outliers([4, 4, 4])
        assert result["std"] == 0.0
        assert result["high"] == [] and result["low"] == []


class TestGetNestedValue:
    """get_nested_value."""

    def test_nested(self):
        """Dotted paths descend mappings."""
        assert get_nested_value({"emotions": {"joy": 0.4}}, "emotions.joy") == 0.4

    def test_missing(self):
        """Missing segments give None."""
        assert get_nested_value({"emotions": {}}, "emotions.joy") is None
        assert get_nested_value({"a": 1}, "a.b") is None
        assert get_nested_value({"a": 1}, "") is None


class TestIntervals:
    """Binomial confidence intervals."""

    @pytest.mark.parametrize("successes,trials", [(0, 100), (100, 100), (37, 100), (1, 3)])
    def test_wilson_bounds(self, successes, trials):
        """Wilson interval stays in [0, 1] and contains the estimate."""
        low, high = wilson_interval(successes, trials)
        p = successes / trials
        assert 0.0 <= low <= p <= high <= 1.0

    def test_wilson_zero_trials(self):
        """Zero trials give the uninformative interval."""
        assert wilson_interval(0, 0) == (0.0, 1.0)

    def test_wilson_narrows_with_trials(self):
        """More trials give a narrower interval."""
        low_a, high_a = wilson_interval(10, 100)
        low_b, high_b = wilson_interval(100, 1000)
        assert (high_b - low_b) < (high_a - low_a)

    @pytest.mark.parametrize("successes,trials", [(0, 50), (50, 50), (12, 50)])
    def test_clopper_pearson_bounds(self, successes, trials):
        """Exact interval contains the estimate."""
        low, high = clopper_pearson_interval(successes, trials)
        p = successes / trials
        assert 0.0 <= low <= p <= high <= 1.0

    def test_clopper_pearson_wider_than_wilson(self):
        """Exact interval is at least as wide as Wilson for a mid proportion."""
        w_low, w_high = wilson_interval(20, 100)
        c_low, c_high = clopper_pearson_interval(20, 100)
        assert (c_high - c_low) >= (w_high - w_low)
