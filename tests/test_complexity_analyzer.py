"""
Tests for complexity_analyzer module.

Tests cover:
- Degenerate catalogs (None, empty, weightless)
- Analysis minimum
- Bundle mining and clique verification
- Bundle naming
- Outlier and new-axis recommendations
"""

import pytest

from complexity_analyzer import PrototypeComplexityAnalyzer, mine_bundles, suggest_bundle_name
from config_schema import OverlapConfig
from affect.types_state import Prototype


def proto(pid, axes, weight=0.5):
    return Prototype.from_dict({"weights": {axis: weight for axis in axes}}, pid)


def skewed_catalog():
    """Nine two-axis prototypes and one eight-axis prototype."""
    catalog = [proto(f"p{i}", ["valence", "arousal"]) for i in range(9)]
    catalog.append(proto("kitchen_sink", [
        "valence", "arousal", "threat", "agency_control",
        "engagement", "future_expectancy", "self_evaluation", "affiliation",
    ]))
    return catalog


class TestDegenerateInput:
    """Empty analyses."""

    @pytest.mark.parametrize("catalog", [None, [], {}])
    def test_empty(self, catalog):
        """No prototypes gives an empty analysis."""
        result = PrototypeComplexityAnalyzer().analyze(catalog)
        assert result.total_prototypes == 0
        assert result.common_bundles == []
        assert result.receipt["receipt_type"] == "complexity_analysis"

    def test_weightless(self):
        """Prototypes without weights are not counted."""
        result = PrototypeComplexityAnalyzer().analyze([proto("a", [])])
        assert result.total_prototypes == 0

    def test_below_minimum(self):
        """Below the analysis minimum only per-prototype complexities are reported."""
        catalog = [proto("a", ["valence"]), proto("b", ["valence", "threat"]), proto("c", [])]
        result = PrototypeComplexityAnalyzer().analyze(catalog)
        assert result.total_prototypes == 2
        assert result.prototype_complexities == {"a": 1, "b": 2}
        assert result.distribution == {}
        assert result.recommendations == []


class TestComplexity:
    """Active axis counting and population stats."""

    def test_tiny_weights_not_active(self):
        """Weights at or below active_weight_epsilon are not counted."""
        analyzer = PrototypeComplexityAnalyzer()
        p = Prototype.from_dict({"weights": {"valence": 0.5, "arousal": 0.01, "threat": -0.02}}, "p")
        assert analyzer.active_axes(p) == {"valence", "threat"}

    def test_non_finite_weights_not_active(self):
        """NaN and infinite weights are not active axes."""
        p = Prototype.from_dict(
            {"weights": {"valence": 1.0, "threat": float("nan"), "arousal": float("inf")}}, "p")
        assert PrototypeComplexityAnalyzer().active_axes(p) == {"valence"}

    def test_distribution(self):
        """Histogram and distribution cover every prototype."""
        result = PrototypeComplexityAnalyzer().analyze(skewed_catalog())
        assert result.total_prototypes == 10
        assert result.distribution["mean"] == pytest.approx(2.6)
        assert result.histogram == [{"value": 2, "count": 9}, {"value": 8, "count": 1}]
        assert result.quartiles["median"] == 2.0

    def test_high_outlier(self):
        """An outlying prototype gets a reduce_complexity recommendation."""
        result = PrototypeComplexityAnalyzer().analyze(skewed_catalog())
        assert [o["label"] for o in result.outliers["high"]] == ["kitchen_sink"]
        reduce = [r for r in result.recommendations if r["type"] == "reduce_complexity"]
        assert len(reduce) == 1
        assert reduce[0]["subject"] == "kitchen_sink"

    def test_low_outlier(self):
        """A prototype using far fewer axes gets a balance_complexity recommendation."""
        catalog = [proto(f"p{i}", [
            "valence", "arousal", "threat", "agency_control",
            "engagement", "future_expectancy", "self_evaluation", "affiliation",
        ]) for i in range(9)]
        catalog.append(proto("lonely", ["valence"]))
        result = PrototypeComplexityAnalyzer().analyze(catalog)
        assert [o["label"] for o in result.outliers["low"]] == ["lonely"]
        balance = [r for r in result.recommendations if r["type"] == "balance_complexity"]
        assert [r["subject"] for r in balance] == ["lonely"]
        assert not any(r["type"] == "reduce_complexity" for r in result.recommendations)

    def test_common_pair_bundle(self):
        """The axis pair shared by every prototype is a bundle."""
        result = PrototypeComplexityAnalyzer().analyze(skewed_catalog())
        assert result.common_bundles[0]["axes"] == ["arousal", "valence"]
        assert result.common_bundles[0]["support"] == 1.0
        assert result.common_bundles[0]["suggested_name"] == "excitement"
        assert not any(r["type"] == "consider_new_axis" for r in result.recommendations)

    def test_new_axis_recommendation(self):
        """A frequent three-axis bundle suggests a new composite axis."""
        catalog = [proto(f"p{i}", ["threat", "arousal", "agency_control"]) for i in range(5)]
        result = PrototypeComplexityAnalyzer().analyze(catalog)
        assert result.common_bundles[0]["axes"] == ["agency_control", "arousal", "threat"]
        new_axis = [r for r in result.recommendations if r["type"] == "consider_new_axis"]
        assert [r["subject"] for r in new_axis] == ["alarm_plus"]

    def test_to_dict(self):
        """to_dict renders camelCase keys."""
        d = PrototypeComplexityAnalyzer().analyze(skewed_catalog()).to_dict()
        assert d["totalPrototypes"] == 10
        assert "commonBundles" in d and "prototypeComplexities" in d


class TestBundles:
    """mine_bundles and suggest_bundle_name."""

    def test_support_threshold(self):
        """Bundles need min_support of the population."""
        bundles = mine_bundles([{"a", "b"}, {"a", "b"}, {"a"}], 0.5, 2, 4)
        assert bundles == [{"axes": ["a", "b"], "size": 2, "frequency": 2,
                            "support": pytest.approx(2 / 3), "suggested_name": "a_b_composite"}]

    def test_clique_verified_by_support(self):
        """Pairwise-frequent axes that never occur together are not a bundle."""
        assert mine_bundles([{"a", "b"}, {"b", "c"}, {"a", "c"}], 0.3, 3, 4) == []

    def test_empty(self):
        """No prototypes, no bundles."""
        assert mine_bundles([], 0.2, 2, 4) == []

    def test_names(self):
        """Known pairs name bundles; larger bundles inherit a _plus name."""
        assert suggest_bundle_name(["valence", "arousal"]) == "excitement"
        assert suggest_bundle_name(["threat", "arousal", "valence"]) == "alarm_plus"
        assert suggest_bundle_name(["x", "y"]) == "x_y_composite"
