"""
Tests for behavioral_overlap, overlap_classifier and overlap_analyzer.

Tests cover:
- Stage B metrics on identical and disjoint prototypes
- Pearson NaN guards
- Priority classification and secondary labels
- Low-threat guard on convert_to_expression
- Near-miss detection
- Composite score and weight renormalization
- Full analyzer runs, family filtering, receipts
"""

import math

import numpy as np
import pytest

from behavioral_overlap import BehavioralOverlapEvaluator, gate_parse_info, pearson
from config_schema import OverlapConfig
from gate_implication import evaluate as evaluate_implication
from overlap_analyzer import PrototypeOverlapAnalyzer, composite_score
from overlap_classifier import OverlapClassifier
from affect.types_state import Prototype


def proto(pid, weights, gates=(), ptype="emotion"):
    return Prototype.from_dict({"weights": weights, "gates": list(gates), "type": ptype}, pid)


def behavior(on_either=0.5, on_both=0.5, p_only=0.0, q_only=0.0, corr=0.5, mad=0.2,
             dominance_p=0.0, dominance_q=0.0, pass_rates=None, a=None, b=None):
    """Hand-built Stage B output for classifier tests."""
    implication = evaluate_implication(a, b) if a is not None and b is not None else None
    info = None
    if a is not None and b is not None:
        info = {"prototype_a": gate_parse_info(a), "prototype_b": gate_parse_info(b)}
    return {
        "gate_overlap": {"on_either_rate": on_either, "on_both_rate": on_both,
                         "p_only_rate": p_only, "q_only_rate": q_only},
        "intensity": {"pearson_correlation": corr, "mean_abs_diff": mad,
                      "dominance_p": dominance_p, "dominance_q": dominance_q,
                      "global_mean_abs_diff": mad, "global_output_correlation": corr},
        "pass_rates": pass_rates,
        "gate_implication": implication,
        "gate_parse_info": info,
    }


# =============================================================================
# STAGE B
# =============================================================================

class TestBehavioralOverlap:
    """BehavioralOverlapEvaluator.evaluate."""

    def test_identical_prototypes(self):
        """A prototype compared with itself co-fires with identical intensity."""
        a = proto("joy", {"valence": 1.0}, ["valence >= 0.2"])
        evaluator = BehavioralOverlapEvaluator(OverlapConfig(), np.random.default_rng(7))
        result = evaluator.evaluate(a, a, sample_count=400)
        overlap = result["gate_overlap"]
        assert overlap["on_both_rate"] == overlap["on_either_rate"]
        assert overlap["p_only_rate"] == 0.0 and overlap["q_only_rate"] == 0.0
        assert result["intensity"]["pearson_correlation"] == pytest.approx(1.0)
        assert result["intensity"]["mean_abs_diff"] == 0.0
        assert result["intensity"]["dominance_p"] == 0.0
        assert result["gate_implication"].relation == "equal"
        assert result["receipt"]["receipt_type"] == "behavioral_overlap"

    def test_disjoint_gates(self):
        """Never co-firing prototypes have NaN co-pass statistics."""
        a = proto("up", {"valence": 1.0}, ["valence >= 0.5"])
        b = proto("down", {"valence": -1.0}, ["valence <= -0.5"])
        evaluator = BehavioralOverlapEvaluator(OverlapConfig(), np.random.default_rng(8))
        result = evaluator.evaluate(a, b, sample_count=300)
        assert result["gate_overlap"]["on_both_rate"] == 0.0
        assert math.isnan(result["intensity"]["pearson_correlation"])
        assert math.isnan(result["intensity"]["mean_abs_diff"])
        assert math.isfinite(result["intensity"]["global_mean_abs_diff"])
        assert result["divergence_examples"] == []

    def test_conditional_needs_min_samples(self):
        """Conditional pass rates are NaN below the minimum pass count."""
        a = proto("joy", {"valence": 1.0}, ["valence >= 0.2"])
        evaluator = BehavioralOverlapEvaluator(OverlapConfig(), np.random.default_rng(9))
        rates = evaluator.evaluate(a, a, sample_count=50)["pass_rates"]
        assert math.isnan(rates["p_a_given_b"])

    def test_divergence_examples_sorted(self):
        """Divergence examples are the top-k by absolute difference."""
        a = proto("joy", {"valence": 1.0})
        b = proto("calm", {"arousal": -1.0})
        config = OverlapConfig(divergence_examples_k=3)
        result = BehavioralOverlapEvaluator(config, np.random.default_rng(10)).evaluate(a, b, 200)
        diffs = [e["abs_diff"] for e in result["divergence_examples"]]
        assert len(diffs) == 3
        assert diffs == sorted(diffs, reverse=True)

    def test_zero_samples(self):
        """Zero samples give zero rates, not errors."""
        a = proto("joy", {"valence": 1.0})
        result = BehavioralOverlapEvaluator().evaluate(a, a, sample_count=0)
        assert result["gate_overlap"]["on_either_rate"] == 0.0
        assert math.isnan(result["intensity"]["global_mean_abs_diff"])

    def test_progress_callback(self):
        """Progress is reported at least once at completion."""
        a = proto("joy", {"valence": 1.0})
        calls = []
        BehavioralOverlapEvaluator(rng=np.random.default_rng(1)).evaluate(
            a, a, 10, on_progress=lambda done, total: calls.append((done, total)))
        assert calls[-1] == (10, 10)


class TestPearson:
    """pearson."""

    def test_too_few(self):
        """Fewer than two samples is NaN."""
        assert math.isnan(pearson([1.0], [1.0]))

    def test_constant(self):
        """A constant side is NaN."""
        assert math.isnan(pearson([0.5, 0.5, 0.5], [0.1, 0.2, 0.3]))

    def test_anticorrelated(self):
        """Perfect anticorrelation is -1."""
        assert pearson([0.1, 0.2, 0.3], [0.3, 0.2, 0.1]) == pytest.approx(-1.0)


# =============================================================================
# STAGE C
# =============================================================================

class TestClassifier:
    """OverlapClassifier.classify."""

    def setup_method(self):
        self.classifier = OverlapClassifier(OverlapConfig())

    def test_merge(self):
        """Near-identical behavior is merge_recommended."""
        result = self.classifier.classify({}, behavior(corr=0.99, mad=0.01))
        assert result.type == "merge_recommended"
        assert result.confidence == "behavioral"
        assert len(result.all_matching_classifications) == 1

    def test_nan_correlation_blocks_merge(self):
        """NaN correlation never merges."""
        result = self.classifier.classify({}, behavior(corr=math.nan, mad=0.0))
        assert result.type == "no_match"

    def test_subsumption(self):
        """A rarely-alone, dominated prototype is subsumed."""
        result = self.classifier.classify({}, behavior(
            on_both=0.3, corr=0.97, p_only=0.0, q_only=0.2, dominance_q=0.96))
        assert result.type == "subsumption"
        assert result.narrower_prototype == "a"

    def test_convert_to_expression_low_threat(self):
        """Nesting whose narrower side caps threat at 0.20 converts to an expression."""
        a = proto("content", {"valence": 1.0}, ["valence >= 0.2", "threat <= 0.2"])
        b = proto("pleased", {"valence": 1.0}, ["valence >= 0.2"])
        result = self.classifier.classify({}, behavior(a=a, b=b))
        assert result.type == "convert_to_expression"
        assert result.narrower_prototype == "a"
        assert result.confidence == "deterministic"
        types = [m["type"] for m in result.all_matching_classifications]
        assert types == ["convert_to_expression", "nested_siblings"]
        assert [m["is_primary"] for m in result.all_matching_classifications] == [True, False]

    def test_threat_guard(self):
        """Narrower side with a high threat cap stays nested_siblings."""
        a = proto("wary", {"valence": 1.0}, ["valence >= 0.2", "threat <= 0.5"])
        b = proto("pleased", {"valence": 1.0}, ["valence >= 0.2"])
        result = self.classifier.classify({}, behavior(a=a, b=b))
        assert result.type == "nested_siblings"
        assert result.narrower_prototype == "a"

    def test_no_threat_axis(self):
        """Nesting without a threat gate stays nested_siblings."""
        a = proto("elated", {"valence": 1.0}, ["valence >= 0.6"])
        b = proto("pleased", {"valence": 1.0}, ["valence >= 0.2"])
        result = self.classifier.classify({}, behavior(a=a, b=b))
        assert result.type == "nested_siblings"
        assert result.confidence == "deterministic"

    def test_convert_disabled(self):
        """convert_to_expression can be switched off."""
        a = proto("content", {"valence": 1.0}, ["valence >= 0.2", "threat <= 0.2"])
        b = proto("pleased", {"valence": 1.0}, ["valence >= 0.2"])
        classifier = OverlapClassifier(OverlapConfig(enable_convert_to_expression=False))
        assert classifier.classify({}, behavior(a=a, b=b)).type == "nested_siblings"

    def test_incomplete_parse_ignores_implication(self):
        """Deterministic nesting needs complete gate parses on both sides."""
        a = proto("content", {"valence": 1.0}, ["valence >= 0.6", "bogus gate"])
        b = proto("pleased", {"valence": 1.0}, ["valence >= 0.2"])
        assert self.classifier.classify({}, behavior(a=a, b=b)).type == "no_match"

    def test_behavioral_nesting(self):
        """Near-certain one-way conditional pass rate is behavioral nesting."""
        rates = {"p_a_given_b": 0.4, "p_b_given_a": 0.99}
        result = self.classifier.classify({}, behavior(pass_rates=rates))
        assert result.type == "nested_siblings"
        assert result.narrower_prototype == "a"
        assert result.confidence == "behavioral"

    def test_no_match(self):
        """Nothing matching yields a single no_match entry."""
        result = self.classifier.classify(None, None)
        assert result.type == "no_match"
        assert result.all_matching_classifications[0]["type"] == "no_match"
        assert result.evidence["thresholds"]["min_correlation_for_merge"] == 0.98


class TestNearMiss:
    """OverlapClassifier.check_near_miss."""

    def setup_method(self):
        self.classifier = OverlapClassifier(OverlapConfig())

    def test_correlation_and_gate(self):
        """Both metrics in their near-miss bands are reported."""
        result = self.classifier.check_near_miss({}, behavior(on_both=0.4, corr=0.95))
        assert result["is_near_miss"]
        assert "correlation" in result["reason"]
        assert "gate overlap" in result["reason"]
        assert result["threshold_proximity"]["correlation"]["met"]

    def test_mean_abs_diff_only(self):
        """Merge-level correlation and gates with a large difference is a near miss."""
        result = self.classifier.check_near_miss({}, behavior(on_both=0.48, corr=0.99, mad=0.1))
        assert result["is_near_miss"]
        assert result["reason"].startswith("mean abs diff")

    def test_rare_firing_is_not_near_miss(self):
        """Pairs that rarely fire are never near misses."""
        result = self.classifier.check_near_miss({}, behavior(on_either=0.01, on_both=0.008, corr=0.95))
        assert not result["is_near_miss"]

    def test_far_apart(self):
        """Low correlation and gate overlap is not a near miss."""
        assert not self.classifier.check_near_miss({}, behavior(on_both=0.1, corr=0.2))["is_near_miss"]


# =============================================================================
# ANALYZER
# =============================================================================

class TestCompositeScore:
    """composite_score."""

    def test_perfect(self):
        """Full gate overlap, correlation 1 and zero difference score 1."""
        assert composite_score(1.0, 1.0, 0.0) == pytest.approx(1.0)

    def test_nan_correlation(self):
        """Missing correlation is NaN."""
        assert math.isnan(composite_score(1.0, math.nan, 0.0))

    def test_renormalized_without_global_diff(self):
        """Without a global difference the other two weights are renormalized."""
        assert composite_score(1.0, 1.0, math.nan) == pytest.approx(1.0)
        assert composite_score(0.5, 0.0, math.nan) == pytest.approx(0.5)

    def test_difference_clamped(self):
        """Global differences above 1 contribute nothing."""
        assert composite_score(0.0, -1.0, 5.0) == pytest.approx(0.0)


class TestAnalyzer:
    """PrototypeOverlapAnalyzer.analyze."""

    def config(self):
        return OverlapConfig(sample_count_per_pair=300, prescan_sample_count=100)

    def test_insufficient_data(self):
        """Fewer than two prototypes gives insufficient_data."""
        result = PrototypeOverlapAnalyzer(self.config()).analyze([proto("joy", {"valence": 1.0})])
        assert result["recommendations"] == []
        assert result["metadata"]["summary_insight"]["status"] == "insufficient_data"
        assert result["receipt"]["receipt_type"] == "overlap_analysis"

    def test_none_catalog(self):
        """None is an empty catalog."""
        result = PrototypeOverlapAnalyzer(self.config()).analyze(None)
        assert result["metadata"]["total_prototypes"] == 0

    def test_family_filter(self):
        """Sexual prototypes are excluded from the emotion family and vice versa."""
        catalog = [
            proto("joy", {"valence": 1.0}),
            proto("lust", {"sex_excitation": 1.0}, ptype="sexual"),
        ]
        analyzer = PrototypeOverlapAnalyzer(self.config())
        assert analyzer.analyze(catalog, "emotion")["metadata"]["total_prototypes"] == 1
        assert analyzer.analyze(catalog, "sexual")["metadata"]["total_prototypes"] == 1
        assert analyzer.analyze(catalog, None)["metadata"]["total_prototypes"] == 2

    def test_duplicate_prototypes_merge(self):
        """Two identical prototypes are recommended for merging."""
        catalog = [
            proto("joy", {"valence": 1.0}, ["valence >= 0.2"]),
            proto("gladness", {"valence": 1.0}, ["valence >= 0.2"]),
            proto("fear", {"threat": 1.0}, ["threat >= 0.5"]),
        ]
        analyzer = PrototypeOverlapAnalyzer(self.config(), np.random.default_rng(11))
        result = analyzer.analyze(catalog)
        assert len(result["recommendations"]) == 1
        rec = result["recommendations"][0]
        assert rec["type"] == "merge_recommended"
        assert {rec["prototype_a"], rec["prototype_b"]} == {"joy", "gladness"}
        assert rec["severity"] == pytest.approx(1.0)
        assert rec["selected_by"] == "route_a"
        metadata = result["metadata"]
        assert metadata["summary_insight"]["status"] == "redundant_found"
        assert metadata["classification_breakdown"]["merge_recommended"] == 1
        assert result["receipt"]["redundant_pairs_found"] == 1
        assert ":" in result["receipt"]["recommendations_root"]

    def test_well_differentiated(self):
        """Unrelated prototypes give no candidates."""
        catalog = [
            proto("joy", {"valence": 1.0}, ["valence >= 0.5"]),
            proto("fear", {"threat": 1.0}, ["threat >= 0.5"]),
        ]
        result = PrototypeOverlapAnalyzer(self.config(), np.random.default_rng(12)).analyze(catalog)
        assert result["recommendations"] == []
        assert result["metadata"]["summary_insight"]["status"] == "no_candidates"

    def test_stage_progress(self):
        """Stage progress reports filtering then evaluating."""
        catalog = [proto("joy", {"valence": 1.0}), proto("glee", {"valence": 1.0})]
        stages = []
        PrototypeOverlapAnalyzer(self.config(), np.random.default_rng(13)).analyze(
            catalog, on_progress=lambda stage, done, total: stages.append(stage))
        assert stages[0] == "filtering"
        assert stages[-1] == "evaluating"
