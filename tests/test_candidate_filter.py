"""
Tests for candidate_filter and prescan_filter modules.

Tests cover:
- Stage A metrics: Jaccard, soft-sign agreement, cosine
- Route A rejection reasons and stats
- Route B deterministic nesting rescue
- Route C prescan rescue, limits and skipped pairs
- Degenerate catalogs
"""

import numpy as np
import pytest

from candidate_filter import CandidateMetricsScorer, CandidatePairFilter
from config_schema import OverlapConfig
from prescan_filter import BehavioralPrescanFilter
from affect.types_state import Prototype


def proto(pid, weights, gates=(), ptype="emotion"):
    return Prototype.from_dict({"weights": weights, "gates": list(gates), "type": ptype}, pid)


# =============================================================================
# STAGE A METRICS
# =============================================================================

class TestCandidateMetricsScorer:
    """CandidateMetricsScorer.score."""

    def setup_method(self):
        self.scorer = CandidateMetricsScorer(OverlapConfig())

    def test_identical(self):
        """Identical weights score 1 everywhere."""
        a = proto("a", {"valence": 0.8, "arousal": 0.4})
        m = self.scorer.score(a, a)
        assert m["active_axis_overlap"] == 1.0
        assert m["sign_agreement"] == 1.0
        assert m["weight_cosine_similarity"] == pytest.approx(1.0)

    def test_jaccard_ignores_tiny_weights(self):
        """Weights below active_axis_epsilon are not active."""
        a = proto("a", {"valence": 0.8, "arousal": 0.05})
        b = proto("b", {"valence": 0.6, "threat": 0.5})
        m = self.scorer.score(a, b)
        assert m["active_axis_overlap"] == pytest.approx(1 / 2)

    def test_sign_disagreement(self):
        """Opposite signs on a shared axis lower agreement."""
        a = proto("a", {"valence": 0.8, "threat": 0.5})
        b = proto("b", {"valence": 0.8, "threat": -0.5})
        m = self.scorer.score(a, b)
        assert m["sign_agreement"] == 0.5

    def test_soft_sign_neutral_band(self):
        """Weights inside the soft-sign band count as neutral (0)."""
        assert self.scorer.soft_sign(0.1) == 0
        assert self.scorer.soft_sign(-0.1) == 0
        assert self.scorer.soft_sign(0.2) == 1
        assert self.scorer.soft_sign(-0.2) == -1

    def test_no_shared_axes(self):
        """No shared active axes: agreement 0, Jaccard 0, cosine 0."""
        m = self.scorer.score(proto("a", {"valence": 1.0}), proto("b", {"threat": 1.0}))
        assert m == {"active_axis_overlap": 0.0, "sign_agreement": 0.0, "weight_cosine_similarity": 0.0}

    def test_empty_active_sets(self):
        """Both active sets empty uses jaccard_empty_set_value."""
        a = proto("a", {"valence": 0.01})
        b = proto("b", {"threat": 0.02})
        assert self.scorer.score(a, b)["active_axis_overlap"] == 1.0
        custom = CandidateMetricsScorer(OverlapConfig(jaccard_empty_set_value=0.0))
        assert custom.score(a, b)["active_axis_overlap"] == 0.0

    def test_zero_vector_cosine(self):
        """A zero weight vector gives cosine 0, never NaN."""
        m = self.scorer.score(proto("a", {"valence": 0.0}), proto("b", {"valence": 1.0}))
        assert m["weight_cosine_similarity"] == 0.0

    def test_non_finite_weights_ignored(self):
        """NaN weights are dropped before scoring."""
        a = proto("a", {"valence": 0.8, "threat": float("nan")})
        b = proto("b", {"valence": 0.8})
        m = self.scorer.score(a, b)
        assert m["active_axis_overlap"] == 1.0
        assert m["weight_cosine_similarity"] == pytest.approx(1.0)


# =============================================================================
# CANDIDATE PAIR FILTER
# =============================================================================

class TestCandidatePairFilter:
    """CandidatePairFilter.filter_candidates."""

    def test_route_a_only(self):
        """With multi-route off, only Route A pairs are kept."""
        config = OverlapConfig(enable_multi_route_filtering=False)
        prototypes = [
            proto("joy", {"valence": 1.0, "arousal": 0.5}),
            proto("delight", {"valence": 0.9, "arousal": 0.6}),
            proto("fear", {"threat": 1.0, "valence": -0.5}),
        ]
        result = CandidatePairFilter(config).filter_candidates(prototypes)
        pairs = [(c["prototype_a"].id, c["prototype_b"].id) for c in result["candidates"]]
        assert pairs == [("joy", "delight")]
        assert all(c["selected_by"] == "route_a" for c in result["candidates"])
        stats = result["stats"]
        assert stats["total_possible_pairs"] == 3
        assert stats["passed_filtering"] == 1
        assert stats["route_stats"]["route_a"]["rejected"] == 2
        assert result["receipt"]["receipt_type"] == "candidate_filter"

    def test_rejection_reasons_counted(self):
        """Each Route A rejection is attributed to the first failing metric."""
        config = OverlapConfig(enable_multi_route_filtering=False)
        prototypes = [
            proto("a", {"valence": 1.0}),
            proto("b", {"threat": 1.0}),
            proto("c", {"valence": -1.0}),
        ]
        stats = CandidatePairFilter(config).filter_candidates(prototypes)["stats"]
        assert stats["rejected_by_active_axis_overlap"] == 2
        assert stats["rejected_by_sign_agreement"] == 1

    def test_route_b_rescues_nested_gates(self):
        """Deterministically nested gates are rescued by Route B."""
        prototypes = [
            proto("content", {"valence": 0.6, "threat": -0.4}, ["valence >= 0.2"]),
            proto("serene", {"engagement": -0.5, "arousal": -0.8}, ["valence >= 0.2", "threat <= 0.2"]),
        ]
        result = CandidatePairFilter(OverlapConfig()).filter_candidates(prototypes)
        assert len(result["candidates"]) == 1
        candidate = result["candidates"][0]
        assert candidate["selected_by"] == "route_b"
        assert candidate["gate_implication"].relation == "wider"
        assert result["stats"]["route_stats"]["route_b"]["passed"] == 1

    def test_route_c_rescues_co_firing_gates(self):
        """Pairs with no nesting but high gate overlap are rescued by Route C."""
        # incomparable regions, both open on most states
        prototypes = [
            proto("a", {"valence": 1.0}, ["threat <= 0.9"]),
            proto("b", {"threat": -1.0}, ["threat <= 0.95", "valence >= -0.95"]),
        ]
        config = OverlapConfig(prescan_sample_count=300)
        flt = CandidatePairFilter(config, prescan_filter=BehavioralPrescanFilter(
            config, np.random.default_rng(3)))
        result = flt.filter_candidates(prototypes)
        assert [c["selected_by"] for c in result["candidates"]] == ["route_c"]
        assert result["candidates"][0]["prescan"]["gate_overlap_ratio"] >= 0.5

    def test_dict_and_none_input(self):
        """Dict catalogs use their values; None yields nothing."""
        flt = CandidatePairFilter(OverlapConfig(enable_multi_route_filtering=False))
        catalog = {"joy": proto("joy", {"valence": 1.0}), "glee": proto("glee", {"valence": 0.9})}
        assert len(flt.filter_candidates(catalog)["candidates"]) == 1
        empty = flt.filter_candidates(None)
        assert empty["candidates"] == []
        assert empty["stats"]["total_possible_pairs"] == 0

    def test_weightless_dropped(self):
        """Prototypes with empty weights and non-prototypes are ignored."""
        flt = CandidatePairFilter(OverlapConfig())
        result = flt.filter_candidates([proto("empty", {}), None, proto("joy", {"valence": 1.0})])
        assert result["stats"]["prototypes_with_valid_weights"] == 1
        assert result["candidates"] == []


# =============================================================================
# PRESCAN
# =============================================================================

class TestPrescan:
    """BehavioralPrescanFilter."""

    def test_identical_gates_full_overlap(self):
        """Identical gates always co-open."""
        a = proto("a", {"valence": 1.0}, ["valence >= 0.2"])
        result = BehavioralPrescanFilter(OverlapConfig(), np.random.default_rng(1)).prescan(a, a, 200)
        assert result["gate_overlap_ratio"] == 1.0
        assert result["passes"]

    def test_disjoint_gates(self):
        """Disjoint gates never co-open."""
        a = proto("a", {"valence": 1.0}, ["valence >= 0.5"])
        b = proto("b", {"valence": -1.0}, ["valence <= -0.5"])
        result = BehavioralPrescanFilter(OverlapConfig(), np.random.default_rng(2)).prescan(a, b, 200)
        assert result["on_both_count"] == 0
        assert result["gate_overlap_ratio"] == 0.0
        assert not result["passes"]

    def test_never_open(self):
        """Gates that never open give ratio 0, not an error."""
        a = proto("a", {"valence": 1.0}, ["valence >= 2"])
        result = BehavioralPrescanFilter(OverlapConfig(), np.random.default_rng(3)).prescan(a, a, 50)
        assert result["on_either_count"] == 0
        assert result["gate_overlap_ratio"] == 0.0

    def test_limit_skips(self):
        """Pairs beyond max_prescan_pairs are skipped, in order."""
        config = OverlapConfig(max_prescan_pairs=1, prescan_sample_count=20)
        a = proto("a", {"valence": 1.0})
        b = proto("b", {"valence": 0.5})
        result = BehavioralPrescanFilter(config, np.random.default_rng(4)).filter_pairs([(a, b), (b, a)])
        assert [r["status"] for r in result["results"]] == ["passed", "skipped"]
        assert result["stats"] == {"total": 2, "evaluated": 1, "passed": 1, "skipped": 1}
        assert result["receipt"]["receipt_type"] == "prescan"
