"""
candidate_filter.py - Stage A Candidate Filtering

Which prototype pairs are worth behavioral sampling? Route A scores pairs
in weight space; with multi-route filtering on, pairs Route A rejects get
two more chances:

    Route A: active_axis_overlap, sign_agreement, cosine >= candidate_min_*
    Route B: non-vacuous deterministic gate nesting (A => B or B => A)
    Route C: behavioral prescan gate overlap

Each candidate is tagged with the route that selected it (selected_by).
"""

import itertools
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import numpy as np

from receipts import emit_receipt
from config_schema import OverlapConfig
from gate_implication import GateImplicationEvaluator, implication_or_none
from prescan_filter import BehavioralPrescanFilter
from affect.types_state import Prototype

logger = logging.getLogger(__name__)

RECEIPT_SCHEMA = ["candidate_filter"]


# =============================================================================
# RECEIPT TYPE 1: candidate_filter
# =============================================================================

# --- SCHEMA ---
CANDIDATE_FILTER_SCHEMA = {
    "receipt_type": "candidate_filter",
    "ts": "ISO8601",
    "tenant_id": "str",
    "prototypes_with_valid_weights": "int",
    "total_possible_pairs": "int",
    "passed_filtering": "int",
    "route_stats": "{route_a, route_b, route_c}",
    "payload_hash": "str (SHA256:BLAKE3)"
}


# --- EMIT ---
def emit_candidate_filter_receipt(tenant_id: str, stats: Dict[str, Any]) -> dict:
    """Emit candidate_filter receipt for one filter_candidates() call."""
    return emit_receipt("candidate_filter", {
        "tenant_id": tenant_id,
        "prototypes_with_valid_weights": stats["prototypes_with_valid_weights"],
        "total_possible_pairs": stats["total_possible_pairs"],
        "passed_filtering": stats["passed_filtering"],
        "route_stats": stats["route_stats"],
    })


# =============================================================================
# CORE FUNCTION 1: CandidateMetricsScorer
# =============================================================================

def _finite_weights(prototype: Prototype) -> Dict[str, float]:
    return {axis: float(w) for axis, w in prototype.weights.items() if math.isfinite(w)}


class CandidateMetricsScorer:
    """Weight-space similarity of two prototypes."""

    def __init__(self, config: Optional[OverlapConfig] = None):
        self.config = config or OverlapConfig()

    def active_axes(self, weights: Dict[str, float]) -> Set[str]:
        return {axis for axis, w in weights.items() if abs(w) >= self.config.active_axis_epsilon}

    def soft_sign(self, weight: float) -> int:
        if abs(weight) < self.config.soft_sign_threshold:
            return 0
        return 1 if weight > 0 else -1

    def score(self, a: Prototype, b: Prototype) -> Dict[str, float]:
        """
        Stage A metrics for one pair.

        Returns:
            dict: active_axis_overlap (Jaccard of active sets),
                  sign_agreement (over shared active axes),
                  weight_cosine_similarity (zero-padded union)
        """
        weights_a = _finite_weights(a)
        weights_b = _finite_weights(b)
        active_a = self.active_axes(weights_a)
        active_b = self.active_axes(weights_b)

        union = active_a | active_b
        shared = active_a & active_b
        if union:
            jaccard = len(shared) / len(union)
        else:
            jaccard = self.config.jaccard_empty_set_value

        if shared:
            agree = sum(1 for axis in shared
                        if self.soft_sign(weights_a[axis]) == self.soft_sign(weights_b[axis]))
            sign_agreement = agree / len(shared)
        else:
            sign_agreement = 0.0

        axes = sorted(set(weights_a) | set(weights_b))
        vec_a = np.array([weights_a.get(axis, 0.0) for axis in axes])
        vec_b = np.array([weights_b.get(axis, 0.0) for axis in axes])
        norm_a = float(np.linalg.norm(vec_a))
        norm_b = float(np.linalg.norm(vec_b))
        if norm_a == 0 or norm_b == 0:
            cosine = 0.0
        else:
            cosine = float(np.clip(vec_a @ vec_b / (norm_a * norm_b), -1.0, 1.0))

        return {
            "active_axis_overlap": jaccard,
            "sign_agreement": sign_agreement,
            "weight_cosine_similarity": cosine,
        }


# =============================================================================
# CORE FUNCTION 2: CandidatePairFilter
# =============================================================================

class CandidatePairFilter:
    """
    Enumerate unordered prototype pairs and keep the promising ones.

    Args:
        config: OverlapConfig
        implication_evaluator: Route B evaluator (created when None)
        prescan_filter: Route C filter (created when None)
        tenant_id: Tenant recorded on receipts
    """

    def __init__(self, config: Optional[OverlapConfig] = None,
                 implication_evaluator: Optional[GateImplicationEvaluator] = None,
                 prescan_filter: Optional[BehavioralPrescanFilter] = None,
                 tenant_id: str = "default"):
        self.config = config or OverlapConfig()
        self.scorer = CandidateMetricsScorer(self.config)
        self.implication_evaluator = implication_evaluator or GateImplicationEvaluator(tenant_id)
        self.prescan_filter = prescan_filter or BehavioralPrescanFilter(self.config, tenant_id=tenant_id)
        self.tenant_id = tenant_id

    def _route_a_rejection(self, metrics: Dict[str, float]) -> Optional[str]:
        cfg = self.config
        if metrics["active_axis_overlap"] < cfg.candidate_min_active_axis_overlap:
            return "active_axis_overlap"
        if metrics["sign_agreement"] < cfg.candidate_min_sign_agreement:
            return "sign_agreement"
        if metrics["weight_cosine_similarity"] < cfg.candidate_min_cosine_similarity:
            return "cosine_similarity"
        return None

    def filter_candidates(self, prototypes: Optional[Iterable[Any]]) -> Dict[str, Any]:
        """
        Run Route A (and B/C when enabled) over all unordered pairs.

        Args:
            prototypes: Prototype objects; None entries and prototypes
                without weights are dropped

        Returns:
            dict: candidates [{prototype_a, prototype_b, candidate_metrics,
                  selected_by, ...}], stats, receipt
        """
        if isinstance(prototypes, dict):
            prototypes = list(prototypes.values())
        if prototypes is None or isinstance(prototypes, (str, bytes)):
            prototypes = []
        valid = [p for p in prototypes if isinstance(p, Prototype) and p.weights]

        stats: Dict[str, Any] = {
            "prototypes_with_valid_weights": len(valid),
            "total_possible_pairs": len(valid) * (len(valid) - 1) // 2,
            "passed_filtering": 0,
            "rejected_by_active_axis_overlap": 0,
            "rejected_by_sign_agreement": 0,
            "rejected_by_cosine_similarity": 0,
            "route_stats": {
                "route_a": {"passed": 0, "rejected": 0},
                "route_b": {"evaluated": 0, "passed": 0},
                "route_c": {"evaluated": 0, "passed": 0, "skipped": 0},
            },
        }

        candidates: List[Dict[str, Any]] = []
        rejected: List[Tuple[Prototype, Prototype, Dict[str, float]]] = []
        for a, b in itertools.combinations(valid, 2):
            metrics = self.scorer.score(a, b)
            reason = self._route_a_rejection(metrics)
            if reason is None:
                candidates.append({"prototype_a": a, "prototype_b": b,
                                   "candidate_metrics": metrics, "selected_by": "route_a"})
                stats["route_stats"]["route_a"]["passed"] += 1
            else:
                stats[f"rejected_by_{reason}"] += 1
                stats["route_stats"]["route_a"]["rejected"] += 1
                rejected.append((a, b, metrics))

        if self.config.enable_multi_route_filtering and rejected:
            rejected = self._route_b(rejected, candidates, stats)
            self._route_c(rejected, candidates, stats)

        stats["passed_filtering"] = len(candidates)
        logger.debug(
            "candidate filter: %d/%d pairs passed (A=%d B=%d C=%d)",
            len(candidates), stats["total_possible_pairs"],
            stats["route_stats"]["route_a"]["passed"],
            stats["route_stats"]["route_b"]["passed"],
            stats["route_stats"]["route_c"]["passed"],
        )
        return {
            "candidates": candidates,
            "stats": stats,
            "receipt": emit_candidate_filter_receipt(self.tenant_id, stats),
        }

    def _route_b(self, rejected, candidates, stats):
        remaining = []
        for a, b, metrics in rejected:
            implication = implication_or_none(a, b, self.implication_evaluator)
            if implication is None:
                remaining.append((a, b, metrics))
                continue
            stats["route_stats"]["route_b"]["evaluated"] += 1
            nested = implication.a_implies_b != implication.b_implies_a
            if nested and not implication.is_vacuous:
                stats["route_stats"]["route_b"]["passed"] += 1
                candidates.append({"prototype_a": a, "prototype_b": b,
                                   "candidate_metrics": metrics, "selected_by": "route_b",
                                   "gate_implication": implication})
            else:
                remaining.append((a, b, metrics))
        return remaining

    def _route_c(self, rejected, candidates, stats):
        if not rejected:
            return
        metrics_by_pair = {(a.id, b.id): m for a, b, m in rejected}
        outcome = self.prescan_filter.filter_pairs([(a, b) for a, b, _ in rejected])
        route_c = stats["route_stats"]["route_c"]
        route_c["evaluated"] = outcome["stats"]["evaluated"]
        route_c["skipped"] = outcome["stats"]["skipped"]
        for entry in outcome["passed"]:
            a, b = entry["prototype_a"], entry["prototype_b"]
            route_c["passed"] += 1
            candidates.append({"prototype_a": a, "prototype_b": b,
                               "candidate_metrics": metrics_by_pair[(a.id, b.id)],
                               "selected_by": "route_c", "prescan": entry["prescan"]})
