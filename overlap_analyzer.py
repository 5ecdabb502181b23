"""
overlap_analyzer.py - Prototype Overlap Analysis

Finds redundant or nested prototypes in one family.

Pipeline:
    Stage A: candidate filter (routes A/B/C)  -> candidate pairs
    limit:   truncate to max_candidate_pairs   (logged)
    Stage B: behavioral overlap per pair
    Stage C: classification; non-no_match pairs become recommendations,
             the rest are checked for near misses

Recommendation severity = composite closeness score:
    0.3 * gate_overlap_ratio + 0.2 * (corr + 1) / 2 + 0.5 * (1 - global_mad)
"""

import logging
import math
from typing import Any, Callable, Dict, Iterable, List, Optional

import numpy as np

from receipts import emit_receipt, merkle
from config_schema import OverlapConfig
from behavioral_overlap import BehavioralOverlapEvaluator
from candidate_filter import CandidatePairFilter
from gate_implication import GateImplicationEvaluator
from overlap_classifier import OverlapClassifier
from prescan_filter import BehavioralPrescanFilter
from affect.types_state import Prototype, coerce_prototypes

logger = logging.getLogger(__name__)

FAMILIES = ("emotion", "sexual")

RECOMMENDED_ACTIONS = {
    "merge_recommended": "Merge into one prototype; they fire together with near-identical intensity.",
    "subsumption": "Remove or rework the subsumed prototype; the other covers its behavior.",
    "convert_to_expression": "Replace the narrower prototype with an expression over the wider one.",
    "nested_siblings": "Keep both but document the nesting; consider banding the narrower gates.",
}

RECEIPT_SCHEMA = ["overlap_analysis"]

StageProgress = Callable[[str, int, int], None]


# =============================================================================
# RECEIPT TYPE 1: overlap_analysis
# =============================================================================

# --- SCHEMA ---
OVERLAP_ANALYSIS_SCHEMA = {
    "receipt_type": "overlap_analysis",
    "ts": "ISO8601",
    "tenant_id": "str",
    "prototype_family": "str",
    "total_prototypes": "int",
    "candidate_pairs_evaluated": "int",
    "redundant_pairs_found": "int",
    "near_misses": "int",
    "summary_status": "str",
    "recommendations_root": "str (merkle of type/pair/narrower)",
    "payload_hash": "str (SHA256:BLAKE3)"
}


# --- EMIT ---
def emit_overlap_receipt(tenant_id: str, metadata: Dict[str, Any], near_misses: int,
                         recommendations: Optional[List[Dict[str, Any]]] = None) -> dict:
    """Emit overlap_analysis receipt for one analyze() call."""
    summaries = [[r["type"], r["prototype_a"], r["prototype_b"], r["narrower_prototype"]]
                 for r in recommendations or []]
    return emit_receipt("overlap_analysis", {
        "tenant_id": tenant_id,
        "prototype_family": metadata["prototype_family"],
        "total_prototypes": metadata["total_prototypes"],
        "candidate_pairs_evaluated": metadata["candidate_pairs_evaluated"],
        "redundant_pairs_found": metadata["redundant_pairs_found"],
        "near_misses": near_misses,
        "summary_status": metadata["summary_insight"]["status"],
        "recommendations_root": merkle(summaries),
    })


# =============================================================================
# CORE FUNCTION 1: composite_score
# =============================================================================

def composite_score(gate_overlap_ratio: float, correlation: float, global_mean_abs_diff: float,
                    config: Optional[OverlapConfig] = None) -> float:
    """
    Closeness of a pair in [0, 1]; NaN when gate ratio or correlation is missing.

    Without a global difference the gate and correlation weights are
    renormalized to sum to 1.
    """
    cfg = config or OverlapConfig()
    w_gate = cfg.composite_score_gate_overlap_weight
    w_corr = cfg.composite_score_correlation_weight
    w_diff = cfg.composite_score_global_diff_weight
    if not (math.isfinite(gate_overlap_ratio) and math.isfinite(correlation)):
        return math.nan
    norm_corr = (correlation + 1) / 2
    if not math.isfinite(global_mean_abs_diff):
        total = w_gate + w_corr
        if total <= 0:
            return math.nan
        return (gate_overlap_ratio * w_gate + norm_corr * w_corr) / total
    diff = min(1.0, max(0.0, global_mean_abs_diff))
    return gate_overlap_ratio * w_gate + norm_corr * w_corr + (1 - diff) * w_diff


def summary_insight(pairs_evaluated: int, recommendations: List[Dict[str, Any]],
                    near_miss_count: int, closest_pair: Optional[Dict[str, Any]],
                    breakdown: Dict[str, int]) -> Dict[str, Any]:
    if pairs_evaluated == 0:
        return {"status": "no_candidates",
                "message": "No structurally similar pairs found. Prototypes are already "
                           "well-differentiated at the structural level.",
                "closest_pair": None}
    if recommendations:
        merges = breakdown.get("merge_recommended", 0)
        subsumed = breakdown.get("subsumption", 0)
        message = f"Found {len(recommendations)} redundant pair(s)"
        if merges and subsumed:
            message += f" ({merges} merge, {subsumed} subsumed)"
        elif merges:
            message += " recommended for merging"
        elif subsumed:
            message += " with subsumption relationships"
        else:
            message += " with nesting relationships"
        return {"status": "redundant_found", "message": message + ".",
                "closest_pair": closest_pair}
    if near_miss_count:
        return {"status": "near_misses",
                "message": f"All {pairs_evaluated} structurally similar pairs were behaviorally "
                           f"distinct, but {near_miss_count} pair(s) came close to redundancy "
                           f"thresholds.",
                "closest_pair": closest_pair}
    return {"status": "well_differentiated",
            "message": f"All {pairs_evaluated} structurally similar pairs were behaviorally "
                       f"distinct. Your prototypes are well-differentiated.",
            "closest_pair": closest_pair}


def _in_family(prototype: Prototype, family: Optional[str]) -> bool:
    if family is None:
        return True
    if family == "sexual":
        return prototype.type == "sexual"
    return prototype.type != "sexual"


# =============================================================================
# CORE FUNCTION 2: PrototypeOverlapAnalyzer
# =============================================================================

class PrototypeOverlapAnalyzer:
    """
    Staged redundancy analysis for a prototype family.

    Args:
        config: OverlapConfig
        rng: Injected numpy Generator shared by prescan and Stage B
        tenant_id: Tenant recorded on receipts
    """

    def __init__(self, config: Optional[OverlapConfig] = None,
                 rng: Optional[np.random.Generator] = None,
                 tenant_id: str = "default"):
        self.config = config or OverlapConfig()
        self.tenant_id = tenant_id
        implication = GateImplicationEvaluator(tenant_id)
        self.candidate_filter = CandidatePairFilter(
            self.config,
            implication_evaluator=implication,
            prescan_filter=BehavioralPrescanFilter(self.config, rng, tenant_id),
            tenant_id=tenant_id,
        )
        self.behavioral = BehavioralOverlapEvaluator(self.config, rng, implication, tenant_id)
        self.classifier = OverlapClassifier(self.config)

    def _empty_result(self, family: Optional[str], total: int) -> Dict[str, Any]:
        metadata = {
            "prototype_family": family,
            "total_prototypes": total,
            "candidate_pairs_found": 0,
            "candidate_pairs_evaluated": 0,
            "redundant_pairs_found": 0,
            "sample_count_per_pair": self.config.sample_count_per_pair,
            "filtering_stats": None,
            "classification_breakdown": {},
            "summary_insight": {
                "status": "insufficient_data",
                "message": "Fewer than 2 prototypes available for analysis.",
                "closest_pair": None,
            },
        }
        return {"recommendations": [], "near_misses": [], "metadata": metadata,
                "receipt": emit_overlap_receipt(self.tenant_id, metadata, 0)}

    def analyze(self, prototypes: Optional[Iterable[Any]], family: Optional[str] = "emotion",
                on_progress: Optional[StageProgress] = None) -> Dict[str, Any]:
        """
        Analyze one prototype family for redundancy.

        Args:
            prototypes: Prototype objects or a raw catalog
            family: 'emotion' (emotion and mood types), 'sexual', or None for all
            on_progress: Called as on_progress(stage, current, total)

        Returns:
            dict: recommendations, near_misses, metadata, receipt
        """
        default_type = "sexual" if family == "sexual" else "emotion"
        catalog = [p for p in coerce_prototypes(prototypes, default_type) if _in_family(p, family)]
        if len(catalog) < 2:
            return self._empty_result(family, len(catalog))

        cfg = self.config
        if on_progress:
            on_progress("filtering", 0, 1)
        filtered = self.candidate_filter.filter_candidates(catalog)
        candidates = filtered["candidates"]
        if on_progress:
            on_progress("filtering", 1, 1)
        logger.debug("Stage A found %d candidate pairs", len(candidates))

        pairs = candidates[:cfg.max_candidate_pairs]
        if len(candidates) > cfg.max_candidate_pairs:
            logger.warning("Truncated candidate pairs from %d to %d (safety limit)",
                           len(candidates), cfg.max_candidate_pairs)

        recommendations: List[Dict[str, Any]] = []
        near_misses: List[Dict[str, Any]] = []
        breakdown = {name: 0 for name in ("merge_recommended", "subsumption",
                                          "convert_to_expression", "nested_siblings", "no_match")}
        closest_pair = None
        best_score = -math.inf

        for index, candidate in enumerate(pairs):
            a, b = candidate["prototype_a"], candidate["prototype_b"]
            behavior = self.behavioral.evaluate(a, b)
            classification = self.classifier.classify(candidate["candidate_metrics"], behavior)
            breakdown[classification.type] += 1

            m = classification.evidence["metrics"]
            score = composite_score(m["gate_overlap_ratio"], m["pearson_correlation"],
                                    m["global_mean_abs_diff"], cfg)
            if math.isfinite(score) and score > best_score:
                best_score = score
                closest_pair = {
                    "prototype_a": a.id,
                    "prototype_b": b.id,
                    "correlation": m["pearson_correlation"],
                    "gate_overlap_ratio": m["gate_overlap_ratio"],
                    "composite_score": score,
                    "global_mean_abs_diff": m["global_mean_abs_diff"],
                    "global_output_correlation": m["global_output_correlation"],
                }

            if classification.type != "no_match":
                recommendations.append({
                    "type": classification.type,
                    "prototype_family": family,
                    "prototype_a": a.id,
                    "prototype_b": b.id,
                    "severity": score if math.isfinite(score) else 0.0,
                    "confidence": classification.confidence,
                    "narrower_prototype": classification.narrower_prototype,
                    "action": RECOMMENDED_ACTIONS[classification.type],
                    "selected_by": candidate["selected_by"],
                    "classification": classification,
                    "candidate_metrics": candidate["candidate_metrics"],
                    "behavior_metrics": {key: behavior[key] for key in (
                        "gate_overlap", "intensity", "pass_rates",
                        "high_coactivation", "gate_implication")},
                    "divergence_examples": behavior["divergence_examples"],
                    "all_matching_classifications": list(classification.all_matching_classifications),
                })
            else:
                near_miss = self.classifier.check_near_miss(candidate["candidate_metrics"], behavior)
                if near_miss["is_near_miss"]:
                    near_misses.append({
                        "prototype_a": a.id,
                        "prototype_b": b.id,
                        "near_miss_info": near_miss,
                        "candidate_metrics": candidate["candidate_metrics"],
                    })

            if on_progress:
                on_progress("evaluating", index + 1, len(pairs))

        recommendations.sort(key=lambda r: r["severity"], reverse=True)

        def near_miss_key(entry: Dict[str, Any]) -> float:
            corr = entry["near_miss_info"]["metrics"]["pearson_correlation"]
            return corr if isinstance(corr, float) and math.isfinite(corr) else 0.0

        near_misses.sort(key=near_miss_key, reverse=True)
        near_misses = near_misses[:cfg.max_near_miss_pairs_to_report]

        metadata = {
            "prototype_family": family,
            "total_prototypes": len(catalog),
            "candidate_pairs_found": len(candidates),
            "candidate_pairs_evaluated": len(pairs),
            "redundant_pairs_found": len(recommendations),
            "sample_count_per_pair": cfg.sample_count_per_pair,
            "filtering_stats": filtered["stats"],
            "classification_breakdown": breakdown,
            "summary_insight": summary_insight(len(pairs), recommendations, len(near_misses),
                                               closest_pair, breakdown),
        }
        logger.info("Overlap analysis complete: %d redundant pairs from %d candidates",
                    len(recommendations), len(pairs))
        return {
            "recommendations": recommendations,
            "near_misses": near_misses,
            "metadata": metadata,
            "receipt": emit_overlap_receipt(self.tenant_id, metadata, len(near_misses),
                                            recommendations),
        }
