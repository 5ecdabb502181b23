"""
overlap_classifier.py - Stage C Overlap Classification

Turns Stage A and Stage B metrics for one pair into a label. Checks run in
priority order; the first match is primary, later matches are kept as
secondary labels:

    1. merge_recommended      near-identical behavior, no dominance
    2. subsumption            one prototype rarely fires alone and is
                              dominated by the other
    3. convert_to_expression  deterministic nesting whose narrower side is a
                              low-threat steady state (threat upper <= 0.20)
    4. nested_siblings        deterministic or behavioral nesting
    5. no_match

NaN correlation or mean absolute difference fails every check that reads it.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from config_schema import OverlapConfig
from affect.types_result import OverlapClassification

logger = logging.getLogger(__name__)

CLASSIFICATION_PRIORITY = (
    "merge_recommended",
    "subsumption",
    "convert_to_expression",
    "nested_siblings",
    "no_match",
)

LOW_THREAT_UPPER_BOUND = 0.20


def _nan(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def extract_metrics(candidate_metrics: Optional[Dict[str, Any]],
                    behavior_metrics: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Flatten Stage A and Stage B outputs into one metrics view."""
    candidate_metrics = candidate_metrics or {}
    behavior_metrics = behavior_metrics or {}
    gate_overlap = behavior_metrics.get("gate_overlap") or {}
    intensity = behavior_metrics.get("intensity") or {}

    on_either = gate_overlap.get("on_either_rate", 0.0)
    on_both = gate_overlap.get("on_both_rate", 0.0)
    return {
        "active_axis_overlap": candidate_metrics.get("active_axis_overlap", 0.0),
        "sign_agreement": candidate_metrics.get("sign_agreement", 0.0),
        "weight_cosine_similarity": candidate_metrics.get("weight_cosine_similarity", 0.0),
        "on_either_rate": on_either,
        "on_both_rate": on_both,
        "p_only_rate": gate_overlap.get("p_only_rate", 0.0),
        "q_only_rate": gate_overlap.get("q_only_rate", 0.0),
        "gate_overlap_ratio": on_both / on_either if on_either > 0 else 0.0,
        "pearson_correlation": intensity.get("pearson_correlation", math.nan),
        "mean_abs_diff": intensity.get("mean_abs_diff", math.nan),
        "dominance_p": intensity.get("dominance_p", 0.0),
        "dominance_q": intensity.get("dominance_q", 0.0),
        "global_mean_abs_diff": intensity.get("global_mean_abs_diff", math.nan),
        "global_output_correlation": intensity.get("global_output_correlation", math.nan),
        "pass_rates": behavior_metrics.get("pass_rates"),
        "gate_implication": behavior_metrics.get("gate_implication"),
        "gate_parse_info": behavior_metrics.get("gate_parse_info"),
    }


class OverlapClassifier:
    """Priority classifier over one pair's metrics."""

    def __init__(self, config: Optional[OverlapConfig] = None):
        self.config = config or OverlapConfig()

    def thresholds(self) -> Dict[str, Any]:
        cfg = self.config
        return {
            "min_on_either_rate_for_merge": cfg.min_on_either_rate_for_merge,
            "min_gate_overlap_ratio": cfg.min_gate_overlap_ratio,
            "min_correlation_for_merge": cfg.min_correlation_for_merge,
            "max_mean_abs_diff_for_merge": cfg.max_mean_abs_diff_for_merge,
            "max_exclusive_rate_for_subsumption": cfg.max_exclusive_rate_for_subsumption,
            "min_correlation_for_subsumption": cfg.min_correlation_for_subsumption,
            "min_dominance_for_subsumption": cfg.min_dominance_for_subsumption,
            "nested_conditional_threshold": cfg.nested_conditional_threshold,
        }

    # --- checks: each returns (matches, narrower_prototype, confidence) ---

    def _merge(self, m: Dict[str, Any]) -> Tuple[bool, Optional[str], str]:
        cfg = self.config
        ok = (
            m["on_either_rate"] >= cfg.min_on_either_rate_for_merge
            and m["gate_overlap_ratio"] >= cfg.min_gate_overlap_ratio
            and not _nan(m["pearson_correlation"])
            and m["pearson_correlation"] >= cfg.min_correlation_for_merge
            and not _nan(m["mean_abs_diff"])
            and m["mean_abs_diff"] <= cfg.max_mean_abs_diff_for_merge
            and m["dominance_p"] < cfg.min_dominance_for_subsumption
            and m["dominance_q"] < cfg.min_dominance_for_subsumption
        )
        return ok, None, "behavioral" if ok else "none"

    def _subsumption(self, m: Dict[str, Any]) -> Tuple[bool, Optional[str], str]:
        cfg = self.config
        corr = m["pearson_correlation"]
        if _nan(corr) or corr < cfg.min_correlation_for_subsumption:
            return False, None, "none"
        if (m["p_only_rate"] <= cfg.max_exclusive_rate_for_subsumption
                and m["dominance_q"] >= cfg.min_dominance_for_subsumption):
            return True, "a", "behavioral"
        if (m["q_only_rate"] <= cfg.max_exclusive_rate_for_subsumption
                and m["dominance_p"] >= cfg.min_dominance_for_subsumption):
            return True, "b", "behavioral"
        return False, None, "none"

    @staticmethod
    def _parse_complete(m: Dict[str, Any]) -> bool:
        info = m["gate_parse_info"]
        if not info:
            return False
        return all((info.get(side) or {}).get("parse_status") == "complete"
                   for side in ("prototype_a", "prototype_b"))

    def deterministic_nesting(self, m: Dict[str, Any]) -> Optional[str]:
        """Narrower side ('a'/'b') under non-vacuous one-way gate implication."""
        implication = m["gate_implication"]
        if implication is None or not self._parse_complete(m) or implication.is_vacuous:
            return None
        if implication.a_implies_b == implication.b_implies_a:
            return None
        return "a" if implication.a_implies_b else "b"

    def behavioral_nesting(self, m: Dict[str, Any]) -> Optional[str]:
        """Narrower side when one conditional pass rate is near 1 and the other is not."""
        rates = m["pass_rates"]
        if not rates:
            return None
        p_a_given_b = rates.get("p_a_given_b", math.nan)
        p_b_given_a = rates.get("p_b_given_a", math.nan)
        if _nan(p_a_given_b) or _nan(p_b_given_a):
            return None
        threshold = self.config.nested_conditional_threshold
        if p_b_given_a >= threshold and p_a_given_b < threshold:
            return "a"
        if p_a_given_b >= threshold and p_b_given_a < threshold:
            return "b"
        return None

    def _convert_to_expression(self, m: Dict[str, Any]) -> Tuple[bool, Optional[str], str]:
        if not self.config.enable_convert_to_expression:
            return False, None, "none"
        if self.deterministic_nesting(m) is None and self.behavioral_nesting(m) is None:
            return False, None, "none"

        implication = m["gate_implication"]
        if implication is None or implication.is_vacuous:
            return False, None, "none"
        if implication.a_implies_b == implication.b_implies_a:
            return False, None, "none"
        threat = implication.axis_evidence("threat")
        if threat is None:
            return False, None, "none"

        narrower = "a" if implication.a_implies_b else "b"
        interval = threat["interval_a"] if narrower == "a" else threat["interval_b"]
        upper = interval.get("upper")
        if upper is not None and upper <= LOW_THREAT_UPPER_BOUND:
            return True, narrower, "deterministic"
        return False, None, "none"

    def _nested_siblings(self, m: Dict[str, Any]) -> Tuple[bool, Optional[str], str]:
        narrower = self.deterministic_nesting(m)
        if narrower is not None:
            return True, narrower, "deterministic"
        narrower = self.behavioral_nesting(m)
        if narrower is not None:
            return True, narrower, "behavioral"
        return False, None, "none"

    def classify(self, candidate_metrics: Optional[Dict[str, Any]],
                 behavior_metrics: Optional[Dict[str, Any]]) -> OverlapClassification:
        """
        Classify one pair.

        Args:
            candidate_metrics: Stage A score() output
            behavior_metrics: Stage B evaluate() output

        Returns:
            OverlapClassification with the primary label first in
            all_matching_classifications
        """
        metrics = extract_metrics(candidate_metrics, behavior_metrics)
        checks = (
            ("merge_recommended", self._merge),
            ("subsumption", self._subsumption),
            ("convert_to_expression", self._convert_to_expression),
            ("nested_siblings", self._nested_siblings),
        )

        matches: List[Dict[str, Any]] = []
        primary: Optional[Tuple[str, Optional[str], str]] = None
        for name, check in checks:
            ok, narrower, confidence = check(metrics)
            if not ok:
                continue
            matches.append({"type": name, "is_primary": primary is None,
                            "narrower_prototype": narrower, "confidence": confidence})
            if primary is None:
                primary = (name, narrower, confidence)

        if primary is None:
            primary = ("no_match", None, "none")
            matches.append({"type": "no_match", "is_primary": True,
                            "narrower_prototype": None, "confidence": "none"})

        label, narrower, confidence = primary
        logger.debug("classified as %s (narrower=%s, confidence=%s, secondary=%d)",
                     label, narrower, confidence, len(matches) - 1)
        return OverlapClassification(
            type=label,
            narrower_prototype=narrower,
            confidence=confidence,
            all_matching_classifications=tuple(matches),
            evidence={"metrics": metrics, "thresholds": self.thresholds()},
        )

    def check_near_miss(self, candidate_metrics: Optional[Dict[str, Any]],
                        behavior_metrics: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Is this pair close to the merge thresholds without meeting them?

        Returns:
            dict: is_near_miss, reason, metrics, threshold_proximity
        """
        cfg = self.config
        m = extract_metrics(candidate_metrics, behavior_metrics)
        corr = m["pearson_correlation"]
        ratio = m["gate_overlap_ratio"]

        if m["on_either_rate"] < cfg.min_on_either_rate_for_merge:
            return {"is_near_miss": False, "metrics": m}

        high_corr = (not _nan(corr) and cfg.near_miss_correlation_threshold <= corr
                     < cfg.min_correlation_for_merge)
        high_gate = cfg.near_miss_gate_overlap_ratio <= ratio < cfg.min_gate_overlap_ratio

        reasons = []
        if high_corr:
            reasons.append(f"correlation {corr:.3f} (threshold: {cfg.min_correlation_for_merge})")
        if high_gate:
            reasons.append(f"gate overlap {ratio:.3f} (threshold: {cfg.min_gate_overlap_ratio})")

        both_ok = (not _nan(corr) and corr >= cfg.near_miss_correlation_threshold
                   and ratio >= cfg.near_miss_gate_overlap_ratio)
        mad = m["mean_abs_diff"]
        if both_ok and not reasons and (_nan(mad) or mad > cfg.max_mean_abs_diff_for_merge):
            shown = "NaN" if _nan(mad) else f"{mad:.3f}"
            reasons.append(f"mean abs diff {shown} (threshold: {cfg.max_mean_abs_diff_for_merge})")

        if not reasons:
            return {"is_near_miss": False, "metrics": m}

        return {
            "is_near_miss": True,
            "reason": "; ".join(reasons),
            "metrics": m,
            "threshold_proximity": {
                "correlation": {
                    "value": corr,
                    "near_miss_threshold": cfg.near_miss_correlation_threshold,
                    "merge_threshold": cfg.min_correlation_for_merge,
                    "met": not _nan(corr) and corr >= cfg.near_miss_correlation_threshold,
                },
                "gate_overlap_ratio": {
                    "value": ratio,
                    "near_miss_threshold": cfg.near_miss_gate_overlap_ratio,
                    "merge_threshold": cfg.min_gate_overlap_ratio,
                    "met": ratio >= cfg.near_miss_gate_overlap_ratio,
                },
                "on_either_rate": {
                    "value": m["on_either_rate"],
                    "threshold": cfg.min_on_either_rate_for_merge,
                    "met": True,
                },
            },
        }
