"""
behavioral_overlap.py - Stage B Behavioral Overlap

Do two prototypes behave alike on the same random states? Samples static
states and compares gate openings and gated intensities.

Gate overlap:   on_either, on_both, p_only (A alone), q_only (B alone)
Co-pass:        pearson, mean_abs_diff, rmse, pct_within_eps, dominance
Global:         same comparisons over ALL samples (closed gate = 0),
                guarding against selection bias when co-pass is rare
Pass rates:     P(A), P(B), P(A|B), P(B|A) (NaN below min pass samples)

Gate implication is attached only when both prototypes' gates parsed
completely.
"""

import heapq
import itertools
import logging
import math
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from receipts import emit_receipt
from config_schema import OverlapConfig
from gate_implication import GateImplicationEvaluator, implication_or_none
from affect.context import gates_pass, normalized_views, signal_from_normalized, view_for
from affect.temporal import TemporalStateGenerator
from affect.types_state import Prototype

logger = logging.getLogger(__name__)

PROGRESS_CHUNK_SIZE = 1000
SUMMARY_AXES_LIMIT = 6

RECEIPT_SCHEMA = ["behavioral_overlap"]


# =============================================================================
# RECEIPT TYPE 1: behavioral_overlap
# =============================================================================

# --- SCHEMA ---
BEHAVIORAL_OVERLAP_SCHEMA = {
    "receipt_type": "behavioral_overlap",
    "ts": "ISO8601",
    "tenant_id": "str",
    "prototype_a": "str",
    "prototype_b": "str",
    "sample_count": "int",
    "on_both_rate": "float",
    "pearson_correlation": "float|null",
    "gate_implication": "str|null",
    "payload_hash": "str (SHA256:BLAKE3)"
}


# --- EMIT ---
def emit_behavioral_receipt(tenant_id: str, a: Prototype, b: Prototype,
                            metrics: Dict[str, Any]) -> dict:
    """Emit behavioral_overlap receipt for one evaluated pair."""
    implication = metrics["gate_implication"]
    return emit_receipt("behavioral_overlap", {
        "tenant_id": tenant_id,
        "prototype_a": a.id,
        "prototype_b": b.id,
        "sample_count": metrics["sample_count"],
        "on_both_rate": metrics["gate_overlap"]["on_both_rate"],
        "pearson_correlation": metrics["intensity"]["pearson_correlation"],
        "gate_implication": implication.relation if implication is not None else None,
    })


# =============================================================================
# HELPERS
# =============================================================================

def pearson(xs: List[float], ys: List[float]) -> float:
    """Pearson correlation; NaN when n < 2 or either side is constant."""
    if len(xs) < 2:
        return math.nan
    x = np.asarray(xs, dtype=float)
    y = np.asarray(ys, dtype=float)
    dx = x - x.mean()
    dy = y - y.mean()
    denom = math.sqrt(float(dx @ dx) * float(dy @ dy))
    if denom == 0:
        return math.nan
    return float(np.clip(dx @ dy / denom, -1.0, 1.0))


def _context_summary(pair, a: Prototype, b: Prototype) -> Dict[str, Any]:
    axes = list(dict.fromkeys(list(a.weights) + list(b.weights) +
                              [g.axis for g in a.gates + b.gates]))
    current = pair.current.values
    traits = pair.affect_traits.values
    summary = {}
    for axis in axes[:SUMMARY_AXES_LIMIT]:
        if axis in current:
            summary[axis] = current[axis]
        elif axis in traits:
            summary[axis] = traits[axis]
    return summary


def gate_parse_info(prototype: Prototype) -> Dict[str, Any]:
    total = len(prototype.gates) + len(prototype.unparsed_gates)
    return {
        "parse_status": prototype.gate_parse_status,
        "parsed_gate_count": len(prototype.gates),
        "total_gate_count": total,
        "unparsed_gates": list(prototype.unparsed_gates),
    }


# =============================================================================
# CORE FUNCTION 1: BehavioralOverlapEvaluator
# =============================================================================

class BehavioralOverlapEvaluator:
    """
    Sampled behavioral comparison of two prototypes.

    Args:
        config: OverlapConfig (Stage B fields are read)
        rng: Injected numpy Generator
        implication_evaluator: Gate implication evaluator (created when None)
        tenant_id: Tenant recorded on receipts
    """

    def __init__(self, config: Optional[OverlapConfig] = None,
                 rng: Optional[np.random.Generator] = None,
                 implication_evaluator: Optional[GateImplicationEvaluator] = None,
                 tenant_id: str = "default"):
        self.config = config or OverlapConfig()
        self.generator = TemporalStateGenerator(rng)
        self.implication_evaluator = implication_evaluator or GateImplicationEvaluator(tenant_id)
        self.tenant_id = tenant_id

    def evaluate(self, a: Prototype, b: Prototype, sample_count: Optional[int] = None,
                 on_progress: Optional[Callable[[int, int], None]] = None) -> Dict[str, Any]:
        """
        Compare two prototypes over static random states.

        Args:
            a: First prototype
            b: Second prototype
            sample_count: Samples (config.sample_count_per_pair when None)
            on_progress: Called as on_progress(processed, total) per chunk

        Returns:
            dict: gate_overlap, intensity, pass_rates, high_coactivation,
                  divergence_examples, gate_implication, gate_parse_info,
                  sample_count, receipt
        """
        cfg = self.config
        n = cfg.sample_count_per_pair if sample_count is None else max(0, int(sample_count))

        on_either = on_both = p_only = q_only = 0
        dominance_p = dominance_q = 0
        co_a: List[float] = []
        co_b: List[float] = []
        global_a: List[float] = []
        global_b: List[float] = []
        heap: List[tuple] = []
        tiebreak = itertools.count()
        counters = [{"t": t, "high_a": 0, "high_b": 0, "high_both": 0,
                     "either_high": 0, "agreement": 0} for t in cfg.high_thresholds]

        for i in range(n):
            pair = self.generator.generate("uniform", "static")
            views = normalized_views(pair.current, pair.affect_traits)
            view_a = view_for(a, views)
            view_b = view_for(b, views)
            pass_a = gates_pass(a, view_a)
            pass_b = gates_pass(b, view_b)
            out_a = signal_from_normalized(a, view_a).raw if pass_a else 0.0
            out_b = signal_from_normalized(b, view_b).raw if pass_b else 0.0
            global_a.append(out_a)
            global_b.append(out_b)

            if pass_a or pass_b:
                on_either += 1
                for c in counters:
                    high_a = out_a >= c["t"]
                    high_b = out_b >= c["t"]
                    c["high_a"] += high_a
                    c["high_b"] += high_b
                    c["high_both"] += high_a and high_b
                    c["either_high"] += high_a or high_b
                    c["agreement"] += high_a == high_b
            if pass_a and pass_b:
                on_both += 1
                co_a.append(out_a)
                co_b.append(out_b)
                if out_a > out_b + cfg.dominance_delta:
                    dominance_p += 1
                if out_b > out_a + cfg.dominance_delta:
                    dominance_q += 1
                self._push_divergence(heap, tiebreak, {
                    "intensity_a": out_a,
                    "intensity_b": out_b,
                    "abs_diff": abs(out_a - out_b),
                    "context_summary": _context_summary(pair, a, b),
                })
            elif pass_a:
                p_only += 1
            elif pass_b:
                q_only += 1

            processed = i + 1
            if on_progress is not None and (processed % PROGRESS_CHUNK_SIZE == 0 or processed == n):
                on_progress(processed, n)

        def rate(count: int) -> float:
            return count / n if n > 0 else 0.0

        joint = len(co_a)
        pearson_corr = mean_abs_diff = rmse = pct_within_eps = math.nan
        if joint >= cfg.min_co_pass_samples and joint > 0:
            pearson_corr = pearson(co_a, co_b)
            diffs = np.asarray(co_a) - np.asarray(co_b)
            mean_abs_diff = float(np.abs(diffs).mean())
            rmse = float(math.sqrt((diffs ** 2).mean()))
            pct_within_eps = float((np.abs(diffs) <= cfg.intensity_eps).mean())

        if n > 0:
            global_diffs = np.asarray(global_a) - np.asarray(global_b)
            global_mad = float(np.abs(global_diffs).mean())
            global_l2 = float(math.sqrt((global_diffs ** 2).mean()))
        else:
            global_mad = global_l2 = math.nan

        pass_a_count = on_both + p_only
        pass_b_count = on_both + q_only
        min_pass = cfg.min_pass_samples_for_conditional

        implication = implication_or_none(a, b, self.implication_evaluator)

        metrics: Dict[str, Any] = {
            "sample_count": n,
            "gate_overlap": {
                "on_either_rate": rate(on_either),
                "on_both_rate": rate(on_both),
                "p_only_rate": rate(p_only),
                "q_only_rate": rate(q_only),
            },
            "intensity": {
                "pearson_correlation": pearson_corr,
                "mean_abs_diff": mean_abs_diff,
                "rmse": rmse,
                "pct_within_eps": pct_within_eps,
                "dominance_p": dominance_p / joint if joint else 0.0,
                "dominance_q": dominance_q / joint if joint else 0.0,
                "global_mean_abs_diff": global_mad,
                "global_l2_distance": global_l2,
                "global_output_correlation": pearson(global_a, global_b),
            },
            "pass_rates": {
                "pass_a_rate": rate(pass_a_count),
                "pass_b_rate": rate(pass_b_count),
                "p_a_given_b": on_both / pass_b_count if pass_b_count >= min_pass else math.nan,
                "p_b_given_a": on_both / pass_a_count if pass_a_count >= min_pass else math.nan,
                "co_pass_count": on_both,
                "pass_a_count": pass_a_count,
                "pass_b_count": pass_b_count,
            },
            "high_coactivation": [
                {
                    "t": c["t"],
                    "p_high_a": c["high_a"] / on_either if on_either else 0.0,
                    "p_high_b": c["high_b"] / on_either if on_either else 0.0,
                    "p_high_both": c["high_both"] / on_either if on_either else 0.0,
                    "high_jaccard": c["high_both"] / c["either_high"] if c["either_high"] else 0.0,
                    "high_agreement": c["agreement"] / on_either if on_either else 0.0,
                }
                for c in counters
            ],
            "divergence_examples": [entry for _, _, entry in sorted(heap, reverse=True)],
            "gate_implication": implication,
            "gate_parse_info": {"prototype_a": gate_parse_info(a),
                                "prototype_b": gate_parse_info(b)},
        }
        metrics["receipt"] = emit_behavioral_receipt(self.tenant_id, a, b, metrics)

        logger.debug("behavioral %s/%s: %d samples, on_both=%.4f, corr=%s, implication=%s",
                     a.id, b.id, n, metrics["gate_overlap"]["on_both_rate"],
                     "NaN" if math.isnan(pearson_corr) else f"{pearson_corr:.4f}",
                     implication.relation if implication is not None else "none")
        return metrics

    def _push_divergence(self, heap: List[tuple], tiebreak, example: Dict[str, Any]) -> None:
        k = self.config.divergence_examples_k
        if k <= 0:
            return
        item = (example["abs_diff"], next(tiebreak), example)
        if len(heap) < k:
            heapq.heappush(heap, item)
        elif item[0] > heap[0][0]:
            heapq.heapreplace(heap, item)
