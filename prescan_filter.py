"""
prescan_filter.py - Behavioral Prescan (Route C)

Cheap behavioral screen for pairs the weight-space filter rejected: draw a
small batch of static states and measure how often the two prototypes'
gates open together.

    gate_overlap_ratio = on_both / on_either     (0 when on_either = 0)
    passes             = ratio >= prescan_min_gate_overlap

At most max_prescan_pairs pairs are evaluated per call; the rest are
tagged 'skipped', never silently dropped.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from receipts import emit_receipt
from config_schema import OverlapConfig
from affect.context import gates_pass, normalized_views, view_for
from affect.temporal import TemporalStateGenerator
from affect.types_state import Prototype

logger = logging.getLogger(__name__)

RECEIPT_SCHEMA = ["prescan"]


# =============================================================================
# RECEIPT TYPE 1: prescan
# =============================================================================

# --- SCHEMA ---
PRESCAN_SCHEMA = {
    "receipt_type": "prescan",
    "ts": "ISO8601",
    "tenant_id": "str",
    "pairs_total": "int",
    "pairs_evaluated": "int",
    "pairs_passed": "int",
    "pairs_skipped": "int",
    "sample_count": "int",
    "min_gate_overlap": "float",
    "payload_hash": "str (SHA256:BLAKE3)"
}


# --- EMIT ---
def emit_prescan_receipt(tenant_id: str, stats: Dict[str, int],
                         sample_count: int, min_gate_overlap: float) -> dict:
    """Emit prescan receipt for one filter_pairs() batch."""
    return emit_receipt("prescan", {
        "tenant_id": tenant_id,
        "pairs_total": stats["total"],
        "pairs_evaluated": stats["evaluated"],
        "pairs_passed": stats["passed"],
        "pairs_skipped": stats["skipped"],
        "sample_count": sample_count,
        "min_gate_overlap": min_gate_overlap,
    })


# =============================================================================
# CORE FUNCTION 1: BehavioralPrescanFilter
# =============================================================================

PairInput = Tuple[Prototype, Prototype]


class BehavioralPrescanFilter:
    """
    Gate co-activation screen over a small static sample.

    Args:
        config: OverlapConfig (prescan_* fields are read)
        rng: Injected numpy Generator
        tenant_id: Tenant recorded on receipts
    """

    def __init__(self, config: Optional[OverlapConfig] = None,
                 rng: Optional[np.random.Generator] = None,
                 tenant_id: str = "default"):
        self.config = config or OverlapConfig()
        self.generator = TemporalStateGenerator(rng)
        self.tenant_id = tenant_id

    def prescan(self, a: Prototype, b: Prototype,
                sample_count: Optional[int] = None) -> Dict[str, Any]:
        """
        Gate overlap of one pair.

        Returns:
            dict: gate_overlap_ratio, sample_count, on_both_count,
                  on_either_count, passes
        """
        n = self.config.prescan_sample_count if sample_count is None else sample_count
        on_both = 0
        on_either = 0
        for _ in range(n):
            pair = self.generator.generate("uniform", "static")
            views = normalized_views(pair.current, pair.affect_traits)
            pass_a = gates_pass(a, view_for(a, views))
            pass_b = gates_pass(b, view_for(b, views))
            if pass_a or pass_b:
                on_either += 1
            if pass_a and pass_b:
                on_both += 1

        ratio = on_both / on_either if on_either > 0 else 0.0
        return {
            "gate_overlap_ratio": ratio,
            "sample_count": n,
            "on_both_count": on_both,
            "on_either_count": on_either,
            "passes": ratio >= self.config.prescan_min_gate_overlap,
        }

    def filter_pairs(self, pairs: Sequence[PairInput]) -> Dict[str, Any]:
        """
        Prescan a batch of (a, b) pairs.

        Args:
            pairs: Sequence of (Prototype, Prototype)

        Returns:
            dict: results (one entry per input pair, status passed |
                  rejected | skipped), passed (the passing entries), stats,
                  receipt
        """
        limit = self.config.max_prescan_pairs
        results: List[Dict[str, Any]] = []
        stats = {"total": len(pairs), "evaluated": 0, "passed": 0, "skipped": 0}

        for index, (a, b) in enumerate(pairs):
            if index >= limit:
                results.append({"prototype_a": a, "prototype_b": b,
                                "status": "skipped", "prescan": None})
                stats["skipped"] += 1
                continue
            metrics = self.prescan(a, b)
            stats["evaluated"] += 1
            if metrics["passes"]:
                stats["passed"] += 1
            results.append({"prototype_a": a, "prototype_b": b,
                            "status": "passed" if metrics["passes"] else "rejected",
                            "prescan": metrics})

        if stats["skipped"]:
            logger.warning("Prescan limit %d reached; %d pairs skipped", limit, stats["skipped"])
        logger.debug("prescan: %d evaluated, %d passed", stats["evaluated"], stats["passed"])

        return {
            "results": results,
            "passed": [r for r in results if r["status"] == "passed"],
            "stats": stats,
            "receipt": emit_prescan_receipt(self.tenant_id, stats,
                                            self.config.prescan_sample_count,
                                            self.config.prescan_min_gate_overlap),
        }
