"""
complexity_analyzer.py - Prototype Complexity Analysis

How many axes does each prototype lean on, and which axes keep showing up
together? Population-level view of a prototype catalog:

    complexity(p) = |{axis : finite |w| > active_weight_epsilon}|

Bundles are axis sets active together in at least min_bundle_support of
the prototypes. They are mined as cliques of the frequent-pair
co-occurrence graph, then verified by direct support count.

Every accumulator is local to one analyze() call.
"""

import itertools
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import networkx as nx

from receipts import emit_receipt
from config_schema import OverlapConfig
from affect.statistics import (
    compute_distribution_stats,
    compute_histogram,
    compute_quartiles,
    detect_outliers,
)
from affect.types_state import Prototype, coerce_prototypes

logger = logging.getLogger(__name__)

# Frequently co-occurring axes and the composite they suggest
BUNDLE_NAMES = {
    frozenset({"threat", "arousal"}): "alarm",
    frozenset({"valence", "arousal"}): "excitement",
    frozenset({"agency_control", "threat"}): "vulnerability",
    frozenset({"valence", "self_evaluation"}): "self_regard",
    frozenset({"affiliation", "valence"}): "warmth",
    frozenset({"engagement", "arousal"}): "absorption",
    frozenset({"future_expectancy", "valence"}): "optimism",
    frozenset({"affective_empathy", "cognitive_empathy"}): "empathy",
}

NEW_AXIS_MIN_BUNDLE_SIZE = 3
NEW_AXIS_SUPPORT_MULTIPLIER = 1.5

RECEIPT_SCHEMA = ["complexity_analysis"]


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class ComplexityAnalysis:
    """Population complexity summary of one catalog."""
    total_prototypes: int
    prototype_complexities: Dict[str, int] = field(default_factory=dict)
    distribution: Dict[str, Any] = field(default_factory=dict)
    histogram: List[Dict[str, int]] = field(default_factory=list)
    quartiles: Dict[str, Any] = field(default_factory=dict)
    outliers: Dict[str, Any] = field(default_factory=dict)
    common_bundles: List[Dict[str, Any]] = field(default_factory=list)
    recommendations: List[Dict[str, Any]] = field(default_factory=list)
    receipt: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalPrototypes": self.total_prototypes,
            "prototypeComplexities": dict(self.prototype_complexities),
            "distribution": dict(self.distribution),
            "histogram": list(self.histogram),
            "quartiles": dict(self.quartiles),
            "outliers": dict(self.outliers),
            "commonBundles": list(self.common_bundles),
            "recommendations": list(self.recommendations),
        }


# =============================================================================
# RECEIPT TYPE 1: complexity_analysis
# =============================================================================

# --- SCHEMA ---
COMPLEXITY_ANALYSIS_SCHEMA = {
    "receipt_type": "complexity_analysis",
    "ts": "ISO8601",
    "tenant_id": "str",
    "total_prototypes": "int",
    "bundles": "int",
    "recommendations": "int",
    "mean_complexity": "float|null",
    "payload_hash": "str (SHA256:BLAKE3)"
}


# --- EMIT ---
def emit_complexity_receipt(tenant_id: str, total: int, bundles: int,
                            recommendations: int, mean: Optional[float]) -> dict:
    """Emit complexity_analysis receipt for one analyze() call."""
    return emit_receipt("complexity_analysis", {
        "tenant_id": tenant_id,
        "total_prototypes": total,
        "bundles": bundles,
        "recommendations": recommendations,
        "mean_complexity": mean,
    })


# =============================================================================
# CORE FUNCTION 1: bundle naming and mining
# =============================================================================

def suggest_bundle_name(axes) -> str:
    """Composite name for an axis bundle; known pairs inside larger bundles count."""
    key = frozenset(axes)
    if key in BUNDLE_NAMES:
        return BUNDLE_NAMES[key]
    for pair, name in BUNDLE_NAMES.items():
        if pair <= key:
            return f"{name}_plus"
    return "_".join(sorted(key)) + "_composite"


def mine_bundles(active_sets: List[Set[str]], min_support: float,
                 min_size: int, max_size: int) -> List[Dict[str, Any]]:
    """
    Axis sets active together in at least min_support of the prototypes.

    Returns:
        list of {axes, size, frequency, support, suggested_name}, sorted by
        frequency then size (both descending)
    """
    total = len(active_sets)
    if total == 0:
        return []
    min_count = max(1, math.ceil(min_support * total - 1e-9))

    graph = nx.Graph()
    axis_counts: Dict[str, int] = {}
    pair_counts: Dict[tuple, int] = {}
    for active in active_sets:
        for axis in active:
            axis_counts[axis] = axis_counts.get(axis, 0) + 1
        for pair in itertools.combinations(sorted(active), 2):
            pair_counts[pair] = pair_counts.get(pair, 0) + 1

    graph.add_nodes_from(axis for axis, count in axis_counts.items() if count >= min_count)
    graph.add_edges_from(pair for pair, count in pair_counts.items() if count >= min_count)

    bundles = []
    for clique in nx.enumerate_all_cliques(graph):
        if len(clique) > max_size:
            break
        if len(clique) < min_size:
            continue
        axes = frozenset(clique)
        frequency = sum(1 for active in active_sets if axes <= active)
        if frequency < min_count:
            continue
        bundles.append({
            "axes": sorted(axes),
            "size": len(axes),
            "frequency": frequency,
            "support": frequency / total,
            "suggested_name": suggest_bundle_name(axes),
        })

    bundles.sort(key=lambda b: (-b["frequency"], -b["size"], b["axes"]))
    return bundles


# =============================================================================
# CORE FUNCTION 2: PrototypeComplexityAnalyzer
# =============================================================================

class PrototypeComplexityAnalyzer:
    """
    Complexity distribution, axis bundles and recommendations for a catalog.

    Args:
        config: OverlapConfig (complexity fields are read)
        tenant_id: Tenant recorded on receipts
    """

    def __init__(self, config: Optional[OverlapConfig] = None, tenant_id: str = "default"):
        self.config = config or OverlapConfig()
        self.tenant_id = tenant_id

    def active_axes(self, prototype: Prototype) -> Set[str]:
        eps = self.config.active_weight_epsilon
        return {axis for axis, w in prototype.weights.items()
                if math.isfinite(w) and abs(w) > eps}

    def analyze(self, prototypes: Any) -> ComplexityAnalysis:
        """
        Analyze a catalog.

        Args:
            prototypes: Prototype objects or a raw catalog; None, empty, or
                weightless input yields an empty analysis

        Returns:
            ComplexityAnalysis
        """
        cfg = self.config
        catalog = [p for p in coerce_prototypes(prototypes) if p.weights]
        total = len(catalog)

        if total == 0:
            return ComplexityAnalysis(
                total_prototypes=0,
                receipt=emit_complexity_receipt(self.tenant_id, 0, 0, 0, None),
            )

        active_sets = [self.active_axes(p) for p in catalog]
        complexities = {p.id: len(active) for p, active in zip(catalog, active_sets)}
        counts = list(complexities.values())

        if total < cfg.min_prototypes_for_analysis:
            logger.debug("complexity: %d prototypes below analysis minimum %d",
                         total, cfg.min_prototypes_for_analysis)
            return ComplexityAnalysis(
                total_prototypes=total,
                prototype_complexities=complexities,
                receipt=emit_complexity_receipt(self.tenant_id, total, 0, 0, None),
            )

        ids = list(complexities)
        distribution = compute_distribution_stats(counts)
        outliers = detect_outliers(counts, cfg.outlier_std_dev_threshold, labels=ids)
        bundles = mine_bundles(active_sets, cfg.min_bundle_support,
                               cfg.min_bundle_size, cfg.max_bundle_size)
        recommendations = self._recommend(bundles, outliers, distribution)

        logger.debug("complexity: %d prototypes, mean %.2f, %d bundles, %d recommendations",
                     total, distribution["mean"], len(bundles), len(recommendations))
        return ComplexityAnalysis(
            total_prototypes=total,
            prototype_complexities=complexities,
            distribution=distribution,
            histogram=compute_histogram(counts),
            quartiles=compute_quartiles(counts),
            outliers=outliers,
            common_bundles=bundles,
            recommendations=recommendations,
            receipt=emit_complexity_receipt(self.tenant_id, total, len(bundles),
                                            len(recommendations), distribution["mean"]),
        )

    def _recommend(self, bundles: List[Dict[str, Any]], outliers: Dict[str, Any],
                   distribution: Dict[str, Any]) -> List[Dict[str, Any]]:
        cfg = self.config
        recommendations = []
        min_size = max(NEW_AXIS_MIN_BUNDLE_SIZE, cfg.min_bundle_size)
        min_support = NEW_AXIS_SUPPORT_MULTIPLIER * cfg.min_bundle_support

        for bundle in bundles:
            if bundle["size"] >= min_size and bundle["support"] >= min_support:
                recommendations.append({
                    "type": "consider_new_axis",
                    "subject": bundle["suggested_name"],
                    "axes": bundle["axes"],
                    "basis": f"{bundle['frequency']} prototypes ({bundle['support']:.0%}) "
                             f"use all of {', '.join(bundle['axes'])}",
                    "message": f"Axes {', '.join(bundle['axes'])} move together often enough "
                               f"to consider a composite '{bundle['suggested_name']}' axis.",
                })

        mean = distribution["mean"]
        for entry in outliers["high"]:
            recommendations.append({
                "type": "reduce_complexity",
                "subject": entry["label"],
                "value": entry["value"],
                "basis": f"{entry['value']:.0f} active axes, z={entry['zScore']:.2f} "
                         f"(mean {mean:.2f})",
                "message": f"Prototype '{entry['label']}' uses far more axes than its peers.",
            })
        for entry in outliers["low"]:
            recommendations.append({
                "type": "balance_complexity",
                "subject": entry["label"],
                "value": entry["value"],
                "basis": f"{entry['value']:.0f} active axes, z={entry['zScore']:.2f} "
                         f"(mean {mean:.2f})",
                "message": f"Prototype '{entry['label']}' uses far fewer axes than its peers.",
            })
        return recommendations
