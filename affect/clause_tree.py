"""
affect/clause_tree.py - Hierarchical Clause Statistics

Call-local accumulator tree mirroring each prerequisite's node tree. Every
trial evaluates every node (no short-circuit) and records:

    failure count / violation samples     (all nodes; samples are capped)
    near misses, observed min/max         (leaves with a simple threshold)
    sibling-conditioned fails             (children of AND/OR)
    OR contribution                       (children of OR)
    last-mile fails                       (prerequisite roots)
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .constants import (
    DEFAULT_VIOLATION,
    NEAR_MISS_EPSILON_BY_ROOT,
    NEAR_MISS_EPSILON_DEFAULT,
    OVERCONSTRAINED_MAX_PASS_RATE,
    OVERCONSTRAINED_MIN_CHILDREN,
    STRICT_VIOLATION_PAD,
    VIOLATION_SAMPLE_LIMIT,
)
from .expression import And, Leaf, Node, Or, Var, describe, evaluate_leaf

__all__ = [
    "estimate_violation",
    "epsilon_for_path",
    "ClauseNode",
    "ClauseTracker",
    "find_overconstrained_conjunctions",
]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def estimate_violation(operator: str, actual: Any, threshold: Any) -> float:
    """
    How far a failed comparison is from passing.

    >= : max(0, t - a)        <= : max(0, a - t)
    >  : t - a + 0.01 when a <= t
    <  : a - t + 0.01 when a >= t
    anything else (or non-numeric): 0.1
    """
    if not (_is_number(actual) and _is_number(threshold)):
        return DEFAULT_VIOLATION
    if operator == ">=":
        return max(0.0, threshold - actual)
    if operator == "<=":
        return max(0.0, actual - threshold)
    if operator == ">":
        return threshold - actual + STRICT_VIOLATION_PAD if actual <= threshold else 0.0
    if operator == "<":
        return actual - threshold + STRICT_VIOLATION_PAD if actual >= threshold else 0.0
    return DEFAULT_VIOLATION


def epsilon_for_path(var_path: str) -> float:
    root = var_path.split(".", 1)[0]
    return NEAR_MISS_EPSILON_BY_ROOT.get(root, NEAR_MISS_EPSILON_DEFAULT)


def _percentile(samples: Sequence[float], q: float) -> Optional[float]:
    if not samples:
        return None
    return float(np.percentile(np.asarray(samples, dtype=float), q))


def _rate(numerator: int, denominator: int) -> Optional[float]:
    return numerator / denominator if denominator > 0 else None


# =============================================================================
# CLAUSE NODE
# =============================================================================

class ClauseNode:
    """Statistics for one node of a prerequisite tree."""

    def __init__(self, node: Node, clause_id: str, parent_node_type: Optional[str] = None):
        self.node = node
        self.id = clause_id
        self.parent_node_type = parent_node_type
        if isinstance(node, And):
            self.node_type = "and"
        elif isinstance(node, Or):
            self.node_type = "or"
        else:
            self.node_type = "leaf"
        self.description = describe(node)
        self.children: List["ClauseNode"] = [
            ClauseNode(child, f"{clause_id}.{i}", self.node_type)
            for i, child in enumerate(getattr(node, "children", ()))
        ]

        info = node.threshold_info() if isinstance(node, Leaf) else None
        self.variable_path: Optional[str] = info[0] if info else None
        self.comparison_operator: Optional[str] = info[1] if info else None
        self.threshold_value: Optional[float] = info[2] if info else None
        self.near_miss_epsilon: Optional[float] = (
            epsilon_for_path(self.variable_path) if self.variable_path else None
        )

        self.evaluation_count = 0
        self.failure_count = 0
        self.violation_sum = 0.0
        self.violations: List[float] = []
        self.max_observed: Optional[float] = None
        self.min_observed: Optional[float] = None
        self.near_miss_count = 0
        self.others_passed_count = 0
        self.last_mile_fail_count = 0
        self.siblings_passed_count = 0
        self.sibling_conditioned_fail_count = 0
        self.or_success_count = 0
        self.or_contribution_count = 0
        self.is_single_clause = False

    # --- recording -------------------------------------------------------

    def record_evaluation(self, passed: bool, violation: float = 0.0) -> None:
        self.evaluation_count += 1
        if not passed:
            self.failure_count += 1
            self.violation_sum += violation
            if len(self.violations) < VIOLATION_SAMPLE_LIMIT:
                self.violations.append(violation)

    def record_observed_value(self, value: float) -> None:
        if self.max_observed is None or value > self.max_observed:
            self.max_observed = value
        if self.min_observed is None or value < self.min_observed:
            self.min_observed = value

    def record_near_miss(self, actual: float) -> None:
        if self.threshold_value is None:
            return
        if abs(actual - self.threshold_value) < self.near_miss_epsilon:
            self.near_miss_count += 1

    # --- evaluation ------------------------------------------------------

    def evaluate(self, context: Any) -> Tuple[bool, float, int]:
        """
        Evaluate this subtree on one context and record statistics.

        Returns:
            (passed, violation, failed leaf count)
        """
        if self.node_type == "leaf":
            return self._evaluate_leaf(context)

        results = [child.evaluate(context) for child in self.children]
        passes = [r[0] for r in results]
        failed_leaves = sum(r[2] for r in results)

        for i, child in enumerate(self.children):
            if all(p for j, p in enumerate(passes) if j != i):
                child.siblings_passed_count += 1
                if not passes[i]:
                    child.sibling_conditioned_fail_count += 1

        if self.node_type == "and":
            passed = all(passes)
            violation = sum(r[1] for r in results if not r[0])
        else:
            passed = any(passes)
            violation = 0.0 if passed else min((r[1] for r in results), default=0.0)
            if passed:
                first = passes.index(True)
                for i, child in enumerate(self.children):
                    child.or_success_count += 1
                    if i == first:
                        child.or_contribution_count += 1

        self.record_evaluation(passed, violation)
        return passed, violation, failed_leaves

    def _evaluate_leaf(self, context: Any) -> Tuple[bool, float, int]:
        passed, left, right = evaluate_leaf(self.node, context)
        if self.variable_path is not None:
            actual = left if isinstance(self.node.left, Var) else right
            operator, threshold = self.comparison_operator, self.threshold_value
        else:
            actual, operator, threshold = left, self.node.operator, right

        if _is_number(actual):
            self.record_observed_value(actual)
            self.record_near_miss(actual)

        violation = 0.0 if passed else estimate_violation(operator, actual, threshold)
        self.record_evaluation(passed, violation)
        return passed, violation, 0 if passed else 1

    # --- derived ---------------------------------------------------------

    @property
    def failure_rate(self) -> float:
        return self.failure_count / self.evaluation_count if self.evaluation_count else 0.0

    @property
    def pass_rate(self) -> float:
        return 1.0 - self.failure_rate if self.evaluation_count else 0.0

    @property
    def average_violation(self) -> float:
        return self.violation_sum / self.failure_count if self.failure_count else 0.0

    @property
    def ceiling_gap(self) -> Optional[float]:
        """Positive: threshold never reached in the sampled data."""
        if self.threshold_value is None:
            return None
        if self.comparison_operator in (">=", ">"):
            if self.max_observed is None:
                return None
            return self.threshold_value - self.max_observed
        if self.comparison_operator in ("<=", "<"):
            if self.min_observed is None:
                return None
            return self.min_observed - self.threshold_value
        return None

    def worst_ceiling(self) -> Dict[str, Optional[float]]:
        """Ceiling data of the leaf with the largest gap in this subtree."""
        if self.node_type == "leaf":
            return {"ceilingGap": self.ceiling_gap, "maxObserved": self.max_observed,
                    "thresholdValue": self.threshold_value}
        worst = {"ceilingGap": None, "maxObserved": None, "thresholdValue": None}
        for child in self.children:
            candidate = child.worst_ceiling()
            gap = candidate["ceilingGap"]
            if gap is not None and (worst["ceilingGap"] is None or gap > worst["ceilingGap"]):
                worst = candidate
        return worst

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "nodeType": self.node_type,
            "description": self.description,
            "evaluationCount": self.evaluation_count,
            "failureCount": self.failure_count,
            "failureRate": self.failure_rate,
            "averageViolation": self.average_violation,
            "violationP50": _percentile(self.violations, 50),
            "violationP90": _percentile(self.violations, 90),
            "variablePath": self.variable_path,
            "comparisonOperator": self.comparison_operator,
            "thresholdValue": self.threshold_value,
            "maxObservedValue": self.max_observed,
            "minObservedValue": self.min_observed,
            "ceilingGap": self.ceiling_gap,
            "nearMissCount": self.near_miss_count,
            "nearMissRate": _rate(self.near_miss_count, self.evaluation_count) or 0.0,
            "nearMissEpsilon": self.near_miss_epsilon,
            "lastMileFailCount": self.last_mile_fail_count,
            "othersPassedCount": self.others_passed_count,
            "lastMileFailRate": _rate(self.last_mile_fail_count, self.others_passed_count),
            "siblingsPassedCount": self.siblings_passed_count,
            "siblingConditionedFailCount": self.sibling_conditioned_fail_count,
            "siblingConditionedFailRate": _rate(self.sibling_conditioned_fail_count,
                                                self.siblings_passed_count),
            "orSuccessCount": self.or_success_count,
            "orContributionCount": self.or_contribution_count,
            "orContributionRate": _rate(self.or_contribution_count, self.or_success_count),
            "isSingleClause": self.is_single_clause,
            "parentNodeType": self.parent_node_type,
            "children": [c.to_dict() for c in self.children],
        }


# =============================================================================
# TRACKER (one per simulate() call)
# =============================================================================

class ClauseTracker:
    """Per-prerequisite clause trees plus last-mile bookkeeping."""

    def __init__(self, prerequisites: Sequence[Node]):
        self.roots = [ClauseNode(node, str(i), "root") for i, node in enumerate(prerequisites)]
        for root in self.roots:
            root.is_single_clause = len(self.roots) == 1

    def record(self, context: Any) -> Tuple[bool, int]:
        """
        Evaluate every prerequisite on one context.

        Returns:
            (all prerequisites passed, failed leaf count)
        """
        results = [root.evaluate(context) for root in self.roots]
        passes = [r[0] for r in results]
        for i, root in enumerate(self.roots):
            if all(p for j, p in enumerate(passes) if j != i):
                root.others_passed_count += 1
                if not passes[i]:
                    root.last_mile_fail_count += 1
        return all(passes), sum(r[2] for r in results)

    def finalize(self) -> List[Dict[str, Any]]:
        """Clause statistics sorted by failure rate, descending."""
        clauses = []
        for index, root in enumerate(self.roots):
            ceiling = root.worst_ceiling()
            clauses.append({
                "clauseIndex": index,
                "clauseDescription": root.description,
                "failureCount": root.failure_count,
                "failureRate": root.failure_rate,
                "averageViolation": root.average_violation,
                "violationP50": _percentile(root.violations, 50),
                "violationP90": _percentile(root.violations, 90),
                "nearMissRate": (_rate(root.near_miss_count, root.evaluation_count)
                                 if root.node_type == "leaf" else None),
                "nearMissEpsilon": root.near_miss_epsilon,
                "lastMileFailRate": _rate(root.last_mile_fail_count, root.others_passed_count),
                "lastMileContext": {
                    "othersPassedCount": root.others_passed_count,
                    "lastMileFailCount": root.last_mile_fail_count,
                },
                "isSingleClause": root.is_single_clause,
                "ceilingGap": ceiling["ceilingGap"],
                "maxObserved": ceiling["maxObserved"],
                "thresholdValue": ceiling["thresholdValue"],
                "hierarchicalBreakdown": root.to_dict(),
            })
        clauses.sort(key=lambda c: c["failureRate"], reverse=True)
        return clauses


def find_overconstrained_conjunctions(roots: Sequence[ClauseNode],
                                      min_children: int = OVERCONSTRAINED_MIN_CHILDREN,
                                      max_pass_rate: float = OVERCONSTRAINED_MAX_PASS_RATE
                                      ) -> List[Dict[str, Any]]:
    """
    Flag AND nodes whose children each rarely pass.

    The naive joint probability assumes independence: the product of the
    children's pass rates.
    """
    flagged = []
    for root in roots:
        for node in root.walk():
            if node.node_type != "and" or len(node.children) < min_children:
                continue
            if any(child.evaluation_count == 0 for child in node.children):
                continue
            rates = [child.pass_rate for child in node.children]
            if all(rate < max_pass_rate for rate in rates):
                flagged.append({
                    "clauseId": node.id,
                    "description": node.description,
                    "childCount": len(rates),
                    "childPassRates": rates,
                    "naiveJointProbability": float(np.prod(rates)),
                    "observedPassRate": node.pass_rate,
                })
    return flagged
