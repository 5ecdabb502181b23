"""
gate_implication.py - Deterministic Gate Implication

Does every state that opens prototype A's gates also open B's? Answered
without sampling, per axis, with sympy interval algebra:

    region(P) = Π_axis  ∩ { x : x <op> t  for each gate on axis }
    A ⇒ B  iff  region_axis(A) ⊆ region_axis(B) for every axis either gates

Missing axis = unbounded. An empty (unsatisfiable) region implies anything;
such results are flagged is_vacuous.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from sympy import Interval, oo

from receipts import emit_receipt
from affect.constants import GATE_EQUALITY_TOLERANCE, SEXUAL_AROUSAL_ALIAS, SEXUAL_AROUSAL_AXIS
from affect.types_result import GateImplicationResult
from affect.types_state import Gate, Prototype

logger = logging.getLogger(__name__)

UNBOUNDED = Interval(-oo, oo)

RECEIPT_SCHEMA = ["gate_implication"]


# =============================================================================
# RECEIPT TYPE 1: gate_implication
# =============================================================================

# --- SCHEMA ---
GATE_IMPLICATION_SCHEMA = {
    "receipt_type": "gate_implication",
    "ts": "ISO8601",
    "tenant_id": "str",
    "relation": "narrower|wider|equal|incomparable",
    "a_implies_b": "bool",
    "b_implies_a": "bool",
    "is_vacuous": "bool",
    "overlap": "overlapping|disjoint",
    "axes": "int",
    "payload_hash": "str (SHA256:BLAKE3)"
}


# --- EMIT ---
def emit_gate_implication_receipt(tenant_id: str, result: GateImplicationResult) -> dict:
    """Emit gate_implication receipt for one evaluated pair."""
    return emit_receipt("gate_implication", {
        "tenant_id": tenant_id,
        "relation": result.relation,
        "a_implies_b": result.a_implies_b,
        "b_implies_a": result.b_implies_a,
        "is_vacuous": result.is_vacuous,
        "overlap": result.overlap,
        "axes": len(result.evidence),
    })


# =============================================================================
# CORE FUNCTION 1: gate_interval / extract_intervals
# =============================================================================

def gate_interval(gate: Gate):
    """Solution set of a single gate as a sympy Interval."""
    t = gate.threshold
    if gate.operator == ">=":
        return Interval(t, oo)
    if gate.operator == ">":
        return Interval.Lopen(t, oo)
    if gate.operator == "<=":
        return Interval(-oo, t)
    if gate.operator == "<":
        return Interval.Ropen(-oo, t)
    return Interval.open(t - GATE_EQUALITY_TOLERANCE, t + GATE_EQUALITY_TOLERANCE)


def _canonical_axis(axis: str) -> str:
    return SEXUAL_AROUSAL_AXIS if axis == SEXUAL_AROUSAL_ALIAS else axis


def extract_intervals(prototype: Union[Prototype, Sequence[Gate]]) -> Dict[str, Any]:
    """
    Per-axis feasible region of a prototype's parsed gates.

    Args:
        prototype: Prototype, or a bare sequence of Gate objects

    Returns:
        dict: intervals {axis: sympy Set}, parse_status
              (complete | partial | failed), unparsed_gates
    """
    if isinstance(prototype, Prototype):
        gates = prototype.gates
        unparsed = list(prototype.unparsed_gates)
        status = prototype.gate_parse_status
    else:
        gates = tuple(prototype or ())
        unparsed = []
        status = "complete"

    intervals: Dict[str, Any] = {}
    for gate in gates:
        axis = _canonical_axis(gate.axis)
        intervals[axis] = intervals.get(axis, UNBOUNDED).intersect(gate_interval(gate))
    return {"intervals": intervals, "parse_status": status, "unparsed_gates": unparsed}


def interval_to_dict(region) -> Dict[str, Any]:
    """{lower, upper, unsatisfiable}; None marks an unbounded end."""
    if region.is_empty:
        return {"lower": None, "upper": None, "unsatisfiable": True}
    lower = None if region.inf == -oo else float(region.inf)
    upper = None if region.sup == oo else float(region.sup)
    return {"lower": lower, "upper": upper, "unsatisfiable": False}


def _is_subset(inner, outer) -> bool:
    if inner.is_empty:
        return True
    return inner.is_subset(outer) is True


# =============================================================================
# CORE FUNCTION 2: GateImplicationEvaluator
# =============================================================================

class GateImplicationEvaluator:
    """Sampling-free implication between two prototypes' gate regions."""

    def __init__(self, tenant_id: str = "default"):
        self.tenant_id = tenant_id

    def evaluate(self, a: Union[Prototype, Mapping[str, Any]],
                 b: Union[Prototype, Mapping[str, Any]]) -> GateImplicationResult:
        """
        Compare the gate regions of A and B.

        Args:
            a: Prototype, or an extract_intervals() result
            b: Prototype, or an extract_intervals() result

        Returns:
            GateImplicationResult with per-axis evidence
        """
        intervals_a = self._intervals(a)
        intervals_b = self._intervals(b)

        axes: List[str] = list(intervals_a)
        axes += [axis for axis in intervals_b if axis not in intervals_a]

        evidence = []
        counter_example_axes = []
        a_implies_b = True
        b_implies_a = True
        disjoint = False
        vacuous = False

        for axis in axes:
            region_a = intervals_a.get(axis, UNBOUNDED)
            region_b = intervals_b.get(axis, UNBOUNDED)
            a_sub_b = _is_subset(region_a, region_b)
            b_sub_a = _is_subset(region_b, region_a)
            if region_a.is_empty or region_b.is_empty:
                vacuous = True
            if region_a.intersect(region_b).is_empty:
                disjoint = True
            if not a_sub_b:
                a_implies_b = False
                counter_example_axes.append(axis)
            if not b_sub_a:
                b_implies_a = False
            evidence.append({
                "axis": axis,
                "interval_a": interval_to_dict(region_a),
                "interval_b": interval_to_dict(region_b),
                "a_subset_b": a_sub_b,
                "b_subset_a": b_sub_a,
            })

        # An unsatisfiable side implies everything on every other axis too
        if any(r.is_empty for r in intervals_a.values()):
            a_implies_b = True
            counter_example_axes = []
        if any(r.is_empty for r in intervals_b.values()):
            b_implies_a = True

        if a_implies_b and b_implies_a:
            relation = "equal"
        elif a_implies_b:
            relation = "narrower"
        elif b_implies_a:
            relation = "wider"
        else:
            relation = "incomparable"

        result = GateImplicationResult(
            a_implies_b=a_implies_b,
            b_implies_a=b_implies_a,
            relation=relation,
            evidence=tuple(evidence),
            counter_example_axes=tuple(counter_example_axes),
            is_vacuous=vacuous,
            overlap="disjoint" if disjoint else "overlapping",
        )
        receipt = emit_gate_implication_receipt(self.tenant_id, result)
        logger.debug("gate implication: %s (vacuous=%s, %s)", relation, vacuous, result.overlap)
        return replace(result, receipt=receipt)

    @staticmethod
    def _intervals(source: Any) -> Dict[str, Any]:
        if isinstance(source, Mapping) and "intervals" in source:
            return dict(source["intervals"])
        return extract_intervals(source)["intervals"]


def evaluate(a: Union[Prototype, Mapping[str, Any]],
             b: Union[Prototype, Mapping[str, Any]],
             tenant_id: str = "default") -> GateImplicationResult:
    """Module-level convenience around GateImplicationEvaluator.evaluate."""
    return GateImplicationEvaluator(tenant_id).evaluate(a, b)


def implication_or_none(a: Prototype, b: Prototype,
                        evaluator: Optional[GateImplicationEvaluator] = None
                        ) -> Optional[GateImplicationResult]:
    """Implication only when both prototypes' gates parsed completely."""
    if a.gate_parse_status != "complete" or b.gate_parse_status != "complete":
        return None
    return (evaluator or GateImplicationEvaluator()).evaluate(a, b)
