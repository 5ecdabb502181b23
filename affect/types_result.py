"""
affect/types_result.py - Result Dataclasses

Immutable result containers. Attributes are snake_case; to_dict() renders
the camelCase form consumed by report writers.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .types_state import Context


@dataclass(frozen=True)
class ConfidenceInterval:
    low: float
    high: float

    def to_dict(self) -> Dict[str, float]:
        return {"low": self.low, "high": self.high}


@dataclass(frozen=True)
class LeafAttribution:
    """Pass/fail record of one visited comparison leaf."""
    clause_id: str
    passed: bool
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"clauseId": self.clause_id, "passed": self.passed, "message": self.message}


@dataclass(frozen=True)
class EvaluationResult:
    passed: bool
    attribution: Tuple[LeafAttribution, ...] = ()

    @property
    def failed_leaves(self) -> List[LeafAttribution]:
        return [a for a in self.attribution if not a.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {"passed": self.passed,
                "attribution": [a.to_dict() for a in self.attribution]}


@dataclass(frozen=True)
class SimulationResult:
    """Immutable Monte Carlo result."""
    trigger_rate: float
    trigger_count: int
    sample_count: int
    confidence_interval: ConfidenceInterval
    clause_statistics: Tuple[Dict[str, Any], ...] = ()
    stored_contexts: Tuple[Context, ...] = ()
    distribution: str = "uniform"
    sampling_mode: str = "static"
    sampling_metadata: Dict[str, Any] = field(default_factory=dict)
    witness_analysis: Dict[str, Any] = field(default_factory=dict)
    unseeded_var_warnings: Tuple[Dict[str, Any], ...] = ()
    overconstrained_conjunctions: Tuple[Dict[str, Any], ...] = ()
    error_count: int = 0
    receipt: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "triggerRate": self.trigger_rate,
            "triggerCount": self.trigger_count,
            "sampleCount": self.sample_count,
            "confidenceInterval": self.confidence_interval.to_dict(),
            "clauseStatistics": list(self.clause_statistics),
            "storedContexts": [c.to_dict() for c in self.stored_contexts],
            "distribution": self.distribution,
            "samplingMode": self.sampling_mode,
            "samplingMetadata": dict(self.sampling_metadata),
            "witnessAnalysis": dict(self.witness_analysis),
            "unseededVarWarnings": list(self.unseeded_var_warnings),
            "overconstrainedConjunctions": list(self.overconstrained_conjunctions),
            "errorCount": self.error_count,
        }


@dataclass(frozen=True)
class GateImplicationResult:
    """Sampling-free subset relation between two prototypes' gate regions."""
    a_implies_b: bool
    b_implies_a: bool
    relation: str
    evidence: Tuple[Dict[str, Any], ...] = ()
    counter_example_axes: Tuple[str, ...] = ()
    is_vacuous: bool = False
    overlap: str = "overlapping"
    receipt: Dict[str, Any] = field(default_factory=dict)

    def axis_evidence(self, axis: str) -> Optional[Dict[str, Any]]:
        for entry in self.evidence:
            if entry["axis"] == axis:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "A_implies_B": self.a_implies_b,
            "B_implies_A": self.b_implies_a,
            "relation": self.relation,
            "evidence": list(self.evidence),
            "counterExampleAxes": list(self.counter_example_axes),
            "isVacuous": self.is_vacuous,
            "overlap": self.overlap,
        }


@dataclass(frozen=True)
class OverlapClassification:
    """Primary classification plus every other matching label for one pair."""
    type: str
    narrower_prototype: Optional[str] = None
    confidence: str = "none"
    all_matching_classifications: Tuple[Dict[str, Any], ...] = ()
    evidence: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "narrowerPrototype": self.narrower_prototype,
            "confidence": self.confidence,
            "allMatchingClassifications": list(self.all_matching_classifications),
            "evidence": dict(self.evidence),
        }
