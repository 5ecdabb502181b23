"""
affect - Affect State Model

Public API for axis states, prototypes, contexts and trigger expressions.
Flat, focused files. One file = one responsibility.
"""

# =============================================================================
# TYPES (Dataclasses)
# =============================================================================
from .types_state import (
    MalformedDefinitionError,
    AxisState,
    TemporalPair,
    Gate,
    Prototype,
    PrototypeSignal,
    Context,
    load_catalog,
    coerce_prototypes,
)
from .types_result import (
    ConfidenceInterval,
    LeafAttribution,
    EvaluationResult,
    SimulationResult,
    GateImplicationResult,
    OverlapClassification,
)

# =============================================================================
# CONSTANTS
# =============================================================================
from .constants import (
    MOOD_AXES,
    SEXUAL_AXES,
    TRAIT_AXES,
    DISTRIBUTIONS,
    SAMPLING_MODES,
    PROTOTYPE_TYPES,
)

# =============================================================================
# SAMPLING AND CONTEXT
# =============================================================================
from .temporal import TemporalStateGenerator
from .context import (
    ContextBuilder,
    normalize_axes,
    normalize_traits,
    compute_sexual_arousal,
    check_gates,
    prototype_signal,
)

# =============================================================================
# EXPRESSIONS
# =============================================================================
from .expression import (
    Var,
    Const,
    Arith,
    Leaf,
    And,
    Or,
    ExpressionDefinition,
    parse_logic,
    evaluate,
    evaluate_prerequisites,
    collect_var_paths,
    describe,
)
from .clause_tree import ClauseTracker, find_overconstrained_conjunctions

__all__ = [
    # Types
    "MalformedDefinitionError",
    "AxisState",
    "TemporalPair",
    "Gate",
    "Prototype",
    "PrototypeSignal",
    "Context",
    "load_catalog",
    "coerce_prototypes",
    "ConfidenceInterval",
    "LeafAttribution",
    "EvaluationResult",
    "SimulationResult",
    "GateImplicationResult",
    "OverlapClassification",
    # Constants
    "MOOD_AXES",
    "SEXUAL_AXES",
    "TRAIT_AXES",
    "DISTRIBUTIONS",
    "SAMPLING_MODES",
    "PROTOTYPE_TYPES",
    # Sampling and context
    "TemporalStateGenerator",
    "ContextBuilder",
    "normalize_axes",
    "normalize_traits",
    "compute_sexual_arousal",
    "check_gates",
    "prototype_signal",
    # Expressions
    "Var",
    "Const",
    "Arith",
    "Leaf",
    "And",
    "Or",
    "ExpressionDefinition",
    "parse_logic",
    "evaluate",
    "evaluate_prerequisites",
    "collect_var_paths",
    "describe",
    "ClauseTracker",
    "find_overconstrained_conjunctions",
]
