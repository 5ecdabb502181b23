"""
affect/constants.py - Axis Families, Ranges and Sampling Constants

All axis definitions and tuned sampling knobs, centralized for tuning.
Pure data, no behavior.
"""

from typing import Dict, Tuple

# =============================================================================
# AXIS FAMILIES
# =============================================================================

MOOD_AXES: Tuple[str, ...] = (
    "valence",
    "arousal",
    "agency_control",
    "threat",
    "engagement",
    "future_expectancy",
    "self_evaluation",
    "affiliation",
)

SEXUAL_AXES: Tuple[str, ...] = (
    "sex_excitation",
    "sex_inhibition",
    "baseline_libido",
)

TRAIT_AXES: Tuple[str, ...] = (
    "affective_empathy",
    "cognitive_empathy",
    "harm_aversion",
)

# Raw (un-normalized) ranges, inclusive
MOOD_RANGE: Tuple[int, int] = (-100, 100)
SEXUAL_RANGES: Dict[str, Tuple[int, int]] = {
    "sex_excitation": (0, 100),
    "sex_inhibition": (0, 100),
    "baseline_libido": (-50, 50),
}
TRAIT_RANGE: Tuple[int, int] = (0, 100)

AXIS_RANGES: Dict[str, Tuple[int, int]] = {
    **{axis: MOOD_RANGE for axis in MOOD_AXES},
    **SEXUAL_RANGES,
    **{axis: TRAIT_RANGE for axis in TRAIT_AXES},
}

DEFAULT_TRAIT_VALUE = 50

# Derived sexual axis and its gate alias
SEXUAL_AROUSAL_AXIS = "sexual_arousal"
SEXUAL_AROUSAL_ALIAS = "SA"

# =============================================================================
# TEMPORAL SAMPLING (dynamic mode deltas, raw units)
# =============================================================================

MOOD_DELTA_SIGMA = 15.0     # ~68% of mood deltas within +/-15 (15% of range)
SEXUAL_DELTA_SIGMA = 12.0   # sex_excitation / sex_inhibition on [0, 100]
LIBIDO_DELTA_SIGMA = 8.0    # baseline_libido on [-50, 50]

DISTRIBUTIONS = ("uniform", "gaussian")
SAMPLING_MODES = ("static", "dynamic")

# Gaussian marginal: mid +/- z * range / GAUSSIAN_SPREAD_DIVISOR (99.7% in range)
GAUSSIAN_SPREAD_DIVISOR = 6.0

# =============================================================================
# GATES
# =============================================================================

GATE_PATTERN = r"^(\w+)\s*(>=|<=|>|<|==)\s*(-?\d*\.?\d+)$"
GATE_OPERATORS = (">=", "<=", ">", "<", "==")
GATE_EQUALITY_TOLERANCE = 1e-4

PROTOTYPE_TYPES = ("emotion", "mood", "sexual")

# =============================================================================
# EXPRESSION EVALUATION
# =============================================================================

COMPARISON_OPERATORS = (">=", "<=", ">", "<", "==", "!=")
ARITHMETIC_OPERATORS = ("+", "-", "*", "/", "min", "max")

# Near-miss epsilon per context root (normalized roots 0.05, raw axes 5 units)
NEAR_MISS_EPSILON_DEFAULT = 0.05
NEAR_MISS_EPSILON_BY_ROOT: Dict[str, float] = {
    "emotions": 0.05,
    "previousEmotions": 0.05,
    "sexualStates": 0.05,
    "previousSexualStates": 0.05,
    "sexualArousal": 0.05,
    "previousSexualArousal": 0.05,
    "mood": 5.0,
    "moodAxes": 5.0,
    "previousMoodAxes": 5.0,
    "sexualAxes": 5.0,
    "previousSexualAxes": 5.0,
    "affectTraits": 5.0,
}

STRICT_VIOLATION_PAD = 0.01     # added to > / < violation gaps
DEFAULT_VIOLATION = 0.1         # violation for operators without a gap model
VIOLATION_SAMPLE_LIMIT = 2000   # violations kept per clause for p50/p90

OVERCONSTRAINED_MIN_CHILDREN = 3
OVERCONSTRAINED_MAX_PASS_RATE = 0.10

MAX_FAILED_LEAVES_REPORTED = 5

# =============================================================================
# CONTEXT KEYS
# =============================================================================

CONTEXT_ROOTS: Tuple[str, ...] = (
    "mood",
    "moodAxes",
    "emotions",
    "sexualStates",
    "sexualArousal",
    "previousEmotions",
    "previousSexualStates",
    "previousMoodAxes",
    "previousSexualArousal",
    "affectTraits",
    "sexualAxes",
    "previousSexualAxes",
)
SCALAR_CONTEXT_ROOTS: Tuple[str, ...] = ("sexualArousal", "previousSexualArousal")
