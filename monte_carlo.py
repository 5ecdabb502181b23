"""
monte_carlo.py - Monte Carlo Expression Simulator

How often would a trigger expression fire under randomized plausible world
states, and which clauses block it?

Per trial: generate temporal pair -> build context -> evaluate every
prerequisite with clause tracking. Per-trial faults count as failed trials.
A run where every trial faults emits an anomaly receipt and raises StopRule.

Statistics:
- Wilson score interval (scipy.stats.norm quantile), Clopper-Pearson optional
- Bounded reservoir of contexts for post-hoc threshold sensitivity
"""

import logging
import math
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np

from receipts import emit_receipt, StopRule
from config_schema import SimulationConfig, from_dict as config_from_dict
from affect.constants import CONTEXT_ROOTS, MAX_FAILED_LEAVES_REPORTED, SCALAR_CONTEXT_ROOTS
from affect.clause_tree import ClauseTracker, find_overconstrained_conjunctions
from affect.context import ContextBuilder
from affect.expression import (
    And,
    ExpressionDefinition,
    Leaf,
    Node,
    Or,
    Var,
    collect_var_paths,
    compare,
    describe,
    evaluate_leaf,
    evaluate_prerequisites,
    parse_logic,
    replace_threshold,
    resolve_operand,
)
from affect.statistics import clopper_pearson_interval, get_nested_value, wilson_interval
from affect.temporal import TemporalStateGenerator
from affect.types_result import ConfidenceInterval, SimulationResult
from affect.types_state import Context, MalformedDefinitionError, Prototype, load_catalog

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

PROGRESS_CHUNK_SIZE = 1000
SENSITIVITY_STEPS = 9
SENSITIVITY_STEP_SIZE = 0.05
MAX_KNOWN_KEYS_IN_SUGGESTION = 5

# Referenced-emotion paths for witness capture
_EMOTION_PATH_RE = re.compile(r"^(?:previous)?[Ee]motions\.(\w+)$")

# Faults a single trial may raise without aborting the run
TRIAL_FAULTS = (ArithmeticError, LookupError, TypeError, ValueError)

RECEIPT_SCHEMA = ["monte_carlo_simulation"]

ProgressCallback = Callable[[int, int], None]


# =============================================================================
# RECEIPT TYPE 1: monte_carlo_simulation
# =============================================================================

# --- SCHEMA ---
MONTE_CARLO_SIMULATION_SCHEMA = {
    "receipt_type": "monte_carlo_simulation",
    "ts": "ISO8601",
    "tenant_id": "str",
    "expression_id": "str",
    "sample_count": "int",
    "trigger_count": "int",
    "trigger_rate": "float (0-1)",
    "confidence_interval": "[low, high]",
    "sampling_mode": "str",
    "distribution": "str",
    "error_count": "int",
    "payload_hash": "str (SHA256:BLAKE3)"
}


# --- EMIT ---
def emit_simulation_receipt(tenant_id: str, expression_id: str, sample_count: int,
                            trigger_count: int, trigger_rate: float,
                            interval: ConfidenceInterval, sampling_mode: str,
                            distribution: str, error_count: int) -> dict:
    """Emit monte_carlo_simulation receipt for one simulate() call."""
    return emit_receipt("monte_carlo_simulation", {
        "tenant_id": tenant_id,
        "expression_id": expression_id,
        "sample_count": sample_count,
        "trigger_count": trigger_count,
        "trigger_rate": trigger_rate,
        "confidence_interval": [interval.low, interval.high],
        "sampling_mode": sampling_mode,
        "distribution": distribution,
        "error_count": error_count,
    })


# --- STOPRULE ---
def stoprule_all_trials_failed(tenant_id: str, expression_id: str,
                               sample_count: int, error_count: int) -> None:
    """Stoprule: every trial raised, so the run measured nothing."""
    if sample_count > 0 and error_count >= sample_count:
        emit_receipt("anomaly", {
            "tenant_id": tenant_id,
            "metric": "trial_error_rate",
            "baseline": 0.0,
            "delta": 1.0,
            "classification": "violation",
            "action": "halt",
            "expression_id": expression_id,
            "error_count": error_count,
        })
        raise StopRule(f"All {sample_count} trials failed for expression '{expression_id}'")


# =============================================================================
# CORE FUNCTION 1: validate_var_paths
# =============================================================================

def validate_var_path(path: str, nested_keys: Mapping[str, Any]) -> Optional[Dict[str, str]]:
    """
    Check one var path against the keys a context actually seeds.

    Returns:
        None when valid, else {path, reason, suggestion} with reason one of
        unknown_root | invalid_nesting | unknown_nested_key
    """
    parts = path.split(".")
    root = parts[0]
    if root not in CONTEXT_ROOTS:
        return {
            "path": path,
            "reason": "unknown_root",
            "suggestion": f'Unknown root variable "{root}". Valid roots: {", ".join(sorted(CONTEXT_ROOTS))}',
        }
    if len(parts) > 1 and root in SCALAR_CONTEXT_ROOTS:
        return {
            "path": path,
            "reason": "invalid_nesting",
            "suggestion": f'"{root}" is a scalar value and cannot have nested properties like "{path}"',
        }
    if len(parts) > 1:
        valid = nested_keys.get(root)
        if valid is not None and parts[1] not in valid:
            if valid:
                known = ", ".join(sorted(valid)[:MAX_KNOWN_KEYS_IN_SUGGESTION])
                if len(valid) > MAX_KNOWN_KEYS_IN_SUGGESTION:
                    known += "..."
            else:
                known = "(none available)"
            return {
                "path": path,
                "reason": "unknown_nested_key",
                "suggestion": f'Unknown key "{parts[1]}" in "{root}". Known keys: {known}',
            }
    return None


def validate_var_paths(prerequisites: Sequence[Node],
                       nested_keys: Mapping[str, Any]) -> List[Dict[str, str]]:
    """Warnings for every distinct unseeded var path, first-seen order."""
    seen: List[str] = []
    for node in prerequisites:
        for path in collect_var_paths(node):
            if path not in seen:
                seen.append(path)
    warnings = []
    for path in seen:
        warning = validate_var_path(path, nested_keys)
        if warning is not None:
            warnings.append(warning)
    return warnings


# =============================================================================
# HELPERS
# =============================================================================

def _leaf_index(prerequisites: Sequence[Node]) -> Dict[str, Leaf]:
    index: Dict[str, Leaf] = {}

    def walk(node: Node, clause_id: str) -> None:
        if isinstance(node, Leaf):
            index[clause_id] = node
            return
        for i, child in enumerate(node.children):
            walk(child, f"{clause_id}.{i}")

    for i, node in enumerate(prerequisites):
        walk(node, str(i))
    return index


def threshold_conditions(prerequisites: Sequence[Node]) -> List[Dict[str, Any]]:
    """Simple var-vs-number comparisons, one per distinct (path, operator)."""
    conditions: List[Dict[str, Any]] = []
    seen = set()
    for clause_id, leaf in _leaf_index(prerequisites).items():
        info = leaf.threshold_info()
        if info is None or info[1] not in (">=", "<=", ">", "<") or info[:2] in seen:
            continue
        seen.add(info[:2])
        conditions.append({"clause_id": clause_id, "var_path": info[0],
                           "operator": info[1], "threshold": info[2]})
    return conditions


def referenced_emotions(prerequisites: Sequence[Node]) -> List[str]:
    names: List[str] = []
    for node in prerequisites:
        for path in collect_var_paths(node):
            match = _EMOTION_PATH_RE.match(path)
            if match and match.group(1) not in names:
                names.append(match.group(1))
    return names


def _failed_leaf_summary(leaf: Leaf, context: Context) -> Dict[str, Any]:
    info = leaf.threshold_info()
    if info is not None:
        var = leaf.left if isinstance(leaf.left, Var) else leaf.right
        actual = resolve_operand(var, context)
        threshold = info[2]
    else:
        _, actual, threshold = evaluate_leaf(leaf, context)
    numeric = all(isinstance(v, (int, float)) and not isinstance(v, bool)
                  for v in (actual, threshold))
    return {
        "description": describe(leaf),
        "actual": actual,
        "threshold": threshold,
        "violation": abs(actual - threshold) if numeric else None,
    }


def _coerce_expression(expression: Union[ExpressionDefinition, Mapping[str, Any]]) -> ExpressionDefinition:
    if isinstance(expression, ExpressionDefinition):
        return expression
    return ExpressionDefinition.from_dict(expression)


def _coerce_config(config: Union[SimulationConfig, Mapping[str, Any], None]) -> SimulationConfig:
    if isinstance(config, SimulationConfig):
        return config
    return config_from_dict(dict(config) if config else None, kind="simulation", strict=True)


# =============================================================================
# CORE FUNCTION 2: MonteCarloSimulator
# =============================================================================

class MonteCarloSimulator:
    """
    Repeated-sampling trigger-rate estimator for one prototype catalog.

    Args:
        prototypes: Prototype objects or a raw catalog mapping/list
        rng: Injected numpy Generator; when None each simulate() call seeds
             a fresh generator from config.seed
        tenant_id: Tenant recorded on receipts
    """

    def __init__(self, prototypes: Any = (), rng: Optional[np.random.Generator] = None,
                 tenant_id: str = "default"):
        if prototypes and all(isinstance(p, Prototype) for p in prototypes):
            self.prototypes = list(prototypes)
        else:
            self.prototypes = load_catalog(prototypes)
        self.builder = ContextBuilder(self.prototypes)
        self.rng = rng
        self.tenant_id = tenant_id

    def simulate(self, expression: Union[ExpressionDefinition, Mapping[str, Any]],
                 config: Union[SimulationConfig, Mapping[str, Any], None] = None,
                 on_progress: Optional[ProgressCallback] = None) -> SimulationResult:
        """
        Run one Monte Carlo simulation.

        Args:
            expression: ExpressionDefinition or its {id, prerequisites} mapping
            config: SimulationConfig, raw mapping, or None for defaults
            on_progress: Called as on_progress(processed, total) per chunk

        Returns:
            SimulationResult (frozen)

        Raises:
            MalformedDefinitionError: Unparseable expression, or unseeded vars
                with fail_on_unseeded_vars
            ConfigError: Invalid config mapping
            StopRule: Every trial faulted
        """
        definition = _coerce_expression(expression)
        cfg = _coerce_config(config)
        prerequisites = definition.prerequisites

        unseeded: List[Dict[str, str]] = []
        if cfg.validate_var_paths:
            unseeded = validate_var_paths(prerequisites, self.builder.known_nested_keys())
            for warning in unseeded:
                logger.warning('Unseeded var "%s" (%s): %s',
                               warning["path"], warning["reason"], warning["suggestion"])
            if unseeded and cfg.fail_on_unseeded_vars:
                paths = ", ".join(w["path"] for w in unseeded)
                raise MalformedDefinitionError(
                    f'Expression "{definition.id}" uses unseeded variables: {paths}'
                )

        rng = self.rng if self.rng is not None else np.random.default_rng(cfg.seed)
        generator = TemporalStateGenerator(
            rng,
            mood_delta_sigma=cfg.mood_delta_sigma,
            sexual_delta_sigma=cfg.sexual_delta_sigma,
            libido_delta_sigma=cfg.libido_delta_sigma,
        )
        sampling_metadata = generator.sampling_metadata(cfg.sampling_mode)
        n = cfg.sample_count

        if n == 0:
            interval = ConfidenceInterval(0.0, 1.0)
            return SimulationResult(
                trigger_rate=0.0, trigger_count=0, sample_count=0,
                confidence_interval=interval,
                distribution=cfg.distribution, sampling_mode=cfg.sampling_mode,
                sampling_metadata=sampling_metadata,
                witness_analysis={"witnesses": [], "bestWitness": None, "nearestMiss": None},
                unseeded_var_warnings=tuple(unseeded),
                receipt=emit_simulation_receipt(self.tenant_id, definition.id, 0, 0, 0.0,
                                                interval, cfg.sampling_mode, cfg.distribution, 0),
            )

        tracker = ClauseTracker(prerequisites) if cfg.track_clauses else None
        leaves = _leaf_index(prerequisites)
        wanted_emotions = referenced_emotions(prerequisites)

        trigger_count = 0
        error_count = 0
        storing = cfg.store_samples_for_sensitivity and cfg.sensitivity_sample_limit > 0
        # Spawned children leave the trial stream untouched.
        reservoir_rng = rng.spawn(1)[0] if storing else None
        reservoir: List[Context] = []
        seen_contexts = 0
        witnesses: List[Dict[str, Any]] = []
        nearest_miss: Optional[Dict[str, Any]] = None
        nearest_failed = math.inf

        for i in range(n):
            try:
                pair = generator.generate(cfg.distribution, cfg.sampling_mode)
                context = self.builder.build_from_pair(pair)
                if tracker is not None:
                    passed, failed_leaves = tracker.record(context)
                else:
                    evaluation = evaluate_prerequisites(prerequisites, context)
                    passed, failed_leaves = evaluation.passed, len(evaluation.failed_leaves)
            except TRIAL_FAULTS as e:
                error_count += 1
                logger.debug("Trial %d of '%s' failed: %s", i, definition.id, e)
                continue

            if storing:
                seen_contexts += 1
                if len(reservoir) < cfg.sensitivity_sample_limit:
                    reservoir.append(context)
                else:
                    slot = int(reservoir_rng.integers(0, seen_contexts))
                    if slot < cfg.sensitivity_sample_limit:
                        reservoir[slot] = context

            if passed:
                trigger_count += 1
                if len(witnesses) < cfg.max_witnesses:
                    witnesses.append(self._witness(pair, context, wanted_emotions))
            elif failed_leaves < nearest_failed:
                nearest_failed = failed_leaves
                evaluation = evaluate_prerequisites(prerequisites, context)
                nearest_miss = {
                    "sample": pair.to_dict(),
                    "failedLeafCount": failed_leaves,
                    "failedLeaves": [
                        _failed_leaf_summary(leaves[a.clause_id], context)
                        for a in evaluation.failed_leaves[:MAX_FAILED_LEAVES_REPORTED]
                    ],
                }

            processed = i + 1
            if on_progress is not None and processed % PROGRESS_CHUNK_SIZE == 0 and processed < n:
                on_progress(processed, n)

        if on_progress is not None:
            on_progress(n, n)

        stoprule_all_trials_failed(self.tenant_id, definition.id, n, error_count)

        trigger_rate = trigger_count / n
        if cfg.interval_method == "clopper_pearson":
            low, high = clopper_pearson_interval(trigger_count, n, cfg.confidence_level)
        else:
            low, high = wilson_interval(trigger_count, n, cfg.confidence_level)
        interval = ConfidenceInterval(low, high)

        logger.debug("%s triggerRate=%.4f (%d/%d, %s, %s)", definition.id, trigger_rate,
                     trigger_count, n, cfg.distribution, cfg.sampling_mode)

        return SimulationResult(
            trigger_rate=trigger_rate,
            trigger_count=trigger_count,
            sample_count=n,
            confidence_interval=interval,
            clause_statistics=tuple(tracker.finalize()) if tracker is not None else (),
            stored_contexts=tuple(reservoir),
            distribution=cfg.distribution,
            sampling_mode=cfg.sampling_mode,
            sampling_metadata=sampling_metadata,
            witness_analysis={
                "witnesses": witnesses,
                "bestWitness": witnesses[0] if witnesses else None,
                "nearestMiss": nearest_miss,
            },
            unseeded_var_warnings=tuple(unseeded),
            overconstrained_conjunctions=(
                tuple(find_overconstrained_conjunctions(tracker.roots)) if tracker is not None else ()
            ),
            error_count=error_count,
            receipt=emit_simulation_receipt(self.tenant_id, definition.id, n, trigger_count,
                                            trigger_rate, interval, cfg.sampling_mode,
                                            cfg.distribution, error_count),
        )

    @staticmethod
    def _witness(pair, context: Context, wanted: Sequence[str]) -> Dict[str, Any]:
        emotions = context["emotions"]
        previous = context["previousEmotions"]
        return {
            **pair.to_dict(),
            "computedEmotions": {k: emotions[k] for k in wanted if k in emotions},
            "previousComputedEmotions": {k: previous[k] for k in wanted if k in previous},
        }


# =============================================================================
# CORE FUNCTION 3: compute_threshold_sensitivity
# =============================================================================

def _threshold_grid(threshold: float, steps: int, step_size: float) -> List[float]:
    half = steps // 2
    return [round(threshold + i * step_size, 10) for i in range(-half, half + 1)]


def compute_threshold_sensitivity(contexts: Sequence[Any], var_path: str, operator: str,
                                  threshold: float, steps: int = SENSITIVITY_STEPS,
                                  step_size: float = SENSITIVITY_STEP_SIZE) -> Dict[str, Any]:
    """
    Pass rate of a single condition across a threshold grid.

    Args:
        contexts: Stored contexts from a simulation
        var_path: Dotted context path
        operator: Comparison operator
        threshold: Original threshold (grid center)
        steps: Grid points
        step_size: Spacing between grid points

    Returns:
        dict: conditionPath, operator, originalThreshold, grid
              [{threshold, passRate, passCount, sampleCount}]
    """
    result = {"conditionPath": var_path, "operator": operator,
              "originalThreshold": threshold, "grid": []}
    if not contexts:
        logger.warning("No stored contexts for sensitivity analysis")
        return result

    total = len(contexts)
    values = [get_nested_value(c, var_path) for c in contexts]
    for t in _threshold_grid(threshold, steps, step_size):
        passes = sum(1 for v in values if v is not None and compare(operator, v, t))
        result["grid"].append({"threshold": t, "passRate": passes / total,
                               "passCount": passes, "sampleCount": total})
    return result


# =============================================================================
# CORE FUNCTION 4: compute_expression_sensitivity
# =============================================================================

def compute_expression_sensitivity(contexts: Sequence[Any],
                                   logic: Union[Mapping[str, Any], Node, ExpressionDefinition],
                                   var_path: str, operator: str, threshold: float,
                                   steps: int = SENSITIVITY_STEPS,
                                   step_size: float = SENSITIVITY_STEP_SIZE) -> Dict[str, Any]:
    """Whole-expression trigger rate with one condition's threshold swept."""
    result = {"varPath": var_path, "operator": operator, "originalThreshold": threshold,
              "grid": [], "isExpressionLevel": True}
    if not contexts:
        logger.warning("No stored contexts for expression sensitivity analysis")
        return result
    if not logic:
        logger.warning("No expression logic for expression sensitivity analysis")
        return result

    if isinstance(logic, ExpressionDefinition):
        nodes = list(logic.prerequisites)
    elif isinstance(logic, (And, Or, Leaf)):
        nodes = [logic]
    else:
        nodes = [parse_logic(logic)]

    total = len(contexts)
    for t in _threshold_grid(threshold, steps, step_size):
        modified = [replace_threshold(node, var_path, operator, t) for node in nodes]
        triggered = sum(1 for c in contexts if evaluate_prerequisites(modified, c).passed)
        result["grid"].append({"threshold": t, "triggerRate": triggered / total,
                               "triggerCount": triggered, "sampleCount": total})
    return result
