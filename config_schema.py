"""
Diagnostics Configuration Schema - Self-Validating, Frozen Config Objects

Defines SimulationConfig (Monte Carlo runs) and OverlapConfig (prototype
overlap and complexity analysis). Both are frozen after load; invalid input
either raises ConfigError (strict) or self-heals to defaults with warnings.

Consumed by:
- monte_carlo.py (simulation)
- candidate_filter.py, prescan_filter.py, behavioral_overlap.py,
  overlap_classifier.py, overlap_analyzer.py, complexity_analyzer.py
- diagnose.py (CLI)

Design Principles:
- Self-validating: grouped range checks plus ordering constraints
- Self-healing: invalid value -> default, add warning
- Self-describing: exports a Draft 2020-12 JSON Schema
- Immutable: frozen dataclasses, tuples for sequences

Files may use camelCase keys (prescanSampleCount) or snake_case
(prescan_sample_count); both map to the same field.
"""

from __future__ import annotations

import json
import logging
import math
import re
import warnings
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type, Union

import yaml
from jsonschema import Draft202012Validator

from receipts import dual_hash

logger = logging.getLogger(__name__)

__all__ = [
    'ConfigError',
    'SimulationConfig',
    'OverlapConfig',
    'to_snake_case',
    'to_camel_case',
    'validate',
    'load',
    'default',
    'from_dict',
    'with_overrides',
]


class ConfigError(ValueError):
    """Invalid configuration. `field` names the first offending key."""

    def __init__(self, message: str, field: Optional[str] = None, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.field = field
        self.errors = errors or [message]


# =============================================================================
# Key Conversion
# =============================================================================

_CAMEL_RE = re.compile(r'(?<!^)(?=[A-Z])')


def to_snake_case(name: str) -> str:
    return _CAMEL_RE.sub('_', name).lower()


def to_camel_case(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


# =============================================================================
# Config Dataclasses
# =============================================================================

@dataclass(frozen=True)
class SimulationConfig:
    """
    Monte Carlo simulation settings.

    Attributes:
        sample_count: Number of trials (0 yields an empty result)
        sampling_mode: 'static' (independent) or 'dynamic' (previous + delta)
        distribution: 'uniform' or 'gaussian' marginal law
        store_samples_for_sensitivity: Keep a reservoir of contexts
        sensitivity_sample_limit: Reservoir capacity
        confidence_level: Two-sided interval level in (0, 1)
        interval_method: 'wilson' or 'clopper_pearson'
        track_clauses: Collect hierarchical clause statistics
        validate_var_paths: Check var paths against the context before sampling
        fail_on_unseeded_vars: Raise instead of warn on unknown var paths
        max_witnesses: Triggering samples kept for witness analysis
        mood_delta_sigma / sexual_delta_sigma / libido_delta_sigma: Dynamic deltas
        seed: Optional generator seed
    """
    sample_count: int = 10000
    sampling_mode: str = 'static'
    distribution: str = 'uniform'
    store_samples_for_sensitivity: bool = False
    sensitivity_sample_limit: int = 10000
    confidence_level: float = 0.95
    interval_method: str = 'wilson'
    track_clauses: bool = True
    validate_var_paths: bool = True
    fail_on_unseeded_vars: bool = False
    max_witnesses: int = 5
    mood_delta_sigma: float = 15.0
    sexual_delta_sigma: float = 12.0
    libido_delta_sigma: float = 8.0
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        _raise_if_invalid(_validate(_as_dict(self), _SIMULATION_RULES))

    def to_dict(self, camel: bool = False) -> Dict[str, Any]:
        return _export(self, camel)

    def to_json(self, pretty: bool = False) -> str:
        return _to_json(self, pretty)

    def save(self, path: str) -> None:
        _save(self, path)

    @property
    def config_hash(self) -> str:
        return dual_hash(self.to_json())

    @property
    def schema(self) -> Dict[str, Any]:
        return dict(_SIMULATION_RULES.schema)


@dataclass(frozen=True)
class OverlapConfig:
    """
    Prototype overlap pipeline and complexity analysis thresholds.

    Stage A (candidate filter), Route C (prescan), Stage B (behavioral
    sampling), Stage C (classification), near-miss reporting and the
    population complexity analyzer all read from this one object.
    """
    # Stage A - candidate filter
    active_axis_epsilon: float = 0.08
    candidate_min_active_axis_overlap: float = 0.6
    candidate_min_sign_agreement: float = 0.8
    candidate_min_cosine_similarity: float = 0.85
    soft_sign_threshold: float = 0.15
    jaccard_empty_set_value: float = 1.0
    enable_multi_route_filtering: bool = True
    max_candidate_pairs: int = 5000

    # Route C - prescan
    prescan_sample_count: int = 500
    prescan_min_gate_overlap: float = 0.5
    max_prescan_pairs: int = 1000

    # Stage B - behavioral sampling
    sample_count_per_pair: int = 8000
    divergence_examples_k: int = 5
    dominance_delta: float = 0.05
    intensity_eps: float = 0.05
    min_pass_samples_for_conditional: int = 200
    min_co_pass_samples: int = 1
    high_thresholds: Tuple[float, ...] = (0.4, 0.6, 0.75)

    # Stage C - classification
    min_on_either_rate_for_merge: float = 0.05
    min_gate_overlap_ratio: float = 0.9
    min_correlation_for_merge: float = 0.98
    max_mean_abs_diff_for_merge: float = 0.03
    max_exclusive_rate_for_subsumption: float = 0.01
    min_correlation_for_subsumption: float = 0.95
    min_dominance_for_subsumption: float = 0.95
    nested_conditional_threshold: float = 0.97
    enable_convert_to_expression: bool = True

    # Near misses and ranking
    near_miss_correlation_threshold: float = 0.9
    near_miss_gate_overlap_ratio: float = 0.75
    max_near_miss_pairs_to_report: int = 10
    composite_score_gate_overlap_weight: float = 0.3
    composite_score_correlation_weight: float = 0.2
    composite_score_global_diff_weight: float = 0.5

    # Complexity analysis
    active_weight_epsilon: float = 0.01
    min_bundle_support: float = 0.2
    min_bundle_size: int = 2
    max_bundle_size: int = 4
    outlier_std_dev_threshold: float = 2.0
    min_prototypes_for_analysis: int = 5

    def __post_init__(self) -> None:
        if isinstance(self.high_thresholds, list):
            object.__setattr__(self, 'high_thresholds', tuple(self.high_thresholds))
        _raise_if_invalid(_validate(_as_dict(self), _OVERLAP_RULES))

    def to_dict(self, camel: bool = False) -> Dict[str, Any]:
        return _export(self, camel)

    def to_json(self, pretty: bool = False) -> str:
        return _to_json(self, pretty)

    def save(self, path: str) -> None:
        _save(self, path)

    @property
    def config_hash(self) -> str:
        return dual_hash(self.to_json())

    @property
    def schema(self) -> Dict[str, Any]:
        return dict(_OVERLAP_RULES.schema)


ConfigType = Union[SimulationConfig, OverlapConfig]


# =============================================================================
# Validation Rules
# =============================================================================

@dataclass(frozen=True)
class _Rules:
    """Grouped constraints for one config class."""
    config_class: Type
    probability: Tuple[str, ...] = ()
    open_probability: Tuple[str, ...] = ()
    correlation: Tuple[str, ...] = ()
    positive_int: Tuple[str, ...] = ()
    non_negative_int: Tuple[str, ...] = ()
    positive_number: Tuple[str, ...] = ()
    boolean: Tuple[str, ...] = ()
    enums: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    nullable_int: Tuple[str, ...] = ()
    threshold_lists: Tuple[str, ...] = ()
    ordering: Tuple[Tuple[str, str, str], ...] = ()
    weight_sums: Tuple[Tuple[str, ...], ...] = ()
    schema: Dict[str, Any] = field(default_factory=dict)

    @property
    def known_fields(self) -> List[str]:
        return [f.name for f in fields(self.config_class)]


def _build_schema(rules: _Rules, title: str) -> Dict[str, Any]:
    """Draft 2020-12 schema derived from the rule groups."""
    props: Dict[str, Any] = {}
    for name in rules.probability:
        props[name] = {"type": "number", "minimum": 0, "maximum": 1}
    for name in rules.open_probability:
        props[name] = {"type": "number", "exclusiveMinimum": 0, "exclusiveMaximum": 1}
    for name in rules.correlation:
        props[name] = {"type": "number", "minimum": -1, "maximum": 1}
    for name in rules.positive_int:
        props[name] = {"type": "integer", "minimum": 1}
    for name in rules.non_negative_int:
        props[name] = {"type": "integer", "minimum": 0}
    for name in rules.positive_number:
        props[name] = {"type": "number", "exclusiveMinimum": 0}
    for name in rules.boolean:
        props[name] = {"type": "boolean"}
    for name, allowed in rules.enums.items():
        props[name] = {"enum": list(allowed)}
    for name in rules.nullable_int:
        props[name] = {"type": ["integer", "null"]}
    for name in rules.threshold_lists:
        props[name] = {"type": "array",
                       "items": {"type": "number", "exclusiveMinimum": 0, "exclusiveMaximum": 1}}
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "title": title,
        "type": "object",
        "properties": props,
        "additionalProperties": False,
    }


_SIMULATION_RULES = _Rules(
    config_class=SimulationConfig,
    open_probability=('confidence_level',),
    non_negative_int=('sample_count', 'sensitivity_sample_limit', 'max_witnesses'),
    positive_number=('mood_delta_sigma', 'sexual_delta_sigma', 'libido_delta_sigma'),
    boolean=('store_samples_for_sensitivity', 'track_clauses', 'validate_var_paths',
             'fail_on_unseeded_vars'),
    enums={
        'sampling_mode': ('static', 'dynamic'),
        'distribution': ('uniform', 'gaussian'),
        'interval_method': ('wilson', 'clopper_pearson'),
    },
    nullable_int=('seed',),
)

_OVERLAP_RULES = _Rules(
    config_class=OverlapConfig,
    probability=(
        'candidate_min_active_axis_overlap', 'candidate_min_sign_agreement',
        'jaccard_empty_set_value', 'prescan_min_gate_overlap',
        'min_on_either_rate_for_merge', 'min_gate_overlap_ratio',
        'max_mean_abs_diff_for_merge', 'max_exclusive_rate_for_subsumption',
        'min_dominance_for_subsumption', 'nested_conditional_threshold',
        'near_miss_gate_overlap_ratio', 'soft_sign_threshold', 'dominance_delta',
        'intensity_eps', 'composite_score_gate_overlap_weight',
        'composite_score_correlation_weight', 'composite_score_global_diff_weight',
        'min_bundle_support',
    ),
    correlation=(
        'candidate_min_cosine_similarity', 'min_correlation_for_merge',
        'min_correlation_for_subsumption', 'near_miss_correlation_threshold',
    ),
    positive_int=(
        'max_candidate_pairs', 'prescan_sample_count', 'max_prescan_pairs',
        'sample_count_per_pair', 'divergence_examples_k',
        'min_pass_samples_for_conditional', 'min_co_pass_samples',
        'max_near_miss_pairs_to_report', 'min_bundle_size', 'max_bundle_size',
        'min_prototypes_for_analysis',
    ),
    positive_number=('active_axis_epsilon', 'active_weight_epsilon', 'outlier_std_dev_threshold'),
    boolean=('enable_multi_route_filtering', 'enable_convert_to_expression'),
    threshold_lists=('high_thresholds',),
    ordering=(
        ('prescan_min_gate_overlap', '<', 'min_gate_overlap_ratio'),
        ('min_correlation_for_subsumption', '<=', 'min_correlation_for_merge'),
        ('near_miss_correlation_threshold', '<', 'min_correlation_for_merge'),
        ('near_miss_gate_overlap_ratio', '<', 'min_gate_overlap_ratio'),
        ('min_bundle_size', '<=', 'max_bundle_size'),
    ),
    weight_sums=(
        ('composite_score_gate_overlap_weight', 'composite_score_correlation_weight',
         'composite_score_global_diff_weight'),
    ),
)

object.__setattr__(_SIMULATION_RULES, 'schema', _build_schema(_SIMULATION_RULES, 'SimulationConfig'))
object.__setattr__(_OVERLAP_RULES, 'schema', _build_schema(_OVERLAP_RULES, 'OverlapConfig'))

# Compiled once at import
_VALIDATORS = {
    SimulationConfig: Draft202012Validator(_SIMULATION_RULES.schema),
    OverlapConfig: Draft202012Validator(_OVERLAP_RULES.schema),
}
Draft202012Validator.check_schema(_SIMULATION_RULES.schema)
Draft202012Validator.check_schema(_OVERLAP_RULES.schema)

_WEIGHT_SUM_TOLERANCE = 0.001


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not (
        isinstance(value, float) and math.isnan(value))


def _is_int(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def _check_value(name: str, value: Any, rules: _Rules) -> Optional[str]:
    """Grouped check for one field. Returns an error message or None."""
    if name in rules.probability:
        if not _is_number(value):
            return f"{name} must be a number, got {type(value).__name__}"
        if value < 0 or value > 1:
            return f"{name} must be in range [0, 1], got {value}"
    elif name in rules.open_probability:
        if not _is_number(value):
            return f"{name} must be a number, got {type(value).__name__}"
        if value <= 0 or value >= 1:
            return f"{name} must be in range (0, 1), got {value}"
    elif name in rules.correlation:
        if not _is_number(value):
            return f"{name} must be a number, got {type(value).__name__}"
        if value < -1 or value > 1:
            return f"{name} must be in range [-1, 1], got {value}"
    elif name in rules.positive_int:
        if not _is_int(value):
            return f"{name} must be an integer, got {type(value).__name__}"
        if value < 1:
            return f"{name} must be >= 1, got {value}"
    elif name in rules.non_negative_int:
        if not _is_int(value):
            return f"{name} must be an integer, got {type(value).__name__}"
        if value < 0:
            return f"{name} must be >= 0, got {value}"
    elif name in rules.positive_number:
        if not _is_number(value):
            return f"{name} must be a number, got {type(value).__name__}"
        if value <= 0:
            return f"{name} must be > 0, got {value}"
    elif name in rules.boolean:
        if not isinstance(value, bool):
            return f"{name} must be a boolean, got {type(value).__name__}"
    elif name in rules.enums:
        if value not in rules.enums[name]:
            return f"{name} must be one of {list(rules.enums[name])}, got {value!r}"
    elif name in rules.nullable_int:
        if value is not None and not _is_int(value):
            return f"{name} must be null or an integer, got {value!r}"
    elif name in rules.threshold_lists:
        if not isinstance(value, (list, tuple)):
            return f"{name} must be an array, got {type(value).__name__}"
        for i, item in enumerate(value):
            if not _is_number(item) or item <= 0 or item >= 1:
                return f"{name}[{i}] must be a number in range (0, 1), got {item}"
    return None


def _validate(data: Dict[str, Any], rules: _Rules) -> Tuple[bool, List[Tuple[str, str]], List[str]]:
    """
    Validate snake_case config data.

    Returns: (is_valid, errors as (field, message), warnings)

    Rules:
    - Unknown fields rejected
    - Grouped range/type checks (probability, correlation, integers, ...)
    - Ordering constraints between related thresholds
    - Composite score weights sum to 1.0
    - Schema check for anything the groups miss
    """
    errors: List[Tuple[str, str]] = []
    warns: List[str] = []

    if not isinstance(data, dict):
        return False, [('<root>', 'Configuration must be a mapping')], warns

    known = set(rules.known_fields)
    for name in data:
        if name not in known:
            errors.append((name, f"Unknown field: {name}"))

    bad = set()
    for name, value in data.items():
        if name not in known:
            continue
        message = _check_value(name, value, rules)
        if message:
            errors.append((name, message))
            bad.add(name)

    for err in _VALIDATORS[rules.config_class].iter_errors(
            {k: (list(v) if isinstance(v, tuple) else v) for k, v in data.items() if k in known}):
        name = err.path[0] if err.path else '<root>'
        if name not in bad:
            errors.append((str(name), f"Schema: {err.message}"))
            bad.add(name)

    for lesser, op, greater in rules.ordering:
        if lesser in bad or greater in bad or lesser not in data or greater not in data:
            continue
        a, b = data[lesser], data[greater]
        ok = a < b if op == '<' else a <= b
        if not ok:
            errors.append((lesser, f"{lesser} ({a}) must be {op} {greater} ({b})"))

    for group in rules.weight_sums:
        if all(name in data and name not in bad for name in group):
            total = sum(data[name] for name in group)
            if abs(total - 1.0) > _WEIGHT_SUM_TOLERANCE:
                errors.append((group[0], f"{' + '.join(group)} must sum to 1.0, got {total:.4f}"))

    if rules is _OVERLAP_RULES and 'prescan_sample_count' in data and 'sample_count_per_pair' in data:
        prescan, full = data['prescan_sample_count'], data['sample_count_per_pair']
        if _is_number(prescan) and _is_number(full) and prescan > full * 0.5:
            warns.append(
                f"prescan_sample_count ({prescan}) is > 50% of sample_count_per_pair ({full}), "
                "prescan efficiency benefit may be minimal"
            )

    return len(errors) == 0, errors, warns


def _raise_if_invalid(result: Tuple[bool, List[Tuple[str, str]], List[str]]) -> None:
    is_valid, errors, _ = result
    if not is_valid:
        messages = [m for _, m in errors]
        raise ConfigError(
            "Config validation failed:\n" + "\n".join(f"  - {m}" for m in messages),
            field=errors[0][0],
            errors=messages,
        )


def _self_heal(data: Dict[str, Any], errors: List[Tuple[str, str]], rules: _Rules,
               warns: List[str]) -> Dict[str, Any]:
    """
    Apply self-healing to config data.

    - Unknown field -> dropped, add warning
    - Invalid value or broken ordering -> default, add warning
    """
    defaults = _as_dict(rules.config_class())
    healed = dict(data)
    for name, message in errors:
        if name not in defaults:
            if name in healed:
                del healed[name]
                warns.append(f"Ignoring unknown field: {name}")
            continue
        related = [name]
        for lesser, _, greater in rules.ordering:
            if name == lesser:
                related.append(greater)
        for group in rules.weight_sums:
            if name in group:
                related.extend(group)
        for key in related:
            if key in healed and healed[key] != defaults[key]:
                warns.append(f"{message}; using default {key}={defaults[key]!r}")
                healed[key] = defaults[key]
    return healed


# =============================================================================
# Construction and Serialization
# =============================================================================

def _as_dict(config: ConfigType) -> Dict[str, Any]:
    return {f.name: getattr(config, f.name) for f in fields(config)}


def _export(config: ConfigType, camel: bool) -> Dict[str, Any]:
    data = {k: (list(v) if isinstance(v, tuple) else v) for k, v in _as_dict(config).items()}
    if camel:
        return {to_camel_case(k): v for k, v in data.items()}
    return data


def _to_json(config: ConfigType, pretty: bool) -> str:
    if pretty:
        return json.dumps(config.to_dict(), indent=2, sort_keys=True)
    return json.dumps(config.to_dict(), sort_keys=True, separators=(',', ':'))


def _save(config: ConfigType, path: str) -> None:
    path_obj = Path(path)
    data = config.to_dict(camel=True)
    if path_obj.suffix in ('.yaml', '.yml'):
        content = yaml.safe_dump(data, default_flow_style=False, sort_keys=True)
    else:
        content = json.dumps(data, indent=2, sort_keys=True)
    path_obj.write_text(content)


def _rules_for(kind: str) -> _Rules:
    if kind == 'simulation':
        return _SIMULATION_RULES
    if kind == 'overlap':
        return _OVERLAP_RULES
    raise ConfigError(f"Unknown config kind '{kind}'. Must be one of: ['overlap', 'simulation']",
                      field='kind')


def _normalize_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    return {to_snake_case(k): v for k, v in data.items()}


def validate(data: Dict[str, Any], kind: str = 'overlap') -> Tuple[bool, List[str], List[str]]:
    """
    Validate raw config data (camelCase or snake_case keys).

    Returns: (is_valid, error messages, warnings). Never raises for bad values.
    """
    rules = _rules_for(kind)
    if not isinstance(data, dict):
        return False, ['Configuration must be a mapping'], []
    is_valid, errors, warns = _validate(_normalize_keys(data), rules)
    return is_valid, [m for _, m in errors], warns


def from_dict(data: Optional[Dict[str, Any]], kind: str = 'overlap',
              strict: bool = False) -> ConfigType:
    """
    Build a frozen config from raw data.

    Args:
        data: Mapping with camelCase or snake_case keys (None -> defaults)
        kind: 'overlap' or 'simulation'
        strict: If True, raise ConfigError on invalid; if False, self-heal

    Returns:
        Frozen SimulationConfig or OverlapConfig

    Raises:
        ConfigError: Strict mode with invalid data, or unhealable data
    """
    rules = _rules_for(kind)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError('Configuration must be a mapping', field='<root>')
    data = _normalize_keys(data)

    is_valid, errors, warns = _validate(data, rules)
    if not is_valid:
        if strict:
            _raise_if_invalid((is_valid, errors, warns))
        data = _self_heal(data, errors, rules, warns)
        is_valid, errors, _ = _validate(data, rules)
        _raise_if_invalid((is_valid, errors, warns))

    for w in warns:
        logger.warning("%s: %s", rules.config_class.__name__, w)
        warnings.warn(f"{rules.config_class.__name__}: {w}", UserWarning, stacklevel=2)

    coerced = {}
    for f in fields(rules.config_class):
        if f.name not in data:
            continue
        value = data[f.name]
        if f.name in rules.positive_int or f.name in rules.non_negative_int:
            value = int(value)
        elif f.name in rules.threshold_lists:
            value = tuple(value)
        coerced[f.name] = value
    return rules.config_class(**coerced)


def load(path: str, kind: str = 'overlap', strict: bool = False) -> ConfigType:
    """
    Load config from JSON/YAML file.

    A file may hold the config directly or under a top-level 'simulation'
    or 'overlap' section. Loaded configs are always validated: invalid
    values self-heal with a warning, or raise when strict.

    Raises:
        FileNotFoundError: If path doesn't exist
        ConfigError: If strict=True and validation fails
    """
    path_obj = Path(path)
    if not path_obj.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    content = path_obj.read_text()
    if path_obj.suffix in ('.yaml', '.yml'):
        data = yaml.safe_load(content)
    else:
        data = json.loads(content)

    if isinstance(data, dict) and isinstance(data.get(kind), dict):
        data = data[kind]
    return from_dict(data, kind=kind, strict=strict)


def default(kind: str = 'overlap') -> ConfigType:
    """Return the default config for 'overlap' or 'simulation'."""
    return _rules_for(kind).config_class()


def with_overrides(config: ConfigType, **changes: Any) -> ConfigType:
    """Copy of a frozen config with fields replaced (re-validated)."""
    return replace(config, **changes)
