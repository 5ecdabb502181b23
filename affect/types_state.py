"""
affect/types_state.py - State, Prototype and Context Dataclasses

Immutable value types shared by the simulator and the overlap pipeline.
Definitions are validated once at load time; nothing downstream re-checks
their shape.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .constants import (
    AXIS_RANGES,
    GATE_EQUALITY_TOLERANCE,
    GATE_OPERATORS,
    GATE_PATTERN,
    MOOD_AXES,
    PROTOTYPE_TYPES,
    SEXUAL_AXES,
    TRAIT_AXES,
)

logger = logging.getLogger(__name__)

_GATE_RE = re.compile(GATE_PATTERN)


class MalformedDefinitionError(ValueError):
    """An expression or prototype definition is missing required structure."""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# =============================================================================
# AXIS STATE
# =============================================================================

@dataclass(frozen=True)
class AxisState:
    """Bounded raw axis values. Out-of-range values are rejected, never clamped."""
    values: Mapping[str, float]

    def __post_init__(self):
        checked = {}
        for axis, value in self.values.items():
            if axis not in AXIS_RANGES:
                raise ValueError(f"Unknown axis '{axis}'")
            if not _is_number(value) or not math.isfinite(value):
                raise ValueError(f"Axis '{axis}' must be a finite number, got {value!r}")
            low, high = AXIS_RANGES[axis]
            if value < low or value > high:
                raise ValueError(f"Axis '{axis}' value {value} outside [{low}, {high}]")
            checked[axis] = value
        object.__setattr__(self, "values", MappingProxyType(checked))

    @property
    def mood(self) -> Dict[str, float]:
        return {a: self.values[a] for a in MOOD_AXES if a in self.values}

    @property
    def sexual(self) -> Dict[str, float]:
        return {a: self.values[a] for a in SEXUAL_AXES if a in self.values}

    @property
    def traits(self) -> Dict[str, float]:
        return {a: self.values[a] for a in TRAIT_AXES if a in self.values}

    def to_dict(self) -> Dict[str, float]:
        return dict(self.values)


@dataclass(frozen=True)
class TemporalPair:
    """One trial's (previous, current) axis states plus the stable traits."""
    previous: AxisState
    current: AxisState
    affect_traits: AxisState

    def to_dict(self) -> Dict[str, Any]:
        return {
            "previous": self.previous.to_dict(),
            "current": self.current.to_dict(),
            "affectTraits": self.affect_traits.to_dict(),
        }


# =============================================================================
# GATES AND PROTOTYPES
# =============================================================================

@dataclass(frozen=True)
class Gate:
    """Threshold constraint on one normalized axis."""
    axis: str
    operator: str
    threshold: float

    def __post_init__(self):
        if self.operator not in GATE_OPERATORS:
            raise MalformedDefinitionError(f"Unsupported gate operator '{self.operator}'")
        if not _is_number(self.threshold):
            raise MalformedDefinitionError(f"Gate threshold must be numeric, got {self.threshold!r}")

    @classmethod
    def parse(cls, text: str) -> Optional["Gate"]:
        """Parse 'axis >= 0.35' style strings; None when the format is invalid."""
        if not isinstance(text, str):
            return None
        match = _GATE_RE.match(text.strip())
        if not match:
            return None
        return cls(axis=match.group(1), operator=match.group(2),
                   threshold=float(match.group(3)))

    def is_satisfied_by(self, value: float) -> bool:
        if self.operator == ">=":
            return value >= self.threshold
        if self.operator == "<=":
            return value <= self.threshold
        if self.operator == ">":
            return value > self.threshold
        if self.operator == "<":
            return value < self.threshold
        return abs(value - self.threshold) < GATE_EQUALITY_TOLERANCE

    def __str__(self) -> str:
        return f"{self.axis} {self.operator} {self.threshold:g}"


@dataclass(frozen=True)
class Prototype:
    """Weighted, gated linear mapping from axis state to an intensity."""
    id: str
    type: str
    weights: Mapping[str, float]
    gates: Tuple[Gate, ...] = ()
    unparsed_gates: Tuple[str, ...] = ()

    def __post_init__(self):
        if not isinstance(self.id, str) or not self.id:
            raise MalformedDefinitionError("Prototype id must be a non-empty string")
        if self.type not in PROTOTYPE_TYPES:
            raise MalformedDefinitionError(
                f"Prototype '{self.id}' has unknown type '{self.type}'. "
                f"Must be one of: {list(PROTOTYPE_TYPES)}"
            )
        if not isinstance(self.weights, Mapping):
            raise MalformedDefinitionError(f"Prototype '{self.id}' weights must be a mapping")
        for axis, weight in self.weights.items():
            if not _is_number(weight):
                raise MalformedDefinitionError(
                    f"Prototype '{self.id}' weight for '{axis}' must be numeric, got {weight!r}"
                )
        object.__setattr__(self, "weights", MappingProxyType(dict(self.weights)))
        object.__setattr__(self, "gates", tuple(self.gates))
        object.__setattr__(self, "unparsed_gates", tuple(self.unparsed_gates))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], prototype_id: Optional[str] = None,
                  default_type: str = "emotion") -> "Prototype":
        """
        Build a Prototype from a loosely-typed definition.

        Args:
            data: Mapping with 'weights', optional 'gates', 'type', 'id'
            prototype_id: Id to use when the mapping has none
            default_type: Type when the mapping has none

        Returns:
            Validated Prototype

        Raises:
            MalformedDefinitionError: When weights are absent or invalid
        """
        if not isinstance(data, Mapping):
            raise MalformedDefinitionError(f"Prototype definition must be a mapping, got {type(data).__name__}")
        pid = data.get("id", prototype_id)
        if "weights" not in data or data["weights"] is None:
            raise MalformedDefinitionError(f"Prototype '{pid}' is missing weights")

        gates: List[Gate] = []
        unparsed: List[str] = []
        for raw in data.get("gates") or []:
            if isinstance(raw, Gate):
                gates.append(raw)
                continue
            if isinstance(raw, Mapping):
                gates.append(Gate(axis=raw["axis"], operator=raw["operator"],
                                  threshold=raw["threshold"]))
                continue
            gate = Gate.parse(raw)
            if gate is None:
                logger.warning("Invalid gate format on prototype '%s': %r", pid, raw)
                unparsed.append(str(raw))
            else:
                gates.append(gate)

        return cls(
            id=pid,
            type=data.get("type", default_type),
            weights=data["weights"],
            gates=tuple(gates),
            unparsed_gates=tuple(unparsed),
        )

    @property
    def gate_parse_status(self) -> str:
        if not self.unparsed_gates:
            return "complete"
        return "partial" if self.gates else "failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "weights": dict(self.weights),
            "gates": [str(g) for g in self.gates] + list(self.unparsed_gates),
        }


def load_catalog(data: Any, default_type: str = "emotion") -> List[Prototype]:
    """
    Load a prototype catalog strictly.

    Accepts {id: definition} mappings, lists of definitions with 'id', or
    already-built Prototype objects. Any malformed entry raises.
    """
    if data is None:
        return []
    if isinstance(data, Mapping):
        items: Iterable = [(pid, d) for pid, d in data.items()]
    else:
        items = [(None, d) for d in data]
    prototypes = []
    for pid, definition in items:
        if isinstance(definition, Prototype):
            prototypes.append(definition)
        else:
            prototypes.append(Prototype.from_dict(definition, pid, default_type))
    return prototypes


def coerce_prototypes(data: Any, default_type: str = "emotion") -> List[Prototype]:
    """Lenient catalog load: malformed entries are skipped with a warning."""
    if data is None or isinstance(data, (str, bytes)):
        return []
    if isinstance(data, Mapping):
        items: Iterable = list(data.items())
    elif isinstance(data, Iterable):
        items = [(None, d) for d in data]
    else:
        return []
    prototypes = []
    for pid, definition in items:
        if isinstance(definition, Prototype):
            prototypes.append(definition)
            continue
        try:
            prototypes.append(Prototype.from_dict(definition, pid, default_type))
        except MalformedDefinitionError as e:
            logger.warning("Skipping prototype: %s", e)
    return prototypes


# =============================================================================
# CONTEXT
# =============================================================================

@dataclass(frozen=True)
class PrototypeSignal:
    """Raw and gated intensity of one prototype on one axis state."""
    raw: float
    gated: float
    final: float
    gate_pass: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"raw": self.raw, "gated": self.gated, "final": self.final,
                "gatePass": self.gate_pass}


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    return value


@dataclass(frozen=True)
class Context:
    """Flattened read-only view an expression is evaluated against."""
    data: Mapping[str, Any]
    signals: Mapping[str, Mapping[str, PrototypeSignal]] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "data", _freeze(self.data))
        object.__setattr__(self, "signals", _freeze(self.signals))

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __contains__(self, key: str) -> bool:
        return key in self.data

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        return _thaw(self.data)
