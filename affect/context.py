"""
affect/context.py - Context Building

Projects raw axis states through prototype weights and gates into the
derived-intensity Context an expression is evaluated against.

Normalization (raw -> normalized):
    mood axes           v / 100                 in [-1, 1]
    sex_excitation      clamp01(v / 100)
    sex_inhibition      clamp01(v / 100)        (alias sexual_inhibition)
    sexual_arousal      clamp01((exc - inh + baseline) / 100)   (alias SA)
    traits              clamp01(v / 100)        (default 50)

Axis resolution order: traits, then sexual, then mood, else 0.
"""

import logging
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Union

from .constants import (
    DEFAULT_TRAIT_VALUE,
    MOOD_AXES,
    SEXUAL_AROUSAL_ALIAS,
    SEXUAL_AROUSAL_AXIS,
    SEXUAL_AXES,
    TRAIT_AXES,
)
from .types_state import AxisState, Context, Prototype, PrototypeSignal, TemporalPair

logger = logging.getLogger(__name__)

AxisInput = Union[AxisState, Mapping[str, float]]


def _values(axes: Optional[AxisInput]) -> Mapping[str, float]:
    if axes is None:
        return {}
    if isinstance(axes, AxisState):
        return axes.values
    return axes


def clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


# =============================================================================
# NORMALIZATION
# =============================================================================

def compute_sexual_arousal(axes: Optional[AxisInput]) -> Optional[float]:
    """Derived sexual arousal in [0, 1]; None when no sexual state is present."""
    values = _values(axes)
    if not any(axis in values for axis in SEXUAL_AXES):
        return None
    excitation = values.get("sex_excitation", 0)
    inhibition = values.get("sex_inhibition", 0)
    baseline = values.get("baseline_libido", 0)
    return clamp01((excitation - inhibition + baseline) / 100)


def normalize_traits(traits: Optional[AxisInput]) -> Dict[str, float]:
    values = _values(traits)
    return {axis: clamp01(values.get(axis, DEFAULT_TRAIT_VALUE) / 100) for axis in TRAIT_AXES}


def normalize_axes(axes: Optional[AxisInput],
                   traits: Optional[AxisInput] = None,
                   include_traits: bool = True) -> Dict[str, float]:
    """
    Flatten raw mood, sexual and trait values into one normalized lookup.

    Later families shadow earlier ones so a plain dict lookup follows the
    traits > sexual > mood resolution order.
    """
    values = _values(axes)
    normalized: Dict[str, float] = {}

    for axis in MOOD_AXES:
        if axis in values:
            normalized[axis] = values[axis] / 100

    arousal = compute_sexual_arousal(values)
    normalized[SEXUAL_AROUSAL_AXIS] = arousal if arousal is not None else 0.0
    if "sex_excitation" in values:
        normalized["sex_excitation"] = clamp01(values["sex_excitation"] / 100)
    if "sex_inhibition" in values:
        inhibition = clamp01(values["sex_inhibition"] / 100)
        normalized["sex_inhibition"] = inhibition
        normalized["sexual_inhibition"] = inhibition

    if include_traits:
        normalized.update(normalize_traits(traits))
    return normalized


def resolve_axis(axis: str, normalized: Mapping[str, float]) -> float:
    if axis == SEXUAL_AROUSAL_ALIAS:
        axis = SEXUAL_AROUSAL_AXIS
    return normalized.get(axis, 0.0)


# =============================================================================
# PROTOTYPE MATH
# =============================================================================

def gates_pass(prototype: Prototype, normalized: Mapping[str, float]) -> bool:
    """True when every parsed gate holds; no gates means pass."""
    for gate in prototype.gates:
        if not gate.is_satisfied_by(resolve_axis(gate.axis, normalized)):
            return False
    return True


def signal_from_normalized(prototype: Prototype,
                           normalized: Mapping[str, float]) -> PrototypeSignal:
    raw_sum = 0.0
    max_possible = 0.0
    for axis, weight in prototype.weights.items():
        contribution = resolve_axis(axis, normalized) * weight
        if not math.isfinite(contribution) or not math.isfinite(weight):
            continue
        raw_sum += contribution
        max_possible += abs(weight)

    raw = 0.0 if max_possible == 0 else clamp01(raw_sum / max_possible)
    gate_pass = gates_pass(prototype, normalized)
    gated = raw if gate_pass else 0.0
    return PrototypeSignal(raw=raw, gated=gated, final=gated, gate_pass=gate_pass)


def _uses_traits(prototype: Prototype) -> bool:
    return prototype.type != "sexual"


def normalized_views(axes: AxisInput, traits: Optional[AxisInput] = None):
    """(with traits, without traits) normalized lookups for one axis state."""
    return (normalize_axes(axes, traits, include_traits=True),
            normalize_axes(axes, include_traits=False))


def view_for(prototype: Prototype, views) -> Mapping[str, float]:
    return views[0] if _uses_traits(prototype) else views[1]


def check_gates(prototype: Prototype, axes: AxisInput,
                traits: Optional[AxisInput] = None) -> bool:
    """Gate check on raw axis values, normalized the way the runtime does."""
    normalized = normalize_axes(axes, traits, include_traits=_uses_traits(prototype))
    return gates_pass(prototype, normalized)


def prototype_signal(prototype: Prototype, axes: AxisInput,
                     traits: Optional[AxisInput] = None) -> PrototypeSignal:
    """Raw, gated and final intensity of one prototype on raw axis values."""
    normalized = normalize_axes(axes, traits, include_traits=_uses_traits(prototype))
    return signal_from_normalized(prototype, normalized)


# =============================================================================
# CONTEXT BUILDER
# =============================================================================

class ContextBuilder:
    """
    Builds per-trial contexts for a fixed prototype catalog.

    Emotion and mood prototypes populate 'emotions' and see traits; sexual
    prototypes populate 'sexualStates' and do not.
    """

    def __init__(self, prototypes: Iterable[Prototype] = ()):
        self.prototypes: List[Prototype] = list(prototypes)
        self.emotion_prototypes = [p for p in self.prototypes if p.type != "sexual"]
        self.sexual_prototypes = [p for p in self.prototypes if p.type == "sexual"]

    def _intensities(self, axes: AxisInput, traits: Optional[AxisInput]):
        with_traits, without_traits = normalized_views(axes, traits)
        emotion_signals = {p.id: signal_from_normalized(p, with_traits)
                           for p in self.emotion_prototypes}
        sexual_signals = {p.id: signal_from_normalized(p, without_traits)
                          for p in self.sexual_prototypes}
        return emotion_signals, sexual_signals, with_traits[SEXUAL_AROUSAL_AXIS]

    def build_context(self, current_axes: AxisInput, previous_axes: AxisInput,
                      traits: Optional[AxisInput] = None) -> Context:
        """
        Build the read-only context for one trial.

        Args:
            current_axes: Raw current mood + sexual values
            previous_axes: Raw previous mood + sexual values
            traits: Raw affect traits (defaults to 50 each)

        Returns:
            Context with current and previous derived intensities
        """
        current = _values(current_axes)
        previous = _values(previous_axes)
        emotions, sexual_states, arousal = self._intensities(current, traits)
        prev_emotions, prev_sexual_states, prev_arousal = self._intensities(previous, traits)

        trait_values = _values(traits)
        mood = {a: current[a] for a in MOOD_AXES if a in current}
        previous_mood = {a: previous[a] for a in MOOD_AXES if a in previous}

        data = {
            "mood": mood,
            "moodAxes": mood,
            "emotions": {pid: s.final for pid, s in emotions.items()},
            "sexualStates": {pid: s.final for pid, s in sexual_states.items()},
            "sexualArousal": arousal,
            "previousEmotions": {pid: s.final for pid, s in prev_emotions.items()},
            "previousSexualStates": {pid: s.final for pid, s in prev_sexual_states.items()},
            "previousMoodAxes": previous_mood,
            "previousSexualArousal": prev_arousal,
            "affectTraits": {a: trait_values.get(a, DEFAULT_TRAIT_VALUE) for a in TRAIT_AXES},
            "sexualAxes": {a: current[a] for a in SEXUAL_AXES if a in current},
            "previousSexualAxes": {a: previous[a] for a in SEXUAL_AXES if a in previous},
        }
        signals = {
            "emotions": emotions,
            "sexualStates": sexual_states,
            "previousEmotions": prev_emotions,
            "previousSexualStates": prev_sexual_states,
        }
        return Context(data=data, signals=signals)

    def build_from_pair(self, pair: TemporalPair) -> Context:
        return self.build_context(pair.current, pair.previous, pair.affect_traits)

    def known_nested_keys(self) -> Dict[str, Set[str]]:
        """Keys each mapping-valued context root can hold."""
        emotion_ids = {p.id for p in self.emotion_prototypes}
        sexual_ids = {p.id for p in self.sexual_prototypes}
        return {
            "mood": set(MOOD_AXES),
            "moodAxes": set(MOOD_AXES),
            "previousMoodAxes": set(MOOD_AXES),
            "emotions": emotion_ids,
            "previousEmotions": emotion_ids,
            "sexualStates": sexual_ids,
            "previousSexualStates": sexual_ids,
            "affectTraits": set(TRAIT_AXES),
            "sexualAxes": set(SEXUAL_AXES),
            "previousSexualAxes": set(SEXUAL_AXES),
        }

