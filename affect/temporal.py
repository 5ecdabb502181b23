"""
affect/temporal.py - Temporal State Generation

Produces (previous, current) axis state pairs for one trial.

static:  current drawn independently of previous (logical feasibility)
dynamic: current = round(clamp(previous + N(0, sigma))) per axis
         (reachability of persistence/transition expressions)

Traits are personality, not momentary state: drawn once per trial and
shared by both instants.
"""

from typing import Dict, Optional

import numpy as np

from .constants import (
    AXIS_RANGES,
    DISTRIBUTIONS,
    GAUSSIAN_SPREAD_DIVISOR,
    LIBIDO_DELTA_SIGMA,
    MOOD_AXES,
    MOOD_DELTA_SIGMA,
    SAMPLING_MODES,
    SEXUAL_AXES,
    SEXUAL_DELTA_SIGMA,
    TRAIT_AXES,
)
from .types_state import AxisState, TemporalPair


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class TemporalStateGenerator:
    """
    Seedable generator of correlated temporal state pairs.

    Args:
        rng: Injected numpy Generator (fresh default_rng() when None)
        mood_delta_sigma: Dynamic-mode delta sigma for mood axes
        sexual_delta_sigma: Delta sigma for sex_excitation / sex_inhibition
        libido_delta_sigma: Delta sigma for baseline_libido
    """

    def __init__(self, rng: Optional[np.random.Generator] = None,
                 mood_delta_sigma: float = MOOD_DELTA_SIGMA,
                 sexual_delta_sigma: float = SEXUAL_DELTA_SIGMA,
                 libido_delta_sigma: float = LIBIDO_DELTA_SIGMA):
        self.rng = rng if rng is not None else np.random.default_rng()
        self.sigmas: Dict[str, float] = {axis: mood_delta_sigma for axis in MOOD_AXES}
        self.sigmas["sex_excitation"] = sexual_delta_sigma
        self.sigmas["sex_inhibition"] = sexual_delta_sigma
        self.sigmas["baseline_libido"] = libido_delta_sigma

    def sample_value(self, distribution: str, low: float, high: float) -> float:
        """Draw one marginal value on [low, high]."""
        if distribution == "gaussian":
            mid = (low + high) / 2
            spread = (high - low) / GAUSSIAN_SPREAD_DIVISOR
            return _clamp(mid + self.rng.standard_normal() * spread, low, high)
        return low + self.rng.random() * (high - low)

    def gaussian_delta(self, sigma: float) -> float:
        return float(self.rng.normal(0.0, sigma))

    def _sample_axes(self, axes, distribution: str) -> Dict[str, int]:
        return {axis: int(round(self.sample_value(distribution, *AXIS_RANGES[axis])))
                for axis in axes}

    def generate(self, distribution: str = "uniform",
                 sampling_mode: str = "static") -> TemporalPair:
        """
        Produce one temporal pair.

        Args:
            distribution: 'uniform' or 'gaussian' marginal law for previous
            sampling_mode: 'static' or 'dynamic'

        Returns:
            TemporalPair with integer-valued axis states

        Raises:
            ValueError: On unknown distribution or sampling mode
        """
        if distribution not in DISTRIBUTIONS:
            raise ValueError(f"Unknown distribution '{distribution}'. Must be one of: {list(DISTRIBUTIONS)}")
        if sampling_mode not in SAMPLING_MODES:
            raise ValueError(f"Unknown sampling mode '{sampling_mode}'. Must be one of: {list(SAMPLING_MODES)}")

        state_axes = MOOD_AXES + SEXUAL_AXES
        previous = self._sample_axes(state_axes, distribution)
        traits = self._sample_axes(TRAIT_AXES, distribution)

        if sampling_mode == "static":
            current = self._sample_axes(state_axes, distribution)
        else:
            current = {}
            for axis in state_axes:
                low, high = AXIS_RANGES[axis]
                moved = previous[axis] + self.gaussian_delta(self.sigmas[axis])
                current[axis] = int(round(_clamp(moved, low, high)))

        return TemporalPair(
            previous=AxisState(previous),
            current=AxisState(current),
            affect_traits=AxisState(traits),
        )

    def sampling_metadata(self, sampling_mode: str) -> Dict[str, object]:
        """Describe what a sampling mode assumes, for result annotation."""
        if sampling_mode == "dynamic":
            return {
                "mode": "dynamic",
                "description": "Current state = previous + Gaussian delta per axis",
                "note": "Tests reachability under a fixed transition model",
                "deltaSigmas": {
                    "mood": self.sigmas[MOOD_AXES[0]],
                    "sexual": self.sigmas["sex_excitation"],
                    "libido": self.sigmas["baseline_libido"],
                },
            }
        return {
            "mode": "static",
            "description": "Current and previous states sampled independently",
            "note": "Tests logical feasibility; any state combination is possible",
        }
