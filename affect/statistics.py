"""
affect/statistics.py - Statistical Computation

Pure numeric helpers shared by the simulator and the population analyzers.
Degenerate input (empty, non-finite, zero trials) yields neutral results,
never an exception.
"""

import math
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from scipy.stats import beta, norm

__all__ = [
    "finite_values",
    "compute_distribution_stats",
    "compute_quartiles",
    "compute_histogram",
    "detect_outliers",
    "get_nested_value",
    "wilson_interval",
    "clopper_pearson_interval",
]


def finite_values(values: Optional[Sequence[Any]]) -> np.ndarray:
    """Numeric, finite entries of a sequence as a float array."""
    if not values:
        return np.array([], dtype=float)
    kept = [float(v) for v in values
            if isinstance(v, (int, float, np.number)) and not isinstance(v, bool)
            and math.isfinite(v)]
    return np.array(kept, dtype=float)


# =============================================================================
# DISTRIBUTIONS
# =============================================================================

def compute_distribution_stats(values: Optional[Sequence[float]]) -> Dict[str, Any]:
    """
    Summary statistics over finite values.

    Args:
        values: Numeric sequence; non-finite entries are ignored

    Returns:
        dict: count, mean, median, p50, p90, p95, min, max, std
              (all None except count when nothing is finite)
    """
    arr = finite_values(values)
    if arr.size == 0:
        return {"count": 0, "mean": None, "median": None, "p50": None, "p90": None,
                "p95": None, "min": None, "max": None, "std": None}
    p50, p90, p95 = np.percentile(arr, [50, 90, 95])
    return {
        "count": int(arr.size),
        "mean": float(arr.mean()),
        "median": float(np.median(arr)),
        "p50": float(p50),
        "p90": float(p90),
        "p95": float(p95),
        "min": float(arr.min()),
        "max": float(arr.max()),
        "std": float(arr.std()),
    }


def compute_quartiles(values: Optional[Sequence[float]]) -> Dict[str, Optional[float]]:
    """Q1/median/Q3 by linear interpolation between closest ranks."""
    arr = finite_values(values)
    if arr.size == 0:
        return {"q1": None, "median": None, "q3": None, "iqr": None}
    q1, q2, q3 = np.percentile(arr, [25, 50, 75], method="linear")
    return {"q1": float(q1), "median": float(q2), "q3": float(q3), "iqr": float(q3 - q1)}


def compute_histogram(values: Optional[Sequence[float]]) -> List[Dict[str, int]]:
    """Discrete integer bins, ascending: [{value, count}]."""
    arr = finite_values(values)
    if arr.size == 0:
        return []
    bins, counts = np.unique(arr.astype(int), return_counts=True)
    return [{"value": int(b), "count": int(c)} for b, c in zip(bins, counts)]


def detect_outliers(values: Optional[Sequence[float]], k: float = 2.0,
                    labels: Optional[Sequence[str]] = None) -> Dict[str, Any]:
    """
    Flag values beyond k population standard deviations from the mean.

    Args:
        values: Numeric sequence
        k: Standard deviation multiplier
        labels: Optional names aligned with values

    Returns:
        dict: mean, std, and separate 'high' and 'low' lists of
              {index, label, value, zScore}
    """
    arr = finite_values(values)
    result: Dict[str, Any] = {"mean": None, "std": None, "high": [], "low": []}
    if arr.size == 0:
        return result
    mean = float(arr.mean())
    std = float(arr.std())
    result["mean"] = mean
    result["std"] = std
    if std == 0:
        return result

    for index, value in enumerate(values or []):
        if not isinstance(value, (int, float, np.number)) or not math.isfinite(value):
            continue
        z = (value - mean) / std
        entry = {
            "index": index,
            "label": labels[index] if labels is not None else None,
            "value": float(value),
            "zScore": float(z),
        }
        if z > k:
            result["high"].append(entry)
        elif z < -k:
            result["low"].append(entry)
    return result


# =============================================================================
# PATH LOOKUP
# =============================================================================

def get_nested_value(container: Any, dotted_path: str) -> Any:
    """
    Safe dotted-path traversal. None on any missing segment.

    Accepts plain mappings or any object exposing a mapping 'data'
    attribute (Context).
    """
    if not isinstance(dotted_path, str) or not dotted_path:
        return None
    current = getattr(container, "data", container)
    for segment in dotted_path.split("."):
        if not isinstance(current, Mapping) or segment not in current:
            return None
        current = current[segment]
    return current


# =============================================================================
# BINOMIAL INTERVALS
# =============================================================================

def wilson_interval(successes: int, trials: int,
                    confidence_level: float = 0.95) -> Tuple[float, float]:
    """
    Wilson score interval for a binomial proportion.

    Stays inside [0, 1] and contains the point estimate, including at 0
    and 1. Zero trials returns (0, 1).
    """
    if trials <= 0:
        return 0.0, 1.0
    z = float(norm.ppf(1 - (1 - confidence_level) / 2))
    p = successes / trials
    denom = 1 + z * z / trials
    center = (p + z * z / (2 * trials)) / denom
    margin = z * math.sqrt(p * (1 - p) / trials + z * z / (4 * trials * trials)) / denom
    low = max(0.0, center - margin)
    high = min(1.0, center + margin)
    return min(low, p), max(high, p)


def clopper_pearson_interval(successes: int, trials: int,
                             confidence_level: float = 0.95) -> Tuple[float, float]:
    """Exact (conservative) binomial interval from beta quantiles."""
    if trials <= 0:
        return 0.0, 1.0
    alpha = 1 - confidence_level
    low = 0.0 if successes == 0 else float(beta.ppf(alpha / 2, successes, trials - successes + 1))
    high = 1.0 if successes == trials else float(beta.ppf(1 - alpha / 2, successes + 1, trials - successes))
    return low, high
