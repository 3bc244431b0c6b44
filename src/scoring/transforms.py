"""
Scoring transformation functions.

Shared membership curves used by the soil and weather scorers. All
transformations accept scalars or numpy arrays and return values in [0, 1].
Non-finite inputs score 0 rather than raising.

Transformation types:
1. gaussian - bell curve around an optimum (e.g., soil pH)
2. triangular - linear ramp up to a peak and back down (e.g., rainfall, temperature)
"""

from typing import Union

import numpy as np

# Type alias for values that can be scalar or array
NumericType = Union[float, np.ndarray]


def as_output(result: np.ndarray) -> NumericType:
    """Return scalar if input was scalar."""
    if np.ndim(result) == 0:
        return float(result)
    return result


def clamp(value: NumericType, low: float, high: float) -> NumericType:
    """
    Clip to [low, high], passing NaN through.

    Example:
        >>> clamp(120.0, 0, 100)
        100.0
    """
    return as_output(np.clip(np.asarray(value, dtype=float), low, high))


def gaussian(value: NumericType, center: float, width: float) -> NumericType:
    """
    Gaussian membership: 1.0 at ``center``, falling off with standard deviation ``width``.

    Shape:
                 ___
               /     \\
              /       \\
        ____/           \\____
                center

    Args:
        value: Input value(s) to transform
        center: Optimum where score = 1.0
        width: Standard deviation of the bell

    Returns:
        Score in [0, 1]; NaN inputs score 0

    Example:
        >>> gaussian(6.0, center=6.0, width=0.6)
        1.0
        >>> round(gaussian(6.6, center=6.0, width=0.6), 4)
        0.6065
    """
    value = np.asarray(value, dtype=float)
    with np.errstate(invalid="ignore", over="ignore"):
        result = np.exp(-0.5 * ((value - center) / width) ** 2)
    result = np.where(np.isfinite(value), result, 0.0)
    return as_output(np.clip(result, 0.0, 1.0))


def triangular(value: NumericType, low: float, peak: float, high: float) -> NumericType:
    """
    Triangular membership: 0 at or beyond ``low``/``high``, 1.0 at ``peak``.

    Shape:
                /\\
               /  \\
        ______/    \\______
            low peak high

    Args:
        value: Input value(s) to transform
        low: Lower bound (score 0)
        peak: Ideal value (score 1)
        high: Upper bound (score 0)

    Returns:
        Score in [0, 1]; NaN inputs and degenerate triangles score 0

    Example:
        >>> triangular(4.2, low=0.2, peak=4.2, high=10)
        1.0
        >>> triangular(2.2, low=0.2, peak=4.2, high=10)
        0.5
    """
    value = np.asarray(value, dtype=float)
    result = np.zeros_like(value, dtype=float)

    if high <= low or peak <= low or peak >= high:
        return as_output(result)

    # Ramp up: from low to peak
    rising = (value > low) & (value <= peak)
    result[rising] = (value[rising] - low) / (peak - low)

    # Ramp down: from peak to high
    falling = (value > peak) & (value < high)
    result[falling] = (high - value[falling]) / (high - peak)

    # Outside (low, high) and NaN: score = 0.0 (already initialized)
    return as_output(result)
