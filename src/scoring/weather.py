"""
Weather overlay: nudges the soil score by recent precipitation and temperature.

Precipitation and temperature each get a triangular membership score; the
combined membership (65 % precipitation, 35 % temperature) shifts the base
score by up to +/-13 points. Extreme conditions add further penalties and cap
the combined membership; warm wet days add a bonus.

The overlay is also classified for display as Dry, Neutral or Favourable.
"""

from enum import IntEnum
from typing import Tuple

import numpy as np

from src.scoring.transforms import NumericType, as_output, triangular


class WeatherOverlay(IntEnum):
    NEUTRAL = 0
    DRY = 1
    FAVOURABLE = 2


PRECIP_MIN_MM = 0.2
PRECIP_IDEAL_MM = 4.2
PRECIP_MAX_MM = 10.0
PRECIP_FAVOURABLE_MM = 4.0
PRECIP_DRY_MM = 0.8

TEMP_MIN_C = 3.0
TEMP_IDEAL_C = 12.0
TEMP_MAX_C = 19.0
TEMP_HOT_C = 22.0
TEMP_MILD_RANGE_C = (8.0, 16.0)

PRECIP_WEIGHT = 0.65
TEMP_WEIGHT = 0.35
MODIFIER_SPAN = 26.0


def _extreme_adjustments(
    precipitation: np.ndarray, temperature: np.ndarray, combined: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """(score modifier, adjusted combined membership) for extreme conditions."""
    modifier = np.zeros_like(combined)
    adjusted = combined.copy()

    dry = precipitation < PRECIP_DRY_MM
    modifier -= np.where(dry, np.clip((PRECIP_DRY_MM - precipitation) * 8, 0, 12), 0)
    adjusted = np.where(dry, np.minimum(adjusted, 0.3), adjusted)

    wet = precipitation > PRECIP_MAX_MM
    modifier -= np.where(wet, np.clip((precipitation - PRECIP_MAX_MM) * 2, 0, 6), 0)

    cold = temperature < TEMP_MIN_C
    modifier -= np.where(cold, np.clip((TEMP_MIN_C - temperature) * 1.8, 0, 10), 0)
    adjusted = np.where(cold, np.minimum(adjusted, 0.35), adjusted)

    hot = temperature > TEMP_HOT_C
    modifier -= np.where(hot, np.clip((temperature - TEMP_HOT_C) * 1.2, 0, 10), 0)
    adjusted = np.where(hot, np.minimum(adjusted, 0.4), adjusted)

    mild_low, mild_high = TEMP_MILD_RANGE_C
    favourable = (precipitation > PRECIP_FAVOURABLE_MM) & (temperature >= mild_low) & (temperature <= mild_high)
    modifier += np.where(favourable, 6, 0)
    adjusted = np.where(favourable, np.maximum(adjusted, 0.7), adjusted)

    return modifier, adjusted


def compute_weather_overlay(
    base_score: NumericType,
    precipitation: NumericType,
    temperature: NumericType,
) -> Tuple[NumericType, NumericType]:
    """
    Adjust soil scores for weather and classify the overlay.

    Args:
        base_score: Soil score(s) in [0, 100] (non-finite treated as 0)
        precipitation: Last-day precipitation in mm
        temperature: Mean temperature in °C

    Returns:
        (adjusted_score, overlay) where adjusted_score is clamped to [0, 100]
        and overlay holds WeatherOverlay values. Cells with non-finite
        weather keep the clamped base score and a Neutral overlay.

    Example:
        >>> score, overlay = compute_weather_overlay(55, 5.1, 12)
        >>> WeatherOverlay(overlay).name, score > 60
        ('FAVOURABLE', True)
    """
    base = np.asarray(base_score, dtype=float)
    precipitation = np.asarray(precipitation, dtype=float)
    temperature = np.asarray(temperature, dtype=float)
    base, precipitation, temperature = np.broadcast_arrays(base, precipitation, temperature)

    safe_base = np.where(np.isfinite(base), base, 0.0)
    has_weather = np.isfinite(precipitation) & np.isfinite(temperature)
    # Placeholder values keep the arithmetic warning-free; masked out below
    precip = np.where(has_weather, precipitation, PRECIP_IDEAL_MM)
    temp = np.where(has_weather, temperature, TEMP_IDEAL_C)

    precip_score = np.asarray(triangular(precip, PRECIP_MIN_MM, PRECIP_IDEAL_MM, PRECIP_MAX_MM))
    temp_score = np.asarray(triangular(temp, TEMP_MIN_C, TEMP_IDEAL_C, TEMP_MAX_C))
    combined_base = precip_score * PRECIP_WEIGHT + temp_score * TEMP_WEIGHT

    modifier, adjusted_combined = _extreme_adjustments(precip, temp, combined_base)
    combined = np.clip(adjusted_combined, 0, 1)
    adjusted = np.clip(safe_base + (combined - 0.5) * MODIFIER_SPAN + modifier, 0, 100)

    overlay = np.full(adjusted.shape, WeatherOverlay.NEUTRAL, dtype=np.uint8)
    favourable = (precip >= PRECIP_FAVOURABLE_MM) & (combined >= 0.65) & (temp_score > 0.45)
    dry = (precip <= PRECIP_DRY_MM) | (combined < 0.32)
    overlay[favourable] = WeatherOverlay.FAVOURABLE
    overlay[dry] = WeatherOverlay.DRY

    adjusted = np.where(has_weather, adjusted, np.clip(safe_base, 0, 100))
    overlay = np.where(has_weather, overlay, WeatherOverlay.NEUTRAL).astype(np.uint8)

    if overlay.ndim == 0:
        return float(adjusted), WeatherOverlay(int(overlay))
    return as_output(adjusted), overlay
