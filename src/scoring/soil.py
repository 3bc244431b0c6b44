"""
Soil property sub-scores.

Each scorer maps one SoilGrids property (already converted to working units)
to a 0-100 sub-score. Missing data (NaN) scores 0 so that a single bad pixel
never aborts a grid.

Curves:
- pH: Gaussian around 6.0 (sigma 0.6)
- organic carbon: ramp to a 3-6 % plateau, declining above
- texture: distance from a loam (45 % sand, 25 % clay, 30 % silt)
- moisture proxy: bulk density plateau at 1.05-1.35 g/cm³
"""

import numpy as np

from src.scoring.transforms import NumericType, as_output, clamp, gaussian

PH_OPTIMUM = 6.0
PH_WIDTH = 0.6


def score_ph(ph: NumericType) -> NumericType:
    """
    Score soil pH.

    Args:
        ph: pH value(s)

    Returns:
        Score in [0, 100]

    Example:
        >>> score_ph(6.0)
        100.0
        >>> score_ph(float("nan"))
        0.0
    """
    return clamp(np.asarray(gaussian(ph, PH_OPTIMUM, PH_WIDTH)) * 100, 0, 100)


def score_organic_carbon(orcdrc: NumericType) -> NumericType:
    """
    Score soil organic carbon.

    Args:
        orcdrc: Organic carbon in g/kg (10 g/kg = 1 %)

    Returns:
        Score in [0, 100]

    Example:
        >>> score_organic_carbon(45.0)  # 4.5 %
        100.0
    """
    orcdrc = np.asarray(orcdrc, dtype=float)
    percent = orcdrc / 10

    conditions = [
        ~np.isfinite(percent),
        percent <= 0.5,
        percent < 3,
        percent <= 6,
        percent <= 10,
        percent <= 15,
    ]
    choices = [
        0.0,
        5.0,
        np.minimum(100, 20 + 80 * (percent - 0.5) / 2.5),
        100.0,
        100 - 50 * (percent - 6) / 4,
        np.maximum(20, 50 - 50 * (percent - 10) / 5),
    ]
    with np.errstate(invalid="ignore"):
        result = np.select(conditions, choices, default=10.0)
    return as_output(result)


def score_texture(sand: NumericType, clay: NumericType, silt: NumericType) -> NumericType:
    """
    Score soil texture from its sand/clay/silt fractions.

    The fractions are renormalised to percentages of their total, so they
    need not sum to exactly 1000. Penalties grow linearly outside a
    tolerance band around a loam, with extra penalties for very sandy
    (> 70 %) or very clayey (> 45 %) soils.

    Args:
        sand: Sand content in g/kg
        clay: Clay content in g/kg
        silt: Silt content in g/kg

    Returns:
        Score in [0, 100]; 0 if any fraction is missing or negative

    Example:
        >>> score_texture(450, 250, 300)
        100.0
    """
    sand = np.asarray(sand, dtype=float)
    clay = np.asarray(clay, dtype=float)
    silt = np.asarray(silt, dtype=float)

    with np.errstate(invalid="ignore", divide="ignore"):
        valid = (
            np.isfinite(sand) & np.isfinite(clay) & np.isfinite(silt)
            & (sand >= 0) & (clay >= 0) & (silt >= 0)
        )
        total = (sand + clay + silt) / 10
        valid &= total > 0
        safe_total = np.where(valid, total, 1.0)

        sand_ratio = (sand / 10) / safe_total * 100
        clay_ratio = (clay / 10) / safe_total * 100
        silt_ratio = (silt / 10) / safe_total * 100

        score = 100.0
        score = score - np.maximum(0, np.abs(sand_ratio - 45) - 10) * 2.2
        score = score - np.maximum(0, np.abs(clay_ratio - 25) - 6) * 2.8
        score = score - np.maximum(0, np.abs(silt_ratio - 30) - 10) * 1.5
        score = score - np.where(sand_ratio > 70, (sand_ratio - 70) * 2.8, 0)
        score = score - np.where(clay_ratio > 45, (clay_ratio - 45) * 3.0, 0)

    result = np.where(valid, clamp(score, 0, 100), 0.0)
    return as_output(result)


def score_moisture_proxy(bdod: NumericType) -> NumericType:
    """
    Score water retention using bulk density as a proxy.

    Very loose soils drain fast, dense soils are compacted; 1.05-1.35 g/cm³
    scores 100.

    Args:
        bdod: Bulk density in kg/m³

    Returns:
        Score in [0, 100]

    Example:
        >>> score_moisture_proxy(1200)
        100.0
    """
    bdod = np.asarray(bdod, dtype=float)
    density = bdod / 1000

    conditions = [
        ~np.isfinite(density),
        density <= 0.8,
        density < 1.05,
        density <= 1.35,
        density <= 1.6,
        density <= 1.8,
    ]
    choices = [
        0.0,
        60.0,
        80 + 20 * (density - 0.8) / 0.25,
        100.0,
        100 - 30 * (density - 1.35) / 0.25,
        70 - 40 * (density - 1.6) / 0.2,
    ]
    with np.errstate(invalid="ignore"):
        result = np.select(conditions, choices, default=20.0)
    return as_output(result)
