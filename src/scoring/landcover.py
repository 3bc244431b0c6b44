"""
Land-cover classification for habitat suitability.

Raw land-cover codes (WorldCover-style classes) are bucketed into three land
classes. Woodland starts as Caution but is promoted to Ideal when it borders
ideal open habitat: tree cover at the edge of grassland is usable, deep
forest is not.
"""

from enum import IntEnum

import numpy as np


class LandClass(IntEnum):
    POOR = 0
    CAUTION = 1
    IDEAL = 2


IDEAL_CODES = frozenset({20, 30, 100})  # shrubland, grassland, moss & lichen
CAUTION_CODES = frozenset({90, 95})  # wetland, mangroves
POOR_CODES = frozenset({40, 50, 60, 70, 80})  # cropland, built-up, bare, snow, water
WOODLAND_CODE = 10


def classify_land_code(code: int) -> LandClass:
    """
    Initial land class for a single code, before neighbour promotion.

    Example:
        >>> classify_land_code(30)
        <LandClass.IDEAL: 2>
    """
    if code in IDEAL_CODES:
        return LandClass.IDEAL
    if code in POOR_CODES:
        return LandClass.POOR
    # Woodland, wetlands and unrecognised codes
    return LandClass.CAUTION


def derive_land_cover_classes(codes: np.ndarray, width: int, height: int) -> np.ndarray:
    """
    Classify every cell and promote woodland next to ideal habitat.

    Promotion is a single pass over the initial classification: a woodland
    cell becomes Ideal if any of its 8 neighbours was Ideal before promotion.
    Promoted woodland does not promote further woodland.

    Args:
        codes: Flat row-major land-cover codes
        width: Grid width
        height: Grid height

    Returns:
        Flat uint8 array of LandClass values

    Raises:
        ValueError: ``codes`` does not hold width * height values
    """
    codes = np.asarray(codes).reshape(-1)
    if codes.size != width * height:
        raise ValueError(f"Expected {width * height} land-cover codes, got {codes.size}")
    if codes.size == 0:
        return np.zeros(0, dtype=np.uint8)

    classes = np.full(codes.shape, LandClass.CAUTION, dtype=np.uint8)
    classes[np.isin(codes, list(IDEAL_CODES))] = LandClass.IDEAL
    classes[np.isin(codes, list(POOR_CODES))] = LandClass.POOR

    ideal = (classes == LandClass.IDEAL).reshape(height, width)
    padded = np.pad(ideal, 1, mode="constant", constant_values=False)
    neighbour_ideal = np.zeros_like(ideal)
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            if dy == 0 and dx == 0:
                continue
            neighbour_ideal |= padded[1 + dy:1 + dy + height, 1 + dx:1 + dx + width]

    promote = (codes == WOODLAND_CODE) & neighbour_ideal.reshape(-1)
    classes[promote] = LandClass.IDEAL
    return classes


def woodland_mask(codes: np.ndarray) -> np.ndarray:
    """1 where the cell is woodland, else 0 (uint8)."""
    return (np.asarray(codes) == WOODLAND_CODE).astype(np.uint8)
