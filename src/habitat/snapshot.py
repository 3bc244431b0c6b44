"""
Static soil and land-cover snapshot of Great Britain.

A coarse procedural reconstruction (Atlantic moisture gradient, upland north,
dry arable east, a handful of conurbations) used as offline fallback data
when the requested area overlaps it. The arrays are built once, on first use,
and sampled through the same resampling kernels as real rasters.
"""

import logging
from functools import lru_cache
from typing import Dict, Optional

import numpy as np

from src.habitat.grid import SOIL_PROPERTIES, BoundingBox, LandCoverGrid, SoilGrid
from src.habitat.resample import SourceDataset, sample_bilinear, sample_nearest

logger = logging.getLogger(__name__)

SNAPSHOT_BBOX = BoundingBox(-9.6, 49.0, 3.2, 60.0)
SNAPSHOT_WIDTH = 360
SNAPSHOT_HEIGHT = 432

# (lon_norm, lat_norm, radius, weight) of urban centres and arable hotspots
URBAN_CENTRES = {
    "london": (0.73, 0.37, 0.006, 1.6),
    "birmingham": (0.63, 0.41, 0.0045, 1.0),
    "manchester": (0.55, 0.48, 0.004, 1.0),
    "glasgow": (0.47, 0.60, 0.0035, 1.0),
}
ARABLE_CENTRES = {
    "east_anglia": (0.82, 0.42, 0.008, 1.3),
    "fens": (0.78, 0.45, 0.006, 0.8),
    "cambridgeshire": (0.76, 0.43, 0.005, 1.0),
}


def _normalised_axes(width: int = SNAPSHOT_WIDTH, height: int = SNAPSHOT_HEIGHT):
    """lon_norm (0 = west) and lat_norm (0 = south) grids, row 0 northernmost."""
    lon_norm = np.linspace(0.0, 1.0, width) if width > 1 else np.full(1, 0.5)
    lat_norm = np.linspace(1.0, 0.0, height) if height > 1 else np.full(1, 0.5)
    return np.meshgrid(lon_norm, lat_norm)


def _gaussian_falloff(x: np.ndarray, y: np.ndarray, cx: float, cy: float, radius: float) -> np.ndarray:
    sigma = radius * radius * 0.5
    if sigma == 0:
        return np.zeros_like(x)
    distance_sq = (x - cx) ** 2 + (y - cy) ** 2
    return np.exp(-distance_sq / (2 * sigma))


def _weighted_falloff(lon_norm, lat_norm, centres) -> np.ndarray:
    total = np.zeros_like(lon_norm)
    for cx, cy, radius, weight in centres.values():
        total += _gaussian_falloff(lon_norm, lat_norm, cx, cy, radius) * weight
    return total


@lru_cache(maxsize=1)
def soil_snapshot() -> Dict[str, np.ndarray]:
    """
    Build the 2D soil property arrays (float32, row 0 north).

    Units match SoilGrid channels: orcdrc g/kg, phh2o pH, bdod kg/m³,
    texture fractions g/kg summing to 1000.
    """
    lon_norm, lat_norm = _normalised_axes()
    westness = 1 - lon_norm
    upland = np.clip(lat_norm - 0.45, 0, 1) ** 1.35

    atlantic_moisture = westness ** 0.9
    rainfall = np.clip(0.3 + atlantic_moisture * 0.5 + upland * 0.35, 0.15, 1)
    dryness = 1 - rainfall
    peatiness = np.clip(rainfall - 0.65, 0, 1)
    lowland = np.clip(0.55 - upland * 1.6, 0, 1) ** 1.2
    ripple = (
        np.sin((lat_norm * 2.4 + lon_norm * 1.1) * np.pi) * 0.08
        + np.cos((lon_norm * 1.7 - lat_norm * 1.3) * np.pi * 0.75) * 0.05
    )

    organic = np.clip(32 + rainfall * 65 + upland * 38 + peatiness * 55 + ripple * 10, 18, 185)
    ph = np.clip(4.15 + dryness * 1.8 + lon_norm * 0.85 - upland * 0.65 + ripple * 0.35, 3.9, 6.9)
    bulk_density = np.clip(930 + dryness * 180 - peatiness * 220 + lowland * 90 + ripple * 40, 820, 1350)

    sand = np.clip(320 + lon_norm * 360 - rainfall * 210 - upland * 80 + ripple * 70, 120, 820)
    clay = np.clip(240 + rainfall * 230 + upland * 160 - lon_norm * 110 - ripple * 40, 90, 610)
    silt = np.maximum(120, 1000 - sand - clay)

    # Silt floor can push the total over 1000
    scale = 1000 / (sand + clay + silt)
    sand, clay, silt = sand * scale, clay * scale, silt * scale

    data = {
        "orcdrc": organic,
        "phh2o": ph,
        "bdod": bulk_density,
        "sand": sand,
        "clay": clay,
        "silt": silt,
    }
    logger.debug(f"Built soil snapshot {SNAPSHOT_WIDTH}x{SNAPSHOT_HEIGHT}")
    return {name: values.astype(np.float32) for name, values in data.items()}


@lru_cache(maxsize=1)
def land_cover_snapshot() -> np.ndarray:
    """Build the 2D land-cover code array (uint8, row 0 north)."""
    lon_norm, lat_norm = _normalised_axes()
    westness = 1 - lon_norm
    upland = np.clip(lat_norm - 0.5, 0, 1) ** 1.4

    atlantic_moisture = westness ** 0.9
    rainfall = np.clip(0.35 + atlantic_moisture * 0.45 + upland * 0.3, 0.15, 1)
    dryness = 1 - rainfall
    coastal = (lon_norm < 0.03) | (lon_norm > 0.97) | (lat_norm < 0.03) | (lat_norm > 0.97)

    loch_pattern = (
        np.sin((lat_norm * 4.3 - lon_norm * 2.1) * np.pi) * 0.6
        + np.cos((lat_norm * 3.1 + lon_norm * 5.7) * np.pi) * 0.4
    ) ** 4
    water_score = np.where(coastal, 0.85, np.maximum(0, loch_pattern - 0.35))

    urban_score = _weighted_falloff(lon_norm, lat_norm, URBAN_CENTRES)
    cropland_score = dryness * 0.5 + _weighted_falloff(lon_norm, lat_norm, ARABLE_CENTRES)
    moorland_score = upland * 1.2 + rainfall * 0.4 + dryness ** 2 * 0.3
    woodland_score = rainfall * 0.8 + (1 - dryness) * 0.2 + westness * 0.3

    # First matching rule wins
    conditions = [
        water_score > 0.82,
        urban_score > 0.65,
        (cropland_score > 0.75) & (dryness > 0.35),
        moorland_score > 0.72,
        woodland_score > 0.6,
        dryness > 0.6,
    ]
    choices = [80, 50, 40, 30, 10, 90]
    codes = np.select(conditions, choices, default=20)
    return codes.astype(np.uint8)


def intersects_snapshot(bbox: BoundingBox) -> bool:
    return bbox.intersects(SNAPSHOT_BBOX)


def sample_static_soil_grid(bbox: BoundingBox, width: int, height: int) -> Optional[SoilGrid]:
    """
    Bilinear sample of the soil snapshot, or None outside its footprint.
    """
    if not intersects_snapshot(bbox):
        return None

    snapshot = soil_snapshot()
    channels = {}
    for prop in SOIL_PROPERTIES:
        dataset = SourceDataset.from_bounds(snapshot[prop], SNAPSHOT_BBOX)
        channels[prop] = sample_bilinear(dataset, bbox, width, height).astype(np.float32)
    return SoilGrid(width, height, channels)


def sample_static_land_cover(bbox: BoundingBox, width: int, height: int) -> Optional[LandCoverGrid]:
    """Nearest-neighbour sample of the land-cover snapshot, or None outside it."""
    if not intersects_snapshot(bbox):
        return None

    dataset = SourceDataset.from_bounds(land_cover_snapshot(), SNAPSHOT_BBOX)
    return LandCoverGrid.from_codes(width, height, sample_nearest(dataset, bbox, width, height))
