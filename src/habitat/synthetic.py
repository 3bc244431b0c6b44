"""
Synthetic stand-ins for every data layer.

Used in mock mode and as fallback when a real fetch fails. Soil and land
cover come from the static GB snapshot where the area overlaps it and from
procedural noise elsewhere. All generators are deterministic: the same
(bbox, width, height) always yields the same grid.
"""

import logging
from typing import Tuple

import numpy as np

from src.habitat.grid import BoundingBox, LandCoverGrid, SoilGrid, WeatherGrid
from src.habitat.snapshot import sample_static_land_cover, sample_static_soil_grid
from src.habitat.weather_synthesis import synthesise_weather_grid

logger = logging.getLogger(__name__)

IDEAL_CODES = (20, 30, 100)
EDGE_CODE = 10
POOR_CODES = (40, 50, 60, 80)


def seeded_noise(x, y):
    """
    Hash two coordinates into [0, 1).

    Classic shader-style sine hash; stable across runs and platforms.
    """
    value = np.sin(np.asarray(x, dtype=np.float64) * 12.9898 + np.asarray(y, dtype=np.float64) * 78.233) * 43758.5453
    return value - np.floor(value)


def _corner_coords(bbox: BoundingBox, width: int, height: int) -> Tuple[np.ndarray, np.ndarray]:
    """(lon, lat) grids spanning the box edge to edge, row 0 northernmost."""
    u = np.arange(width, dtype=np.float64) / (width - 1) if width > 1 else np.full(width, 0.5)
    v = np.arange(height, dtype=np.float64) / (height - 1) if height > 1 else np.full(height, 0.5)
    lons = bbox.min_lon + bbox.lon_span * u
    lats = bbox.max_lat - bbox.lat_span * v
    return np.meshgrid(lons, lats)


def mock_soil_grid(bbox: BoundingBox, width: int, height: int) -> SoilGrid:
    """Procedural soil with plausible ranges (pH 5.2-7.2, organic carbon 3-10 %)."""
    lon, lat = _corner_coords(bbox, width, height)
    noise = seeded_noise(lat, lon).reshape(-1)

    channels = {
        "phh2o": 5.2 + noise * 2.0,
        "orcdrc": 30 + noise * 70,
        "bdod": 1100 + noise * 300,
        "sand": 400 + noise * 300,
        "clay": 200 + noise * 150,
        "silt": 400 - noise * 150,
    }
    return SoilGrid(width, height, {k: v.astype(np.float32) for k, v in channels.items()})


def _classify_mock_land(lat: np.ndarray, lon: np.ndarray) -> np.ndarray:
    conditions = [
        lat > 55.5,
        (lon < -4) & (lat < 54),
        (lat > 51) & (lat < 55) & (lon > -3) & (lon < 1),
        ((lat > 53) & (lon > -2)) | (lat < 51),
    ]
    return np.select(conditions, [100, 20, 30, 40], default=EDGE_CODE)


def mock_land_cover(bbox: BoundingBox, width: int, height: int) -> LandCoverGrid:
    """
    Procedural land cover loosely shaped like Great Britain.

    Woodland cells alternate with grassland on a 0.1° checkerboard to create
    edges, and roughly one in five poor cells is turned into grassland.
    """
    lon, lat = _corner_coords(bbox, width, height)
    codes = _classify_mock_land(lat, lon)

    parity = (np.floor(lat * 10) + np.floor(lon * 10)) % 2
    codes = np.where((codes == EDGE_CODE) & (parity == 0), IDEAL_CODES[0], codes)

    speckle = seeded_noise(lon + 0.5, lat - 0.5) > 0.8
    codes = np.where(np.isin(codes, POOR_CODES) & speckle, IDEAL_CODES[1], codes)

    return LandCoverGrid.from_codes(width, height, codes.reshape(-1))


def mock_weather(bbox: BoundingBox, width: int, height: int) -> WeatherGrid:
    """Weather derived from the box centre alone."""
    centre_lon, centre_lat = bbox.centre
    base_precip = 3.2 + np.sin((centre_lat + 48) * 0.18) * 1.6 - np.cos((centre_lon + 2) * 0.16) * 0.9
    base_temp = 10.5 - np.sin((centre_lat - 50) * 0.2) * 3 + np.cos((centre_lon + 1) * 0.15) * 1.4
    # Remainder keeps the sign of the dividend
    seed = np.fmod(round((centre_lat + centre_lon) * 100), 360)

    return synthesise_weather_grid(
        bbox,
        width,
        height,
        max(0.4, base_precip),
        base_temp,
        seed=float(seed),
        variation_scale=0.45,
    )


def synthetic_soil_grid(bbox: BoundingBox, width: int, height: int) -> SoilGrid:
    grid = sample_static_soil_grid(bbox, width, height)
    if grid is None:
        logger.debug("Area outside static snapshot; using procedural soil")
        grid = mock_soil_grid(bbox, width, height)
    return grid


def synthetic_land_cover(bbox: BoundingBox, width: int, height: int) -> LandCoverGrid:
    grid = sample_static_land_cover(bbox, width, height)
    if grid is None:
        logger.debug("Area outside static snapshot; using procedural land cover")
        grid = mock_land_cover(bbox, width, height)
    return grid
