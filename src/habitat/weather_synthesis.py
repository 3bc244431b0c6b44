"""
Deterministic synthetic weather fields.

Expands a single (precipitation, temperature) summary for a viewport into a
spatially varying grid: three superimposed waves give smooth structure, a
north/west bias makes the south-west wetter and the north colder, and a
continentality term warms the centre of the box.
"""

import numpy as np

from src.habitat.grid import BoundingBox, WeatherGrid

DEFAULT_VARIATION = 0.35
MIN_VARIATION = 0.1
DEFAULT_BASE_TEMP_C = 10.0


def _safe_span(span: float) -> float:
    return 1.0 if abs(span) < 1e-6 else span


def _unit_positions(count: int) -> np.ndarray:
    """0..1 positions along an axis; 0.5 for a single cell."""
    if count == 1:
        return np.full(1, 0.5)
    return np.arange(count, dtype=np.float64) / (count - 1)


def synthesise_weather_grid(
    bbox: BoundingBox,
    width: int,
    height: int,
    base_precip: float,
    base_temp: float,
    seed: float = 0,
    variation_scale: float = DEFAULT_VARIATION,
) -> WeatherGrid:
    """
    Synthesise precipitation and temperature for every cell of a grid.

    Args:
        bbox: Area covered by the grid
        width: Number of columns
        height: Number of rows (row 0 northernmost)
        base_precip: Area precipitation in mm (non-finite -> 0, negative clamped to 0)
        base_temp: Area temperature in °C (non-finite -> 10)
        seed: Phase seed; equal seeds give identical fields
        variation_scale: Wave amplitude, floored at 0.1

    Returns:
        WeatherGrid with float32 channels

    Example:
        >>> grid = synthesise_weather_grid(BoundingBox(-2, 51, -1, 52), 4, 4, 3.0, 12.0, seed=7)
        >>> grid.precipitation.shape
        (16,)
    """
    if width == 0 or height == 0:
        empty = np.zeros(0, dtype=np.float32)
        return WeatherGrid(width, height, {"precipitation": empty, "temperature": empty.copy()})

    safe_precip = max(0.0, float(base_precip)) if np.isfinite(base_precip) else 0.0
    safe_temp = float(base_temp) if np.isfinite(base_temp) else DEFAULT_BASE_TEMP_C

    lat_span = _safe_span(bbox.lat_span)
    lon_span = _safe_span(bbox.lon_span)

    variation = max(MIN_VARIATION, variation_scale)
    phi = (np.sin(seed) + 1) * np.pi
    centre_lon, _ = bbox.centre

    lat = bbox.max_lat - lat_span * _unit_positions(height)
    lon = bbox.min_lon + lon_span * _unit_positions(width)
    lon, lat = np.meshgrid(lon, lat)

    lat_norm = np.clip((lat - bbox.min_lat) / lat_span, 0, 1)
    lon_norm = np.clip((lon - bbox.min_lon) / lon_span, 0, 1)

    wave_a = np.sin((lon_norm * 2 + lat_norm) * np.pi + phi)
    wave_b = np.cos((lat_norm * 1.5 - lon_norm) * np.pi * 1.2 + phi * 0.5)
    wave_c = np.sin((lon_norm - lat_norm) * np.pi * 2 + phi * 0.25)
    composite = (wave_a * 0.45 + wave_b * 0.35 + wave_c * 0.2) * variation

    lat_bias = (0.5 - lat_norm) * 0.3
    lon_bias = (0.5 - lon_norm) * 0.18

    precipitation = safe_precip * (1 + composite) + safe_precip * (lat_bias * 0.4 + lon_bias * 0.25)
    precipitation = np.maximum(0, precipitation)

    continentality = np.cos(np.abs(lon - centre_lon) / max(1.0, abs(lon_span)) * np.pi) * 2
    temperature = safe_temp + composite * 5 - lat_bias * 10 + continentality

    return WeatherGrid(
        width,
        height,
        {
            "precipitation": precipitation.astype(np.float32).reshape(-1),
            "temperature": temperature.astype(np.float32).reshape(-1),
        },
    )
