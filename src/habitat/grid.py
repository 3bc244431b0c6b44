"""
Geospatial data model shared by the raster clients and the scoring worker.

Grids are stored as flat row-major numpy arrays (row 0 = northernmost row),
one array per named channel. Every channel must hold exactly
``width * height`` samples.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from src.habitat.errors import GridShapeError

SOIL_PROPERTIES: Tuple[str, ...] = ("orcdrc", "phh2o", "bdod", "sand", "clay", "silt")

SOIL_UNITS: Dict[str, str] = {
    "orcdrc": "g/kg",
    "phh2o": "pH",
    "bdod": "kg/m³",
    "sand": "g/kg",
    "clay": "g/kg",
    "silt": "g/kg",
}


@dataclass(frozen=True)
class BoundingBox:
    """
    Geographic rectangle in WGS84 degrees.

    Attributes:
        min_lon: Western edge
        min_lat: Southern edge
        max_lon: Eastern edge
        max_lat: Northern edge
    """

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def __post_init__(self):
        values = (self.min_lon, self.min_lat, self.max_lon, self.max_lat)
        if not all(math.isfinite(v) for v in values):
            raise ValueError(f"Invalid bbox: non-finite coordinate in {values}")
        if self.min_lon >= self.max_lon or self.min_lat >= self.max_lat:
            raise ValueError(
                f"Invalid bbox: min must be below max. Got "
                f"(min_lon={self.min_lon}, min_lat={self.min_lat}, "
                f"max_lon={self.max_lon}, max_lat={self.max_lat})"
            )

    @property
    def lon_span(self) -> float:
        return self.max_lon - self.min_lon

    @property
    def lat_span(self) -> float:
        return self.max_lat - self.min_lat

    @property
    def centre(self) -> Tuple[float, float]:
        """(lon, lat) of the box centre."""
        return ((self.min_lon + self.max_lon) / 2, (self.min_lat + self.max_lat) / 2)

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)

    def intersects(self, other: "BoundingBox") -> bool:
        return not (
            self.max_lon < other.min_lon
            or self.min_lon > other.max_lon
            or self.max_lat < other.min_lat
            or self.min_lat > other.max_lat
        )

    def almost_equal(self, other: Optional["BoundingBox"], epsilon: float = 1e-3) -> bool:
        if other is None:
            return False
        return all(abs(a - b) < epsilon for a, b in zip(self.as_tuple(), other.as_tuple()))

    def cache_key(self, width: int, height: int, precision: int = 4) -> str:
        """
        Canonical cache key for a request on this box.

        Coordinates are rounded so that near-identical viewports collapse
        onto one entry.

        Example:
            >>> BoundingBox(-2.0, 51.0, -1.0, 52.0).cache_key(64, 64)
            '-2.0000:51.0000:-1.0000:52.0000:64:64'
        """
        coords = [f"{value:.{precision}f}" for value in self.as_tuple()]
        return ":".join(coords + [str(int(width)), str(int(height))])

    def cell_centres(self, width: int, height: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        Longitudes of column centres and latitudes of row centres.

        Rows run north to south.
        """
        cols = (np.arange(width, dtype=np.float64) + 0.5) / max(width, 1)
        rows = (np.arange(height, dtype=np.float64) + 0.5) / max(height, 1)
        lons = self.min_lon + cols * self.lon_span
        lats = self.max_lat - rows * self.lat_span
        return lons, lats


@dataclass
class RasterGrid:
    """
    Sampled raster with one or more named channels.

    Attributes:
        width: Number of columns
        height: Number of rows
        channels: Mapping of channel name to flat row-major array
    """

    width: int
    height: int
    channels: Dict[str, np.ndarray] = field(default_factory=dict)

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            raise GridShapeError(f"Grid dimensions must be non-negative, got {self.width}x{self.height}")
        expected = self.width * self.height
        for name, values in self.channels.items():
            values = np.asarray(values)
            if values.ndim != 1:
                values = values.reshape(-1)
            if values.size != expected:
                raise GridShapeError(
                    f"Channel '{name}' has {values.size} samples, expected "
                    f"{expected} ({self.width}x{self.height})"
                )
            self.channels[name] = values

    @property
    def size(self) -> int:
        return self.width * self.height

    def channel(self, name: str) -> np.ndarray:
        if name not in self.channels:
            raise KeyError(f"Grid has no channel '{name}'. Available: {list(self.channels)}")
        return self.channels[name]

    def as_2d(self, name: str) -> np.ndarray:
        return self.channel(name).reshape(self.height, self.width)

    def _copy_channels(self) -> Dict[str, np.ndarray]:
        return {name: values.copy() for name, values in self.channels.items()}

    def copy(self) -> "RasterGrid":
        return RasterGrid(self.width, self.height, self._copy_channels())

    def _clipped_channels(self, width: int, height: int) -> Dict[str, np.ndarray]:
        return {
            name: np.ascontiguousarray(
                values.reshape(self.height, self.width)[:height, :width]
            ).reshape(-1)
            for name, values in self.channels.items()
        }

    def clip(self, width: int, height: int) -> "RasterGrid":
        """Top-left ``width`` x ``height`` window (a copy)."""
        width, height = min(width, self.width), min(height, self.height)
        return RasterGrid(width, height, self._clipped_channels(width, height))


@dataclass
class SoilGrid(RasterGrid):
    """Soil property grid with one channel per entry of SOIL_PROPERTIES."""

    units: Dict[str, str] = field(default_factory=lambda: dict(SOIL_UNITS))

    def __post_init__(self):
        missing = [p for p in SOIL_PROPERTIES if p not in self.channels]
        if missing:
            raise GridShapeError(f"Soil grid missing channels: {missing}")
        super().__post_init__()

    @classmethod
    def empty(cls, width: int, height: int) -> "SoilGrid":
        channels = {p: np.full(width * height, np.nan, dtype=np.float32) for p in SOIL_PROPERTIES}
        return cls(width, height, channels)

    def copy(self) -> "SoilGrid":
        return SoilGrid(self.width, self.height, self._copy_channels(), dict(self.units))

    def clip(self, width: int, height: int) -> "SoilGrid":
        width, height = min(width, self.width), min(height, self.height)
        return SoilGrid(width, height, self._clipped_channels(width, height), dict(self.units))


@dataclass
class LandCoverGrid(RasterGrid):
    """Land-cover grid with a single uint8 ``codes`` channel."""

    def __post_init__(self):
        if "codes" not in self.channels:
            raise GridShapeError("Land-cover grid requires a 'codes' channel")
        super().__post_init__()

    @classmethod
    def from_codes(cls, width: int, height: int, codes: Iterable[int]) -> "LandCoverGrid":
        if not isinstance(codes, np.ndarray):
            codes = list(codes)
        return cls(width, height, {"codes": np.asarray(codes, dtype=np.uint8)})

    @property
    def codes(self) -> np.ndarray:
        return self.channels["codes"]

    def copy(self) -> "LandCoverGrid":
        return LandCoverGrid(self.width, self.height, self._copy_channels())

    def clip(self, width: int, height: int) -> "LandCoverGrid":
        width, height = min(width, self.width), min(height, self.height)
        return LandCoverGrid(width, height, self._clipped_channels(width, height))


@dataclass
class WeatherGrid(RasterGrid):
    """Weather grid with ``precipitation`` (mm) and ``temperature`` (°C) channels."""

    def __post_init__(self):
        for name in ("precipitation", "temperature"):
            if name not in self.channels:
                raise GridShapeError(f"Weather grid requires a '{name}' channel")
        super().__post_init__()

    @property
    def precipitation(self) -> np.ndarray:
        return self.channels["precipitation"]

    @property
    def temperature(self) -> np.ndarray:
        return self.channels["temperature"]

    def copy(self) -> "WeatherGrid":
        return WeatherGrid(self.width, self.height, self._copy_channels())

    def clip(self, width: int, height: int) -> "WeatherGrid":
        width, height = min(width, self.width), min(height, self.height)
        return WeatherGrid(width, height, self._clipped_channels(width, height))
