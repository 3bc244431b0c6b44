"""
Resampling of source rasters onto arbitrary target grids.

A SourceDataset holds one decoded band together with the affine transform
that maps pixel (col, row) to (lon, lat). Target cells are sampled at their
centres: each centre is pushed through the inverse transform, clamped to the
valid pixel range and then read with one of two kernels:

- bilinear: continuous quantities (soil chemistry)
- nearest: categorical codes, where interpolating between classes is
  meaningless

Pixel values are taken to sit at pixel centres, so a fractional pixel
coordinate of 0.0 is the middle of the first column.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from rasterio import Affine
from rasterio.transform import from_bounds

from src.habitat.grid import BoundingBox

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceDataset:
    """
    A full decoded source raster.

    Attributes:
        data: 2D array (rows north to south)
        transform: Affine mapping (col, row) -> (lon, lat) of pixel corners
        nodata: Declared nodata value, if any
    """

    data: np.ndarray
    transform: Affine
    nodata: Optional[float] = None

    @classmethod
    def from_bounds(
        cls, data: np.ndarray, bbox: BoundingBox, nodata: Optional[float] = None
    ) -> "SourceDataset":
        """Build a dataset covering ``bbox`` exactly."""
        height, width = data.shape
        transform = from_bounds(bbox.min_lon, bbox.min_lat, bbox.max_lon, bbox.max_lat, width, height)
        return cls(data, transform, nodata)

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def pixel_size(self) -> Tuple[float, float]:
        """(pixel width, pixel height) in degrees, both positive."""
        return abs(self.transform.a), abs(self.transform.e)

    @property
    def bounds(self) -> BoundingBox:
        west, north = self.transform @ (0, 0)
        east, south = self.transform @ (self.width, self.height)
        return BoundingBox(min(west, east), min(south, north), max(west, east), max(south, north))


def target_pixel_coords(
    dataset: SourceDataset, bbox: BoundingBox, width: int, height: int
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Fractional source pixel coordinates for every target cell centre.

    Returns:
        (cols, rows) arrays of shape (height, width), clamped to
        [0, dataset.width - 1] and [0, dataset.height - 1]
    """
    lons, lats = bbox.cell_centres(width, height)
    lon_grid, lat_grid = np.meshgrid(lons, lats)

    # Keep sample points inside the source's footprint
    src = dataset.bounds
    lon_grid = np.clip(lon_grid, src.min_lon, src.max_lon)
    lat_grid = np.clip(lat_grid, src.min_lat, src.max_lat)

    cols, rows = ~dataset.transform @ (lon_grid, lat_grid)
    cols = np.asarray(cols, dtype=np.float64) - 0.5
    rows = np.asarray(rows, dtype=np.float64) - 0.5

    cols = np.clip(cols, 0, max(dataset.width - 1, 0))
    rows = np.clip(rows, 0, max(dataset.height - 1, 0))
    return cols, rows


def sample_bilinear(dataset: SourceDataset, bbox: BoundingBox, width: int, height: int) -> np.ndarray:
    """
    Bilinear resample of ``dataset`` onto a ``width`` x ``height`` grid over ``bbox``.

    Only finite neighbours contribute; their weights are renormalised so a
    cell beside a nodata pixel keeps the surrounding value. A cell is NaN only
    when none of its weighted neighbours is finite.

    Returns:
        Flat row-major float64 array of length width * height

    Example:
        >>> ds = SourceDataset.from_bounds(np.full((4, 4), 7.0), BoundingBox(0, 0, 1, 1))
        >>> float(sample_bilinear(ds, BoundingBox(0.2, 0.2, 0.8, 0.8), 3, 3).max())
        7.0
    """
    if width == 0 or height == 0:
        return np.empty(0, dtype=np.float64)

    data = np.asarray(dataset.data, dtype=np.float64)
    cols, rows = target_pixel_coords(dataset, bbox, width, height)

    x0 = np.floor(cols).astype(np.intp)
    y0 = np.floor(rows).astype(np.intp)
    x1 = np.minimum(x0 + 1, dataset.width - 1)
    y1 = np.minimum(y0 + 1, dataset.height - 1)
    tx = cols - x0
    ty = rows - y0

    corners = (
        (y0, x0, (1 - tx) * (1 - ty)),
        (y0, x1, tx * (1 - ty)),
        (y1, x0, (1 - tx) * ty),
        (y1, x1, tx * ty),
    )
    total = np.zeros_like(cols)
    weight_sum = np.zeros_like(cols)
    for row_idx, col_idx, weight in corners:
        values = data[row_idx, col_idx]
        valid = np.isfinite(values)
        weight = np.where(valid, weight, 0.0)
        total += np.where(valid, values, 0.0) * weight
        weight_sum += weight

    has_weight = weight_sum > 0
    result = np.where(has_weight, total / np.where(has_weight, weight_sum, 1.0), np.nan)

    # A constant neighbourhood must come back exactly constant
    same = (data[y0, x0] == data[y0, x1]) & (data[y0, x0] == data[y1, x0]) & (data[y0, x0] == data[y1, x1])
    result = np.where(same, data[y0, x0], result)

    return result.reshape(-1)


def sample_nearest(dataset: SourceDataset, bbox: BoundingBox, width: int, height: int) -> np.ndarray:
    """
    Nearest-neighbour resample; preserves the source dtype.

    Returns:
        Flat row-major array of length width * height
    """
    if width == 0 or height == 0:
        return np.empty(0, dtype=dataset.data.dtype)

    cols, rows = target_pixel_coords(dataset, bbox, width, height)
    col_idx = np.rint(cols).astype(np.intp)
    row_idx = np.rint(rows).astype(np.intp)
    return dataset.data[row_idx, col_idx].reshape(-1)
