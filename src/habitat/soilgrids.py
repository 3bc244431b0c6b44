"""
ISRIC SoilGrids client.

Each soil property is backed by one GeoTIFF coverage (``<property>_0-5cm_mean``)
read from a bundled file under ``config.SOIL_DIR`` when present, otherwise
downloaded once over WCS for the configured tile extent. Coverages are loaded
in parallel on first use, converted to working units and kept for the life of
the client; every request is then a bilinear resample of the loaded arrays.

Unit conversion (raw coverage -> SoilGrid channel):
    phh2o: pH x 10        -> pH          (/ 10)
    sand/clay/silt: %     -> g/kg        (x 10)
    orcdrc: g/kg          -> g/kg        (unchanged)
    bdod: kg/m³           -> kg/m³       (unchanged)
"""

import logging
from functools import partial
from pathlib import Path
from typing import Dict, Mapping, Optional

import numpy as np

from src import config
from src.habitat.cache import CancelToken
from src.habitat.grid import SOIL_PROPERTIES, BoundingBox, SoilGrid
from src.habitat.raster_client import (
    GridClient,
    LazyDataset,
    build_wcs_url,
    load_source_dataset,
    require_overlap,
)
from src.habitat.resample import SourceDataset, sample_bilinear
from src.habitat.synthetic import synthetic_soil_grid

logger = logging.getLogger(__name__)

SOURCE_NAME = "SoilGrids"

COVERAGE_IDS: Dict[str, str] = {prop: f"{prop}_{config.DEFAULT_DEPTH}_mean" for prop in SOIL_PROPERTIES}

PROPERTY_SCALES: Dict[str, float] = {
    "orcdrc": 1.0,
    "phh2o": 0.1,
    "bdod": 1.0,
    "sand": 10.0,
    "clay": 10.0,
    "silt": 10.0,
}

NODATA_THRESHOLD = -9999

# Pixels requested per axis when a coverage is downloaded over WCS
WCS_DATASET_SIZE = 512


def convert_soil_values(prop: str, values: np.ndarray, nodata: Optional[float] = None) -> np.ndarray:
    """
    Convert raw coverage values to SoilGrid units.

    Values at or below -9999, equal to the declared nodata, or non-finite
    become NaN.

    Example:
        >>> convert_soil_values("sand", np.array([45, -9999])).tolist()
        [450.0, nan]
    """
    raw = np.asarray(values, dtype=np.float64)
    invalid = ~np.isfinite(raw) | (raw <= NODATA_THRESHOLD)
    if nodata is not None and np.isfinite(nodata):
        invalid |= raw == nodata
    converted = np.where(invalid, np.nan, raw * PROPERTY_SCALES[prop])
    return converted.astype(np.float32)


def default_soil_source(prop: str) -> str:
    """Bundled coverage file if present, otherwise a WCS URL for the tile extent."""
    coverage_id = COVERAGE_IDS[prop]
    local = Path(config.SOIL_DIR) / f"{coverage_id}.tif"
    if local.exists():
        return str(local)
    extent = BoundingBox(*config.SOIL_DATA_EXTENT)
    return build_wcs_url(
        config.SOILGRIDS_WCS_BASE, coverage_id, extent, WCS_DATASET_SIZE, WCS_DATASET_SIZE
    )


class SoilGridsClient(GridClient[SoilGrid]):
    """
    Soil property grids for arbitrary bounding boxes.

    Example:
        >>> client = SoilGridsClient(use_mock=True)
        >>> grid = client.fetch_grid(BoundingBox(-2.0, 52.0, -1.0, 53.0), 8, 8)
        >>> sorted(grid.channels)
        ['bdod', 'clay', 'orcdrc', 'phh2o', 'sand', 'silt']
    """

    source_name = SOURCE_NAME

    def __init__(self, sources: Optional[Mapping[str, str]] = None, **kwargs):
        """
        Args:
            sources: Optional property -> path/URL overrides
            **kwargs: Passed to GridClient (use_mock, cache_ttl, session, executor)
        """
        super().__init__(**kwargs)
        sources = dict(sources or {})
        self.sources = {prop: sources.get(prop) or default_soil_source(prop) for prop in SOIL_PROPERTIES}
        self.datasets: Dict[str, LazyDataset[SourceDataset]] = {
            prop: LazyDataset(prop, partial(self._load_property, prop)) for prop in SOIL_PROPERTIES
        }

    def _load_property(self, prop: str, token: CancelToken) -> SourceDataset:
        dataset = load_source_dataset(
            self.session, self.sources[prop], token, SOURCE_NAME, COVERAGE_IDS[prop]
        )
        data = convert_soil_values(prop, dataset.data, dataset.nodata)
        valid = np.count_nonzero(np.isfinite(data))
        logger.info(f"Loaded {COVERAGE_IDS[prop]}: {dataset.width}x{dataset.height}, {valid} valid pixels")
        return SourceDataset(data, dataset.transform, None)

    def _fetch(self, bbox: BoundingBox, width: int, height: int, token: CancelToken) -> SoilGrid:
        # Kick off every property so the loads overlap
        for dataset in self.datasets.values():
            dataset.start()

        channels = {}
        for prop, lazy in self.datasets.items():
            dataset = lazy.acquire(token)
            require_overlap(dataset, bbox, SOURCE_NAME)
            channels[prop] = sample_bilinear(dataset, bbox, width, height).astype(np.float32)
            token.raise_if_cancelled()

        return SoilGrid(width, height, channels)

    def synthetic_grid(self, bbox: BoundingBox, width: int, height: int) -> SoilGrid:
        return synthetic_soil_grid(bbox, width, height)

    def cancel_pending(self) -> None:
        super().cancel_pending()
        for dataset in self.datasets.values():
            dataset.abort_loading()

    def close(self) -> None:
        super().close()
        for dataset in self.datasets.values():
            dataset.close()
