"""
Land-cover grids derived from the SoilGrids USDA soil taxonomy raster.

The taxonomy raster (TAXOUSDA) is a categorical layer of USDA suborder codes.
Each code is translated to a WorldCover-style land-cover class with ordered
substring rules on its legend label (wetland suborders -> 95, cold soils -> 90,
dry-climate suborders -> grassland 30, ...). The raster is read once per
client and resampled with nearest neighbour per request.
"""

import logging
import re
from pathlib import Path
from typing import Dict, Optional

import numpy as np

from src import config
from src.habitat.cache import CancelToken
from src.habitat.errors import FetchCancelled, HabitatDataError
from src.habitat.grid import BoundingBox, LandCoverGrid
from src.habitat.raster_client import GridClient, LazyDataset, is_remote, load_source_dataset, require_overlap
from src.habitat.resample import SourceDataset, sample_nearest
from src.habitat.synthetic import synthetic_land_cover

logger = logging.getLogger(__name__)

SOURCE_NAME = "SoilGrids taxonomy"
SOIL_TILE_INSTRUCTIONS = "See data/soil/README.txt for download instructions."

# Maximum per-edge difference (degrees) from the expected tile before warning
EXTENT_TOLERANCE_DEG = 0.5

TAXOUSDA_LEGEND: Dict[int, str] = {
    0: "Ocean", 1: "Shifting Sand", 2: "Rock", 3: "Ice",
    5: "Histels", 6: "Turbels", 7: "Orthels",
    10: "Folists", 11: "Fibrists", 12: "Hemists", 13: "Saprists",
    15: "Aquods", 16: "Cryods", 17: "Humods", 18: "Orthods", 19: "Gelods",
    20: "Aquands", 21: "Cryands", 22: "Torrands", 23: "Xerands", 24: "Vitrands",
    25: "Ustands", 26: "Udands", 27: "Gelands",
    30: "Aquox", 31: "Torrox", 32: "Ustox", 33: "Perox", 34: "Udox",
    40: "Aquerts", 41: "Cryerts", 42: "Xererts", 43: "Torrerts", 44: "Usterts", 45: "Uderts",
    50: "Cryids", 51: "Salids", 52: "Durids", 53: "Gypsids", 54: "Argids", 55: "Calcids", 56: "Cambids",
    60: "Aquults", 61: "Humults", 62: "Udults", 63: "Ustults", 64: "Xerults",
    69: "Borolls", 70: "Albolls", 71: "Aquolls", 72: "Rendolls", 73: "Xerolls",
    74: "Cryolls", 75: "Ustolls", 76: "Udolls", 77: "Gelolls",
    80: "Aqualfs", 81: "Cryalfs", 82: "Ustalfs", 83: "Xeralfs", 84: "Udalfs",
    85: "Udepts", 86: "Gelepts", 89: "Ochrepts", 90: "Aquepts", 91: "Anthrepts",
    92: "Cryepts", 93: "Ustepts", 94: "Xerepts",
    95: "Aquents", 96: "Arents", 97: "Psamments", 98: "Fluvents", 99: "Orthents",
}

NODATA_CODE = 255
UNKNOWN_LAND_COVER = 40
NODATA_LAND_COVER = 60

# Ordered (substrings, land-cover code); first match wins
_LABEL_RULES = [
    (("ocean",), 80),
    (("ice",), 70),
    (("rock",), 60),
    (("sand",), 60),
    (("aqu", "hist", "sapr"), 95),
    (("cry", "gel"), 90),
    (("psam",), 30),
    (("ust", "xer"), 30),
    (("hum", "and", "orthod"), 20),
]


def map_taxonomy_label(label: str) -> int:
    """
    Land-cover code for a taxonomy legend label.

    Example:
        >>> map_taxonomy_label("Aquolls"), map_taxonomy_label("Udolls")
        (95, 40)
    """
    lower = label.lower()
    for needles, code in _LABEL_RULES:
        if any(needle in lower for needle in needles):
            return code
    if lower.endswith("ids"):
        return 60
    # oll/alf/ept/ent and anything else
    return UNKNOWN_LAND_COVER


def map_taxonomy_code(code) -> int:
    """Land-cover code for a raw taxonomy pixel value."""
    if code is None or not np.isfinite(code) or code == NODATA_CODE:
        return NODATA_LAND_COVER
    label = TAXOUSDA_LEGEND.get(int(code)) if float(code).is_integer() else None
    if label is None:
        return UNKNOWN_LAND_COVER
    return map_taxonomy_label(label)


def _build_lookup() -> np.ndarray:
    lut = np.full(256, UNKNOWN_LAND_COVER, dtype=np.uint8)
    for code, label in TAXOUSDA_LEGEND.items():
        lut[code] = map_taxonomy_label(label)
    lut[NODATA_CODE] = NODATA_LAND_COVER
    return lut


TAXONOMY_LOOKUP = _build_lookup()


def map_taxonomy_codes(codes: np.ndarray) -> np.ndarray:
    """
    Vectorised map_taxonomy_code.

    Returns:
        uint8 array of land-cover codes with the shape of ``codes``
    """
    raw = np.asarray(codes, dtype=np.float64)
    finite = np.isfinite(raw)
    safe = np.where(finite, raw, -1)
    in_table = (safe >= 0) & (safe < TAXONOMY_LOOKUP.size) & (safe == np.floor(safe))
    mapped = TAXONOMY_LOOKUP[np.where(in_table, safe, 0).astype(np.intp)]
    mapped = np.where(in_table, mapped, UNKNOWN_LAND_COVER)
    mapped = np.where(finite, mapped, NODATA_LAND_COVER)
    return mapped.astype(np.uint8)


def append_hint(message: str, hint: str) -> str:
    """
    Append ``hint`` to ``message``, adding a full stop when needed.

    Example:
        >>> append_hint("Download failed", " Try again.")
        'Download failed. Try again.'
    """
    if not hint:
        return message
    trimmed = message.rstrip()
    needs_period = bool(trimmed) and not re.search(r"[.!?]$", trimmed)
    return f"{trimmed}{'.' if needs_period else ''}{hint}"


def taxonomy_hint(source: str) -> str:
    """Setup hint for a bundled taxonomy file; empty for remote sources."""
    if is_remote(source):
        return ""
    directory = Path(source).parent
    return f" Ensure {Path(source).name} is present in {directory}. {SOIL_TILE_INSTRUCTIONS}"


def check_extent(dataset: SourceDataset, expected: Optional[BoundingBox] = None) -> bool:
    """
    Warn when the loaded raster is not the tile it was expected to be.

    Returns:
        True if every edge lies within EXTENT_TOLERANCE_DEG of ``expected``
    """
    expected = expected or BoundingBox(*config.SOIL_DATA_EXTENT)
    actual = dataset.bounds
    matches = all(
        abs(a - e) < EXTENT_TOLERANCE_DEG for a, e in zip(actual.as_tuple(), expected.as_tuple())
    )
    if not matches:
        logger.warning(
            f"Loaded land-cover taxonomy extent {actual.as_tuple()} differs from "
            f"expected SoilGrids tile {expected.as_tuple()}"
        )
    return matches


class TaxonomyLandCoverClient(GridClient[LandCoverGrid]):
    """Land-cover grids resampled from the taxonomy raster."""

    source_name = SOURCE_NAME

    def __init__(self, source: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.source = str(source or config.LANDCOVER_TAXONOMY_SOURCE)
        self.dataset: LazyDataset[SourceDataset] = LazyDataset("taxonomy", self._load_dataset)

    def _load_dataset(self, token: CancelToken) -> SourceDataset:
        try:
            dataset = load_source_dataset(self.session, self.source, token, SOURCE_NAME)
        except FetchCancelled:
            raise
        except HabitatDataError as e:
            e.args = (append_hint(str(e), taxonomy_hint(self.source)),) + e.args[1:]
            raise

        check_extent(dataset)
        logger.info(f"Loaded land-cover taxonomy: {dataset.width}x{dataset.height}")
        return dataset

    def _fetch(self, bbox: BoundingBox, width: int, height: int, token: CancelToken) -> LandCoverGrid:
        dataset = self.dataset.acquire(token)
        require_overlap(dataset, bbox, SOURCE_NAME)
        taxonomy = sample_nearest(dataset, bbox, width, height).astype(np.float64)
        if dataset.nodata is not None:
            taxonomy[taxonomy == dataset.nodata] = np.nan
        return LandCoverGrid.from_codes(width, height, map_taxonomy_codes(taxonomy))

    def synthetic_grid(self, bbox: BoundingBox, width: int, height: int) -> LandCoverGrid:
        return synthetic_land_cover(bbox, width, height)

    def cancel_pending(self) -> None:
        super().cancel_pending()
        self.dataset.abort_loading()

    def close(self) -> None:
        super().close()
        self.dataset.close()
