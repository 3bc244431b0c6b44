"""Pytest configuration and fixtures for habitat suitability tests."""
import sys
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from unittest.mock import MagicMock

import numpy as np
import pytest
import rasterio
from rasterio.transform import from_bounds

from src.habitat.grid import BoundingBox, LandCoverGrid, SoilGrid, WeatherGrid


@pytest.fixture
def bbox():
    """A one-degree box in central England (inside the static snapshot)."""
    return BoundingBox(-2.0, 52.0, -1.0, 53.0)


@pytest.fixture
def tile_bbox():
    """Extent of the local SoilGrids tile."""
    return BoundingBox(-122.00000928, 37.999174566, -121.00000944, 38.999174406)


@pytest.fixture
def write_geotiff(tmp_path):
    """Factory writing a single-band EPSG:4326 GeoTIFF covering a bbox."""

    def _write(name, data, bbox, nodata=None):
        data = np.asarray(data)
        height, width = data.shape
        path = tmp_path / name
        with rasterio.open(
            path,
            "w",
            driver="GTiff",
            height=height,
            width=width,
            count=1,
            dtype=data.dtype,
            crs="EPSG:4326",
            transform=from_bounds(*bbox.as_tuple(), width, height),
            nodata=nodata,
        ) as dst:
            dst.write(data, 1)
        return path

    return _write


def make_response(status_code=200, content=b"", content_type="image/tiff", json_data=None):
    """Stand-in for requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.content = content
    response.headers = {"Content-Type": content_type}
    if json_data is not None:
        response.json.return_value = json_data
    else:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    return response


@pytest.fixture
def mock_session():
    """requests.Session stand-in; set ``.get.side_effect``/``return_value`` per test."""
    session = MagicMock()
    return session


def loam_soil_grid(width, height):
    """Uniform, near-ideal soil."""
    n = width * height
    return SoilGrid(
        width,
        height,
        {
            "orcdrc": np.full(n, 45.0, dtype=np.float32),
            "phh2o": np.full(n, 6.0, dtype=np.float32),
            "bdod": np.full(n, 1200.0, dtype=np.float32),
            "sand": np.full(n, 450.0, dtype=np.float32),
            "clay": np.full(n, 250.0, dtype=np.float32),
            "silt": np.full(n, 300.0, dtype=np.float32),
        },
    )


def uniform_land_cover(width, height, code=30):
    return LandCoverGrid.from_codes(width, height, np.full(width * height, code, dtype=np.uint8))


def uniform_weather(width, height, precipitation=2.6, temperature=10.5):
    n = width * height
    return WeatherGrid(
        width,
        height,
        {
            "precipitation": np.full(n, precipitation, dtype=np.float32),
            "temperature": np.full(n, temperature, dtype=np.float32),
        },
    )


@pytest.fixture
def response_factory():
    return make_response


@pytest.fixture
def grids():
    """Builders for uniform soil, land-cover and weather grids."""

    class _Grids:
        soil = staticmethod(loam_soil_grid)
        land_cover = staticmethod(uniform_land_cover)
        weather = staticmethod(uniform_weather)

    return _Grids
