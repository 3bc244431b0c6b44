"""Configuration module for the habitat suitability project.

Centralizes data paths, upstream endpoints and tuning constants. Most values
can be overridden through ``HABITAT_*`` environment variables.
"""
import os
from pathlib import Path

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Data directories
DATA_DIR = Path(os.environ.get("HABITAT_DATA_DIR", PROJECT_ROOT / "data"))
SOIL_DIR = DATA_DIR / "soil"  # Local SoilGrids tile (see data/soil/README.txt)

# Upstream services
SOILGRIDS_WCS_BASE = os.environ.get(
    "HABITAT_SOILGRIDS_WCS_URL",
    "https://maps.isric.org/mapserv?map=/mapfiles/soilgrids.map",
)
LANDCOVER_TAXONOMY_SOURCE = os.environ.get(
    "HABITAT_TAXONOMY_SOURCE", str(SOIL_DIR / "TAXOUSDA_T36059.tif")
)
WEATHER_API_BASE = os.environ.get(
    "HABITAT_WEATHER_API_URL", "https://api.open-meteo.com/v1/forecast"
)

# Feature flags
USE_MOCK_DATA = os.environ.get("HABITAT_USE_MOCK", "false").lower() == "true"
ENABLE_WEATHER_OVERLAY = os.environ.get("HABITAT_ENABLE_WEATHER", "true").lower() == "true"

# Sampling
SAMPLE_GRID_SIZE = 64
DEFAULT_DEPTH = "0-5cm"

# Network behaviour
REQUEST_TIMEOUT_S = 15.0
MAX_RETRY_ATTEMPTS = 3
RETRY_BASE_DELAY_S = 0.5
CACHE_TTL_S = 30 * 60
FETCH_WORKERS = 8

# Tile bundled under SOIL_DIR (TAXOUSDA_T36059 and friends)
SOIL_DATA_EXTENT = (-122.00000928, 37.999174566, -121.00000944, 38.999174406)

# Default settings
DEFAULT_LOG_LEVEL = os.environ.get("HABITAT_LOG_LEVEL", "INFO")
USER_AGENT = "habitat-suitability/0.1"
