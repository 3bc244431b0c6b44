"""
Habitat data acquisition and suitability computation.

This module provides:
- Soil, land-cover and weather grid clients with caching and fallback
- The suitability worker that scores a request off the caller's thread
- SuitabilityPipeline, which ties fetching and scoring together per viewport
"""

from .errors import FetchCancelled, HabitatDataError, is_cancellation
from .grid import BoundingBox, LandCoverGrid, SoilGrid, WeatherGrid
from .landcover import TaxonomyLandCoverClient
from .pipeline import SuitabilityPipeline
from .soilgrids import SoilGridsClient
from .weather import WeatherClient
from .worker import (
    ResultConsumer,
    SuitabilityRequest,
    SuitabilityResult,
    SuitabilityWorker,
    compute_suitability,
)

__all__ = [
    "BoundingBox",
    "SoilGrid",
    "LandCoverGrid",
    "WeatherGrid",
    "HabitatDataError",
    "FetchCancelled",
    "is_cancellation",
    "SoilGridsClient",
    "TaxonomyLandCoverClient",
    "WeatherClient",
    "SuitabilityRequest",
    "SuitabilityResult",
    "SuitabilityWorker",
    "ResultConsumer",
    "compute_suitability",
    "SuitabilityPipeline",
]
