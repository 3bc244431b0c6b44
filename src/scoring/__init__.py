"""
Scoring module for habitat suitability analysis.

Provides transformation curves, soil sub-scores and combination logic for
computing per-cell suitability from soil, land cover and weather.

Transformation types:
- gaussian: Bell curve around an optimum (e.g., soil pH)
- triangular: Ramp to a peak and back (e.g., rainfall, temperature)

Soil sub-scores:
- score_ph, score_organic_carbon, score_texture, score_moisture_proxy

Combination:
- ScoreComponent: Defines a single scoring factor
- ScoreCombiner: Weighted mean over the finite component scores

Classification:
- derive_land_cover_classes: Land classes with woodland edge promotion
- compute_weather_overlay: Weather-adjusted score and Dry/Neutral/Favourable
- map_score_to_category: Poor / Caution / Ideal
"""

from src.scoring.transforms import gaussian, triangular
from src.scoring.soil import (
    score_ph,
    score_organic_carbon,
    score_texture,
    score_moisture_proxy,
)
from src.scoring.combiner import ScoreComponent, ScoreCombiner
from src.scoring.landcover import LandClass, derive_land_cover_classes, woodland_mask
from src.scoring.weather import WeatherOverlay, compute_weather_overlay
from src.scoring.suitability import (
    SoilScoreBreakdown,
    SuitabilityCategory,
    compute_soil_score,
    count_categories,
    map_score_to_category,
)
from src.scoring.average import RunningAverage

__all__ = [
    # Transforms
    "gaussian",
    "triangular",
    # Soil sub-scores
    "score_ph",
    "score_organic_carbon",
    "score_texture",
    "score_moisture_proxy",
    # Combiner
    "ScoreComponent",
    "ScoreCombiner",
    # Classification
    "LandClass",
    "derive_land_cover_classes",
    "woodland_mask",
    "WeatherOverlay",
    "compute_weather_overlay",
    "SoilScoreBreakdown",
    "SuitabilityCategory",
    "compute_soil_score",
    "count_categories",
    "map_score_to_category",
    "RunningAverage",
]
