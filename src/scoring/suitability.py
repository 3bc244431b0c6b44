"""
Overall soil score and suitability categories.

compute_soil_score runs the soil scorer over scalars or whole grids and
returns every sub-score alongside the overall score. map_score_to_category
then combines the (optionally weather-adjusted) score with the land class.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Optional

import numpy as np

from src.scoring.combiner import ScoreCombiner
from src.scoring.configs.soil import DEFAULT_SOIL_SCORER
from src.scoring.landcover import LandClass
from src.scoring.transforms import NumericType


class SuitabilityCategory(IntEnum):
    POOR = 0
    CAUTION = 1
    IDEAL = 2


IDEAL_THRESHOLD = 70.0
CAUTION_THRESHOLD = 45.0
CAUTION_LAND_PENALTY = 10.0


@dataclass
class SoilScoreBreakdown:
    """Soil sub-scores and their weighted combination (all 0-100)."""

    ph: NumericType
    organic: NumericType
    texture: NumericType
    moisture: NumericType
    overall: NumericType

    def to_dict(self) -> Dict[str, NumericType]:
        return {
            "ph": self.ph,
            "organic": self.organic,
            "texture": self.texture,
            "moisture": self.moisture,
            "overall": self.overall,
        }


def compute_soil_score(
    ph: NumericType,
    orcdrc: NumericType,
    bdod: NumericType,
    sand: NumericType,
    clay: NumericType,
    silt: NumericType,
    scorer: Optional[ScoreCombiner] = None,
) -> SoilScoreBreakdown:
    """
    Score soil properties.

    Args:
        ph: Soil pH
        orcdrc: Organic carbon (g/kg)
        bdod: Bulk density (kg/m³)
        sand: Sand (g/kg)
        clay: Clay (g/kg)
        silt: Silt (g/kg)
        scorer: Combiner to use (default: DEFAULT_SOIL_SCORER)

    Returns:
        SoilScoreBreakdown; arrays in, arrays out
    """
    scorer = scorer or DEFAULT_SOIL_SCORER
    inputs = {"phh2o": ph, "orcdrc": orcdrc, "bdod": bdod, "sand": sand, "clay": clay, "silt": silt}
    components = scorer.get_component_scores(inputs)
    overall = scorer.combine(components)
    return SoilScoreBreakdown(
        ph=components["ph"],
        organic=components["organic"],
        texture=components["texture"],
        moisture=components["moisture"],
        overall=overall,
    )


def _validate_land_classes(land_class: np.ndarray) -> None:
    known = np.isin(land_class, [member.value for member in LandClass])
    if not np.all(known):
        unknown = np.unique(land_class[~known])
        raise ValueError(f"Unknown land class value(s): {unknown.tolist()}")


def map_score_to_category(score: NumericType, land_class) -> NumericType:
    """
    Category for a score on a given land class.

    Poor land is always Poor. Caution land loses 10 points and can reach
    Caution at best. Non-finite scores are Poor.

    Args:
        score: Score(s) in [0, 100]
        land_class: LandClass value(s), same shape as ``score``

    Returns:
        SuitabilityCategory for scalar input, uint8 array otherwise

    Raises:
        ValueError: A land class is not a LandClass member

    Example:
        >>> map_score_to_category(80, LandClass.CAUTION)
        <SuitabilityCategory.CAUTION: 1>
    """
    score = np.asarray(score, dtype=float)
    land = np.asarray(land_class)
    _validate_land_classes(land)
    score, land = np.broadcast_arrays(score, land)

    is_caution = land == LandClass.CAUTION
    is_poor_land = land == LandClass.POOR
    adjusted = np.where(is_caution, score - CAUTION_LAND_PENALTY, score)

    conditions = [
        ~np.isfinite(score) | is_poor_land,
        (adjusted >= IDEAL_THRESHOLD) & is_caution,
        adjusted >= IDEAL_THRESHOLD,
        adjusted >= CAUTION_THRESHOLD,
    ]
    choices = [
        SuitabilityCategory.POOR,
        SuitabilityCategory.CAUTION,
        SuitabilityCategory.IDEAL,
        SuitabilityCategory.CAUTION,
    ]
    with np.errstate(invalid="ignore"):
        result = np.select(conditions, choices, default=SuitabilityCategory.POOR).astype(np.uint8)

    if result.ndim == 0:
        return SuitabilityCategory(int(result))
    return result


def count_categories(categories: np.ndarray) -> Dict[str, int]:
    """Per-category cell counts keyed ideal/caution/poor."""
    categories = np.asarray(categories)
    counts = {}
    for member in SuitabilityCategory:
        counts[member.name.lower()] = int(np.count_nonzero(categories == member))
    unknown = categories.size - sum(counts.values())
    if unknown:
        raise ValueError(f"{unknown} cells have no SuitabilityCategory")
    return {"ideal": counts["ideal"], "caution": counts["caution"], "poor": counts["poor"]}
