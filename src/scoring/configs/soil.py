"""
Default soil suitability scoring configuration.

Defines how the four soil sub-scores are weighted into the overall soil
score. Users can build their own combiner for other organisms or regions.

Score formula:
    overall = weighted mean of the finite sub-scores, clamped to [0, 100]

Components (weights sum to 1.0):
  - ph: Gaussian around pH 6.0
  - organic: Organic carbon plateau at 3-6 %
  - texture: Distance from a loam
  - moisture: Bulk density as a water retention proxy
"""

from typing import Dict

from src.scoring.combiner import ScoreCombiner, ScoreComponent

SOIL_COMPONENT_WEIGHTS = {
    "ph": 0.32,
    "organic": 0.22,
    "texture": 0.28,
    "moisture": 0.18,
}


def create_default_soil_scorer() -> ScoreCombiner:
    """
    Create the default soil suitability scorer.

    Returns:
        ScoreCombiner reading SoilGrid channel names as inputs.

    Example:
        >>> scorer = create_default_soil_scorer()
        >>> score = scorer.compute({
        ...     "phh2o": 6.0,     # pH
        ...     "orcdrc": 45.0,   # g/kg
        ...     "sand": 450.0,    # g/kg
        ...     "clay": 250.0,    # g/kg
        ...     "silt": 300.0,    # g/kg
        ...     "bdod": 1200.0,   # kg/m³
        ... })
        >>> score
        100.0
    """
    return ScoreCombiner(
        name="soil_suitability",
        components=[
            # pH drives nutrient availability; strongest single factor
            ScoreComponent(
                name="ph",
                transform="ph",
                inputs=("phh2o",),
                weight=SOIL_COMPONENT_WEIGHTS["ph"],
            ),
            ScoreComponent(
                name="organic",
                transform="organic_carbon",
                inputs=("orcdrc",),
                weight=SOIL_COMPONENT_WEIGHTS["organic"],
            ),
            ScoreComponent(
                name="texture",
                transform="texture",
                inputs=("sand", "clay", "silt"),
                weight=SOIL_COMPONENT_WEIGHTS["texture"],
            ),
            ScoreComponent(
                name="moisture",
                transform="moisture_proxy",
                inputs=("bdod",),
                weight=SOIL_COMPONENT_WEIGHTS["moisture"],
            ),
        ],
    )


DEFAULT_SOIL_SCORER = create_default_soil_scorer()


DEFAULT_SOIL_CONFIG = DEFAULT_SOIL_SCORER.to_dict()


def get_required_inputs() -> Dict[str, str]:
    """
    Get documentation of required inputs for the soil scorer.

    Returns:
        Dictionary mapping input names to descriptions.
    """
    return {
        "phh2o": "Soil pH (SoilGrids phh2o / 10)",
        "orcdrc": "Organic carbon in g/kg",
        "sand": "Sand content in g/kg",
        "clay": "Clay content in g/kg",
        "silt": "Silt content in g/kg",
        "bdod": "Bulk density in kg/m³",
    }
