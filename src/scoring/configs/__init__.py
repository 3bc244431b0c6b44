"""
Scoring configurations for different use cases.

Available configs:
- soil: Soil suitability scoring (pH, organic carbon, texture, moisture)
"""

from src.scoring.configs.soil import (
    DEFAULT_SOIL_SCORER,
    DEFAULT_SOIL_CONFIG,
    SOIL_COMPONENT_WEIGHTS,
    create_default_soil_scorer,
    get_required_inputs as soil_get_required_inputs,
)

__all__ = [
    "DEFAULT_SOIL_SCORER",
    "DEFAULT_SOIL_CONFIG",
    "SOIL_COMPONENT_WEIGHTS",
    "create_default_soil_scorer",
    "soil_get_required_inputs",
]
