"""
Score combination system for multi-factor suitability scoring.

Provides:
- ScoreComponent: Defines a single scoring factor (transform, inputs, weight)
- ScoreCombiner: Combines components into a final 0-100 score

Formula: final_score = sum(weight * score) / sum(weight), where both sums
run over the components whose score is finite for that cell. A cell with no
finite component scores 0.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

from src.scoring.soil import score_moisture_proxy, score_organic_carbon, score_ph, score_texture
from src.scoring.transforms import as_output, gaussian, triangular

# Type alias
NumericType = Union[float, np.ndarray]

# Map transform names to functions
TRANSFORM_FUNCTIONS = {
    "ph": score_ph,
    "organic_carbon": score_organic_carbon,
    "texture": score_texture,
    "moisture_proxy": score_moisture_proxy,
    "gaussian": gaussian,
    "triangular": triangular,
}


@dataclass
class ScoreComponent:
    """
    A single scoring component.

    Attributes:
        name: Identifier for this component (key in the breakdown)
        transform: Name of transform function (see TRANSFORM_FUNCTIONS)
        weight: Relative weight; weights of a combiner must sum to 1.0
        inputs: Names of the raw inputs passed positionally to the transform
            (defaults to ``(name,)``)
        transform_params: Extra keyword parameters for the transform
    """

    name: str
    transform: str
    weight: float
    inputs: Tuple[str, ...] = ()
    transform_params: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate the component configuration."""
        if self.transform not in TRANSFORM_FUNCTIONS:
            raise ValueError(
                f"Unknown transform '{self.transform}'. "
                f"Available: {list(TRANSFORM_FUNCTIONS.keys())}"
            )
        if self.weight < 0:
            raise ValueError(f"Component '{self.name}' has negative weight {self.weight}")
        self.inputs = tuple(self.inputs) or (self.name,)

    def apply(self, values: Dict[str, NumericType]) -> NumericType:
        """
        Apply this component's transform to its inputs.

        Args:
            values: Dictionary of raw input values

        Returns:
            Transformed score
        """
        missing = [key for key in self.inputs if key not in values]
        if missing:
            raise KeyError(
                f"Missing input(s) {missing} for component '{self.name}'. "
                f"Available inputs: {list(values.keys())}"
            )
        transform_fn = TRANSFORM_FUNCTIONS[self.transform]
        return transform_fn(*(values[key] for key in self.inputs), **self.transform_params)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "transform": self.transform,
            "weight": self.weight,
            "inputs": list(self.inputs),
            "transform_params": self.transform_params,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoreComponent":
        """Deserialize from dictionary."""
        return cls(
            name=data["name"],
            transform=data["transform"],
            weight=data["weight"],
            inputs=tuple(data.get("inputs") or ()),
            transform_params=data.get("transform_params") or {},
        )


@dataclass
class ScoreCombiner:
    """
    Combines multiple ScoreComponents into a final score.

    Attributes:
        name: Identifier for this combiner
        components: List of ScoreComponent instances
        score_range: (min, max) the final score is clamped to
    """

    name: str
    components: List[ScoreComponent] = field(default_factory=list)
    score_range: Tuple[float, float] = (0.0, 100.0)

    def __post_init__(self):
        """Validate the combiner configuration."""
        weights = [c.weight for c in self.components]
        if weights:
            total = sum(weights)
            if not np.isclose(total, 1.0, rtol=1e-5):
                raise ValueError(
                    f"Component weights must sum to 1.0, got {total:.4f}. "
                    f"Weights: {weights}"
                )

    def compute(self, inputs: Dict[str, NumericType]) -> NumericType:
        """
        Compute the combined score from input values.

        Args:
            inputs: Dictionary mapping input names to their raw values

        Returns:
            Final combined score, clamped to ``score_range``
        """
        component_scores = self.get_component_scores(inputs)
        return self.combine(component_scores)

    def combine(self, component_scores: Dict[str, NumericType]) -> NumericType:
        """
        Weighted average of already-transformed component scores.

        Non-finite scores drop out of both numerator and denominator.
        """
        total: Optional[np.ndarray] = None
        weight_sum: Optional[np.ndarray] = None

        for component in self.components:
            score = np.asarray(component_scores[component.name], dtype=float)
            finite = np.isfinite(score)
            contribution = np.where(finite, score * component.weight, 0.0)
            weight = np.where(finite, component.weight, 0.0)
            total = contribution if total is None else total + contribution
            weight_sum = weight if weight_sum is None else weight_sum + weight

        if total is None:
            return 0.0

        with np.errstate(invalid="ignore", divide="ignore"):
            result = np.where(weight_sum > 0, total / np.where(weight_sum > 0, weight_sum, 1.0), 0.0)
        low, high = self.score_range
        return as_output(np.clip(result, low, high))

    def get_component_scores(self, inputs: Dict[str, NumericType]) -> Dict[str, NumericType]:
        """
        Get individual transformed scores for each component.

        Useful for debugging and visualization.

        Args:
            inputs: Dictionary mapping input names to their raw values

        Returns:
            Dictionary mapping component names to their transformed scores
        """
        return {component.name: component.apply(inputs) for component in self.components}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "components": [c.to_dict() for c in self.components],
            "score_range": list(self.score_range),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoreCombiner":
        """Deserialize from dictionary."""
        components = [ScoreComponent.from_dict(c) for c in data["components"]]
        score_range = tuple(data.get("score_range", (0.0, 100.0)))
        return cls(name=data["name"], components=components, score_range=score_range)
