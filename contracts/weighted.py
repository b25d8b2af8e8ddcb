"""Weighted score base model shared by agent scoring and wave assessment."""

import math
from typing import Dict

from pydantic import BaseModel, Field, model_validator


WEIGHT_TOLERANCE = 1e-9


def weights_sum_to_one(weights: Dict[str, float]) -> bool:
    """Check that a weight table sums to exactly 1.0 (within tolerance)."""
    return math.isclose(sum(weights.values()), 1.0, rel_tol=0.0, abs_tol=WEIGHT_TOLERANCE)


def weighted_total(sub_scores: Dict[str, float], weights: Dict[str, float]) -> float:
    """Combine sub-scores with their weights, clamped to [0, 1] and rounded.

    Rounding to 10 decimals keeps exact boundary values (0.85, 0.70) from
    drifting below the threshold through float accumulation.
    """
    total = sum(weights[name] * sub_scores.get(name, 0.0) for name in weights)
    return round(min(1.0, max(0.0, total)), 10)


class WeightedScore(BaseModel):
    """A total built from named, weighted sub-scores."""
    sub_scores: Dict[str, float] = Field(..., description="Sub-score per factor, each in [0, 1]")
    weights: Dict[str, float] = Field(..., description="Weight per factor; must sum to 1.0")
    total: float = Field(..., ge=0.0, le=1.0, description="Weighted total in [0, 1]")

    @model_validator(mode="after")
    def _check_weights(self):
        if not weights_sum_to_one(self.weights):
            raise ValueError(f"Weights must sum to 1.0, got {sum(self.weights.values())!r}")
        if set(self.sub_scores) != set(self.weights):
            raise ValueError("Sub-scores and weights must name the same factors")
        for name, value in self.sub_scores.items():
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"Sub-score {name} out of range: {value}")
        return self

    def contribution(self, name: str) -> float:
        """Weighted contribution of one factor to the total."""
        return self.weights[name] * self.sub_scores[name]
