"""
Trained linear ranking function.
"""

from dataclasses import dataclass
from typing import Any

import numpy as np

from .vectors import as_feature_vector, check_dimension, dot


@dataclass(frozen=True, eq=False)
class TrainedModel:
    """
    Linear scorer produced by RankTrainer.

    A vector A is ranked before B iff score(A) > score(B).
    """

    weights: np.ndarray

    def __post_init__(self) -> None:
        weights = np.array(self.weights, dtype=np.float64).ravel()
        weights.flags.writeable = False
        object.__setattr__(self, "weights", weights)

    @property
    def dimension(self) -> int:
        return int(self.weights.shape[0])

    def score(self, vector: Any) -> float:
        """Return ``weights . vector``."""
        x = as_feature_vector(vector)
        check_dimension(x, self.dimension, "scored vector")
        return dot(self.weights, x)

    __call__ = score

    def __repr__(self) -> str:
        return f"TrainedModel(dimension={self.dimension})"
