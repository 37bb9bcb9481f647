"""
Linear Ranking SVM
Pairwise ranking SVM trained with a cutting-plane optimizer and an
O(n log n) inversion-counting loss oracle
"""

from .data import (
    RankingQuery,
    RankingDataset,
    as_dataset,
    count_ranking_pairs,
    is_ranking_problem,
)

from .oracle import (
    LossOracle,
    RankingLossOracle,
    count_ranking_inversions,
    ranking_loss,
)

from .optimizer import (
    CuttingPlaneOptimizer,
    OptimizerConfig,
    OptimizerState,
    OptimizationResult,
    PlaneSet,
)

from .trainer import (
    RankTrainer,
    RankTrainerConfig,
)

from .model import TrainedModel

from .evaluation import (
    RankingAccuracy,
    test_ranking_function,
    cross_validate_ranking_trainer,
)

from .exceptions import (
    RankSVMException,
    ConfigurationError,
    ValidationError,
    RankingProblemError,
    DimensionMismatchError,
    OptimizationError,
)

__version__ = "1.0.0"

__all__ = [
    # Data
    "RankingQuery",
    "RankingDataset",
    "as_dataset",
    "count_ranking_pairs",
    "is_ranking_problem",

    # Loss oracle
    "LossOracle",
    "RankingLossOracle",
    "count_ranking_inversions",
    "ranking_loss",

    # Optimizer
    "CuttingPlaneOptimizer",
    "OptimizerConfig",
    "OptimizerState",
    "OptimizationResult",
    "PlaneSet",

    # Training
    "RankTrainer",
    "RankTrainerConfig",
    "TrainedModel",

    # Evaluation
    "RankingAccuracy",
    "test_ranking_function",
    "cross_validate_ranking_trainer",

    # Errors
    "RankSVMException",
    "ConfigurationError",
    "ValidationError",
    "RankingProblemError",
    "DimensionMismatchError",
    "OptimizationError",
]
