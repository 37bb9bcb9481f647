"""
Ranking SVM trainer.

Trains a linear scoring function so that, within each query, relevant
vectors score at least 1 above nonrelevant ones as often as possible:

    min_w  0.5 * ||w||^2 + (C / P) * sum over pairs max(0, 1 - w.(x_rel - x_nonrel))

where P is the total number of (relevant, nonrelevant) pairs. Normalizing
by P keeps the meaning of C stable as the dataset grows.
"""

import copy
import logging
import threading
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from .constants import TrainerConstants
from .data import Samples, as_dataset
from .exceptions import ConfigurationError, RankingProblemError
from .model import TrainedModel
from .optimizer import CuttingPlaneOptimizer, OptimizationResult, OptimizerConfig
from .oracle import RankingLossOracle

logger = logging.getLogger(__name__)


@dataclass
class RankTrainerConfig:
    """Configuration for RankTrainer"""
    C: float = TrainerConstants.DEFAULT_C
    epsilon: float = TrainerConstants.DEFAULT_EPSILON
    max_iterations: int = TrainerConstants.DEFAULT_MAX_ITERATIONS
    nonnegative_weights: bool = False
    verbose: bool = False

    # Worker threads used to evaluate the ranking loss
    num_threads: int = TrainerConstants.DEFAULT_NUM_THREADS

    # Optional wall-clock budget; stopping on it is not an error
    max_seconds: Optional[float] = None

    def validate(self) -> None:
        _check_c(self.C)
        _check_epsilon(self.epsilon)
        _check_max_iterations(self.max_iterations)
        _check_num_threads(self.num_threads)
        if self.max_seconds is not None and not self.max_seconds > 0:
            raise ConfigurationError(f"max_seconds must be > 0, got {self.max_seconds}")


class RankTrainer:
    """
    Trainer for linear ranking support vector machines.

    Usage:
        trainer = RankTrainer(C=10.0)
        trainer.set_epsilon(1e-4)
        model = trainer.train(dataset)
        model.score(x)

    A trainer may be shared between threads: each train() call snapshots
    the configuration and owns its oracle and optimizer state.
    """

    def __init__(
        self,
        C: Optional[float] = None,
        config: Optional[RankTrainerConfig] = None,
        optimizer_config: Optional[OptimizerConfig] = None,
    ):
        self.config = copy.copy(config) if config is not None else RankTrainerConfig()
        if C is not None:
            self.config.C = C
        self.config.validate()
        self._optimizer_config = copy.copy(optimizer_config) if optimizer_config else OptimizerConfig()
        self._lock = threading.RLock()

    # -- configuration -------------------------------------------------

    def set_epsilon(self, eps: float) -> None:
        _check_epsilon(eps)
        with self._lock:
            self.config.epsilon = eps

    def get_epsilon(self) -> float:
        """
        Training stops once the objective is within C * epsilon of its
        optimal value, i.e. once the normalized risk is within epsilon.
        """
        return self.config.epsilon

    def set_max_iterations(self, max_iter: int) -> None:
        _check_max_iterations(max_iter)
        with self._lock:
            self.config.max_iterations = max_iter

    def get_max_iterations(self) -> int:
        return self.config.max_iterations

    def be_verbose(self) -> None:
        with self._lock:
            self.config.verbose = True

    def be_quiet(self) -> None:
        with self._lock:
            self.config.verbose = False

    def is_verbose(self) -> bool:
        return self.config.verbose

    def set_c(self, C: float) -> None:
        _check_c(C)
        with self._lock:
            self.config.C = C

    def get_c(self) -> float:
        """
        Regularization parameter. Larger values fit the training pairs more
        exactly; smaller values favor a smaller weight vector.
        """
        return self.config.C

    def set_nonnegative_weights(self, value: bool) -> None:
        with self._lock:
            self.config.nonnegative_weights = bool(value)

    def learns_nonnegative_weights(self) -> bool:
        return self.config.nonnegative_weights

    def set_num_threads(self, num_threads: int) -> None:
        _check_num_threads(num_threads)
        with self._lock:
            self.config.num_threads = num_threads

    def get_num_threads(self) -> int:
        return self.config.num_threads

    def set_optimizer(self, optimizer_config: OptimizerConfig) -> None:
        """Set QP and plane-management options; tolerance and limits still come from the trainer."""
        candidate = copy.copy(optimizer_config)
        candidate.validate()
        with self._lock:
            self._optimizer_config = candidate

    def get_optimizer(self) -> OptimizerConfig:
        """Return a copy of the optimizer configuration a train() call would use."""
        with self._lock:
            return self._resolve_optimizer_config(self.config)

    # -- training ------------------------------------------------------

    def train(self, samples: Samples) -> TrainedModel:
        """
        Train on a RankingDataset, a sequence of RankingQuery, or a single
        RankingQuery (treated as a one-element dataset).

        Raises:
            RankingProblemError: no query has both relevant and nonrelevant vectors
            DimensionMismatchError: feature vectors disagree in dimension
        """
        model, _ = self.train_with_report(samples)
        return model

    def train_with_report(self, samples: Samples) -> Tuple[TrainedModel, OptimizationResult]:
        """Like train(), also returning the optimizer's OptimizationResult."""
        with self._lock:
            cfg = copy.copy(self.config)
            optimizer_config = self._resolve_optimizer_config(cfg)

        dataset = as_dataset(samples)
        if not dataset.is_ranking_problem():
            raise RankingProblemError(
                "Training requires at least one query with both relevant and nonrelevant vectors"
            )

        if cfg.verbose:
            logger.info(
                f"Training ranking SVM on {len(dataset)} queries, {dataset.num_pairs} pairs, "
                f"dimension {dataset.dimension}, C={cfg.C}, epsilon={cfg.epsilon}"
            )

        optimizer = CuttingPlaneOptimizer(optimizer_config)
        with RankingLossOracle(dataset, num_threads=cfg.num_threads) as oracle:
            result = optimizer.optimize(oracle, cfg.C)

        if cfg.verbose:
            logger.info(
                f"Finished after {result.iterations} iterations ({result.stop_reason}), "
                f"objective={result.objective:.6g}, risk={result.risk:.6g}"
            )
        return TrainedModel(result.weights), result

    def _resolve_optimizer_config(self, cfg: RankTrainerConfig) -> OptimizerConfig:
        return replace(
            self._optimizer_config,
            epsilon=cfg.epsilon,
            max_iterations=cfg.max_iterations,
            nonnegative=cfg.nonnegative_weights,
            verbose=cfg.verbose,
            max_seconds=cfg.max_seconds,
        )


def _check_c(C: float) -> None:
    if not C > 0:
        raise ConfigurationError(f"C must be > 0, got {C}")


def _check_epsilon(eps: float) -> None:
    if not eps > 0:
        raise ConfigurationError(f"epsilon must be > 0, got {eps}")


def _check_max_iterations(max_iter: int) -> None:
    if max_iter < 0:
        raise ConfigurationError(f"max_iterations must be >= 0, got {max_iter}")


def _check_num_threads(num_threads: int) -> None:
    if num_threads < 1:
        raise ConfigurationError(f"num_threads must be >= 1, got {num_threads}")
