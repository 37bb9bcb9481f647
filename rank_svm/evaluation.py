"""
Ranking evaluation tools.

Pairwise ranking accuracy and mean average precision of a trained scorer,
plus k-fold cross-validation of a RankTrainer over ranking queries.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .constants import EvaluationConstants
from .data import RankingDataset, RankingQuery, Samples, as_dataset
from .exceptions import ConfigurationError, DimensionMismatchError, RankingProblemError
from .model import TrainedModel
from .vectors import score_rows, stack_vectors

logger = logging.getLogger(__name__)


@dataclass
class RankingAccuracy:
    """Ranking quality of a scorer on a set of queries"""
    ranking_accuracy: float
    mean_average_precision: float
    num_pairs: int = 0
    num_queries: int = 0


@dataclass
class _Tally:
    correct_pairs: int = 0
    total_pairs: int = 0
    ap_sum: float = 0.0
    ap_queries: int = 0

    def add(self, other: "_Tally") -> None:
        self.correct_pairs += other.correct_pairs
        self.total_pairs += other.total_pairs
        self.ap_sum += other.ap_sum
        self.ap_queries += other.ap_queries

    def summary(self) -> RankingAccuracy:
        return RankingAccuracy(
            ranking_accuracy=self.correct_pairs / self.total_pairs if self.total_pairs else 0.0,
            mean_average_precision=self.ap_sum / self.ap_queries if self.ap_queries else 0.0,
            num_pairs=self.total_pairs,
            num_queries=self.ap_queries,
        )


def average_precision(relevant_scores: np.ndarray, nonrelevant_scores: np.ndarray) -> float:
    """
    Average precision of the relevant items when everything is sorted by
    descending score. Ties place nonrelevant items first.
    """
    n_rel = len(relevant_scores)
    if n_rel == 0:
        return 0.0
    scores = np.concatenate([relevant_scores, nonrelevant_scores])
    is_relevant = np.concatenate(
        [np.ones(n_rel, dtype=bool), np.zeros(len(nonrelevant_scores), dtype=bool)]
    )
    order = np.lexsort((is_relevant, -scores))
    positions = np.flatnonzero(is_relevant[order]) + 1
    return float(np.mean(np.arange(1, n_rel + 1) / positions))


def count_correctly_ordered(relevant_scores: np.ndarray, nonrelevant_scores: np.ndarray) -> int:
    """Number of pairs with score(relevant) strictly above score(nonrelevant)."""
    if len(relevant_scores) == 0 or len(nonrelevant_scores) == 0:
        return 0
    sorted_nonrel = np.sort(nonrelevant_scores)
    below = np.searchsorted(sorted_nonrel, relevant_scores, side="left")
    return int(below.sum())


def _score_query(model: TrainedModel, query: RankingQuery) -> Tuple[np.ndarray, np.ndarray]:
    def scores(vectors):
        if not vectors:
            return np.zeros(0, dtype=np.float64)
        return score_rows(stack_vectors(vectors), model.weights)

    return scores(query.relevant), scores(query.nonrelevant)


def _tally(model: TrainedModel, dataset: RankingDataset) -> _Tally:
    tally = _Tally()
    if dataset.dimension is not None and dataset.dimension != model.dimension:
        raise DimensionMismatchError(model.dimension, dataset.dimension, "evaluation samples")
    for query in dataset:
        rel, nonrel = _score_query(model, query)
        tally.correct_pairs += count_correctly_ordered(rel, nonrel)
        tally.total_pairs += query.num_pairs
        if len(rel):
            tally.ap_sum += average_precision(rel, nonrel)
            tally.ap_queries += 1
    return tally


def test_ranking_function(model: TrainedModel, samples: Samples) -> RankingAccuracy:
    """
    Evaluate ``model`` on ranking samples.

    Returns:
        RankingAccuracy with the fraction of correctly ordered
        (relevant, nonrelevant) pairs and the mean average precision over
        queries that have relevant vectors.
    """
    dataset = as_dataset(samples)
    if not dataset.is_ranking_problem():
        raise RankingProblemError("Evaluation requires at least one (relevant, nonrelevant) pair")
    return _tally(model, dataset).summary()


# Not a pytest test despite the name.
test_ranking_function.__test__ = False


def cross_validate_ranking_trainer(trainer, samples: Samples, folds: int) -> RankingAccuracy:
    """
    k-fold cross-validation over queries.

    Queries are split into ``folds`` contiguous folds; each fold is scored by
    a model trained on the remaining ones. Accuracy is pooled over all
    held-out pairs and MAP over all held-out queries.

    Raises:
        ConfigurationError: folds outside [2, number of queries], or a fold
            whose training split has no (relevant, nonrelevant) pair
    """
    dataset = as_dataset(samples)
    if not dataset.is_ranking_problem():
        raise RankingProblemError("Cross-validation requires at least one (relevant, nonrelevant) pair")
    if folds < EvaluationConstants.MIN_FOLDS or folds > len(dataset):
        raise ConfigurationError(
            f"folds must be between {EvaluationConstants.MIN_FOLDS} and {len(dataset)}, got {folds}"
        )

    queries = list(dataset)
    splits = []
    for fold, held_out in enumerate(np.array_split(np.arange(len(queries)), folds)):
        held = set(held_out.tolist())
        train_split = RankingDataset(q for i, q in enumerate(queries) if i not in held)
        if not train_split.is_ranking_problem():
            raise ConfigurationError(
                f"Training split of fold {fold} has no (relevant, nonrelevant) pair; "
                "use fewer folds or reorder the queries"
            )
        splits.append((train_split, RankingDataset(queries[i] for i in held_out)))

    total = _Tally()
    for fold, (train_split, test_split) in enumerate(splits):
        model = trainer.train(train_split)
        fold_tally = _tally(model, test_split)
        logger.debug(
            "fold %d: %d/%d pairs correct", fold, fold_tally.correct_pairs, fold_tally.total_pairs
        )
        total.add(fold_tally)
    return total.summary()
