"""
Ranking loss oracle.

Scores a candidate weight vector against a ranking dataset and returns the
normalized pairwise hinge risk together with a subgradient. Mis-ordered
pairs are counted with a sort-and-sweep pass, so each query costs
O(n log n) instead of O(|relevant| * |nonrelevant|).
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np
from scipy.sparse import csr_matrix

from .constants import TrainerConstants
from .data import RankingDataset, Samples, as_dataset
from .exceptions import ConfigurationError, DimensionMismatchError, RankingProblemError
from .vectors import score_rows, stack_vectors, weighted_row_sum

logger = logging.getLogger(__name__)

Matrix = Union[np.ndarray, csr_matrix]


class LossOracle(Protocol):
    """Anything the cutting-plane optimizer can query for (risk, subgradient)."""

    dimension: int

    def evaluate(self, weights: np.ndarray) -> Tuple[float, np.ndarray]:
        ...


def count_ranking_inversions(
    relevant_scores: Sequence[float],
    nonrelevant_scores: Sequence[float],
    margin: float = 0.0,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Count margin-violating (relevant, nonrelevant) pairs per item.

    Returns ``(relevant_counts, nonrelevant_counts)`` where
    ``relevant_counts[i]`` is the number of nonrelevant scores ``s`` with
    ``relevant_scores[i] - s < margin`` and ``nonrelevant_counts[j]`` is the
    number of relevant scores ``r`` with ``r - nonrelevant_scores[j] < margin``.
    A pair that meets the margin exactly is not counted.
    """
    rel = np.asarray(relevant_scores, dtype=np.float64).ravel()
    nonrel = np.asarray(nonrelevant_scores, dtype=np.float64).ravel()
    n_rel, n_nonrel = rel.size, nonrel.size
    if n_rel == 0 or n_nonrel == 0:
        return np.zeros(n_rel, dtype=np.int64), np.zeros(n_nonrel, dtype=np.int64)

    # A pair is violated iff (rel - margin) < nonrel. Sorting ascending with
    # nonrelevant items ahead of relevant ones at equal keys makes "items
    # before me" exactly the strict inequality.
    keys = np.concatenate([rel - margin, nonrel])
    is_relevant = np.concatenate([np.ones(n_rel, dtype=bool), np.zeros(n_nonrel, dtype=bool)])
    index = np.arange(n_rel + n_nonrel)
    order = np.lexsort((index, is_relevant, keys))

    sorted_relevant = is_relevant[order]
    relevant_seen = np.cumsum(sorted_relevant)
    nonrelevant_seen = np.cumsum(~sorted_relevant)

    counts = np.empty(n_rel + n_nonrel, dtype=np.int64)
    # Relevant item: nonrelevant items sorted after it are strictly greater.
    counts[order[sorted_relevant]] = n_nonrel - nonrelevant_seen[sorted_relevant]
    # Nonrelevant item: relevant items sorted before it are strictly smaller.
    counts[order[~sorted_relevant]] = relevant_seen[~sorted_relevant]
    return counts[:n_rel], counts[n_rel:]


@dataclass(frozen=True)
class _QueryBlock:
    relevant: Matrix
    nonrelevant: Matrix


def _query_risk(block: _QueryBlock, weights: np.ndarray, margin: float) -> Tuple[float, np.ndarray]:
    """Unnormalized hinge loss and subgradient of one query."""
    rel_scores = score_rows(block.relevant, weights)
    nonrel_scores = score_rows(block.nonrelevant, weights)
    rel_counts, nonrel_counts = count_ranking_inversions(rel_scores, nonrel_scores, margin)

    loss = float(
        np.dot(nonrel_counts, nonrel_scores) - np.dot(rel_counts, rel_scores - margin)
    )
    subgradient = (
        weighted_row_sum(block.nonrelevant, nonrel_counts.astype(np.float64))
        - weighted_row_sum(block.relevant, rel_counts.astype(np.float64))
    )
    return loss, subgradient


def _chunk_risk(
    blocks: Sequence[_QueryBlock], weights: np.ndarray, margin: float, dimension: int
) -> Tuple[float, np.ndarray]:
    loss = 0.0
    subgradient = np.zeros(dimension, dtype=np.float64)
    for block in blocks:
        l, g = _query_risk(block, weights, margin)
        loss += l
        subgradient += g
    return loss, subgradient


class RankingLossOracle:
    """
    Pairwise hinge risk of a linear scorer over a fixed ranking dataset.

    R(w) = (1/P) * sum over pairs of max(0, 1 - (w.x_rel - w.x_nonrel))

    Usage:
        with RankingLossOracle(dataset, num_threads=4) as oracle:
            risk, subgradient = oracle.evaluate(w)
    """

    def __init__(
        self,
        dataset: Samples,
        num_threads: int = TrainerConstants.DEFAULT_NUM_THREADS,
        margin: float = TrainerConstants.RANKING_MARGIN,
    ):
        if num_threads < 1:
            raise ConfigurationError(f"num_threads must be >= 1, got {num_threads}")
        self.dataset: RankingDataset = as_dataset(dataset)
        if not self.dataset.is_ranking_problem():
            raise RankingProblemError(
                "Dataset has no query with both relevant and nonrelevant vectors"
            )
        self.dimension: int = int(self.dataset.dimension)
        self.num_pairs: int = self.dataset.num_pairs
        self.num_threads = num_threads
        self.margin = float(margin)
        self.num_evaluations = 0

        self._blocks: List[_QueryBlock] = [
            _QueryBlock(stack_vectors(q.relevant), stack_vectors(q.nonrelevant))
            for q in self.dataset.ranking_queries()
        ]
        self._chunks = _split_contiguous(self._blocks, num_threads)
        self._executor: Optional[ThreadPoolExecutor] = None

    def evaluate(self, weights: np.ndarray) -> Tuple[float, np.ndarray]:
        """Return ``(risk, subgradient)`` at ``weights``, both scaled by 1/P."""
        w = np.array(weights, dtype=np.float64).ravel()
        if w.size != self.dimension:
            raise DimensionMismatchError(self.dimension, w.size, "weight vector")
        w.flags.writeable = False
        self.num_evaluations += 1

        if len(self._chunks) <= 1:
            loss, subgradient = _chunk_risk(self._blocks, w, self.margin, self.dimension)
        else:
            executor = self._get_executor()
            futures = [
                executor.submit(_chunk_risk, chunk, w, self.margin, self.dimension)
                for chunk in self._chunks
            ]
            # Merge in submission order once every worker has finished.
            partials = [f.result() for f in futures]
            loss = 0.0
            subgradient = np.zeros(self.dimension, dtype=np.float64)
            for l, g in partials:
                loss += l
                subgradient += g

        scale = 1.0 / self.num_pairs
        return loss * scale, subgradient * scale

    __call__ = evaluate

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.num_threads, thread_name_prefix="rank-oracle"
            )
        return self._executor

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "RankingLossOracle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def ranking_loss(weights: np.ndarray, dataset: Samples) -> Tuple[float, np.ndarray]:
    """Evaluate the normalized ranking risk and subgradient of ``weights`` on ``dataset``."""
    with RankingLossOracle(dataset) as oracle:
        return oracle.evaluate(weights)


def _split_contiguous(items: Sequence, parts: int) -> List[Sequence]:
    parts = max(1, min(parts, len(items)))
    bounds = np.linspace(0, len(items), parts + 1).astype(int)
    return [items[bounds[i]:bounds[i + 1]] for i in range(parts)]
