"""
Ranking training data.

A RankingQuery holds the relevant and nonrelevant feature vectors of one
query; a RankingDataset is an ordered, immutable collection of them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional, Sequence, Tuple, Union, overload

from .exceptions import DimensionMismatchError, ValidationError
from .vectors import FeatureVector, as_feature_vector, dimension_of


@dataclass(frozen=True, eq=False)
class RankingQuery:
    """Relevance judgment for a single query."""

    relevant: Tuple[FeatureVector, ...] = field(default_factory=tuple)
    nonrelevant: Tuple[FeatureVector, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "relevant", tuple(as_feature_vector(v) for v in self.relevant))
        object.__setattr__(self, "nonrelevant", tuple(as_feature_vector(v) for v in self.nonrelevant))

    @property
    def num_pairs(self) -> int:
        """Number of (relevant, nonrelevant) ordering constraints."""
        return len(self.relevant) * len(self.nonrelevant)

    @property
    def has_pairs(self) -> bool:
        return self.num_pairs > 0

    def vectors(self) -> Iterator[FeatureVector]:
        yield from self.relevant
        yield from self.nonrelevant


class RankingDataset(Sequence[RankingQuery]):
    """
    Ordered, read-only sequence of ranking queries.

    All feature vectors must share the dimensionality of the first vector
    seen; the first disagreement raises DimensionMismatchError.
    """

    def __init__(self, queries: Iterable[RankingQuery] = ()):
        items = tuple(queries)
        for i, query in enumerate(items):
            if not isinstance(query, RankingQuery):
                raise ValidationError(
                    f"Dataset entry {i} is a {type(query).__name__}, expected RankingQuery"
                )
        self._queries = items
        self._dimension = _common_dimension(items)
        self._num_pairs = sum(q.num_pairs for q in items)

    @classmethod
    def from_query(cls, query: RankingQuery) -> "RankingDataset":
        return cls((query,))

    @property
    def dimension(self) -> Optional[int]:
        """Shared feature dimensionality, or None when there are no vectors."""
        return self._dimension

    @property
    def num_pairs(self) -> int:
        """Total constraint count P over all queries."""
        return self._num_pairs

    def is_ranking_problem(self) -> bool:
        return self._num_pairs > 0

    def ranking_queries(self) -> Iterator[RankingQuery]:
        """Iterate over the queries that contribute at least one pair."""
        return (q for q in self._queries if q.has_pairs)

    def __len__(self) -> int:
        return len(self._queries)

    def __iter__(self) -> Iterator[RankingQuery]:
        return iter(self._queries)

    @overload
    def __getitem__(self, index: int) -> RankingQuery: ...

    @overload
    def __getitem__(self, index: slice) -> "RankingDataset": ...

    def __getitem__(self, index):
        if isinstance(index, slice):
            return RankingDataset(self._queries[index])
        return self._queries[index]

    def __repr__(self) -> str:
        return (
            f"RankingDataset(queries={len(self._queries)}, pairs={self._num_pairs}, "
            f"dimension={self._dimension})"
        )


Samples = Union[RankingDataset, RankingQuery, Sequence[RankingQuery]]


def as_dataset(samples: Samples) -> RankingDataset:
    """Coerce a dataset, a sequence of queries, or a single query into a RankingDataset."""
    if isinstance(samples, RankingDataset):
        return samples
    if isinstance(samples, RankingQuery):
        return RankingDataset.from_query(samples)
    if isinstance(samples, (str, bytes)) or not isinstance(samples, Iterable):
        raise ValidationError(f"Cannot build a ranking dataset from {type(samples).__name__}")
    return RankingDataset(samples)


def count_ranking_pairs(samples: Samples) -> int:
    return as_dataset(samples).num_pairs


def is_ranking_problem(samples: Samples) -> bool:
    """
    True when the samples form a valid training set: at least one query has
    both relevant and nonrelevant vectors, and all dimensions agree.
    """
    try:
        return as_dataset(samples).is_ranking_problem()
    except ValidationError:
        return False


def _common_dimension(queries: Sequence[RankingQuery]) -> Optional[int]:
    dimension: Optional[int] = None
    for qi, query in enumerate(queries):
        for vector in query.vectors():
            d = dimension_of(vector)
            if dimension is None:
                dimension = d
            elif d != dimension:
                raise DimensionMismatchError(dimension, d, f"query {qi}")
    return dimension
