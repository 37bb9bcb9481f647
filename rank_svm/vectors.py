"""
Feature vector helpers.

A feature vector is either a read-only 1-D numpy float64 array or a 1 x d
scipy.sparse CSR matrix. Plain sequences of numbers are converted to dense
arrays.
"""

from typing import Any, Sequence, Union

import numpy as np
from scipy.sparse import csr_matrix, issparse, vstack as sparse_vstack

from .exceptions import DimensionMismatchError, ValidationError

FeatureVector = Union[np.ndarray, csr_matrix]


def as_feature_vector(value: Any) -> FeatureVector:
    """
    Normalize ``value`` into an immutable feature vector.

    Accepts 1-D array-likes, single-row 2-D arrays, and scipy sparse row or
    column vectors.
    """
    if issparse(value):
        matrix = csr_matrix(value, dtype=np.float64, copy=True)
        if matrix.shape[0] != 1:
            if matrix.shape[1] == 1:
                matrix = csr_matrix(matrix.T)
            else:
                raise ValidationError(f"Sparse feature vector must have one row, got shape {matrix.shape}")
        if not np.all(np.isfinite(matrix.data)):
            raise ValidationError("Feature vector contains non-finite values")
        matrix.sum_duplicates()
        for buffer in (matrix.data, matrix.indices, matrix.indptr):
            buffer.flags.writeable = False
        return matrix

    try:
        array = np.array(value, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Cannot interpret {type(value).__name__} as a feature vector") from e

    if array.ndim == 2 and array.shape[0] == 1:
        array = array[0]
    if array.ndim != 1:
        raise ValidationError(f"Feature vector must be 1-D, got shape {array.shape}")
    if not np.all(np.isfinite(array)):
        raise ValidationError("Feature vector contains non-finite values")
    array.flags.writeable = False
    return array


def dimension_of(vector: FeatureVector) -> int:
    """Return the dimensionality of a normalized feature vector."""
    if issparse(vector):
        return int(vector.shape[1])
    return int(vector.shape[0])


def check_dimension(vector: FeatureVector, expected: int, where: str = "") -> None:
    actual = dimension_of(vector)
    if actual != expected:
        raise DimensionMismatchError(expected, actual, where)


def stack_vectors(vectors: Sequence[FeatureVector]) -> Union[np.ndarray, csr_matrix]:
    """
    Stack feature vectors row-wise.

    Returns a dense 2-D array when every vector is dense and a CSR matrix as
    soon as one of them is sparse.
    """
    if not vectors:
        raise ValidationError("Cannot stack an empty list of feature vectors")
    if any(issparse(v) for v in vectors):
        rows = [v if issparse(v) else csr_matrix(v.reshape(1, -1)) for v in vectors]
        return csr_matrix(sparse_vstack(rows, format="csr"))
    return np.vstack(vectors)


def score_rows(matrix: Union[np.ndarray, csr_matrix], weights: np.ndarray) -> np.ndarray:
    """Dot every row of ``matrix`` with ``weights``."""
    return np.asarray(matrix @ weights, dtype=np.float64).ravel()


def weighted_row_sum(matrix: Union[np.ndarray, csr_matrix], coefficients: np.ndarray) -> np.ndarray:
    """Return ``sum_i coefficients[i] * matrix[i]`` as a dense vector."""
    return np.asarray(matrix.T @ coefficients, dtype=np.float64).ravel()


def dot(weights: np.ndarray, vector: FeatureVector) -> float:
    if issparse(vector):
        return float((vector @ weights)[0])
    return float(np.dot(weights, vector))
