"""
Quadratic subproblem of the cutting-plane optimizer.

Given cutting planes (a_i, b_i) the optimizer needs

    min_w  0.5 * ||w||^2 + C * max_i (a_i . w + b_i)        [w >= 0 optionally]

whose dual is a concave quadratic over the scaled simplex
{lambda >= 0, sum(lambda) = C}:

    max_lambda  lambda . b - 0.5 * ||w(lambda)||^2

with w(lambda) = -A^T lambda, or max(0, -A^T lambda) when the weights are
constrained to be nonnegative. The dual is solved by pairwise (SMO-style)
coordinate ascent. Every feasible lambda yields a valid lower bound, so an
inexact solve never overstates the optimum.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .constants import OptimizerConstants
from .exceptions import OptimizationError


@dataclass
class QPResult:
    """Solution of the cutting-plane QP"""
    weights: np.ndarray
    dual: np.ndarray
    dual_value: float
    primal_value: float
    iterations: int

    @property
    def duality_gap(self) -> float:
        return self.primal_value - self.dual_value


def solve_simplex_qp(
    gram: np.ndarray,
    linear: np.ndarray,
    total: float,
    initial: Optional[np.ndarray] = None,
    tolerance: float = 1e-8,
    max_iterations: int = OptimizerConstants.DEFAULT_QP_MAX_ITERATIONS,
) -> Tuple[np.ndarray, int]:
    """
    Maximize ``lambda . linear - 0.5 * lambda^T gram lambda`` over
    ``{lambda >= 0, sum(lambda) = total}``.

    Each iteration moves mass from the active coordinate with the smallest
    gradient to the coordinate with the largest one, by the exact line
    search step clipped to the feasible range. Stops when
    ``total * (max gradient - min active gradient) <= tolerance``, which
    bounds the duality gap.

    Returns:
        (lambda, iterations)
    """
    k = linear.shape[0]
    lam = _feasible_start(initial, k, total)
    grad = linear - gram @ lam

    iterations = 0
    while iterations < max_iterations:
        i = int(np.argmax(grad))
        j = int(np.argmin(np.where(lam > 0, grad, np.inf)))
        delta = grad[i] - grad[j]
        if delta * total <= tolerance:
            break

        curvature = gram[i, i] + gram[j, j] - 2.0 * gram[i, j]
        if curvature <= 0:
            step = lam[j]
        else:
            step = min(delta / curvature, lam[j])

        lam[i] += step
        if step == lam[j]:
            lam[j] = 0.0
        else:
            lam[j] -= step
        grad -= step * (gram[:, i] - gram[:, j])
        iterations += 1

    return lam, iterations


def solve_cutting_plane_qp(
    gradients: np.ndarray,
    offsets: np.ndarray,
    C: float,
    gram: Optional[np.ndarray] = None,
    nonnegative: bool = False,
    initial_dual: Optional[np.ndarray] = None,
    tolerance: float = 1e-8,
    max_iterations: int = OptimizerConstants.DEFAULT_QP_MAX_ITERATIONS,
) -> QPResult:
    """
    Minimize the regularized cutting-plane model.

    Args:
        gradients: (k, d) plane gradients a_i
        offsets: (k,) plane offsets b_i
        C: regularization constant, the simplex total
        gram: optional precomputed gradients @ gradients.T (unconstrained mode)
        nonnegative: constrain the primal weights to be >= 0
        initial_dual: warm start for lambda
        tolerance: target duality gap in objective units
        max_iterations: SMO iteration cap
    """
    gradients = np.asarray(gradients, dtype=np.float64)
    offsets = np.asarray(offsets, dtype=np.float64)
    if not nonnegative:
        if gram is None:
            gram = gradients @ gradients.T
        lam, iterations = solve_simplex_qp(
            gram, offsets, C, initial_dual, tolerance, max_iterations
        )
        weights = -(gradients.T @ lam)
        return _result(gradients, offsets, C, lam, weights, iterations)

    lam, iterations = solve_nonnegative_simplex_qp(
        gradients, offsets, C, initial_dual, tolerance, max_iterations
    )
    weights = np.maximum(0.0, -(gradients.T @ lam))
    return _result(gradients, offsets, C, lam, weights, iterations)


def solve_nonnegative_simplex_qp(
    gradients: np.ndarray,
    offsets: np.ndarray,
    total: float,
    initial: Optional[np.ndarray] = None,
    tolerance: float = 1e-8,
    max_iterations: int = OptimizerConstants.DEFAULT_QP_MAX_ITERATIONS,
) -> Tuple[np.ndarray, int]:
    """
    Maximize ``lambda . b - 0.5 * ||max(0, -A^T lambda)||^2`` over
    ``{lambda >= 0, sum(lambda) = total}``.

    This is the dual of the cutting-plane model with w >= 0. Its gradient is
    ``b + A w`` with ``w = max(0, -A^T lambda)``, the value of every plane at
    the current primal point, so the pair selection and stopping rule match
    solve_simplex_qp. The objective is only piecewise quadratic along a pair
    direction, so each step uses an exact line search over its breakpoints.
    """
    k = offsets.shape[0]
    lam = _feasible_start(initial, k, total)
    v = -(gradients.T @ lam)
    grad = offsets + gradients @ np.maximum(0.0, v)

    iterations = 0
    while iterations < max_iterations:
        i = int(np.argmax(grad))
        j = int(np.argmin(np.where(lam > 0, grad, np.inf)))
        delta = grad[i] - grad[j]
        if delta * total <= tolerance:
            break

        direction = gradients[i] - gradients[j]
        step = _piecewise_step(v, direction, offsets[i] - offsets[j], lam[j])

        lam[i] += step
        if step == lam[j]:
            lam[j] = 0.0
        else:
            lam[j] -= step
        v -= step * direction
        grad = offsets + gradients @ np.maximum(0.0, v)
        iterations += 1

    return lam, iterations


def _piecewise_step(v: np.ndarray, u: np.ndarray, offset_delta: float, upper: float) -> float:
    """
    Maximize ``phi(t) = t * offset_delta - 0.5 * ||max(0, v - t u)||^2`` on
    ``[0, upper]``.

    phi'(t) = offset_delta + sum over active k of u_k (v_k - t u_k), where
    component k is active while v_k - t u_k > 0. The active set only changes
    at t = v_k / u_k, so phi' is linear between sorted breakpoints.
    """
    active = (v > 0) | ((v == 0) & (u < 0))
    s1 = offset_delta + float(np.dot(u[active], v[active]))
    s2 = float(np.dot(u[active], u[active]))

    nonzero = u != 0
    with np.errstate(divide="ignore", invalid="ignore"):
        breaks = np.where(nonzero, v / np.where(nonzero, u, 1.0), np.inf)
    candidates = np.flatnonzero((breaks > 0) & (breaks < upper))
    candidates = candidates[np.argsort(breaks[candidates], kind="stable")]

    t = 0.0
    for kk in candidates:
        tb = breaks[kk]
        if s2 > 0:
            root = s1 / s2
            if root <= tb:
                return max(root, t)
        elif s1 <= 0:
            return t
        if u[kk] > 0:
            # v_k - t u_k falls through zero
            s1 -= u[kk] * v[kk]
            s2 -= u[kk] * u[kk]
        else:
            s1 += u[kk] * v[kk]
            s2 += u[kk] * u[kk]
        t = tb

    if s2 > 0:
        return min(max(s1 / s2, t), upper)
    return upper if s1 > 0 else t


def _result(
    gradients: np.ndarray,
    offsets: np.ndarray,
    C: float,
    lam: np.ndarray,
    weights: np.ndarray,
    iterations: int,
) -> QPResult:
    if not np.all(np.isfinite(weights)):
        raise OptimizationError("QP produced non-finite weights")
    half_norm = 0.5 * float(np.dot(weights, weights))
    primal = half_norm + C * float(np.max(gradients @ weights + offsets))
    dual = float(np.dot(lam, offsets)) - half_norm
    return QPResult(
        weights=weights,
        dual=lam,
        dual_value=dual,
        primal_value=primal,
        iterations=iterations,
    )


def _feasible_start(initial: Optional[np.ndarray], k: int, total: float) -> np.ndarray:
    if initial is not None and initial.shape[0] == k:
        lam = np.maximum(np.asarray(initial, dtype=np.float64), 0.0)
        mass = lam.sum()
        if mass > 0:
            return lam * (total / mass)
    return np.full(k, total / k, dtype=np.float64)
