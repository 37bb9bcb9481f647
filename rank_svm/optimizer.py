"""
Cutting-plane optimizer for regularized risk minimization.

Solves

    min_w  0.5 * ||w||^2 + C * R(w)        (optionally subject to w >= 0)

for a convex, nonnegative risk R exposed through a LossOracle. Each
iteration evaluates the oracle at the current iterate, adds the supporting
plane R(w) >= R(w_t) + g_t . (w - w_t) to the model, and re-solves the
small QP over all retained planes. The QP optimum is a lower bound on the
true objective; training stops once the best observed objective is within
C * epsilon of it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Optional

import numpy as np

from .constants import LoggingConstants, OptimizerConstants, TrainerConstants
from .exceptions import ConfigurationError, DimensionMismatchError
from .oracle import LossOracle
from .qp import solve_cutting_plane_qp

logger = logging.getLogger(__name__)


@dataclass
class OptimizerConfig:
    """Cutting-plane optimizer configuration"""
    epsilon: float = TrainerConstants.DEFAULT_EPSILON
    max_iterations: int = TrainerConstants.DEFAULT_MAX_ITERATIONS
    nonnegative: bool = False

    # QP subproblem
    qp_epsilon: float = OptimizerConstants.DEFAULT_QP_EPSILON
    qp_max_iterations: int = OptimizerConstants.DEFAULT_QP_MAX_ITERATIONS

    # Plane management
    inactive_plane_threshold: int = OptimizerConstants.DEFAULT_INACTIVE_PLANE_THRESHOLD

    # Optional wall-clock budget, checked between iterations
    max_seconds: Optional[float] = None

    verbose: bool = False

    def validate(self) -> None:
        if not self.epsilon > 0:
            raise ConfigurationError(f"epsilon must be > 0, got {self.epsilon}")
        if self.max_iterations < 0:
            raise ConfigurationError(f"max_iterations must be >= 0, got {self.max_iterations}")
        if not self.qp_epsilon > 0:
            raise ConfigurationError(f"qp_epsilon must be > 0, got {self.qp_epsilon}")
        if self.qp_max_iterations < 1:
            raise ConfigurationError(f"qp_max_iterations must be >= 1, got {self.qp_max_iterations}")
        if self.inactive_plane_threshold < 1:
            raise ConfigurationError(
                f"inactive_plane_threshold must be >= 1, got {self.inactive_plane_threshold}"
            )
        if self.max_seconds is not None and not self.max_seconds > 0:
            raise ConfigurationError(f"max_seconds must be > 0, got {self.max_seconds}")


class PlaneSet:
    """
    Dense arena of cutting planes.

    Plane gradients, offsets, their Gram matrix and the latest dual weights
    live in preallocated arrays indexed 0..size-1. Slot 0 always holds the
    zero plane (0, 0), a valid lower bound for any nonnegative risk. Trimming
    compacts the surviving rows in place.
    """

    def __init__(self, dimension: int, capacity: int = OptimizerConstants.INITIAL_PLANE_CAPACITY):
        capacity = max(2, capacity)
        self.dimension = dimension
        self._gradients = np.zeros((capacity, dimension), dtype=np.float64)
        self._offsets = np.zeros(capacity, dtype=np.float64)
        self._gram = np.zeros((capacity, capacity), dtype=np.float64)
        self._dual = np.zeros(capacity, dtype=np.float64)
        self._inactive = np.zeros(capacity, dtype=np.int64)
        self._size = 1

    def __len__(self) -> int:
        return self._size

    @property
    def gradients(self) -> np.ndarray:
        return self._gradients[:self._size]

    @property
    def offsets(self) -> np.ndarray:
        return self._offsets[:self._size]

    @property
    def gram(self) -> np.ndarray:
        return self._gram[:self._size, :self._size]

    @property
    def dual(self) -> np.ndarray:
        return self._dual[:self._size]

    def add(self, gradient: np.ndarray, offset: float) -> int:
        """Append a plane and return its slot."""
        if gradient.shape != (self.dimension,):
            raise DimensionMismatchError(self.dimension, gradient.size, "cutting plane")
        if self._size == self._offsets.shape[0]:
            self._grow()
        n = self._size
        row = self._gradients[:n] @ gradient
        self._gradients[n] = gradient
        self._offsets[n] = offset
        self._gram[n, :n] = row
        self._gram[:n, n] = row
        self._gram[n, n] = float(np.dot(gradient, gradient))
        self._dual[n] = 0.0
        self._inactive[n] = 0
        self._size += 1
        return n

    def record_dual(self, dual: np.ndarray) -> None:
        """Store the latest QP multipliers and update inactivity counters."""
        n = self._size
        self._dual[:n] = dual
        active = dual > OptimizerConstants.ACTIVE_DUAL_THRESHOLD
        self._inactive[:n] = np.where(active, 0, self._inactive[:n] + 1)

    def trim(self, threshold: int) -> int:
        """Drop planes inactive for ``threshold`` consecutive solves. Returns the number removed."""
        n = self._size
        keep = self._inactive[:n] < threshold
        keep[0] = True
        removed = int(n - keep.sum())
        if removed == 0:
            return 0
        idx = np.flatnonzero(keep)
        m = idx.size
        self._gradients[:m] = self._gradients[idx]
        self._offsets[:m] = self._offsets[idx]
        self._gram[:m, :m] = self._gram[np.ix_(idx, idx)]
        self._dual[:m] = self._dual[idx]
        self._inactive[:m] = self._inactive[idx]
        self._size = m
        return removed

    def _grow(self) -> None:
        old = self._offsets.shape[0]
        new = old * 2
        gradients = np.zeros((new, self.dimension), dtype=np.float64)
        gradients[:old] = self._gradients
        gram = np.zeros((new, new), dtype=np.float64)
        gram[:old, :old] = self._gram
        self._gradients = gradients
        self._gram = gram
        self._offsets = np.concatenate([self._offsets, np.zeros(old)])
        self._dual = np.concatenate([self._dual, np.zeros(old)])
        self._inactive = np.concatenate([self._inactive, np.zeros(old, dtype=np.int64)])


@dataclass
class OptimizerState:
    """
    Everything one optimizer iteration reads and produces.

    ``step`` never mutates the scalars or weights of the state it is given,
    but the plane arena is owned by the state chain: ``step`` appends to and
    trims ``planes`` in place and hands the same PlaneSet to the returned
    state. Copy the arena before stepping to keep an earlier state usable.
    """
    weights: np.ndarray
    planes: PlaneSet
    iteration: int = 0
    lower_bound: float = 0.0
    best_weights: Optional[np.ndarray] = None
    best_objective: float = float("inf")
    best_risk: float = float("inf")
    last_objective: float = float("inf")
    last_risk: float = float("inf")
    converged: bool = False
    stop_reason: Optional[str] = None

    @property
    def gap(self) -> float:
        return self.best_objective - self.lower_bound


@dataclass
class OptimizationResult:
    """Outcome of a full optimization run"""
    weights: np.ndarray
    objective: float
    lower_bound: float
    risk: float
    iterations: int
    converged: bool
    stop_reason: str
    num_planes: int = 0
    elapsed_seconds: float = 0.0
    history: list = field(default_factory=list)

    @property
    def gap(self) -> float:
        return self.objective - self.lower_bound


class CuttingPlaneOptimizer:
    """
    Optimized cutting-plane solver.

    Usage:
        optimizer = CuttingPlaneOptimizer(OptimizerConfig(epsilon=1e-4))
        result = optimizer.optimize(oracle, C=10.0)

    or step by step:
        state = optimizer.initial_state(oracle.dimension)
        while not optimizer.should_stop(state):
            state = optimizer.step(state, oracle, C)
    """

    def __init__(self, config: Optional[OptimizerConfig] = None):
        self.config = config or OptimizerConfig()
        self.config.validate()

    def initial_state(self, dimension: int) -> OptimizerState:
        return OptimizerState(
            weights=np.zeros(dimension, dtype=np.float64),
            planes=PlaneSet(dimension),
        )

    def should_stop(self, state: OptimizerState) -> bool:
        return state.converged or state.iteration >= self.config.max_iterations

    def step(self, state: OptimizerState, oracle: LossOracle, C: float) -> OptimizerState:
        """
        Run one iteration and return the next state.

        Evaluates the oracle at ``state.weights``; if the best objective seen
        is within ``C * epsilon`` of the lower bound the returned state is
        marked converged. Otherwise the new plane is added and the QP
        re-solved to produce the next iterate and lower bound.

        The plane arena moves from ``state`` into the returned state.
        """
        cfg = self.config
        w = state.weights
        snapshot = w.copy()
        snapshot.flags.writeable = False
        risk, subgradient = oracle.evaluate(snapshot)
        subgradient = np.asarray(subgradient, dtype=np.float64)
        objective = 0.5 * float(np.dot(w, w)) + C * risk

        best_weights, best_objective, best_risk = (
            state.best_weights, state.best_objective, state.best_risk
        )
        if objective < best_objective:
            best_weights, best_objective, best_risk = w.copy(), objective, risk

        iteration = state.iteration + 1
        gap = best_objective - state.lower_bound
        self._report(iteration, objective, risk, gap, len(state.planes))

        if gap < C * cfg.epsilon:
            return replace(
                state,
                iteration=iteration,
                best_weights=best_weights,
                best_objective=best_objective,
                best_risk=best_risk,
                last_objective=objective,
                last_risk=risk,
                converged=True,
                stop_reason="converged",
            )

        planes = state.planes
        planes.add(subgradient, risk - float(np.dot(subgradient, w)))
        qp = solve_cutting_plane_qp(
            planes.gradients,
            planes.offsets,
            C,
            gram=planes.gram,
            nonnegative=cfg.nonnegative,
            initial_dual=planes.dual.copy(),
            tolerance=cfg.qp_epsilon * cfg.epsilon * C,
            max_iterations=cfg.qp_max_iterations,
        )
        planes.record_dual(qp.dual)
        removed = planes.trim(cfg.inactive_plane_threshold)
        if removed:
            logger.debug("Trimmed %d inactive cutting planes, %d remain", removed, len(planes))

        return replace(
            state,
            weights=qp.weights,
            planes=planes,
            iteration=iteration,
            lower_bound=max(state.lower_bound, qp.dual_value),
            best_weights=best_weights,
            best_objective=best_objective,
            best_risk=best_risk,
            last_objective=objective,
            last_risk=risk,
        )

    def optimize(self, oracle: LossOracle, C: float) -> OptimizationResult:
        """Iterate until converged, out of iterations, or out of time."""
        if not C > 0:
            raise ConfigurationError(f"C must be > 0, got {C}")
        cfg = self.config
        started = time.monotonic()
        state = self.initial_state(oracle.dimension)
        history = []

        while not self.should_stop(state):
            if cfg.max_seconds is not None and time.monotonic() - started >= cfg.max_seconds:
                state = replace(state, stop_reason="time_limit")
                break
            state = self.step(state, oracle, C)
            history.append((state.last_objective, state.lower_bound))

        if state.stop_reason is None:
            state = replace(state, stop_reason="max_iterations")
        if not state.converged and cfg.verbose:
            logger.warning(
                f"Stopped after {state.iteration} iterations ({state.stop_reason}) "
                f"with gap {state.gap:.6g} > {C * cfg.epsilon:.6g}"
            )

        if state.best_weights is None:
            # No oracle call was made, so the starting point is all we have.
            weights = state.weights.copy()
            objective = float("nan")
            risk = float("nan")
        else:
            weights = state.best_weights
            objective = state.best_objective
            risk = state.best_risk

        return OptimizationResult(
            weights=weights,
            objective=objective,
            lower_bound=state.lower_bound,
            risk=risk,
            iterations=state.iteration,
            converged=state.converged,
            stop_reason=state.stop_reason,
            num_planes=len(state.planes),
            elapsed_seconds=time.monotonic() - started,
            history=history,
        )

    def _report(self, iteration: int, objective: float, risk: float, gap: float, planes: int) -> None:
        level = logging.getLevelName(
            LoggingConstants.PROGRESS_LOG_LEVEL_VERBOSE
            if self.config.verbose
            else LoggingConstants.PROGRESS_LOG_LEVEL_QUIET
        )
        if logger.isEnabledFor(level):
            logger.log(
                level,
                "iteration %d: objective=%.6g risk=%.6g gap=%.6g planes=%d",
                iteration, objective, risk, gap, planes,
            )
