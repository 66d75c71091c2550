# TabFit/optimizers/powell_lsq.py
import concurrent.futures as cf
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .base import BaseOptimizer
from .linalg import lu_decompose, lu_solve, lu_refine, residual_norm
from .linesearch import bracket, minimize, LineMinimum
from ..errors import NoMinimumFoundError, SingularMatrixError

log = logging.getLogger(__name__)

Evaluate = Callable[[np.ndarray], Tuple[float, np.ndarray]]


@dataclass
class LSQConfig:
    """
    Parameters
    ----------
    fd_step : float
        Relative finite-difference step for gamma columns.
    trial_step : float
        Relative initial step when line-searching along a single direction.
    linesearch_tol : float
        Relative tolerance of the Brent refinement.
    accept_tol : float
        A step is accepted only if it lowers the cost by more than
        accept_tol * |cost|.
    singular_tol : float
        Pivot ratio below which the normal equations count as singular.
    refine_tol : float
        Pivot ratio below which the solution is iteratively refined.
    refine_passes : int
        Maximum iterative-refinement passes.
    reinit_every : int
        Rebuild the gamma matrix from scratch every this many steps (0 = only
        after fallbacks).
    patience : int
        Consecutive steps with relative improvement below the tolerance
        needed to declare convergence.
    abs_tol : float
        Cost at or below which the fit is converged.
    n_workers : int
        Threads used for the gamma-matrix evaluations.
    """
    fd_step: float = 1e-4
    trial_step: float = 1e-2
    linesearch_tol: float = 1e-8
    accept_tol: float = 1e-12
    singular_tol: float = 1e-14
    refine_tol: float = 1e-8
    refine_passes: int = 2
    reinit_every: int = 0
    patience: int = 3
    abs_tol: float = 1e-14
    n_workers: int = 1


@dataclass
class LSQStep:
    """
    Outcome of one outer iteration.

    Attributes
    ----------
    accepted : bool
        The parameter vector changed.
    cost_before, cost_after : float
    update : np.ndarray
        Full-length change applied to L (zeros at fixed slots).
    fallback : bool
        The normal equations were unusable and a steepest-descent or
        single-direction step was taken.
    stalled : bool
        No decreasing step exists along any direction of the set.
    n_evaluations : int
        Evaluator calls made during this step.
    """
    accepted: bool
    cost_before: float
    cost_after: float
    update: np.ndarray
    fallback: bool = False
    stalled: bool = False
    n_evaluations: int = 0


class PowellLSQOptimizer(BaseOptimizer):
    """
    Derivative-free least-squares optimizer with conjugate direction updates.

    Each step linearizes the residual vector r along a set of directions
    D = [d_1 .. d_n] (the columns of gamma are finite differences of r along
    each d_j), solves the Gauss-Newton normal equations

        (gamma^T gamma) c = -gamma^T r

    by LU decomposition, and line-minimizes the cost along D c. The direction
    that contributed most to the step is then replaced by the normalized
    step (Powell's heuristic) and its gamma column is refreshed by a secant
    through the two best line-search points.

    Only parameters where mask=True are changed.
    """

    def __init__(self, L: np.ndarray, mask: np.ndarray, evaluate: Evaluate,
                 config: Optional[LSQConfig] = None, **overrides):
        super().__init__(L, mask)
        self.cfg = (config or LSQConfig())
        for k, v in overrides.items():
            if not hasattr(self.cfg, k):
                raise AttributeError(f"Unknown LSQConfig field '{k}'")
            setattr(self.cfg, k, v)
        self.evaluate = evaluate

        self.cost: Optional[float] = None
        self.residuals: Optional[np.ndarray] = None
        self.directions: Optional[np.ndarray] = None
        self.gamma: Optional[np.ndarray] = None
        self.n_evaluations = 0
        self.last_step: Optional[LSQStep] = None
        self._need_gamma = True
        self._since_rebuild = 0

    # ---------- evaluation ----------

    def _evaluate_free(self, free_values: np.ndarray) -> Tuple[float, np.ndarray]:
        x = self.L.copy()
        x[self.free] = free_values
        cost, res = self.evaluate(x)
        res = np.asarray(res, dtype=float).ravel()
        if self.residuals is not None and res.shape != self.residuals.shape:
            raise ValueError(f"Evaluator returned {res.size} residuals, expected {self.residuals.size}")
        return float(cost), res

    def _evaluate_many(self, points: Sequence[np.ndarray]) -> List[Tuple[float, np.ndarray]]:
        self.n_evaluations += len(points)
        if self.cfg.n_workers > 1 and len(points) > 1:
            with cf.ThreadPoolExecutor(max_workers=self.cfg.n_workers) as ex:
                return list(ex.map(self._evaluate_free, [p.copy() for p in points]))
        return [self._evaluate_free(p) for p in points]

    def _fd_step(self, x: np.ndarray, d: np.ndarray) -> float:
        return self.cfg.fd_step * max(1.0, abs(float(d @ x)))

    # ---------- state ----------

    def initialize(self) -> float:
        """Evaluate the start point and reset the direction set to unit vectors."""
        n = self.free.size
        if n == 0:
            raise ValueError("No free parameters to optimize")
        self.residuals = None
        self.cost, self.residuals = self._evaluate_many([self.L[self.free]])[0]
        self.directions = np.eye(n)
        self._need_gamma = True
        return self.cost

    def build_gamma(self):
        """Finite-difference sensitivities of the residuals along every direction."""
        x0 = self.L[self.free]
        steps = [self._fd_step(x0, self.directions[:, j]) for j in range(x0.size)]
        points = [x0 + h * self.directions[:, j] for j, h in enumerate(steps)]
        results = self._evaluate_many(points)
        self.gamma = np.empty((self.residuals.size, x0.size))
        for j, ((_, res), h) in enumerate(zip(results, steps)):
            self.gamma[:, j] = (res - self.residuals) / h
        self._need_gamma = False
        self._since_rebuild = 0

    def reset_directions(self):
        self.directions = np.eye(self.free.size)
        self._need_gamma = True

    # ---------- one outer iteration ----------

    def _solve_normal_equations(self) -> Tuple[np.ndarray, bool]:
        """Gauss-Newton coefficients in the direction basis, and whether a fallback was used."""
        A = self.gamma.T @ self.gamma
        g = self.gamma.T @ self.residuals
        rhs = -g
        try:
            lu = lu_decompose(A, singular_tol=self.cfg.singular_tol, refine_tol=self.cfg.refine_tol)
            c = lu_solve(lu, rhs)
            if lu.near_singular:
                before = residual_norm(A, c, rhs)
                c_ref = lu_refine(A, lu, rhs, c, max_passes=self.cfg.refine_passes)
                after = residual_norm(A, c_ref, rhs)
                scale = np.linalg.norm(A) * np.linalg.norm(c) + np.linalg.norm(rhs)
                if after >= before and before > self.cfg.refine_tol * scale:
                    raise SingularMatrixError(
                        f"iterative refinement did not reduce the residual ({before:.3e} -> {after:.3e})")
                c = c_ref
            if not np.all(np.isfinite(c)):
                raise SingularMatrixError("non-finite solution of the normal equations")
            return c, False
        except SingularMatrixError as e:
            j = int(np.argmax(np.abs(g)))
            log.warning("Normal equations unusable (%s); steepest-descent step along direction %d", e, j)
            c = np.zeros_like(g)
            c[j] = -g[j] / A[j, j] if A[j, j] > 0.0 else -g[j]
            self._need_gamma = True
            return c, True

    def _line_search(self, x0: np.ndarray, delta: np.ndarray, b: float,
                     cache: Dict[float, Tuple[float, np.ndarray]]) -> LineMinimum:
        def f(t: float) -> float:
            if t not in cache:
                cache[t] = self._evaluate_many([x0 + t * delta])[0]
            return cache[t][0]

        br = bracket(f, 0.0, b)
        return minimize(f, br.a, br.b, br.c, tolerance=self.cfg.linesearch_tol, fb=br.fb)

    def _improves(self, cost_before: float, cost_after: float) -> bool:
        return cost_after < cost_before and (cost_before - cost_after) > self.cfg.accept_tol * abs(cost_before)

    def _direction_pass(self, x0: np.ndarray) -> Optional[Tuple[np.ndarray, float, np.ndarray]]:
        """Line-search every direction of the set; first decreasing one wins."""
        b = self.cfg.trial_step * max(1.0, float(np.abs(x0).max()))
        for j in range(self.directions.shape[1]):
            d = self.directions[:, j]
            cache = {0.0: (self.cost, self.residuals)}
            try:
                res = self._line_search(x0, d, b, cache)
            except NoMinimumFoundError as e:
                log.warning("Skipping direction %d: %s", j, e)
                continue
            if self._improves(self.cost, res.fx):
                return x0 + res.x * d, res.fx, cache[res.x][1]
        return None

    def step(self) -> LSQStep:
        """
        One outer iteration: gamma matrix, normal equations, line search,
        direction replacement.

        Returns
        -------
        LSQStep
        """
        if self.cost is None:
            self.initialize()
        evals_start = self.n_evaluations
        cost0 = self.cost
        x0 = self.L[self.free].copy()

        if self.cfg.reinit_every and self._since_rebuild >= self.cfg.reinit_every:
            self._need_gamma = True
        if self._need_gamma:
            self.build_gamma()
        self._since_rebuild += 1

        c, fallback = self._solve_normal_equations()
        delta = self.directions @ c
        delta_norm = float(np.linalg.norm(delta))

        accepted = False
        if delta_norm > 0.0 and np.isfinite(delta_norm):
            cache = {0.0: (cost0, self.residuals)}
            try:
                res = self._line_search(x0, delta, 1.0, cache)
                if self._improves(cost0, res.fx):
                    accepted = True
            except NoMinimumFoundError as e:
                log.warning("Line search along the Gauss-Newton direction failed: %s", e)

        if accepted:
            x_new = x0 + res.x * delta
            cost_new, r_new = res.fx, cache[res.x][1]
            if not fallback:
                self._replace_direction(c, delta, delta_norm, res, cache, x_new, r_new)
        else:
            found = self._direction_pass(x0)
            if found is None:
                step = LSQStep(False, cost0, cost0, np.zeros_like(self.L), fallback=fallback, stalled=True,
                               n_evaluations=self.n_evaluations - evals_start)
                self.last_step = step
                return step
            x_new, cost_new, r_new = found
            fallback = True
            self._need_gamma = True

        update = np.zeros_like(self.L)
        update[self.free] = x_new - x0
        self.L[self.free] = x_new
        self.cost, self.residuals = cost_new, r_new

        step = LSQStep(True, cost0, cost_new, update, fallback=fallback,
                       n_evaluations=self.n_evaluations - evals_start)
        self.last_step = step
        return step

    def _replace_direction(self, c, delta, delta_norm, res, cache, x_new, r_new):
        # the direction that carried the largest part of the decrease goes out
        weight = np.abs(c) * np.linalg.norm(self.gamma, axis=0)
        j = int(np.argmax(weight))
        self.directions[:, j] = delta / delta_norm

        t1, t2 = res.x, res.x2
        if t1 != t2 and t2 in cache:
            col = (cache[t1][1] - cache[t2][1]) / ((t1 - t2) * delta_norm)
        else:
            h = self._fd_step(x_new, self.directions[:, j])
            _, r_h = self._evaluate_many([x_new + h * self.directions[:, j]])[0]
            col = (r_h - r_new) / h
        self.gamma[:, j] = col

        if np.linalg.cond(self.directions) > 1.0 / self.cfg.refine_tol:
            log.warning("Direction set became nearly dependent; resetting to unit vectors")
            self.reset_directions()
