# TabFit/optimizers/linalg.py
import warnings
from dataclasses import dataclass

import numpy as np
import scipy.linalg
from scipy.linalg import LinAlgWarning

from ..errors import SingularMatrixError


@dataclass
class LUDecomposition:
    """
    Partial-pivoting LU factors as returned by scipy.linalg.lu_factor.

    Attributes
    ----------
    lu : np.ndarray
        Packed factors: strict lower part is L (unit diagonal), upper part is U.
    piv : np.ndarray
        LAPACK pivot indices (row i was swapped with row piv[i]).
    near_singular : bool
        The smallest pivot is small relative to the largest one; the solution
        should be refined.
    """
    lu: np.ndarray
    piv: np.ndarray
    near_singular: bool = False

    @property
    def L(self) -> np.ndarray:
        return np.tril(self.lu, k=-1) + np.eye(self.lu.shape[0])

    @property
    def U(self) -> np.ndarray:
        return np.triu(self.lu)

    @property
    def perm(self) -> np.ndarray:
        """Row permutation p such that matrix[p] = L @ U."""
        p = np.arange(self.lu.shape[0])
        for i, j in enumerate(self.piv):
            p[i], p[j] = p[j], p[i]
        return p


def lu_decompose(matrix: np.ndarray, singular_tol: float = 1e-14, refine_tol: float = 1e-8) -> LUDecomposition:
    """
    LU decomposition with partial pivoting.

    Parameters
    ----------
    matrix : np.ndarray
        Square matrix; not modified.
    singular_tol : float
        Pivot ratio min|u_ii| / max|u_ii| below which the matrix is singular.
    refine_tol : float
        Pivot ratio below which the decomposition is flagged near-singular.

    Raises
    ------
    SingularMatrixError
        Zero, non-finite or relatively negligible pivot.
    """
    a = np.asarray(matrix, dtype=float)
    if a.ndim != 2 or a.shape[0] != a.shape[1]:
        raise ValueError(f"matrix must be square, got shape {a.shape}")
    if not np.all(np.isfinite(a)):
        raise SingularMatrixError("matrix contains non-finite entries")
    with warnings.catch_warnings():
        # exact singularity is reported below
        warnings.simplefilter("ignore", LinAlgWarning)
        lu, piv = scipy.linalg.lu_factor(a, check_finite=False)

    pivots = np.abs(np.diag(lu))
    pmax = pivots.max() if pivots.size else 0.0
    if pmax == 0.0 or not np.all(np.isfinite(pivots)):
        raise SingularMatrixError("zero pivot in LU decomposition")
    ratio = pivots.min() / pmax
    if ratio < singular_tol:
        raise SingularMatrixError(f"matrix is numerically singular (pivot ratio {ratio:.3e})")
    return LUDecomposition(lu=lu, piv=piv, near_singular=bool(ratio < refine_tol))


def lu_solve(decomposition: LUDecomposition, rhs: np.ndarray) -> np.ndarray:
    """Solve matrix @ x = rhs with precomputed factors."""
    return scipy.linalg.lu_solve((decomposition.lu, decomposition.piv), np.asarray(rhs, dtype=float),
                                 check_finite=False)


def residual_norm(matrix: np.ndarray, x: np.ndarray, rhs: np.ndarray) -> float:
    """||matrix @ x - rhs|| accumulated in extended precision."""
    a = np.asarray(matrix, dtype=np.longdouble)
    r = a @ np.asarray(x, dtype=np.longdouble) - np.asarray(rhs, dtype=np.longdouble)
    return float(np.sqrt(np.sum(r * r)))


def lu_refine(matrix: np.ndarray, decomposition: LUDecomposition, rhs: np.ndarray, x: np.ndarray,
              max_passes: int = 2) -> np.ndarray:
    """
    Iterative improvement of a solution of matrix @ x = rhs.

    Each pass computes r = matrix @ x - rhs in extended precision, solves
    matrix @ dx = r with the existing factors and subtracts dx. Stops after
    `max_passes` or as soon as a pass does not reduce the residual.

    Returns
    -------
    np.ndarray
        The refined solution (the input is not modified).
    """
    a = np.asarray(matrix, dtype=np.longdouble)
    b = np.asarray(rhs, dtype=np.longdouble)
    best = np.array(x, dtype=float, copy=True)
    best_norm = residual_norm(matrix, best, rhs)
    for _ in range(max_passes):
        r = (a @ best.astype(np.longdouble) - b).astype(float)
        candidate = best - lu_solve(decomposition, r)
        norm = residual_norm(matrix, candidate, rhs)
        if not norm < best_norm:
            break
        best, best_norm = candidate, norm
    return best
