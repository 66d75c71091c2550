# TabFit/potentials/spline.py
import numpy as np
from numba import njit
from scipy.interpolate import CubicSpline

from .schema import NATURAL_BOUNDARY


def _boundary(grad: float):
    if grad > 0.99 * NATURAL_BOUNDARY:
        return "natural"
    return (1, float(grad))


def SplineSecondDerivatives(x: np.ndarray, y: np.ndarray, yp1: float, ypn: float) -> np.ndarray:
    """
    Second derivatives of the interpolating cubic spline at the knots.

    Parameters
    ----------
    x, y : np.ndarray
        Knot positions and sampled values (at least 2 points).
    yp1, ypn : float
        First derivative at the left/right end. Values > 0.99e30 select
        the natural condition (second derivative zero) at that end.

    Returns
    -------
    np.ndarray
        y''(x_k) for every knot.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    cs = CubicSpline(x, y, bc_type=(_boundary(yp1), _boundary(ypn)))
    # piecewise coefficients: c[1, k] = y''(x_k) / 2
    d2 = np.empty_like(y)
    d2[:-1] = 2.0 * cs.c[1]
    h = x[-1] - x[-2]
    d2[-1] = 2.0 * cs.c[1, -1] + 6.0 * cs.c[0, -1] * h
    return d2


@njit(cache=True)
def _splint_kernel(y, d2, begin, step, x, out_val, out_grad):
    '''
    Equidistant cubic spline evaluation.

    Parameters
    ----------
    y : np.ndarray
        Sampled values of one function.
    d2 : np.ndarray
        Second derivatives at the same knots.
    begin, step : float
        Grid origin and spacing.
    x : np.ndarray
        Query points; points outside the grid use the nearest end interval.
    out_val, out_grad : np.ndarray
        Interpolated values and first derivatives.
    '''
    n = y.size
    h = step
    for p in range(x.size):
        k = int(np.floor((x[p] - begin) / h))
        if k < 0:
            k = 0
        elif k > n - 2:
            k = n - 2
        xk = begin + k * h
        b = (x[p] - xk) / h
        a = 1.0 - b
        out_val[p] = (a * y[k] + b * y[k + 1]
                      + ((a * a * a - a) * d2[k] + (b * b * b - b) * d2[k + 1]) * h * h / 6.0)
        out_grad[p] = ((y[k + 1] - y[k]) / h
                       - (3.0 * a * a - 1.0) / 6.0 * h * d2[k]
                       + (3.0 * b * b - 1.0) / 6.0 * h * d2[k + 1])


def SplineEval(y: np.ndarray, d2: np.ndarray, begin: float, step: float, x) -> tuple:
    """
    Evaluate one equidistant spline at arbitrary points.

    Returns
    -------
    values, gradients : np.ndarray
        Same shape as x.
    """
    x_arr = np.atleast_1d(np.asarray(x, dtype=float))
    flat = np.ascontiguousarray(x_arr.ravel())
    val = np.empty_like(flat)
    grad = np.empty_like(flat)
    _splint_kernel(np.ascontiguousarray(y, dtype=np.float64),
                   np.ascontiguousarray(d2, dtype=np.float64),
                   float(begin), float(step), flat, val, grad)
    return val.reshape(x_arr.shape), grad.reshape(x_arr.shape)
