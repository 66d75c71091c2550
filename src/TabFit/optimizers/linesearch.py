# TabFit/optimizers/linesearch.py
import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional

from ..errors import NoMinimumFoundError

log = logging.getLogger(__name__)

GOLD = 1.618034
CGOLD = 0.3819660
TINY = 1.0e-20
ZEPS = 1.0e-10


@dataclass
class Bracket:
    """a < b < c (or a > b > c) with f(b) below both f(a) and f(c)."""
    a: float
    b: float
    c: float
    fa: float
    fb: float
    fc: float


@dataclass
class LineMinimum:
    """
    Result of a 1-D minimization.

    Attributes
    ----------
    x, fx : float
        Best abscissa and its function value.
    x2, fx2 : float
        Second-best abscissa and value (useful for secant updates).
    n_iter : int
        Iterations used.
    """
    x: float
    fx: float
    x2: float
    fx2: float
    n_iter: int = 0


def _check(value: float, x: float) -> float:
    if not math.isfinite(value):
        raise NoMinimumFoundError(f"non-finite function value {value} at x={x:g}")
    return value


def bracket(f: Callable[[float], float], a: float, b: float,
            grow_limit: float = 100.0, max_expansions: int = 50) -> Bracket:
    """
    Expand [a, b] downhill until it encloses a minimum.

    Steps grow by the golden ratio; a parabolic extrapolation is tried at
    every step but never farther than `grow_limit` times the current step.

    Raises
    ------
    NoMinimumFoundError
        The function keeps decreasing after `max_expansions` expansions, or
        returns a non-finite value.
    """
    fa = _check(f(a), a)
    fb = _check(f(b), b)
    if fb > fa:
        a, b, fa, fb = b, a, fb, fa
    c = b + GOLD * (b - a)
    fc = _check(f(c), c)

    n = 0
    while fb >= fc:
        n += 1
        if n > max_expansions:
            raise NoMinimumFoundError(
                f"no minimum bracketed after {max_expansions} expansions (last interval [{a:g}, {c:g}])")
        r = (b - a) * (fb - fc)
        q = (b - c) * (fb - fa)
        denom = 2.0 * math.copysign(max(abs(q - r), TINY), q - r)
        u = b - ((b - c) * q - (b - a) * r) / denom
        ulim = b + grow_limit * (c - b)
        if (b - u) * (u - c) > 0.0:
            # parabolic u between b and c
            fu = _check(f(u), u)
            if fu < fc:
                a, b, fa, fb = b, u, fb, fu
                break
            elif fu > fb:
                c, fc = u, fu
                break
            u = c + GOLD * (c - b)
            fu = _check(f(u), u)
        elif (c - u) * (u - ulim) > 0.0:
            # parabolic u between c and its limit
            fu = _check(f(u), u)
            if fu < fc:
                b, c, u = c, u, u + GOLD * (u - c)
                fb, fc, fu = fc, fu, _check(f(u), u)
        elif (u - ulim) * (ulim - c) >= 0.0:
            u = ulim
            fu = _check(f(u), u)
        else:
            u = c + GOLD * (c - b)
            fu = _check(f(u), u)
        a, b, c = b, c, u
        fa, fb, fc = fb, fc, fu

    return Bracket(a, b, c, fa, fb, fc)


def minimize(f: Callable[[float], float], a: float, b: float, c: float,
             tolerance: float = 1e-8, fb: Optional[float] = None, max_iter: int = 100) -> LineMinimum:
    """
    Brent's method: parabolic interpolation with golden-section fallback.

    Parameters
    ----------
    f : callable
    a, b, c : float
        A bracketing triple with f(b) < f(a), f(c).
    tolerance : float
        Relative tolerance; the absolute tolerance is tolerance*|x| + 1e-10.
    fb : float, optional
        Known f(b), saves one evaluation.
    max_iter : int
        Iteration cap; when reached the best point so far is returned.

    Returns
    -------
    LineMinimum
        Best and second-best points with their values.
    """
    lo, hi = (a, c) if a < c else (c, a)
    x = w = v = b
    fx = fw = fv = f(b) if fb is None else fb
    d = e = 0.0

    for it in range(1, max_iter + 1):
        xm = 0.5 * (lo + hi)
        tol1 = tolerance * abs(x) + ZEPS
        tol2 = 2.0 * tol1
        if abs(x - xm) <= tol2 - 0.5 * (hi - lo):
            return LineMinimum(x, fx, w, fw, it)

        use_golden = True
        if abs(e) > tol1:
            r = (x - w) * (fx - fv)
            q = (x - v) * (fx - fw)
            p = (x - v) * q - (x - w) * r
            q = 2.0 * (q - r)
            if q > 0.0:
                p = -p
            q = abs(q)
            etemp = e
            e = d
            if not (abs(p) >= abs(0.5 * q * etemp) or p <= q * (lo - x) or p >= q * (hi - x)):
                d = p / q
                u = x + d
                if u - lo < tol2 or hi - u < tol2:
                    d = math.copysign(tol1, xm - x)
                use_golden = False
        if use_golden:
            e = (lo - x) if x >= xm else (hi - x)
            d = CGOLD * e

        u = x + d if abs(d) >= tol1 else x + math.copysign(tol1, d)
        fu = f(u)
        if fu <= fx:
            if u >= x:
                lo = x
            else:
                hi = x
            v, w, x = w, x, u
            fv, fw, fx = fw, fx, fu
        else:
            if u < x:
                lo = u
            else:
                hi = u
            if fu <= fw or w == x:
                v, w = w, u
                fv, fw = fw, fu
            elif fu <= fv or v == x or v == w:
                v, fv = u, fu

    log.warning("Brent line minimization hit the iteration cap (%d); returning best point", max_iter)
    return LineMinimum(x, fx, w, fw, max_iter)


def line_minimize(f: Callable[[float], float], tolerance: float = 1e-8,
                  a: float = 0.0, b: float = 1.0) -> LineMinimum:
    """Bracket from (a, b), then refine with Brent's method."""
    br = bracket(f, a, b)
    return minimize(f, br.a, br.b, br.c, tolerance=tolerance, fb=br.fb)
