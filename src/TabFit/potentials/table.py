# TabFit/potentials/table.py
import copy
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..errors import MalformedTableError
from .schema import ROLE_REGISTRY, FunctionRole, SchemaEntry, ExpandSchema, FunctionNames
from .spline import SplineSecondDerivatives, SplineEval

GridSpec = Tuple[float, float, int]  # (begin, end, npoints)


@dataclass(frozen=True)
class FunctionLayout:
    """Slots of one function inside the flat value buffer."""
    first: int
    last: int

    @property
    def gradient_slots(self) -> Tuple[int, int]:
        return (self.first - 2, self.first - 1)

    @property
    def npoints(self) -> int:
        return self.last - self.first + 1


class PotentialTable:
    """
    N independently gridded, equidistantly sampled 1-D functions stored in
    one flat buffer.

    Layout of the buffer for function i::

        [grad_left, grad_right, y_0, y_1, ..., y_{n-1}]
         first-2    first-1     first            last

    with first[0] = 2 and first[i] = last[i-1] + 3, so the whole table is
    one parameter vector for the optimizer.

    Attributes
    ----------
    values : np.ndarray
        Flat buffer of gradients and samples.
    xcoord : np.ndarray
        x-position of every sample slot (0 for gradient slots).
    d2tab : np.ndarray
        Spline second derivatives, parallel to values.
    roles : list of FunctionRole
        Role of every function.
    names : list of str
        Name of every function (e.g. "pair_0").
    """

    def __init__(self, grid_specs: Sequence[GridSpec], roles: Optional[Sequence[FunctionRole]] = None,
                 names: Optional[Sequence[str]] = None):
        n = len(grid_specs)
        if n == 0:
            raise MalformedTableError("A potential table needs at least one function")
        if roles is None:
            roles = [ROLE_REGISTRY["pair"]] * n
        if names is None:
            names = [f"{role.name}_{k}" for k, role in enumerate(roles)]
        if len(roles) != n or len(names) != n:
            raise MalformedTableError(
                f"Schema describes {len(roles)} functions but the grid has {n}")
        self.roles: List[FunctionRole] = list(roles)
        self.names: List[str] = list(names)

        self.begin = np.empty(n)
        self.end = np.empty(n)
        self.step = np.empty(n)
        self.invstep = np.empty(n)
        self.first = np.empty(n, dtype=int)
        self.last = np.empty(n, dtype=int)

        for i, spec in enumerate(grid_specs):
            try:
                begin, end, npoints = float(spec[0]), float(spec[1]), int(spec[2])
            except (TypeError, ValueError, IndexError) as e:
                raise MalformedTableError(f"Bad grid specification for function {i}: {spec!r}") from e
            if not (np.isfinite(begin) and np.isfinite(end)):
                raise MalformedTableError(f"Function {i}: non-finite domain [{begin}, {end}]")
            if npoints < 2:
                raise MalformedTableError(f"Function {i}: needs at least 2 samples, got {npoints}")
            if end <= begin:
                raise MalformedTableError(
                    f"Function {i}: non-positive step (begin={begin}, end={end})")
            self.begin[i] = begin
            self.end[i] = end
            self.step[i] = (end - begin) / (npoints - 1)
            self.invstep[i] = 1.0 / self.step[i]
            # the two slots before first[i] hold the gradients of function i
            self.first[i] = 2 if i == 0 else self.last[i - 1] + 3
            self.last[i] = self.first[i] + npoints - 1

        self.len = int(self.last[-1]) + 1
        self.values = np.zeros(self.len)
        self.xcoord = np.zeros(self.len)
        self.d2tab = np.zeros(self.len)
        for i in range(n):
            self.xcoord[self.first[i]:self.last[i] + 1] = self.begin[i] + np.arange(self.npoints(i)) * self.step[i]
        self._stale = set(range(n))
        self._readonly = False

    # ---------- construction ----------

    @classmethod
    def load(cls, grid_specs: Sequence[GridSpec], raw_values: Sequence[Sequence[float]],
             has_gradients: bool = False, schema: Optional[Sequence[SchemaEntry]] = None) -> "PotentialTable":
        """
        Build a table from grid specifications and per-function values.

        Parameters
        ----------
        grid_specs : sequence of (begin, end, npoints)
        raw_values : sequence of sequences
            One entry per function. If `has_gradients`, each entry starts with
            the (left, right) boundary gradients followed by the samples.
        has_gradients : bool
            Whether raw_values carry gradients; otherwise role defaults are used.
        schema : list of SchemaEntry, optional
            Function roles; defaults to all "pair".

        Raises
        ------
        MalformedTableError
            On any inconsistency between grid and values.
        """
        roles = ExpandSchema(schema) if schema is not None else None
        names = FunctionNames(schema) if schema is not None else None
        table = cls(grid_specs, roles=roles, names=names)
        if len(raw_values) != table.n_functions:
            raise MalformedTableError(
                f"Expected values for {table.n_functions} functions, got {len(raw_values)}")
        offset = 2 if has_gradients else 0
        for i, raw in enumerate(raw_values):
            raw = np.asarray(raw, dtype=float).ravel()
            expected = table.npoints(i) + offset
            if raw.size < expected:
                raise MalformedTableError(
                    f"Function {i}: expected {expected} values, got {raw.size} (fewer samples than declared)")
            if raw.size > expected:
                raise MalformedTableError(
                    f"Function {i}: expected {expected} values, got {raw.size}")
            lo, hi = table.first[i] - 2, table.last[i] + 1
            if has_gradients:
                table.values[lo:hi] = raw
            else:
                table.values[lo:lo + 2] = table.roles[i].default_gradient
                table.values[lo + 2:hi] = raw
        table.validate_layout()
        table.rebuild_spline_cache()
        return table

    # ---------- layout ----------

    @property
    def n_functions(self) -> int:
        return len(self.first)

    def npoints(self, i: int) -> int:
        self._check_function(i)
        return int(self.last[i] - self.first[i] + 1)

    def function_slices(self) -> List[FunctionLayout]:
        return [FunctionLayout(int(f), int(l)) for f, l in zip(self.first, self.last)]

    def validate_layout(self):
        """Every function owns a disjoint, increasing range with its gradient slots in front."""
        prev_last = -1
        for i, lay in enumerate(self.function_slices()):
            assert lay.first < lay.last, f"function {i}: empty range"
            assert lay.gradient_slots[0] > prev_last, f"function {i} overlaps function {i - 1}"
            assert lay.gradient_slots[0] == prev_last + 1 or i == 0, f"function {i}: gap in buffer"
            prev_last = lay.last
        assert prev_last == self.len - 1, "buffer length does not match layout"

    def validate_gauge(self):
        """Functions whose role needs F'(1.0) must sample 1.0."""
        for i, role in enumerate(self.roles):
            if role.needs_unit_domain and (self.begin[i] > 1.0 or self.end[i] < 1.0):
                raise MalformedTableError(
                    f"Function {i} ({self.names[i]}) must include 1.0 in its domain for gauge "
                    f"fixing (currently [{self.begin[i]:f}, {self.end[i]:f}])")

    def _check_function(self, i: int):
        if not (0 <= i < len(self.first)):
            raise IndexError(f"function index {i} out of range 0..{len(self.first) - 1}")

    def _slot(self, i: int, j: int) -> int:
        n = self.npoints(i)
        if not (0 <= j < n):
            raise IndexError(f"sample index {j} out of range 0..{n - 1} for function {i}")
        return int(self.first[i]) + j

    # ---------- access ----------

    def grid(self, i: int) -> np.ndarray:
        self._check_function(i)
        return self.xcoord[self.first[i]:self.last[i] + 1]

    def samples(self, i: int) -> np.ndarray:
        self._check_function(i)
        return self.values[self.first[i]:self.last[i] + 1]

    def value_at(self, i: int, j: int) -> float:
        return float(self.values[self._slot(i, j)])

    def set_value(self, i: int, j: int, value: float):
        self.values[self._slot(i, j)] = value
        self._stale.add(i)

    def gradient(self, i: int) -> Tuple[float, float]:
        self._check_function(i)
        f = self.first[i]
        return float(self.values[f - 2]), float(self.values[f - 1])

    def set_gradient(self, i: int, left: float, right: float):
        self._check_function(i)
        f = self.first[i]
        self.values[f - 2] = left
        self.values[f - 1] = right
        self._stale.add(i)

    def set_values(self, vector: np.ndarray):
        """Replace the whole buffer; every function becomes stale."""
        vector = np.asarray(vector, dtype=float)
        if vector.shape != self.values.shape:
            raise ValueError(f"Parameter vector shape {vector.shape} != table shape {self.values.shape}")
        self.values[:] = vector
        self._stale = set(range(self.n_functions))

    # ---------- spline cache ----------

    @property
    def stale(self) -> frozenset:
        return frozenset(self._stale)

    def rebuild_spline_cache(self):
        """Recompute second derivatives of every function from current values and gradients."""
        for i in range(self.n_functions):
            f, l = self.first[i], self.last[i] + 1
            yp1, ypn = self.values[f - 2], self.values[f - 1]
            self.d2tab[f:l] = SplineSecondDerivatives(self.xcoord[f:l], self.values[f:l], yp1, ypn)
        self._stale.clear()

    def interpolate_with_gradient(self, i: int, x) -> Tuple[np.ndarray, np.ndarray]:
        """Spline value and first derivative of function i at x."""
        self._check_function(i)
        if i in self._stale:
            raise RuntimeError(
                f"Spline cache of function {i} is stale; call rebuild_spline_cache() first")
        f, l = self.first[i], self.last[i] + 1
        return SplineEval(self.values[f:l], self.d2tab[f:l], self.begin[i], self.step[i], x)

    def interpolate(self, i: int, x) -> np.ndarray:
        return self.interpolate_with_gradient(i, x)[0]

    # ---------- ownership ----------

    def copy(self) -> "PotentialTable":
        """Independent mutable copy."""
        new = copy.copy(self)
        for attr in ("begin", "end", "step", "invstep", "first", "last", "values", "xcoord", "d2tab"):
            setattr(new, attr, np.array(getattr(self, attr), copy=True))
        new.roles = list(self.roles)
        new.names = list(self.names)
        new._stale = set(self._stale)
        new._readonly = False
        return new

    def with_values(self, vector: np.ndarray) -> "PotentialTable":
        """Read-only snapshot holding `vector` with a fresh spline cache."""
        new = self.copy()
        new.set_values(vector)
        new.rebuild_spline_cache()
        new._freeze()
        return new

    def snapshot(self) -> "PotentialTable":
        """Read-only, independent copy of the current state."""
        return self.with_values(self.values)

    @property
    def readonly(self) -> bool:
        return self._readonly

    def _freeze(self):
        for attr in ("begin", "end", "step", "invstep", "first", "last", "values", "xcoord", "d2tab"):
            getattr(self, attr).flags.writeable = False
        self._readonly = True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(n_functions={self.n_functions}, len={self.len})"
