# TabFit/evaluators/base.py
from abc import ABC, abstractmethod
import threading
from typing import Tuple

import numpy as np

from ..potentials.table import PotentialTable


class BaseEvaluator(ABC):
    """
    Objective for the least-squares fit.

    `evaluate(vector)` is a pure function of the parameter vector: every call
    builds its own read-only snapshot of the table with that vector, so
    concurrent calls never share mutable state.
    """

    def __init__(self, table: PotentialTable):
        # private template; the caller's table may keep changing
        self._template = table.copy()
        self._lock = threading.Lock()
        self.n_calls = 0

    @property
    def n_params(self) -> int:
        return self._template.len

    @abstractmethod
    def residuals(self, table: PotentialTable) -> np.ndarray:
        """
        Weighted residual vector (predicted - reference) for a table snapshot.

        Parameters
        ----------
        table : PotentialTable
            Read-only snapshot with a valid spline cache.
        """
        pass

    def evaluate(self, vector: np.ndarray) -> Tuple[float, np.ndarray]:
        """
        Returns
        -------
        cost : float
            Sum of squared residuals.
        residuals : np.ndarray
        """
        vector = np.asarray(vector, dtype=float)
        if vector.shape != (self._template.len,):
            raise ValueError(f"Parameter vector shape {vector.shape} != ({self._template.len},)")
        with self._lock:
            self.n_calls += 1
        res = np.asarray(self.residuals(self._template.with_values(vector)), dtype=float).ravel()
        return float(res @ res), res

    def __call__(self, vector: np.ndarray) -> Tuple[float, np.ndarray]:
        return self.evaluate(vector)
