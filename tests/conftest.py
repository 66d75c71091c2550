"""
Pytest fixtures for the TabFit test suite.
"""

import numpy as np
import pytest

from TabFit.evaluators.base import BaseEvaluator
from TabFit.potentials.table import PotentialTable


class TargetEvaluator(BaseEvaluator):
    """Residual = table buffer - fixed targets (a quadratic cost with known minimum)."""

    def __init__(self, table, targets):
        super().__init__(table)
        self.targets = np.array(targets, dtype=float, copy=True)

    def residuals(self, table):
        return table.values - self.targets


@pytest.fixture
def two_function_table():
    """Two pair functions with 5 and 4 samples and explicit boundary gradients."""
    grid = [(1.0, 3.0, 5), (0.5, 2.0, 4)]
    raw = [
        [-2.0, 0.0, 4.0, 1.5, 0.2, -0.1, 0.0],
        [-1.0, 0.0, 2.0, 0.5, 0.1, 0.0],
    ]
    return PotentialTable.load(grid, raw, has_gradients=True)


@pytest.fixture
def rng():
    return np.random.default_rng(12345)
