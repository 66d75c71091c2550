"""
Spline cache consistency: knot values, boundary derivatives and natural ends.
"""

import numpy as np
import pytest

from TabFit.potentials.schema import NATURAL_BOUNDARY
from TabFit.potentials.spline import SplineEval, SplineSecondDerivatives
from TabFit.potentials.table import PotentialTable


class TestSecondDerivatives:

    def test_natural_ends(self):
        x = np.linspace(0.0, 2.0, 6)
        d2 = SplineSecondDerivatives(x, np.sin(x), NATURAL_BOUNDARY, NATURAL_BOUNDARY)
        assert d2[0] == pytest.approx(0.0, abs=1e-12)
        assert d2[-1] == pytest.approx(0.0, abs=1e-12)

    def test_cubic_is_exact_with_clamped_ends(self):
        x = np.linspace(-1.0, 2.0, 7)
        y = x ** 3 - 2 * x
        d2 = SplineSecondDerivatives(x, y, 3 * x[0] ** 2 - 2, 3 * x[-1] ** 2 - 2)
        assert d2 == pytest.approx(6 * x, abs=1e-10)

    def test_two_points(self):
        x = np.array([0.0, 1.0])
        d2 = SplineSecondDerivatives(x, np.array([1.0, 3.0]), NATURAL_BOUNDARY, NATURAL_BOUNDARY)
        assert d2 == pytest.approx([0.0, 0.0], abs=1e-12)


class TestEvaluation:

    def test_knot_values(self, two_function_table):
        t = two_function_table
        for i in range(t.n_functions):
            vals = t.interpolate(i, t.grid(i))
            assert vals == pytest.approx(t.samples(i), abs=1e-12)

    def test_boundary_gradients(self, two_function_table):
        t = two_function_table
        for i in range(t.n_functions):
            x = t.grid(i)
            _, grad = t.interpolate_with_gradient(i, [x[0], x[-1]])
            left, right = t.gradient(i)
            assert grad[0] == pytest.approx(left, abs=1e-10)
            assert grad[1] == pytest.approx(right, abs=1e-10)

    def test_natural_boundary_in_table(self):
        t = PotentialTable.load([(0.0, 2.0, 5)], [[0.0, 1.0, 0.5, 0.8, 0.1]])
        f = t.first[0]
        assert t.d2tab[f] == pytest.approx(0.0, abs=1e-12)

    def test_matches_scipy(self):
        from scipy.interpolate import CubicSpline
        x = np.linspace(1.0, 4.0, 9)
        y = np.exp(-x)
        d2 = SplineSecondDerivatives(x, y, -np.exp(-1.0), NATURAL_BOUNDARY)
        q = np.linspace(1.0, 4.0, 37)
        val, grad = SplineEval(y, d2, 1.0, x[1] - x[0], q)
        ref = CubicSpline(x, y, bc_type=((1, -np.exp(-1.0)), "natural"))
        assert val == pytest.approx(ref(q), abs=1e-12)
        assert grad == pytest.approx(ref(q, 1), abs=1e-10)

    def test_outside_grid_uses_end_interval(self):
        x = np.linspace(0.0, 1.0, 3)
        y = 2.0 * x + 1.0
        d2 = SplineSecondDerivatives(x, y, 2.0, 2.0)
        val, grad = SplineEval(y, d2, 0.0, 0.5, [-0.5, 1.5])
        assert val == pytest.approx([0.0, 4.0])
        assert grad == pytest.approx([2.0, 2.0])

    def test_shape_preserved(self):
        x = np.linspace(0.0, 1.0, 4)
        d2 = SplineSecondDerivatives(x, x ** 2, 0.0, 2.0)
        val, grad = SplineEval(x ** 2, d2, 0.0, x[1], np.full((2, 3), 0.3))
        assert val.shape == (2, 3)
        assert grad.shape == (2, 3)
