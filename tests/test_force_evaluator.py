"""
Pair-potential force matching: energies, forces and stresses from a known
tabulated function, reference-data checks and determinism.
"""

import numpy as np
import pytest

from TabFit.errors import MissingReferenceDataError
from TabFit.evaluators.force import EvaluatorWeights, ForceMatchingEvaluator
from TabFit.potentials.schema import BuildSchema
from TabFit.potentials.table import PotentialTable
from TabFit.utils.configio import Configuration


def quadratic_pair_table():
    """phi(r) = (3 - r)^2 on [1, 3]; a clamped cubic spline reproduces it exactly."""
    r = np.linspace(1.0, 3.0, 21)
    raw = [np.concatenate([[-4.0, 0.0], (3.0 - r) ** 2])]
    return PotentialTable.load([(1.0, 3.0, 21)], raw, has_gradients=True)


def dimer(positions, elements=("Ar",), types=(0, 0), box=10.0, **kw):
    n = len(positions)
    return Configuration(
        natoms=n,
        useforce=kw.get("useforce", True),
        elements=list(elements),
        box=np.eye(3) * box,
        energy=kw.get("energy", 0.0),
        types=np.asarray(types),
        positions=np.asarray(positions, dtype=float),
        forces=np.asarray(kw.get("forces", np.zeros((n, 3))), dtype=float),
        stress=kw.get("stress"),
        weight=kw.get("weight", 1.0),
    )


class TestPrediction:

    def test_dimer(self):
        table = quadratic_pair_table()
        ev = ForceMatchingEvaluator(table, [dimer([[0, 0, 0], [1.5, 0, 0]])], ["Ar"])
        energy, forces, stress = ev.predict(table, 0)
        assert energy == pytest.approx(2.25 / 2)
        assert forces[0] == pytest.approx([-3.0, 0.0, 0.0])
        assert forces[1] == pytest.approx([3.0, 0.0, 0.0])
        assert stress == pytest.approx([4.5e-3, 0, 0, 0, 0, 0], abs=1e-12)

    def test_periodic_image(self):
        table = quadratic_pair_table()
        ev = ForceMatchingEvaluator(table, [dimer([[0.5, 0, 0], [9.0, 0, 0]])], ["Ar"])
        energy, forces, _ = ev.predict(table, 0)
        assert energy == pytest.approx(2.25 / 2)
        # atom 1 sits at -1.0 through the boundary, so it pushes atom 0 towards +x
        assert forces[0] == pytest.approx([3.0, 0.0, 0.0])

    def test_beyond_cutoff(self):
        table = quadratic_pair_table()
        ev = ForceMatchingEvaluator(table, [dimer([[0, 0, 0], [4.0, 0, 0]])], ["Ar"])
        energy, forces, stress = ev.predict(table, 0)
        assert energy == 0.0
        assert np.all(forces == 0.0)

    def test_forces_sum_to_zero(self, rng):
        table = quadratic_pair_table()
        pos = rng.uniform(0.0, 8.0, size=(12, 3))
        ev = ForceMatchingEvaluator(table, [dimer(pos, types=[0] * 12)], ["Ar"])
        _, forces, _ = ev.predict(table, 0)
        assert forces.sum(axis=0) == pytest.approx(np.zeros(3), abs=1e-10)

    def test_pair_columns(self):
        grid = [(1.0, 3.0, 3)] * 3
        raw = [[0.0, 0.0] + [k + 1.0] * 3 for k in range(3)]
        table = PotentialTable.load(grid, raw, has_gradients=True, schema=BuildSchema("pair", 2))
        # configuration lists Cu first; global order is Al, Cu
        cfg = dimer([[0, 0, 0], [2.0, 0, 0]], elements=("Cu", "Al"), types=(0, 1))
        ev = ForceMatchingEvaluator(table, [cfg], ["Al", "Cu"])
        energy, _, _ = ev.predict(table, 0)
        assert energy == pytest.approx(2.0 / 2)


class TestResiduals:

    def test_zero_at_reference(self):
        table = quadratic_pair_table()
        cfg = dimer([[0, 0, 0], [1.5, 0, 0]], energy=1.125,
                    forces=[[-3.0, 0, 0], [3.0, 0, 0]], stress=np.array([4.5e-3, 0, 0, 0, 0, 0]))
        ev = ForceMatchingEvaluator(table, [cfg], ["Ar"])
        cost, res = ev.evaluate(table.values)
        assert res.size == 6 + 1 + 6
        assert cost == pytest.approx(0.0, abs=1e-20)

    def test_weights(self):
        table = quadratic_pair_table()
        cfg = dimer([[0, 0, 0], [1.5, 0, 0]], energy=0.125, useforce=False, weight=2.0)
        ev = ForceMatchingEvaluator(table, [cfg], ["Ar"], weights=EvaluatorWeights(energy=3.0))
        _, res = ev.evaluate(table.values)
        assert res.size == 1
        assert res[0] == pytest.approx(3.0 * 2.0 * 1.0)

    def test_deterministic(self, rng):
        table = quadratic_pair_table()
        pos = rng.uniform(0.0, 8.0, size=(8, 3))
        ev = ForceMatchingEvaluator(table, [dimer(pos, types=[0] * 8)], ["Ar"])
        vec = table.values + rng.normal(scale=0.01, size=table.len)
        c1, r1 = ev.evaluate(vec)
        c2, r2 = ev(vec)
        assert c1 == c2
        assert np.array_equal(r1, r2)
        assert ev.n_calls == 2

    def test_vector_shape(self):
        table = quadratic_pair_table()
        ev = ForceMatchingEvaluator(table, [dimer([[0, 0, 0], [1.5, 0, 0]])], ["Ar"])
        with pytest.raises(ValueError):
            ev.evaluate(np.zeros(3))


class TestSetup:

    def test_unknown_element(self):
        table = quadratic_pair_table()
        cfg = dimer([[0, 0, 0], [1.5, 0, 0]], elements=("Xe",))
        with pytest.raises(MissingReferenceDataError, match="Xe"):
            ForceMatchingEvaluator(table, [cfg], ["Ar"])

    def test_type_out_of_range(self):
        table = quadratic_pair_table()
        cfg = dimer([[0, 0, 0], [1.5, 0, 0]], types=(0, 1))
        with pytest.raises(MissingReferenceDataError):
            ForceMatchingEvaluator(table, [cfg], ["Ar"])

    def test_box_too_small(self):
        table = quadratic_pair_table()
        with pytest.raises(ValueError, match="half"):
            ForceMatchingEvaluator(table, [dimer([[0, 0, 0], [1.5, 0, 0]], box=5.0)], ["Ar"])

    def test_function_count(self):
        table = quadratic_pair_table()
        with pytest.raises(ValueError):
            ForceMatchingEvaluator(table, [], ["Ar", "Cu"])

    def test_only_pair_models(self):
        schema = BuildSchema("eam", 1)
        table = PotentialTable.load([(1.0, 3.0, 3), (1.0, 3.0, 3), (0.0, 2.0, 3)], [[1, 2, 3]] * 3,
                                    schema=schema)
        with pytest.raises(NotImplementedError):
            ForceMatchingEvaluator(table, [], ["Ar"])
