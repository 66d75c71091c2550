"""
Tests for the sampled function table: buffer layout, loading, access and
snapshot ownership.
"""

import numpy as np
import pytest

from TabFit.errors import MalformedTableError
from TabFit.potentials.schema import BuildSchema, NATURAL_BOUNDARY
from TabFit.potentials.table import PotentialTable


class TestLayout:

    def test_offsets(self, two_function_table):
        t = two_function_table
        assert list(t.first) == [2, 9]
        assert list(t.last) == [6, 12]
        assert t.len == 13
        assert t.step[0] == pytest.approx(0.5)
        assert t.step[1] == pytest.approx(0.5)
        assert t.invstep[0] == pytest.approx(2.0)

    def test_layout_is_contiguous(self, two_function_table):
        two_function_table.validate_layout()
        slices = two_function_table.function_slices()
        assert slices[0].gradient_slots == (0, 1)
        assert slices[1].gradient_slots == (7, 8)
        assert [s.npoints for s in slices] == [5, 4]

    @pytest.mark.parametrize("npoints", [[2], [2, 2], [3, 7, 2], [10, 4, 5, 6]])
    def test_ranges_increase(self, npoints):
        grid = [(0.0, 1.0, n) for n in npoints]
        t = PotentialTable.load(grid, [np.ones(n) for n in npoints])
        t.validate_layout()
        assert np.all(np.diff(t.first) > 0)
        assert np.all(t.first[1:] == t.last[:-1] + 3)

    def test_grid_coordinates(self, two_function_table):
        assert two_function_table.grid(0) == pytest.approx([1.0, 1.5, 2.0, 2.5, 3.0])
        assert two_function_table.grid(1) == pytest.approx([0.5, 1.0, 1.5, 2.0])


class TestLoad:

    def test_values_and_gradients(self, two_function_table):
        t = two_function_table
        assert t.gradient(0) == (-2.0, 0.0)
        assert list(t.samples(1)) == [2.0, 0.5, 0.1, 0.0]

    def test_default_gradients_from_role(self):
        schema = BuildSchema("eam", 1)
        grid = [(1.0, 3.0, 3), (1.0, 3.0, 3), (0.0, 2.0, 3)]
        t = PotentialTable.load(grid, [[1, 2, 3]] * 3, schema=schema)
        assert t.gradient(0) == (NATURAL_BOUNDARY, 0.0)
        assert t.gradient(2) == (NATURAL_BOUNDARY, NATURAL_BOUNDARY)
        assert t.names == ["pair_0", "transfer_0", "embedding_0"]

    def test_too_few_samples(self):
        with pytest.raises(MalformedTableError, match="fewer samples"):
            PotentialTable.load([(0.0, 1.0, 4)], [[1.0, 2.0, 3.0]])

    def test_too_many_samples(self):
        with pytest.raises(MalformedTableError):
            PotentialTable.load([(0.0, 1.0, 2)], [[1.0, 2.0, 3.0]])

    @pytest.mark.parametrize("spec", [(1.0, 1.0, 3), (2.0, 1.0, 3), (0.0, 1.0, 1), (0.0, np.inf, 3)])
    def test_bad_grid(self, spec):
        with pytest.raises(MalformedTableError):
            PotentialTable([spec])

    def test_empty(self):
        with pytest.raises(MalformedTableError):
            PotentialTable([])

    def test_malformed_is_value_error(self):
        with pytest.raises(ValueError):
            PotentialTable([(0.0, 1.0, 0)])

    def test_gauge_requires_unit_density(self):
        schema = BuildSchema("eam", 1)
        grid = [(1.0, 3.0, 3), (1.0, 3.0, 3), (1.5, 2.0, 3)]
        t = PotentialTable.load(grid, [[1, 2, 3]] * 3, schema=schema)
        with pytest.raises(MalformedTableError, match="1.0"):
            t.validate_gauge()


class TestAccess:

    def test_value_roundtrip(self, two_function_table):
        t = two_function_table
        t.set_value(1, 2, 7.5)
        assert t.value_at(1, 2) == 7.5
        assert t.values[t.first[1] + 2] == 7.5

    @pytest.mark.parametrize("i,j", [(2, 0), (-1, 0), (0, 5), (1, 4), (0, -1)])
    def test_bounds_checked(self, two_function_table, i, j):
        with pytest.raises(IndexError):
            two_function_table.value_at(i, j)

    def test_mutation_invalidates_cache(self, two_function_table):
        t = two_function_table
        assert not t.stale
        t.set_value(0, 1, 2.0)
        assert t.stale == {0}
        with pytest.raises(RuntimeError):
            t.interpolate(0, 1.2)
        t.interpolate(1, 1.2)  # untouched function stays usable
        t.rebuild_spline_cache()
        assert not t.stale
        assert t.interpolate(0, 1.5) == pytest.approx(2.0)

    def test_set_values_shape(self, two_function_table):
        with pytest.raises(ValueError):
            two_function_table.set_values(np.zeros(3))


class TestOwnership:

    def test_snapshot_is_readonly(self, two_function_table):
        snap = two_function_table.snapshot()
        assert snap.readonly
        with pytest.raises(ValueError):
            snap.values[3] = 1.0

    def test_snapshot_is_independent(self, two_function_table):
        t = two_function_table
        snap = t.snapshot()
        before = snap.value_at(0, 0)
        t.set_value(0, 0, before + 1.0)
        assert snap.value_at(0, 0) == before

    def test_with_values(self, two_function_table):
        t = two_function_table
        vec = t.values + 1.0
        snap = t.with_values(vec)
        assert np.array_equal(snap.values, vec)
        assert not snap.stale
        assert not np.array_equal(t.values, vec)

    def test_copy_is_mutable(self, two_function_table):
        c = two_function_table.snapshot().copy()
        assert not c.readonly
        c.set_value(0, 0, 0.0)
