# TabFit/evaluators/force.py
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
from MDAnalysis.lib.distances import self_capped_distance
from MDAnalysis.lib.mdamath import triclinic_box

from .base import BaseEvaluator
from ..errors import MissingReferenceDataError
from ..potentials.schema import PairColumn
from ..potentials.table import PotentialTable
from ..utils.configio import Configuration


@dataclass
class EvaluatorWeights:
    """
    Global residual weights (multiplied by each configuration's own weight).

    Parameters
    ----------
    force : float
        Weight of every force component.
    energy : float
        Weight of the energy per atom.
    stress : float
        Weight of every stress component.
    """
    force: float = 1.0
    energy: float = 1.0
    stress: float = 1.0


@dataclass
class _PairData:
    """Fixed neighbour geometry of one configuration."""
    i: np.ndarray
    j: np.ndarray
    col: np.ndarray
    r: np.ndarray
    d: np.ndarray  # r_j - r_i, minimum image


def _box_heights(box: np.ndarray) -> np.ndarray:
    vol = abs(np.linalg.det(box))
    a, b, c = box
    return vol / np.array([np.linalg.norm(np.cross(b, c)),
                           np.linalg.norm(np.cross(c, a)),
                           np.linalg.norm(np.cross(a, b))])


def PairGeometry(config: Configuration, cutoffs: np.ndarray, global_types: np.ndarray,
                 ntypes: int) -> _PairData:
    """
    Neighbour pairs of one configuration within the per-pair cutoffs.

    Pairs are found with MDAnalysis' capped distance search; the displacement
    vectors are then recomputed in double precision with the minimum-image
    convention, which requires every cutoff to be below half the smallest
    box height.

    Parameters
    ----------
    config : Configuration
    cutoffs : np.ndarray
        Cutoff radius per pair column.
    global_types : np.ndarray
        Global type index of every atom.
    ntypes : int
    """
    rmax = float(cutoffs.max())
    heights = _box_heights(config.box)
    if rmax >= 0.5 * heights.min():
        raise ValueError(
            f"Cutoff {rmax:g} is not below half the smallest box height ({0.5 * heights.min():g}); "
            f"replicate the configuration first")

    dims = triclinic_box(*config.box)
    pairs = self_capped_distance(config.positions.astype(np.float32), rmax * (1.0 + 1e-5),
                                 box=dims, return_distances=False)
    pairs = np.asarray(pairs, dtype=int).reshape(-1, 2)
    i, j = pairs[:, 0], pairs[:, 1]

    d = config.positions[j] - config.positions[i]
    inv = np.linalg.inv(config.box)
    frac = d @ inv
    frac -= np.round(frac)
    d = frac @ config.box
    r = np.linalg.norm(d, axis=1)

    col = np.array([PairColumn(a, b, ntypes) for a, b in zip(global_types[i], global_types[j])], dtype=int)
    keep = r < cutoffs[col] if col.size else np.zeros(0, dtype=bool)
    return _PairData(i=i[keep], j=j[keep], col=col[keep], r=r[keep], d=d[keep])


class ForceMatchingEvaluator(BaseEvaluator):
    """
    Force, energy and stress matching for a tabulated pair potential.

    Residual layout per configuration (in input order):
      - 3 * natoms force components (only if config.useforce)
      - 1 energy per atom
      - 6 stress components (only if the configuration has a stress)

    Each residual is weight * (predicted - reference).

    Parameters
    ----------
    table : PotentialTable
        Pair-potential table; the pair between types a and b uses function
        PairColumn(a, b, ntypes) and is cut off at that function's end.
    configs : sequence of Configuration
    elements : sequence of str
        Global element order (type k of the table is elements[k]).
    weights : EvaluatorWeights, optional
    """

    def __init__(self, table: PotentialTable, configs: Sequence[Configuration], elements: Sequence[str],
                 weights: Optional[EvaluatorWeights] = None):
        super().__init__(table)
        bad = [r.name for r in table.roles if r.name != "pair"]
        if bad:
            raise NotImplementedError(
                f"ForceMatchingEvaluator handles pair potentials only, table has roles {sorted(set(bad))}")
        self.elements: List[str] = list(elements)
        self.ntypes = len(self.elements)
        paircol = self.ntypes * (self.ntypes + 1) // 2
        if table.n_functions != paircol:
            raise ValueError(f"{self.ntypes} element(s) need {paircol} pair functions, table has {table.n_functions}")
        self.weights = weights or EvaluatorWeights()
        self.configs: List[Configuration] = list(configs)

        cutoffs = np.asarray(table.end, dtype=float)
        self._geometry: List[_PairData] = []
        self.n_residuals = 0
        for k, config in enumerate(self.configs):
            global_types = self._global_types(k, config)
            self._geometry.append(PairGeometry(config, cutoffs, global_types, self.ntypes))
            self.n_residuals += (3 * config.natoms if config.useforce else 0) + 1 \
                + (6 if config.stress is not None else 0)

    def _global_types(self, k: int, config: Configuration) -> np.ndarray:
        mapping = []
        for sym in config.elements:
            if sym not in self.elements:
                raise MissingReferenceDataError(
                    f"Configuration {k} contains element '{sym}' which is not in {self.elements}")
            mapping.append(self.elements.index(sym))
        types = np.asarray(config.types, dtype=int)
        if types.size and (types.min() < 0 or types.max() >= len(mapping)):
            raise MissingReferenceDataError(
                f"Configuration {k} uses atom type {int(types.max())} but lists only "
                f"{len(mapping)} element(s)")
        return np.asarray(mapping, dtype=int)[types] if types.size else types

    def predict(self, table: PotentialTable, k: int):
        """
        Energy per atom, forces (natoms, 3) and stress (6,) of configuration k.
        Stress is the virial stress, positive under compression.
        """
        config, geo = self.configs[k], self._geometry[k]
        phi = np.zeros(geo.r.size)
        dphi = np.zeros(geo.r.size)
        for col in np.unique(geo.col):
            sel = geo.col == col
            phi[sel], dphi[sel] = table.interpolate_with_gradient(int(col), geo.r[sel])

        energy = phi.sum() / config.natoms
        fvec = (dphi / geo.r)[:, None] * geo.d  # force on i
        forces = np.zeros((config.natoms, 3))
        np.add.at(forces, geo.i, fvec)
        np.add.at(forces, geo.j, -fvec)

        w = -(dphi / geo.r)
        dd = geo.d
        virial = np.array([
            np.sum(w * dd[:, 0] * dd[:, 0]),
            np.sum(w * dd[:, 1] * dd[:, 1]),
            np.sum(w * dd[:, 2] * dd[:, 2]),
            np.sum(w * dd[:, 0] * dd[:, 1]),
            np.sum(w * dd[:, 1] * dd[:, 2]),
            np.sum(w * dd[:, 2] * dd[:, 0]),
        ])
        return energy, forces, virial / config.volume

    def residuals(self, table: PotentialTable) -> np.ndarray:
        out = np.empty(self.n_residuals)
        pos = 0
        for k, config in enumerate(self.configs):
            energy, forces, stress = self.predict(table, k)
            if config.useforce:
                n = 3 * config.natoms
                out[pos:pos + n] = (self.weights.force * config.weight) * (forces - config.forces).ravel()
                pos += n
            out[pos] = self.weights.energy * config.weight * (energy - config.energy)
            pos += 1
            if config.stress is not None:
                out[pos:pos + 6] = self.weights.stress * config.weight * (stress - config.stress)
                pos += 6
        return out
