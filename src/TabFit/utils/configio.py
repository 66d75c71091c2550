# TabFit/utils/configio.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

import numpy as np

# fixed-width scientific field: 23 characters, 6 mantissa decimals
FLOAT_FMT = "{:23.6e}"


@dataclass
class Configuration:
    """
    One reference configuration of the training set.

    Attributes
    ----------
    natoms : int
    useforce : bool
        Whether force residuals of this configuration enter the fit.
    elements : list of str
        Element symbols; atom type k refers to elements[k].
    box : np.ndarray
        (3, 3) box vectors, one per row.
    energy : float
        Reference cohesive energy per atom.
    stress : np.ndarray or None
        (xx, yy, zz, xy, yz, zx), if present.
    weight : float
        Configuration weight.
    types : np.ndarray
        (natoms,) atom type indices.
    positions, forces : np.ndarray
        (natoms, 3) positions and reference forces.
    """
    natoms: int
    useforce: bool
    elements: List[str]
    box: np.ndarray
    energy: float
    types: np.ndarray
    positions: np.ndarray
    forces: np.ndarray
    stress: Optional[np.ndarray] = None
    weight: float = 1.0

    @property
    def volume(self) -> float:
        return float(abs(np.linalg.det(self.box)))


@dataclass
class _Record:
    natoms: int = 0
    useforce: bool = True
    elements: List[str] = field(default_factory=list)
    box: List[List[float]] = field(default_factory=lambda: [None, None, None])
    energy: Optional[float] = None
    stress: Optional[List[float]] = None
    weight: float = 1.0


def _floats(parts, n, where):
    try:
        vals = [float(p) for p in parts[:n]]
    except ValueError as e:
        raise ValueError(f"{where}: cannot parse numbers from {parts}") from e
    if len(vals) != n:
        raise ValueError(f"{where}: expected {n} numbers, got {len(vals)}")
    return vals


def ReadConfigurations(path: str | Path) -> List[Configuration]:
    """
    Read all configurations of a training file.

    Record format::

        #N <natoms> <useforce>
        #C <elem> ...
        #X <ax> <ay> <az>
        #Y <bx> <by> <bz>
        #Z <cx> <cy> <cz>
        #W <weight>               (optional)
        #E <energy per atom>
        #S <xx> <yy> <zz> <xy> <yz> <zx>   (optional)
        #F
        <type> <x> <y> <z> <fx> <fy> <fz>  (natoms lines)

    Parsing is locale independent (Python float parsing).

    Raises
    ------
    ValueError
        On a malformed or truncated record, naming file and line.
    """
    path = Path(path)
    configs: List[Configuration] = []
    with path.open("r", encoding="utf-8") as f:
        lines = f.readlines()

    i = 0
    n_lines = len(lines)
    while i < n_lines:
        s = lines[i].strip()
        if not s:
            i += 1
            continue
        if not s.startswith("#N"):
            raise ValueError(f"{path}:{i + 1}: expected '#N' to start a configuration, got '{s}'")
        rec = _Record()
        parts = s.split()
        try:
            rec.natoms = int(parts[1])
            rec.useforce = bool(int(parts[2])) if len(parts) > 2 else True
        except (IndexError, ValueError) as e:
            raise ValueError(f"{path}:{i + 1}: bad '#N' line '{s}'") from e
        i += 1

        # header lines until #F
        while True:
            if i >= n_lines:
                raise ValueError(f"{path}: unexpected end of file inside header of configuration {len(configs)}")
            s = lines[i].strip()
            where = f"{path}:{i + 1}"
            i += 1
            if not s:
                continue
            tag, *rest = s.split()
            if tag == "#C":
                rec.elements = rest
            elif tag in ("#X", "#Y", "#Z"):
                rec.box["XYZ".index(tag[1])] = _floats(rest, 3, where)
            elif tag == "#W":
                rec.weight = _floats(rest, 1, where)[0]
            elif tag == "#E":
                rec.energy = _floats(rest, 1, where)[0]
            elif tag == "#S":
                rec.stress = _floats(rest, 6, where)
            elif tag == "#F":
                break
            elif tag.startswith("#"):
                continue
            else:
                raise ValueError(f"{where}: atom data before '#F' line")

        if any(v is None for v in rec.box):
            raise ValueError(f"{path}: configuration {len(configs)} is missing box vectors")
        if rec.energy is None:
            raise ValueError(f"{path}: configuration {len(configs)} is missing the '#E' line")

        types = np.empty(rec.natoms, dtype=int)
        positions = np.empty((rec.natoms, 3))
        forces = np.empty((rec.natoms, 3))
        for a in range(rec.natoms):
            if i >= n_lines:
                raise ValueError(
                    f"{path}: unexpected end of file in configuration {len(configs)} (atom {a} of {rec.natoms})")
            parts = lines[i].split()
            where = f"{path}:{i + 1}"
            if len(parts) < 7:
                raise ValueError(f"{where}: atom line needs 7 fields, got {len(parts)}")
            try:
                types[a] = int(parts[0])
            except ValueError as e:
                raise ValueError(f"{where}: bad atom type '{parts[0]}'") from e
            vals = _floats(parts[1:7], 6, where)
            positions[a] = vals[:3]
            forces[a] = vals[3:]
            i += 1

        configs.append(Configuration(
            natoms=rec.natoms,
            useforce=rec.useforce,
            elements=rec.elements,
            box=np.asarray(rec.box, dtype=float),
            energy=rec.energy,
            types=types,
            positions=positions,
            forces=forces,
            stress=None if rec.stress is None else np.asarray(rec.stress, dtype=float),
            weight=rec.weight,
        ))
    return configs


def WriteConfigurations(path: str | Path, configs: Iterable[Configuration]):
    """
    Write configurations in the format read by ReadConfigurations.

    Every float is written in a 23-character field with six mantissa decimals.
    """
    def row(vals):
        return "".join(FLOAT_FMT.format(float(v)) for v in vals)

    with Path(path).open("w", encoding="utf-8") as f:
        for c in configs:
            f.write(f"#N {c.natoms} {int(bool(c.useforce))}\n")
            f.write("#C " + " ".join(c.elements) + "\n")
            for tag, vec in zip("XYZ", c.box):
                f.write(f"#{tag} {row(vec)}\n")
            if c.weight != 1.0:
                f.write(f"#W {row([c.weight])}\n")
            f.write(f"#E {row([c.energy])}\n")
            if c.stress is not None:
                f.write(f"#S {row(c.stress)}\n")
            f.write("#F\n")
            for t, pos, frc in zip(c.types, c.positions, c.forces):
                f.write(f"{int(t):d} {row(pos)}{row(frc)}\n")
