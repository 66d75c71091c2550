# TabFit/potentials/schema.py
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

# boundary gradients above this value select a natural spline end
NATURAL_BOUNDARY = 1.0e30


@dataclass(frozen=True)
class FunctionRole:
    """
    Physical role of one sampled function in the table.

    Parameters
    ----------
    name : str
        Role identifier (e.g. "pair", "embedding").
    default_gradient : tuple of float
        (left, right) boundary gradients used when the table file carries no
        gradient line. Values above 0.99e30 mean "natural" (y'' = 0).
    pin_last : bool
        If True, the last sample (value at the cutoff) is never optimized.
    needs_unit_domain : bool
        If True, the function domain must contain 1.0 (gauge fixing uses F'(1.0)).
    """
    name: str
    default_gradient: Tuple[float, float] = (NATURAL_BOUNDARY, 0.0)
    pin_last: bool = True
    needs_unit_domain: bool = False


ROLE_REGISTRY: Dict[str, FunctionRole] = {
    "pair":        FunctionRole("pair"),
    "transfer":    FunctionRole("transfer"),
    "embedding":   FunctionRole("embedding", (NATURAL_BOUNDARY, NATURAL_BOUNDARY),
                                pin_last=False, needs_unit_domain=True),
    "transfer_s":  FunctionRole("transfer_s"),
    "embedding_s": FunctionRole("embedding_s", (NATURAL_BOUNDARY, NATURAL_BOUNDARY),
                                pin_last=False),
    "dipole":      FunctionRole("dipole"),
    "quadrupole":  FunctionRole("quadrupole", (NATURAL_BOUNDARY, NATURAL_BOUNDARY)),
    "meam_f":      FunctionRole("meam_f"),
    "meam_g":      FunctionRole("meam_g", (0.0, 0.0), pin_last=False),
}


@dataclass(frozen=True)
class SchemaEntry:
    role: str
    count: int


def _paircol(ntypes: int) -> int:
    return ntypes * (ntypes + 1) // 2


def BuildSchema(model: str, ntypes: int) -> List[SchemaEntry]:
    """
    Ordered (role, count) layout of the table for a named model.

    Parameters
    ----------
    model : str
        One of "pair", "eam", "tbeam", "adp", "meam".
    ntypes : int
        Number of atom types.

    Returns
    -------
    list of SchemaEntry
        Function blocks in table order.
    """
    if ntypes < 1:
        raise ValueError(f"ntypes must be >= 1, got {ntypes}")
    paircol = _paircol(ntypes)
    eam = [SchemaEntry("pair", paircol),
           SchemaEntry("transfer", ntypes),
           SchemaEntry("embedding", ntypes)]
    presets = {
        "pair":  [SchemaEntry("pair", paircol)],
        "eam":   eam,
        "tbeam": eam + [SchemaEntry("transfer_s", ntypes), SchemaEntry("embedding_s", ntypes)],
        "adp":   eam + [SchemaEntry("dipole", paircol), SchemaEntry("quadrupole", paircol)],
        "meam":  eam + [SchemaEntry("meam_f", paircol), SchemaEntry("meam_g", ntypes)],
    }
    if model not in presets:
        raise KeyError(f"Unknown model '{model}'. Available: {list(presets)}")
    return presets[model]


def ExpandSchema(schema: Sequence[SchemaEntry]) -> List[FunctionRole]:
    """One FunctionRole per table function, in table order."""
    roles = []
    for entry in schema:
        if entry.role not in ROLE_REGISTRY:
            raise KeyError(f"Unknown function role '{entry.role}'. Available: {list(ROLE_REGISTRY)}")
        roles.extend([ROLE_REGISTRY[entry.role]] * entry.count)
    return roles


def FunctionNames(schema: Sequence[SchemaEntry]) -> List[str]:
    """Names like "pair_0", "pair_1", "embedding_0" in table order."""
    return [f"{entry.role}_{k}" for entry in schema for k in range(entry.count)]


def PairColumn(i: int, j: int, ntypes: int) -> int:
    """
    Column of the pair function between types i and j.
    Upper-triangle ordering: (0,0), (0,1), ..., (0,n-1), (1,1), ...
    """
    if not (0 <= i < ntypes and 0 <= j < ntypes):
        raise IndexError(f"type pair ({i}, {j}) out of range for ntypes={ntypes}")
    if i > j:
        i, j = j, i
    return i * ntypes + j - i * (i + 1) // 2
