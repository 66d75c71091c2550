# TabFit/utils/mask.py
import fnmatch
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from ..potentials.table import PotentialTable


@dataclass
class PinningPolicy:
    """
    Which sample points are excluded from the free set beyond invariant flags.

    Parameters
    ----------
    pin_last : dict
        Role name -> bool, overriding FunctionRole.pin_last (the value at the
        cutoff of radial functions is fixed by default).
    clamp_first_role : str or None
        The first sample of the FIRST function with this role is fixed. The
        default "meam_f" removes the f*f*g degeneracy (f' = f/b, g' = b^2 g).
    pin_embedding_last : bool
        Also fix the last sample of embedding-like functions.
    """
    pin_last: Dict[str, bool] = field(default_factory=dict)
    clamp_first_role: Optional[str] = "meam_f"
    pin_embedding_last: bool = False

    def pins_last(self, role) -> bool:
        if role.name in self.pin_last:
            return bool(self.pin_last[role.name])
        if self.pin_embedding_last and role.name.startswith("embedding"):
            return True
        return role.pin_last


@dataclass
class IndexMap:
    """
    Buffer offsets the optimizer may change.

    Attributes
    ----------
    free_indices : np.ndarray of int
        Ordered free offsets into the table buffer.
    length : int
        Length of the table buffer.
    """
    free_indices: np.ndarray
    length: int

    @property
    def idxlen(self) -> int:
        return int(self.free_indices.size)

    @property
    def mask(self) -> np.ndarray:
        """Boolean mask over the full buffer, True = free."""
        m = np.zeros(self.length, dtype=bool)
        m[self.free_indices] = True
        return m

    def take(self, vector: np.ndarray) -> np.ndarray:
        return np.asarray(vector)[self.free_indices].copy()

    def put(self, vector: np.ndarray, free_values: np.ndarray) -> np.ndarray:
        out = np.array(vector, dtype=float, copy=True)
        out[self.free_indices] = free_values
        return out


def BuildIndexMap(
    table: PotentialTable,
    invariant: Optional[Sequence[bool]] = None,
    gradient: Optional[Sequence[int]] = None,
    have_gradient: bool = False,
    policy: Optional[PinningPolicy] = None,
) -> IndexMap:
    """
    Enumerate the free slots of the table buffer.

    Traversal order: function order; within a function the left and right
    gradient slots first, then the samples. The result is deterministic so
    gamma-matrix columns keep their meaning between calls.

    Parameters
    ----------
    table : PotentialTable
    invariant : sequence of bool, optional
        Per-function flag; an invariant function contributes no offsets.
    gradient : sequence of int, optional
        Per-function bitmask: 2 frees the left gradient slot, 1 the right one.
        Defaults to 3 when the table carries gradients, 0 otherwise.
    have_gradient : bool
        Whether the table file carried gradient lines. Without them no
        gradient slot is free, whatever the mask says.
    policy : PinningPolicy, optional

    Returns
    -------
    IndexMap
    """
    n = table.n_functions
    policy = policy or PinningPolicy()
    invariant = [False] * n if invariant is None else [bool(v) for v in invariant]
    if gradient is None:
        gradient = [3 if have_gradient else 0] * n
    if len(invariant) != n or len(gradient) != n:
        raise ValueError(f"invariant/gradient flags must have one entry per function ({n})")

    clamp_fn = None
    if policy.clamp_first_role is not None:
        clamp_fn = next((i for i, role in enumerate(table.roles)
                         if role.name == policy.clamp_first_role), None)

    idx: List[int] = []
    for i in range(n):
        if invariant[i]:
            continue
        first, last = int(table.first[i]), int(table.last[i])
        if have_gradient and (gradient[i] >> 1) & 1:
            idx.append(first - 2)
        if have_gradient and gradient[i] & 1:
            idx.append(first - 1)
        pin_last = policy.pins_last(table.roles[i])
        for j, slot in enumerate(range(first, last + 1)):
            if pin_last and slot == last:
                continue
            if i == clamp_fn and j == 0:
                continue
            idx.append(slot)

    return IndexMap(free_indices=np.asarray(idx, dtype=int), length=table.len)


def ResolveInvariantFlags(
    table: PotentialTable,
    patterns: Optional[Iterable[str]] = None,
    mode: str = "freeze",
    strict: bool = False,
    case_sensitive: bool = True,
) -> List[bool]:
    """
    Per-function invariant flags from name patterns.

    Pattern syntax
    --------------
    • Exact match: "pair_0"
    • Glob (default): "embedding_*", "*_1"
    • Regex (prefix with "re:"): "re:^(transfer|embedding)_0$"

    Parameters
    ----------
    mode : {"freeze","train"}, default "freeze"
        - "freeze": black-list mode (all free by default, matching ones are invariant).
        - "train" : white-list mode (all invariant by default, matching ones are free).
    strict : bool
        If True, raise if a pattern matches no function name.
    """
    if mode not in ("freeze", "train"):
        raise ValueError(f"mode must be 'freeze' or 'train', got {mode}")

    default_invariant = (mode == "train")
    flags = [default_invariant] * table.n_functions

    def maybe_norm(s): return s if case_sensitive else s.lower()
    norm_names = [maybe_norm(n) for n in table.names]

    for pat in patterns or []:
        use_regex = pat.startswith("re:")
        pat_body = pat[3:] if use_regex else pat
        if use_regex:
            regex = re.compile(pat_body, flags=0 if case_sensitive else re.IGNORECASE)
            hits = [i for i, name in enumerate(table.names) if regex.search(name)]
        else:
            pat_cmp = maybe_norm(pat_body)
            hits = [i for i, n in enumerate(norm_names) if fnmatch.fnmatch(n, pat_cmp)]

        if not hits and strict:
            raise KeyError(f"No functions matched pattern '{pat}'. Available: {table.names}")
        for i in hits:
            flags[i] = (mode == "freeze")
    return flags


def DescribeIndexMap(index_map: IndexMap, table: PotentialTable) -> str:
    """
    Pretty-print which slots of every function are free or fixed.

    Returns
    -------
    report : str
    """
    mask = index_map.mask
    lines = ["=== Free Parameter Summary ==="]
    for i, lay in enumerate(table.function_slices()):
        g_left, g_right = lay.gradient_slots
        n_free = int(mask[lay.first:lay.last + 1].sum())
        fixed = [j for j in range(lay.npoints) if not mask[lay.first + j]]
        grads = ("L" if mask[g_left] else "-") + ("R" if mask[g_right] else "-")
        lines.append(f"{table.names[i]:<14s} | grad {grads} | free {n_free:>4d}/{lay.npoints:<4d}"
                     f" | fixed samples {fixed}")
    lines.append(f"total free: {index_map.idxlen} of {index_map.length}")
    return "\n".join(lines)
