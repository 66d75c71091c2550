# TabFit/utils/ffio.py
import os
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..errors import MalformedTableError
from ..potentials.schema import SchemaEntry, BuildSchema
from ..potentials.table import PotentialTable


@dataclass
class PotTableFile:
    """
    Contents of a tabulated potential file.

    Attributes
    ----------
    table : PotentialTable
    have_gradient : bool
        Whether every function carried a gradient line.
    invariant : list of bool
        Per-function invariant flags from the "#I" header (all False if absent).
    gradient : list of int
        Per-function gradient masks from the "#G" header (all 0 if absent).
    model : str or None
        Model name from the "#T" header.
    elements : list of str
        Element symbols from the "#C" header.
    """
    table: PotentialTable
    have_gradient: bool = False
    invariant: List[bool] = field(default_factory=list)
    gradient: List[int] = field(default_factory=list)
    model: Optional[str] = None
    elements: List[str] = field(default_factory=list)


def _parse_header(lines):
    """Split leading '#' lines from the body. Returns (header dict, body lines with numbers)."""
    header = {}
    body = []
    in_header = True
    for lineno, raw in enumerate(lines, start=1):
        s = raw.strip()
        if in_header and s.startswith("#"):
            tag, _, rest = s.partition(" ")
            tag = tag[1:]
            if tag == "E":
                in_header = False
            elif tag in ("F", "T", "C", "I", "G"):
                header[tag] = rest.split()
            continue
        if s.startswith("#"):
            continue
        if s or body:
            in_header = False
            body.append((lineno, s))
    return header, body


def ReadPotTable(
    path: str,
    schema: Optional[Sequence[SchemaEntry]] = None,
    have_gradient: Optional[bool] = None,
    check_gauge: bool = False,
) -> PotTableFile:
    """
    Read a potential table in the equidistant format.

    Layout::

        #F 3 <nfuncs>          (optional header lines)
        #T <model>
        #C <elem> ...
        #I <invariant flag> ...
        #G <gradient mask> ...
        #E
        begin end npoints      (one info line per function)
        ...

        [grad_left grad_right] (if gradients are present)
        value                  (npoints lines)
        ...

    Functions are separated by blank lines.

    Parameters
    ----------
    path : str
        Potential file.
    schema : list of SchemaEntry, optional
        Function roles. If None and the file names a model ("#T") together
        with elements ("#C"), the schema is built from those.
    have_gradient : bool, optional
        Force gradient lines on/off. Default: present iff the file has "#G".
    check_gauge : bool
        Validate that embedding functions sample density 1.0.

    Raises
    ------
    MalformedTableError
        On any missing or unparsable line, naming file, function and line.
    """
    name = os.path.basename(path)
    with open(path, "r") as f:
        lines = f.readlines()
    header, body = _parse_header(lines)

    model = header["T"][0] if header.get("T") else None
    elements = list(header.get("C", []))
    if schema is None and model is not None and elements:
        try:
            schema = BuildSchema(model, len(elements))
        except KeyError as e:
            raise MalformedTableError(f"{path}: {e}") from e

    n_funcs = None
    if header.get("F"):
        try:
            n_funcs = int(header["F"][1])
        except (IndexError, ValueError) as e:
            raise MalformedTableError(f"{path}: bad '#F' header {header['F']}") from e
        if header["F"][0] != "3":
            raise MalformedTableError(f"{path}: unsupported potential format {header['F'][0]}")
    elif schema is not None:
        n_funcs = sum(e.count for e in schema)

    if have_gradient is None:
        have_gradient = "G" in header

    # info block
    grid_specs = []
    pos = 0
    while n_funcs is None or len(grid_specs) < n_funcs:
        if pos >= len(body):
            if n_funcs is None:
                break
            raise MalformedTableError(
                f"Premature end of potential file {name}\n(in info block line {len(grid_specs)})")
        lineno, s = body[pos]
        if not s:
            if n_funcs is None:
                break
            pos += 1
            continue
        parts = s.split()
        try:
            grid_specs.append((float(parts[0]), float(parts[1]), int(parts[2])))
        except (IndexError, ValueError) as e:
            raise MalformedTableError(
                f"Malformed info block in {name}\n(function {len(grid_specs)}, line {lineno}: '{s}')") from e
        pos += 1
    if not grid_specs:
        raise MalformedTableError(f"No functions found in potential file {name}")
    n_funcs = len(grid_specs)

    # values: the remaining non-blank lines in order
    data = [(lineno, s) for lineno, s in body[pos:] if s]
    it = iter(data)
    raw_values = []
    for i, (_, _, npoints) in enumerate(grid_specs):
        vals = []
        if have_gradient:
            item = next(it, None)
            if item is None:
                raise MalformedTableError(
                    f"Premature end of potential file {name}\n(no gradient, function {i})")
            try:
                parts = item[1].split()
                vals.extend([float(parts[0]), float(parts[1])])
            except (IndexError, ValueError) as e:
                raise MalformedTableError(
                    f"Malformed gradient line in {name}\n(function {i}, line {item[0]}: '{item[1]}')") from e
        for j in range(npoints):
            item = next(it, None)
            if item is None:
                raise MalformedTableError(
                    f"Premature end of potential file {name}\n(no values, function {i} line {j})")
            try:
                vals.append(float(item[1].split()[0]))
            except ValueError as e:
                raise MalformedTableError(
                    f"Malformed value in {name}\n(function {i} line {j}, file line {item[0]}: '{item[1]}')") from e
        raw_values.append(vals)

    try:
        table = PotentialTable.load(grid_specs, raw_values, has_gradients=have_gradient, schema=schema)
    except MalformedTableError as e:
        raise MalformedTableError(f"{name}: {e}") from e
    if check_gauge:
        table.validate_gauge()

    def _flags(tag, cast):
        vals = header.get(tag)
        if vals is None:
            return [cast(0)] * n_funcs
        if len(vals) != n_funcs:
            raise MalformedTableError(f"{name}: '#{tag}' needs {n_funcs} entries, got {len(vals)}")
        return [cast(int(v)) for v in vals]

    return PotTableFile(
        table=table,
        have_gradient=have_gradient,
        invariant=_flags("I", bool),
        gradient=_flags("G", int),
        model=model,
        elements=elements,
    )


def WritePotTable(
    path: str,
    table: PotentialTable,
    have_gradient: bool = True,
    invariant: Optional[Sequence[bool]] = None,
    gradient: Optional[Sequence[int]] = None,
    model: Optional[str] = None,
    elements: Optional[Sequence[str]] = None,
):
    """
    Write a table in the format read by ReadPotTable.

    Values are written with 17 significant digits, so reading the file back
    reproduces the buffer exactly.

    Parameters
    ----------
    have_gradient : bool
        Emit a gradient line per function (and a "#G" header).
    invariant, gradient : sequence, optional
        Flags for the "#I" and "#G" headers.
    model : str, optional
        Written as "#T".
    elements : sequence of str, optional
        Written as "#C".
    """
    n = table.n_functions
    with open(path, "w") as f:
        f.write(f"#F 3 {n}\n")
        if model is not None:
            f.write(f"#T {model}\n")
        if elements:
            f.write("#C " + " ".join(elements) + "\n")
        if invariant is not None:
            f.write("#I " + " ".join(str(int(bool(v))) for v in invariant) + "\n")
        if have_gradient:
            gmask = gradient if gradient is not None else [3] * n
            f.write("#G " + " ".join(str(int(g)) for g in gmask) + "\n")
        f.write("#E\n")
        for i in range(n):
            f.write(f"{table.begin[i]:.16e} {table.end[i]:.16e} {table.npoints(i)}\n")
        for i in range(n):
            f.write("\n")
            if have_gradient:
                left, right = table.gradient(i)
                f.write(f"{left:.16e} {right:.16e}\n")
            for v in table.samples(i):
                f.write(f"{v:.16e}\n")
