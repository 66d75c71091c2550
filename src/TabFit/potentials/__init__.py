# TabFit/potentials/__init__.py
from .schema import (
    NATURAL_BOUNDARY, FunctionRole, ROLE_REGISTRY, SchemaEntry,
    BuildSchema, ExpandSchema, FunctionNames, PairColumn,
)
from .spline import SplineSecondDerivatives, SplineEval
from .table import FunctionLayout, PotentialTable
