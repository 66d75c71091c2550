"""
TabFit: least-squares fitting of tabulated, spline-interpolated interatomic potentials.
"""

# Fit driver
from .trainers.lsq import LSQTrainer, FitResult, TerminationReason, fit, RunFit

# Optimizers
from .optimizers.base import BaseOptimizer
from .optimizers.powell_lsq import LSQConfig, PowellLSQOptimizer
from .optimizers.linalg import lu_decompose, lu_solve, lu_refine
from .optimizers.linesearch import bracket, minimize, line_minimize

# Evaluators
from .evaluators.base import BaseEvaluator
from .evaluators.force import EvaluatorWeights, ForceMatchingEvaluator

# Potentials
from .potentials.schema import ROLE_REGISTRY, BuildSchema, PairColumn
from .potentials.table import PotentialTable

# Utilities
from .utils.mask import PinningPolicy, IndexMap, BuildIndexMap, ResolveInvariantFlags, DescribeIndexMap
from .utils.ffio import ReadPotTable, WritePotTable
from .utils.configio import Configuration, ReadConfigurations, WriteConfigurations
from .utils.config import FitConfig, LoadFitConfig

# Errors
from .errors import (
    TabFitError, MalformedTableError, SingularMatrixError,
    NoMinimumFoundError, MissingReferenceDataError,
)

__all__ = [
    "LSQTrainer",
    "FitResult",
    "TerminationReason",
    "fit",
    "RunFit",
    "BaseOptimizer",
    "LSQConfig",
    "PowellLSQOptimizer",
    "lu_decompose",
    "lu_solve",
    "lu_refine",
    "bracket",
    "minimize",
    "line_minimize",
    "BaseEvaluator",
    "EvaluatorWeights",
    "ForceMatchingEvaluator",
    "ROLE_REGISTRY",
    "BuildSchema",
    "PairColumn",
    "PotentialTable",
    "PinningPolicy",
    "IndexMap",
    "BuildIndexMap",
    "ResolveInvariantFlags",
    "DescribeIndexMap",
    "ReadPotTable",
    "WritePotTable",
    "Configuration",
    "ReadConfigurations",
    "WriteConfigurations",
    "FitConfig",
    "LoadFitConfig",
    "TabFitError",
    "MalformedTableError",
    "SingularMatrixError",
    "NoMinimumFoundError",
    "MissingReferenceDataError",
]
