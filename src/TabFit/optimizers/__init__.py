from .base import BaseOptimizer
from .linalg import LUDecomposition, lu_decompose, lu_solve, lu_refine
from .linesearch import Bracket, LineMinimum, bracket, minimize, line_minimize
from .powell_lsq import LSQConfig, LSQStep, PowellLSQOptimizer
