from .base import BaseTrainer
from .lsq import TerminationReason, FitResult, LSQTrainer, fit, RunFit
