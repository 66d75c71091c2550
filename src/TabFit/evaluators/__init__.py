from .base import BaseEvaluator
from .force import EvaluatorWeights, ForceMatchingEvaluator
