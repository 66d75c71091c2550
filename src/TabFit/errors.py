# TabFit/errors.py
import numpy as np


class TabFitError(Exception):
    """Base class for all TabFit errors."""


class MalformedTableError(TabFitError, ValueError):
    """
    The potential table is inconsistent (bad grid, missing samples, ...).
    Fatal: no part of a malformed table is usable.
    """


class SingularMatrixError(TabFitError, np.linalg.LinAlgError):
    """
    The normal-equation system has a zero (or numerically zero) pivot.
    Recoverable: the optimizer falls back to a steepest-descent step.
    """


class NoMinimumFoundError(TabFitError):
    """
    Bracketing could not enclose a minimum along a search direction.
    Recoverable: the direction is skipped.
    """


class MissingReferenceDataError(TabFitError, KeyError):
    """
    A configuration references an element or type the evaluator has no data for.
    Fatal: the objective cannot be evaluated consistently.
    """

    def __str__(self):
        # KeyError quotes its argument otherwise
        return Exception.__str__(self)
