# TabFit/optimizers/base.py
from abc import ABC, abstractmethod
import numpy as np

class BaseOptimizer(ABC):
    def __init__(self, L: np.ndarray, mask: np.ndarray):
        """
        Parameters
        ----------
        L : np.ndarray
            Initial parameter vector (the full table buffer).
        mask : np.ndarray
            Boolean mask array indicating which parameters are optimizable.
        """
        self.L = np.array(L, dtype=float, copy=True)
        self.mask = np.array(mask, dtype=bool, copy=True)
        assert self.L.shape == self.mask.shape, "Parameter/mask shape mismatch"

    @property
    def free(self) -> np.ndarray:
        """Indices of optimizable parameters, in buffer order."""
        return np.flatnonzero(self.mask)

    def set_params(self, L_new: np.ndarray):
        """
        Update the internal parameter vector L.

        Parameters
        ----------
        L_new : np.ndarray
            New parameter values (must match shape of self.L).
        """
        assert L_new.shape == self.L.shape, "Parameter shape mismatch"
        self.L = np.array(L_new, dtype=float, copy=True)

    @abstractmethod
    def step(self):
        """
        Apply one optimization step.

        Returns
        -------
        update : object
            Description of the update applied to self.L.
        """
        pass
