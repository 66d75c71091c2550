# TabFit/trainers/base.py
from abc import ABC, abstractmethod
import numpy as np

from ..potentials.table import PotentialTable
from ..utils.mask import IndexMap


class BaseTrainer(ABC):
    def __init__(self, table: PotentialTable, index_map: IndexMap, optimizer, logger=None):
        """
        Parameters
        ----------
        table : PotentialTable
            The mutable table owned by this trainer.
        index_map : IndexMap
            Free slots of the table buffer.
        optimizer : BaseOptimizer
            Optimizer whose parameter vector mirrors table.values.
        logger : SummaryWriter-like, optional
            Anything with `add_scalar(tag, value, step)`.
        """
        self.table = table
        self.index_map = index_map
        self.optimizer = optimizer
        self.logger = logger

    def update_table(self, L_new: np.ndarray):
        """
        Write a new parameter vector into the table and rebuild its spline
        cache. Parameters stored in the optimizer are updated too.

        Parameters
        ----------
        L_new : np.ndarray
            New parameter vector.
        """
        self.table.set_values(L_new)
        self.table.rebuild_spline_cache()
        self.optimizer.set_params(L_new)

    def log_scalar(self, tag: str, value: float, step_index: int):
        if self.logger is not None:
            self.logger.add_scalar(tag, value, step_index)

    @abstractmethod
    def step(self, step_index: int = 0):
        """
        Perform one optimization step and sync the table.

        Parameters
        ----------
        step_index : int
            Current optimization step index (used for logging).
        """
        pass
