# TabFit/trainers/lsq.py
import enum
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .base import BaseTrainer
from ..evaluators.force import EvaluatorWeights, ForceMatchingEvaluator
from ..optimizers.powell_lsq import LSQConfig, LSQStep, PowellLSQOptimizer
from ..potentials.schema import BuildSchema
from ..potentials.table import PotentialTable
from ..utils.config import FitConfig
from ..utils.configio import ReadConfigurations
from ..utils.ffio import ReadPotTable, WritePotTable
from ..utils.mask import IndexMap, PinningPolicy, BuildIndexMap, ResolveInvariantFlags

log = logging.getLogger(__name__)


class TerminationReason(enum.Enum):
    CONVERGED = "converged"
    STALLED = "stalled"
    BUDGET_EXHAUSTED = "budget_exhausted"


@dataclass
class FitResult:
    """
    Outcome of a fit.

    Attributes
    ----------
    final_table : PotentialTable
        Table holding the best parameter vector found, spline cache valid.
    final_cost : float
    termination_reason : TerminationReason
    n_iterations : int
        Outer iterations performed.
    n_evaluations : int
        Evaluator calls made by the optimizer.
    history : list of float
        Cost after INIT and after every iteration.
    """
    final_table: PotentialTable
    final_cost: float
    termination_reason: TerminationReason
    n_iterations: int = 0
    n_evaluations: int = 0
    history: List[float] = field(default_factory=list)


class LSQTrainer(BaseTrainer):
    """
    Least-squares fit of a potential table against an objective evaluator.

    The trainer owns `table`: after each accepted step the new parameter
    vector is written back and the spline cache rebuilt. Evaluator calls
    only ever see read-only snapshots.

    Attributes
    ----------
    table : PotentialTable
    index_map : IndexMap
    evaluator : BaseEvaluator or callable
        `evaluate(vector) -> (cost, residuals)`.
    optimizer : PowellLSQOptimizer
    logger : SummaryWriter or None
        TensorBoard writer for logging optimization metrics.
    """

    def __init__(self, table: PotentialTable, index_map: IndexMap, evaluator,
                 config: Optional[LSQConfig] = None, logger=None):
        if index_map.length != table.len:
            raise ValueError(f"Index map covers {index_map.length} slots, table has {table.len}")
        self.evaluator = evaluator
        optimizer = PowellLSQOptimizer(table.values, index_map.mask, evaluator, config=config)
        super().__init__(table, index_map, optimizer, logger=logger)

    @property
    def config(self) -> LSQConfig:
        return self.optimizer.cfg

    def step(self, step_index: int = 0) -> LSQStep:
        """
        One outer iteration; the table is synced if the step was accepted.

        Returns
        -------
        LSQStep
        """
        result = self.optimizer.step()
        if result.accepted:
            self.update_table(self.optimizer.L)

        rel = 0.0
        if result.cost_before > 0.0:
            rel = (result.cost_before - result.cost_after) / result.cost_before
        self.log_scalar("LSQ/cost", result.cost_after, step_index)
        self.log_scalar("LSQ/rel_improvement", rel, step_index)
        self.log_scalar("LSQ/update_norm", float(np.linalg.norm(result.update)), step_index)
        self.log_scalar("LSQ/n_free", self.index_map.idxlen, step_index)
        log.info("iteration %d: cost %.10e (rel. improvement %.3e%s)", step_index, result.cost_after, rel,
                 ", fallback" if result.fallback else "")
        return result

    def run(self, iteration_budget: int, tolerance: float) -> FitResult:
        """
        INIT, then ITERATE until CONVERGED, STALLED or BUDGET_EXHAUSTED.

        Parameters
        ----------
        iteration_budget : int
            Maximum number of outer iterations.
        tolerance : float
            Relative improvement below which an iteration counts towards
            convergence (`patience` consecutive ones are needed).

        Returns
        -------
        FitResult
        """
        if iteration_budget < 0:
            raise ValueError(f"iteration_budget must be >= 0, got {iteration_budget}")
        cfg = self.config
        cost = self.optimizer.initialize()
        history = [cost]
        log.info("Start: %d free parameters, cost %.10e", self.index_map.idxlen, cost)

        reason = TerminationReason.BUDGET_EXHAUSTED
        n_iter = 0
        small = 0
        if cost <= cfg.abs_tol:
            reason = TerminationReason.CONVERGED
        else:
            for n_iter in range(1, iteration_budget + 1):
                result = self.step(n_iter)
                history.append(result.cost_after)
                if result.stalled:
                    reason = TerminationReason.STALLED
                    log.warning("No decreasing step along any direction; stopping at cost %.10e",
                                result.cost_after)
                    break
                if result.cost_after <= cfg.abs_tol:
                    reason = TerminationReason.CONVERGED
                    break
                rel = (result.cost_before - result.cost_after) / result.cost_before
                small = small + 1 if rel < tolerance else 0
                if small >= cfg.patience:
                    reason = TerminationReason.CONVERGED
                    break

        # accepted steps never raise the cost, so optimizer.L is the best point
        self.update_table(self.optimizer.L)
        log.info("Finished (%s) after %d iteration(s): cost %.10e", reason.value, n_iter, self.optimizer.cost)
        return FitResult(
            final_table=self.table,
            final_cost=float(self.optimizer.cost),
            termination_reason=reason,
            n_iterations=n_iter,
            n_evaluations=self.optimizer.n_evaluations,
            history=history,
        )


def fit(table: PotentialTable, index_map: IndexMap, evaluator, iteration_budget: int, tolerance: float,
        config: Optional[LSQConfig] = None, logger=None) -> FitResult:
    """
    Fit `table` in place and return the result.

    Parameters
    ----------
    table : PotentialTable
    index_map : IndexMap
    evaluator : BaseEvaluator or callable
    iteration_budget : int
    tolerance : float
    config : LSQConfig, optional
    logger : SummaryWriter-like, optional
    """
    return LSQTrainer(table, index_map, evaluator, config=config, logger=logger).run(iteration_budget, tolerance)


def RunFit(fit_config: FitConfig, logger=None) -> FitResult:
    """
    Fit a pair potential from files described by a FitConfig.

    Reads the table and the configurations, builds the index map from the
    file's invariant/gradient flags combined with the name patterns, fits
    and writes the result to `output_file` if given.
    """
    schema = None
    if fit_config.model is not None:
        ntypes = len(fit_config.elements)
        if ntypes == 0:
            raise ValueError("'elements' is required when 'model' is given")
        schema = BuildSchema(fit_config.model, ntypes)
    pot = ReadPotTable(fit_config.potential_file, schema=schema, check_gauge=fit_config.check_gauge)
    table = pot.table
    elements = list(fit_config.elements) or pot.elements
    if not elements:
        raise ValueError("No element list: set 'elements' or give the table a '#C' header")

    invariant = list(pot.invariant)
    if fit_config.invariant_patterns or fit_config.invariant_mode == "train":
        by_name = ResolveInvariantFlags(table, fit_config.invariant_patterns, mode=fit_config.invariant_mode)
        invariant = [a or b for a, b in zip(invariant, by_name)]
    policy = PinningPolicy(pin_last=dict(fit_config.pin_last),
                           clamp_first_role=fit_config.clamp_first_role,
                           pin_embedding_last=fit_config.pin_embedding_last)
    index_map = BuildIndexMap(table, invariant=invariant, gradient=pot.gradient,
                              have_gradient=pot.have_gradient, policy=policy)

    configs = ReadConfigurations(fit_config.config_file)
    evaluator = ForceMatchingEvaluator(table, configs, elements, weights=EvaluatorWeights(**fit_config.weights))
    config = LSQConfig(**fit_config.optimizer)

    result = fit(table, index_map, evaluator, fit_config.iteration_budget, fit_config.tolerance,
                 config=config, logger=logger)
    if fit_config.output_file:
        WritePotTable(fit_config.output_file, result.final_table, have_gradient=pot.have_gradient,
                      invariant=pot.invariant, gradient=pot.gradient if pot.have_gradient else None,
                      model=pot.model or fit_config.model, elements=elements)
        log.info("Wrote fitted potential to %s", fit_config.output_file)
    return result
