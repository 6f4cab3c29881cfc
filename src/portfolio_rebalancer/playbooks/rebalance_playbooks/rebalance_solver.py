"""
Rebalance Solver
Runs one construct -> solve -> extract cycle per tolerance map against a fresh optimizer.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from portfolio_rebalancer.models.optimizers.base_optimizer import BaseOptimizer, OptimizationStatus
from portfolio_rebalancer.models.portfolio import Account, CategoryGroup
from portfolio_rebalancer.playbooks.rebalance_playbooks.problem_builder import (
    BuildMode,
    LPSpec,
    ProblemBuilder,
    variable_name,
)

logger = logging.getLogger(__name__)


@dataclass
class SolveResult:
    """Outcome of one rebalance solve. `accounts` is None unless the status is optimal."""

    status: OptimizationStatus
    accounts: Optional[List[Account]] = None
    objective_value: Optional[float] = None
    message: str = ''

    @property
    def is_optimal(self) -> bool:
        return self.status == OptimizationStatus.OPTIMAL

    @property
    def yearly_fees(self) -> Optional[float]:
        """Expense ratios are percents, so the objective is 100x the yearly fee in dollars."""
        if self.objective_value is None:
            return None
        return self.objective_value / 100


def load_spec(optimizer: BaseOptimizer, spec: LPSpec) -> BaseOptimizer:
    """Feed an LPSpec into an optimizer through its variable/constraint/objective calls."""
    for variable in spec.variables:
        optimizer.add_variable(variable.name, 'continuous', lb=variable.lb, ub=variable.ub)
    for constraint in spec.constraints:
        optimizer.add_constraint(constraint.name, constraint.coefficients, lb=constraint.lb, ub=constraint.ub)
    optimizer.set_objective(spec.objective.coefficients, sense=spec.objective.sense)
    return optimizer


class RebalanceSolver:
    """
    Solves the rebalance LP for a tolerance map.

    Ordinary infeasibility is reported through SolveResult.status, never raised.
    """

    def __init__(self, accounts: Sequence[Account], category_groups: Sequence[CategoryGroup],
                 optimizer_factory: Callable[[], BaseOptimizer],
                 mode: BuildMode = BuildMode.MINIMIZE_EXPENSE):
        self.accounts = list(accounts)
        self.builder = ProblemBuilder(self.accounts, category_groups)
        self.optimizer_factory = optimizer_factory
        self.mode = BuildMode(mode)
        self.solve_count = 0

    def _run(self, spec: LPSpec) -> Dict[str, Any]:
        optimizer = load_spec(self.optimizer_factory(), spec)
        self.solve_count += 1
        result = optimizer.solve()
        logger.debug(
            f"Solve #{self.solve_count}: {len(spec.variables)} variables, "
            f"{len(spec.constraints)} constraints -> {result['status']} "
            f"({result.get('solver_time', 0):.3f}s)"
        )
        return result

    def solve(self, tolerances: Mapping[str, float]) -> SolveResult:
        spec = self.builder.build(tolerances, self.mode)
        result = self._run(spec)

        if self.mode == BuildMode.MAXIMIZE_INVESTED and result['status'] == OptimizationStatus.OPTIMAL:
            deployed = sum(result['variables'].values())
            logger.debug(f"Deployed cash {deployed:.2f}, minimizing expense ratio")
            result = self._run(self.builder.pin_deployed_cash(spec, deployed))

        if result['status'] != OptimizationStatus.OPTIMAL:
            return SolveResult(status=OptimizationStatus(result['status']), message=result.get('message', ''))

        return SolveResult(
            status=OptimizationStatus.OPTIMAL,
            accounts=self._extract_accounts(result['variables']),
            objective_value=result.get('objective_value'),
            message=result.get('message', '')
        )

    def _extract_accounts(self, variables: Mapping[str, float]) -> List[Account]:
        new_accounts = []
        for account in self.accounts:
            values = {
                holding.ticker: variables[variable_name(account, holding)]
                for holding in account.holdings
            }
            new_accounts.append(account.with_values(values))
        return new_accounts
