"""
Problem Builder
Translates accounts, category targets and a per-category tolerance map into a
solver-independent linear program.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from portfolio_rebalancer.models.portfolio import (
    Account,
    CategoryGroup,
    Holding,
    all_categories,
    total_value,
)

logger = logging.getLogger(__name__)

DEPLOYED_CASH_CONSTRAINT = 'deployed_cash'

# Dollars of slack when re-imposing a deployed-cash total read back from the solver.
DEPLOYED_CASH_SLACK = 0.01


class BuildMode(str, Enum):
    MINIMIZE_EXPENSE = 'minimize_expense'
    MAXIMIZE_INVESTED = 'maximize_invested'


@dataclass(frozen=True)
class LPVariable:
    name: str
    lb: Optional[float]
    ub: Optional[float]


@dataclass(frozen=True)
class LPConstraint:
    name: str
    lb: Optional[float]
    ub: Optional[float]
    coefficients: Dict[str, float] = field(hash=False)


@dataclass(frozen=True)
class LPObjective:
    coefficients: Dict[str, float] = field(hash=False)
    sense: str = 'minimize'


@dataclass(frozen=True)
class LPSpec:
    variables: Tuple[LPVariable, ...]
    constraints: Tuple[LPConstraint, ...]
    objective: LPObjective

    def constraint(self, name: str) -> LPConstraint:
        for constraint in self.constraints:
            if constraint.name == name:
                return constraint
        raise KeyError(name)


def variable_name(account: Account, holding: Holding) -> str:
    return f"{account.name}/{holding.ticker}"


def account_constraint_name(account: Account) -> str:
    return f"account:{account.name}"


def category_constraint_name(category: str) -> str:
    return f"category:{category}"


class ProblemBuilder:
    """
    Builds the rebalance LP.

    One continuous variable per (account, holding) holds the post-rebalance
    dollar value. Each account's variables sum to its value (or at most its
    value when maximizing invested cash) and each category's weighted sum must
    land within its tolerance band around the target.
    """

    def __init__(self, accounts: Sequence[Account], category_groups: Sequence[CategoryGroup]):
        self.accounts = list(accounts)
        self.categories = all_categories(category_groups)
        self.total_cash = total_value(self.accounts)

    def target_values(self) -> Dict[str, float]:
        return {c.name: c.target_percent * self.total_cash / 100 for c in self.categories}

    def build(self, tolerances: Mapping[str, float],
              mode: BuildMode = BuildMode.MINIMIZE_EXPENSE) -> LPSpec:
        """
        Build the LP for one tolerance map.

        Args:
            tolerances: {category name: allowed deviation, percent of the category target}
            mode: BuildMode.MINIMIZE_EXPENSE or BuildMode.MAXIMIZE_INVESTED

        Returns:
            LPSpec
        """
        mode = BuildMode(mode)
        missing = [c.name for c in self.categories if c.name not in tolerances]
        if missing:
            raise KeyError(f"No tolerance given for categories: {missing}")

        variables: List[LPVariable] = []
        constraints: List[LPConstraint] = []
        expense: Dict[str, float] = {}
        invested: Dict[str, float] = {}

        for account in self.accounts:
            account_coefficients = {}
            for holding in account.holdings:
                name = variable_name(account, holding)
                if holding.locked:
                    if holding.minimum_balance > holding.current_holding:
                        logger.warning(
                            f"Locked holding {name} keeps ${holding.current_holding:.2f}, "
                            f"below its minimum balance ${holding.minimum_balance:.2f}"
                        )
                    variables.append(LPVariable(name, holding.current_holding, holding.current_holding))
                else:
                    variables.append(LPVariable(name, holding.minimum_balance, None))
                account_coefficients[name] = 1.0
                expense[name] = holding.stock.expense_ratio
                invested[name] = 1.0

            if mode == BuildMode.MINIMIZE_EXPENSE:
                constraints.append(LPConstraint(
                    account_constraint_name(account), account.value, account.value, account_coefficients
                ))
            else:
                constraints.append(LPConstraint(
                    account_constraint_name(account), None, account.value, account_coefficients
                ))

        for category in self.categories:
            target = category.target_percent * self.total_cash / 100
            wiggle = tolerances[category.name] / 100.0 * target
            # target - wiggle <= sum(stock value * percent in category) <= target + wiggle
            coefficients = {}
            for account in self.accounts:
                for holding in account.holdings:
                    if holding.stock.has_allocation(category.name):
                        coefficients[variable_name(account, holding)] = \
                            holding.stock.percentage(category.name) / 100.0
            constraints.append(LPConstraint(
                category_constraint_name(category.name), target - wiggle, target + wiggle, coefficients
            ))

        if mode == BuildMode.MINIMIZE_EXPENSE:
            objective = LPObjective(expense, 'minimize')
        else:
            objective = LPObjective(invested, 'maximize')

        return LPSpec(tuple(variables), tuple(constraints), objective)

    def pin_deployed_cash(self, spec: LPSpec, deployed: float) -> LPSpec:
        """Follow-up to a maximize-invested solve: keep `deployed` dollars invested and minimize fees."""
        invested = {variable.name: 1.0 for variable in spec.variables}
        expense = {}
        for account in self.accounts:
            for holding in account.holdings:
                expense[variable_name(account, holding)] = holding.stock.expense_ratio

        pinned = LPConstraint(DEPLOYED_CASH_CONSTRAINT, deployed - DEPLOYED_CASH_SLACK, None, invested)
        return LPSpec(
            variables=spec.variables,
            constraints=spec.constraints + (pinned,),
            objective=LPObjective(expense, 'minimize')
        )
