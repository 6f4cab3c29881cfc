"""
Feasibility Validator
Checks, before any solve, that the accounts can reach every category target.

For each category it computes the most each account could put toward it, fails
when the whole portfolio falls short, and works out which account the category
depends on when no other combination of accounts covers the target. Those
dependencies are then checked per account (enough cash) and per stock (some
stock can cover the dependency without overshooting another category).
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from portfolio_rebalancer.errors import (
    InsufficientCapacityError,
    OverCommittedAccountError,
    UnsatisfiableDependencyError,
)
from portfolio_rebalancer.models.portfolio import (
    Account,
    CategoryGroup,
    Holding,
    all_categories,
    total_value,
)

logger = logging.getLogger(__name__)

# Dollar slack for comparisons between sums of floats.
VALUE_EPSILON = 1e-6


@dataclass(frozen=True)
class CapacityRecord:
    """Target vs max-available dollars for a category, per account or portfolio-wide (account=None)."""

    category: str
    account: Optional[str]
    target_value: float
    max_available: float


@dataclass(frozen=True)
class Dependency:
    """`account` must supply at least `residual` dollars toward `category`."""

    account: str
    category: str
    residual: float
    target_value: float


@dataclass(frozen=True)
class StockBreach:
    """Buying `ticker` to cover a dependency overshoots `breached_category`."""

    account: str
    ticker: str
    dependency_category: str
    breached_category: str
    excess: float
    excess_percent: float


@dataclass
class ValidationReport:
    total_value: float
    target_values: Dict[str, float]
    capacity_records: List[CapacityRecord] = field(default_factory=list)
    dependencies: List[Dependency] = field(default_factory=list)
    breaches: List[StockBreach] = field(default_factory=list)


class FeasibilityValidator:
    """Runs capacity and dependency checks over a portfolio."""

    def __init__(self, accounts: Sequence[Account], category_groups: Sequence[CategoryGroup]):
        self.accounts = list(accounts)
        self.category_groups = list(category_groups)
        self.total_value = total_value(self.accounts)

    def validate(self) -> ValidationReport:
        """
        Validate the portfolio.

        Returns:
            ValidationReport with diagnostics, dependencies and non-fatal stock breaches

        Raises:
            InsufficientCapacityError: a category cannot reach its target
            OverCommittedAccountError: an account's dependencies exceed its value
            UnsatisfiableDependencyError: no stock can cover a dependency
        """
        report = ValidationReport(total_value=self.total_value, target_values={})

        for category in all_categories(self.category_groups):
            target_value = category.target_percent * self.total_value / 100
            report.target_values[category.name] = target_value

            capacity_by_account: Dict[str, float] = {}
            for account in self.accounts:
                capacity = self.max_account_capacity(account, category.name)
                capacity_by_account[account.name] = capacity
                report.capacity_records.append(
                    CapacityRecord(category.name, account.name, target_value, capacity)
                )
                logger.info(
                    f"Category {category.name} - Account {account.name} - "
                    f"Target: ${target_value:.2f}, Max avail: ${capacity:.2f}"
                )

            dependency = self._dependent_account(category.name, target_value, capacity_by_account)
            if dependency is not None:
                report.dependencies.append(dependency)

            max_total = sum(capacity_by_account.values())
            report.capacity_records.append(CapacityRecord(category.name, None, target_value, max_total))
            logger.info(
                f"Category {category.name} - Target: ${target_value:.2f}, Max avail: ${max_total:.2f}"
            )
            if max_total < target_value - VALUE_EPSILON:
                raise InsufficientCapacityError(category.name, target_value, max_total)

        if report.dependencies:
            logger.info(f"Dependent categories: {report.dependencies}")
        self._check_account_commitments(report.dependencies)
        report.breaches = self._check_dependencies_satisfiable(report.dependencies, report.target_values)
        return report

    @staticmethod
    def max_account_capacity(account: Account, category: str) -> float:
        """Most dollars `account` could put toward `category`; locked holdings only contribute what they hold."""
        capacity = 0.0
        for holding in account.holdings:
            if not holding.stock.has_allocation(category):
                continue
            base = holding.current_holding if holding.locked else account.value
            capacity += holding.stock.percentage(category) / 100 * base
        return capacity

    @staticmethod
    def _dependent_account(category: str, target_value: float,
                           capacity_by_account: Dict[str, float]) -> Optional[Dependency]:
        """The largest-capacity account must cover whatever the others cannot."""
        if not capacity_by_account:
            return None
        ordered = sorted(capacity_by_account.items(), key=lambda item: item[1])
        dependent_name, _ = ordered[-1]
        residual = target_value - sum(capacity for _, capacity in ordered[:-1])
        if residual <= 0:
            return None
        return Dependency(dependent_name, category, residual, target_value)

    def _check_account_commitments(self, dependencies: List[Dependency]) -> None:
        for account in self.accounts:
            owed = [d for d in dependencies if d.account == account.name]
            if not owed:
                continue
            residual_total = sum(d.residual for d in owed)
            categories = [d.category for d in owed]
            if residual_total > account.value + VALUE_EPSILON:
                raise OverCommittedAccountError(account.name, residual_total, account.value, categories)
            logger.info(
                f"Categories that are dependent on an account: {account.name}, "
                f"Categories: {categories}, needs ${residual_total:.2f} of ${account.value:.2f}"
            )

    def _check_dependencies_satisfiable(self, dependencies: List[Dependency],
                                        target_values: Dict[str, float]) -> List[StockBreach]:
        accounts_by_name = {account.name: account for account in self.accounts}
        breaches: List[StockBreach] = []
        unsatisfiable: List[Dependency] = []

        for dependency in dependencies:
            account = accounts_by_name[dependency.account]
            satisfied = False
            for holding in account.holdings:
                if not holding.stock.has_allocation(dependency.category):
                    continue
                stock_breaches = self._stock_breaches(account, holding, dependency, target_values)
                breaches.extend(stock_breaches)
                if not stock_breaches:
                    satisfied = True
            if not satisfied:
                unsatisfiable.append(dependency)

        if unsatisfiable:
            raise UnsatisfiableDependencyError(unsatisfiable)
        return breaches

    def _stock_breaches(self, account: Account, holding: Holding, dependency: Dependency,
                        target_values: Dict[str, float]) -> List[StockBreach]:
        """Categories pushed over target when `holding` alone covers the dependency."""
        stock = holding.stock
        percent = stock.percentage(dependency.category) / 100
        if percent <= 0:
            return []
        total_purchase = dependency.residual / percent

        breaches = []
        for category, target in target_values.items():
            if not stock.has_allocation(category):
                continue
            realized = stock.percentage(category) / 100 * total_purchase
            if realized <= target + VALUE_EPSILON:
                continue
            excess = realized - target
            excess_percent = excess / self.total_value * 100 if self.total_value else 0.0
            logger.warning(
                f"Stock {stock.ticker} in account {account.name} must be purchased for category "
                f"{dependency.category}, but doing so puts category {category} over its target "
                f"value by {excess:.2f} - {excess_percent:.2f}%"
            )
            breaches.append(StockBreach(
                account=account.name,
                ticker=stock.ticker,
                dependency_category=dependency.category,
                breached_category=category,
                excess=excess,
                excess_percent=excess_percent
            ))
        return breaches


def validate(accounts: Sequence[Account], category_groups: Sequence[CategoryGroup]) -> ValidationReport:
    """Validate `accounts` against `category_groups`; raises a ValidationError subclass on failure."""
    return FeasibilityValidator(accounts, category_groups).validate()
