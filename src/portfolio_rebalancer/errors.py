"""
Rebalance Errors
Fatal conditions raised before or during calibration. Probe-level infeasibility
is a solve status, not an exception.
"""

from typing import List, Sequence


class RebalanceError(Exception):
    """Base class for all rebalance failures."""


class ValidationError(RebalanceError):
    """Input cannot possibly be rebalanced; raised before any solve."""


class InsufficientCapacityError(ValidationError):
    """Even at maximum allocation the accounts cannot reach a category target."""

    def __init__(self, category: str, target_value: float, max_available: float):
        self.category = category
        self.target_value = target_value
        self.max_available = max_available
        self.shortfall = target_value - max_available
        super().__init__(
            f"Accounts cant buy enough for category {category}: "
            f"target ${target_value:.2f}, max available ${max_available:.2f}, "
            f"short by ${self.shortfall:.2f}"
        )


class OverCommittedAccountError(ValidationError):
    """One account is the sole source for more category dollars than it holds."""

    def __init__(self, account: str, residual_total: float, account_value: float,
                 categories: Sequence[str]):
        self.account = account
        self.residual_total = residual_total
        self.account_value = account_value
        self.categories: List[str] = list(categories)
        self.excess = residual_total - account_value
        super().__init__(
            f"Too many categories are dependent on account: {account}, "
            f"Categories: {self.categories} need ${residual_total:.2f} "
            f"but account holds ${account_value:.2f} (over by ${self.excess:.2f})"
        )


class UnsatisfiableDependencyError(ValidationError):
    """No single stock covers a dependency without overshooting another category."""

    def __init__(self, dependencies: Sequence):
        self.dependencies = list(dependencies)
        details = ", ".join(
            f"{d.account}/{d.category} (${d.residual:.2f})" for d in self.dependencies
        )
        super().__init__(f"Unable to find stock for some categories: {details}")


class CalibrationExhausted(RebalanceError):
    """The global tolerance search never found a feasible solve."""

    def __init__(self, epsilon: float, message: str = None):
        self.epsilon = epsilon
        super().__init__(
            message or f"No rebalance possible: no feasible tolerance within [0, 100] (epsilon {epsilon})"
        )
