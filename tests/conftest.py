"""Pytest configuration and fixtures."""

from typing import Any, Callable, Dict, List, Mapping, Optional

import numpy as np
import pytest

from portfolio_rebalancer.models.optimizers.base_optimizer import BaseOptimizer, OptimizationStatus
from portfolio_rebalancer.models.portfolio import Account, Category, CategoryGroup, Holding, Stock
from portfolio_rebalancer.playbooks.rebalance_playbooks.rebalance_solver import SolveResult


class FakeOptimizer(BaseOptimizer):
    """
    Deterministic stand-in for a real LP backend.

    It never optimizes: it checks one candidate assignment against the
    constraints it was given and reports optimal only if every constraint holds.
    Variables missing from the candidate sit at their lower bound.
    """

    instances: List['FakeOptimizer'] = []

    def __init__(self, candidate: Optional[Mapping[str, float]] = None,
                 status: Optional[OptimizationStatus] = None):
        super().__init__(name="fake", solver="fake")
        self.candidate = dict(candidate or {})
        self.forced_status = status
        self.variables: Dict[str, tuple] = {}
        self.constraints: Dict[str, tuple] = {}
        FakeOptimizer.instances.append(self)

    def add_variable(self, name, var_type='continuous', lb=None, ub=None, initial=None):
        self.variables[name] = (lb, ub)
        return name

    def add_constraint(self, name, coefficients, lb=None, ub=None):
        self.constraints[name] = (dict(coefficients), lb, ub)

    def set_objective(self, coefficients, sense='minimize'):
        self.objective = dict(coefficients)
        self.optimization_sense = sense

    def assignment(self) -> Dict[str, float]:
        values = {}
        for name, (lb, ub) in self.variables.items():
            if lb is not None and ub is not None and lb == ub:
                values[name] = lb
            else:
                values[name] = self.candidate.get(name, lb if lb is not None else 0.0)
        return values

    def satisfied(self, values: Mapping[str, float]) -> bool:
        for coefficients, lb, ub in self.constraints.values():
            total = sum(c * values[n] for n, c in coefficients.items())
            if lb is not None and total < lb - 1e-9:
                return False
            if ub is not None and total > ub + 1e-9:
                return False
        return True

    def solve(self, **kwargs) -> Dict[str, Any]:
        values = self.assignment()
        status = self.forced_status
        if status is None:
            status = OptimizationStatus.OPTIMAL if self.satisfied(values) else OptimizationStatus.INFEASIBLE

        optimal = status == OptimizationStatus.OPTIMAL
        self.result = {
            'status': status,
            'objective_value': sum(c * values[n] for n, c in self.objective.items()) if optimal else None,
            'variables': values if optimal else None,
            'solver_time': 0.0,
            'message': 'fake'
        }
        return self.result

    def get_variable_value(self, var_name):
        return self.assignment().get(var_name)


class ThresholdSolver:
    """Solver double: a tolerance map is feasible when `rule(tolerances)` says so."""

    def __init__(self, rule: Callable[[Mapping[str, float]], bool]):
        self.rule = rule
        self.calls: List[Dict[str, float]] = []

    def solve(self, tolerances: Mapping[str, float]) -> SolveResult:
        self.calls.append(dict(tolerances))
        if self.rule(tolerances):
            return SolveResult(status=OptimizationStatus.OPTIMAL, accounts=[], objective_value=0.0)
        return SolveResult(status=OptimizationStatus.INFEASIBLE)


@pytest.fixture(autouse=True)
def reset_fake_optimizers():
    FakeOptimizer.instances = []
    yield
    FakeOptimizer.instances = []


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def x_stock():
    return Stock(ticker="XS", expense_ratio=0.05, allocation={"X": 100})


@pytest.fixture
def y_stock():
    return Stock(ticker="YS", expense_ratio=0.10, allocation={"Y": 100})


@pytest.fixture
def fifty_fifty_groups():
    return [CategoryGroup(name="Default", categories=(Category("X", 50), Category("Y", 50)))]


@pytest.fixture
def single_account(x_stock, y_stock):
    """One $1000 account holding one pure-X and one pure-Y stock."""
    return Account(
        name="Brokerage",
        value=1000.0,
        holdings=(
            Holding(x_stock, current_holding=700.0),
            Holding(y_stock, current_holding=300.0),
        )
    )
