"""
Base Optimizer Class
Abstract interface for linear programming backends.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Optional, Any, Mapping
from datetime import datetime


class OptimizationStatus(str, Enum):
    OPTIMAL = 'optimal'
    INFEASIBLE = 'infeasible'
    UNBOUNDED = 'unbounded'
    NOT_SOLVED = 'not_solved'
    ABNORMAL = 'abnormal'
    ERROR = 'error'


class BaseOptimizer(ABC):
    """
    Abstract base class for all optimizers.

    Constraints and objectives are linear and passed as {variable_name: coefficient}
    maps so that callers never touch backend expression objects.
    """

    def __init__(self, name: str = "optimizer", solver: Optional[str] = None):
        self.name = name
        self.solver = solver
        self.objective: Optional[Dict[str, float]] = None
        self.optimization_sense = 'minimize'
        self.result: Optional[Dict[str, Any]] = None
        self._model = None
        self.created_at = datetime.now()
        self.solved_at: Optional[datetime] = None

    @abstractmethod
    def add_variable(self, name: str, var_type: str = 'continuous',
                     lb: Optional[float] = None, ub: Optional[float] = None,
                     initial: Optional[float] = None) -> Any:
        """Add decision variable to the model."""
        pass

    @abstractmethod
    def add_constraint(self, name: str, coefficients: Mapping[str, float],
                       lb: Optional[float] = None, ub: Optional[float] = None) -> None:
        """Add constraint lb <= sum(coefficient * variable) <= ub. A None bound is unbounded."""
        pass

    @abstractmethod
    def set_objective(self, coefficients: Mapping[str, float], sense: str = 'minimize') -> None:
        """Set objective function."""
        pass

    @abstractmethod
    def solve(self, **kwargs) -> Dict[str, Any]:
        """Solve the optimization problem. Returns dict with status, objective_value, variables, solver_time."""
        pass

    @abstractmethod
    def get_variable_value(self, var_name: str) -> Optional[float]:
        """Get optimized value of a variable."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}', solver={self.solver})"
