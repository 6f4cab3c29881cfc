"""
Linear Programming (LP) Optimizer using GEKKO.
"""

import logging
import time
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Any, Tuple

from gekko import GEKKO

from portfolio_rebalancer.models.optimizers.base_optimizer import BaseOptimizer, OptimizationStatus

logger = logging.getLogger(__name__)

SOLVER_IDS = {'APOPT': 1, 'BPOPT': 2, 'IPOPT': 3}

# Slack allowed when a constraint only touches pinned variables and is checked directly.
CONSTANT_CHECK_TOLERANCE = 1e-6


class LPOptimizer(BaseOptimizer):
    """
    LP optimizer using GEKKO. Continuous variables only.

    Variables pinned by lb == ub become GEKKO parameters so their solved value is
    exactly the pinned value rather than a solver approximation.
    """

    def __init__(self, name: str = "LP", solver: str = 'APOPT',
                 remote: bool = False, time_limit: Optional[float] = None,
                 max_iter: Optional[int] = None):
        super().__init__(name, solver)

        self._model = GEKKO(remote=remote)
        self._model.options.SOLVER = SOLVER_IDS.get(solver.upper(), 1)

        if time_limit:
            self._model.options.MAX_TIME = time_limit
        if max_iter:
            self._model.options.MAX_ITER = max_iter

        self._vars: Dict[str, Any] = {}
        self._fixed: Dict[str, float] = {}
        self._violated: List[str] = []
        self._objective_constant = 0.0

    def add_variable(self, name: str, var_type: str = 'continuous',
                     lb: Optional[float] = None, ub: Optional[float] = None,
                     initial: Optional[float] = None) -> Any:
        """
        Add a decision variable to the model.

        Args:
            name: Variable name
            var_type: Only 'continuous' is supported
            lb: Lower bound
            ub: Upper bound
            initial: Initial value

        Returns:
            GEKKO variable (or parameter when pinned)
        """
        if var_type != 'continuous':
            raise ValueError(f"LPOptimizer only supports continuous variables, got {var_type!r}")
        if name in self._vars:
            raise ValueError(f"Variable {name} already defined")

        if lb is not None and ub is not None and lb == ub:
            var = self._model.Param(value=lb)
            self._fixed[name] = float(lb)
        else:
            if initial is None:
                initial = lb if lb is not None else 0
            var = self._model.Var(value=initial, lb=lb, ub=ub)

        self._vars[name] = var
        return var

    def _split_terms(self, coefficients: Mapping[str, float]) -> Tuple[List[Any], float]:
        """Separate free-variable terms from the constant contributed by pinned variables."""
        terms = []
        constant = 0.0
        for var_name, coefficient in coefficients.items():
            if var_name not in self._vars:
                raise KeyError(f"Unknown variable {var_name}")
            if coefficient == 0:
                continue
            if var_name in self._fixed:
                constant += coefficient * self._fixed[var_name]
            else:
                terms.append(coefficient * self._vars[var_name])
        return terms, constant

    def add_constraint(self, name: str, coefficients: Mapping[str, float],
                       lb: Optional[float] = None, ub: Optional[float] = None) -> None:
        """
        Add a ranged linear constraint to the model.

        Args:
            name: Constraint identifier (used for diagnostics)
            coefficients: {variable name: coefficient}
            lb: Lower bound, None for unbounded
            ub: Upper bound, None for unbounded
        """
        terms, constant = self._split_terms(coefficients)

        if not terms:
            too_low = lb is not None and constant < lb - CONSTANT_CHECK_TOLERANCE
            too_high = ub is not None and constant > ub + CONSTANT_CHECK_TOLERANCE
            if too_low or too_high:
                logger.debug(f"Constraint {name} violated by pinned values: {constant} not in [{lb}, {ub}]")
                self._violated.append(name)
            return

        expression = self._model.sum(terms)
        if lb is not None and ub is not None and lb == ub:
            self._model.Equation(expression == lb - constant)
            return
        if lb is not None:
            self._model.Equation(expression >= lb - constant)
        if ub is not None:
            self._model.Equation(expression <= ub - constant)

    def set_objective(self, coefficients: Mapping[str, float], sense: str = 'minimize') -> None:
        """
        Set the objective function.

        Args:
            coefficients: {variable name: coefficient}
            sense: 'minimize' or 'maximize'
        """
        sense = sense.lower()
        if sense not in ('minimize', 'maximize'):
            raise ValueError(f"Invalid sense: {sense}. Must be 'minimize' or 'maximize'")
        self.optimization_sense = sense

        terms, constant = self._split_terms(coefficients)
        self._objective_constant = constant
        if terms:
            expression = self._model.sum(terms)
            if sense == 'minimize':
                self._model.Minimize(expression)
            else:
                self._model.Maximize(expression)
        self.objective = dict(coefficients)

    def _build_result(self, status: OptimizationStatus, start: float,
                      message: str) -> Dict[str, Any]:
        variables = None
        objective = None
        if status == OptimizationStatus.OPTIMAL:
            variables = {name: self.get_variable_value(name) for name in self._vars}
            if self.objective is not None:
                objective = sum(c * variables[n] for n, c in self.objective.items())

        self.result = {
            'status': status,
            'objective_value': objective,
            'variables': variables,
            'solver_time': time.time() - start,
            'message': message
        }
        self.solved_at = datetime.now()
        return self.result

    def solve(self, disp: bool = False, **kwargs) -> Dict[str, Any]:
        """
        Solve the optimization problem.

        Args:
            disp: Display solver output
            **kwargs: Additional GEKKO options

        Returns:
            Dictionary with keys: status, objective_value, variables, solver_time, message
        """
        start = time.time()
        try:
            if not self._vars:
                return self._build_result(OptimizationStatus.ERROR, start, 'No variables defined')
            if self._violated:
                return self._build_result(
                    OptimizationStatus.INFEASIBLE, start,
                    f"Constraints violated by pinned variables: {self._violated}"
                )
            if len(self._fixed) == len(self._vars):
                return self._build_result(OptimizationStatus.OPTIMAL, start, 'All variables pinned')

            for key, value in kwargs.items():
                try:
                    setattr(self._model.options, key.upper(), value)
                except AttributeError:
                    pass

            try:
                self._model.solve(disp=disp)
                status = OptimizationStatus.OPTIMAL if self._model.options.APPSTATUS == 1 \
                    else OptimizationStatus.NOT_SOLVED
                message = f"APPSTATUS: {self._model.options.APPSTATUS}"
            except Exception as e:
                # GEKKO reports infeasibility by raising from solve().
                status = OptimizationStatus.INFEASIBLE if 'Solution Not Found' in str(e) \
                    else OptimizationStatus.ABNORMAL
                message = str(e)
                logger.debug(f"{self.name} solve failed: {message}")

            return self._build_result(status, start, message)
        finally:
            # Each optimizer is single-use; drop GEKKO's run directory.
            self._model.cleanup()

    def get_variable_value(self, var_name: str) -> Optional[float]:
        """
        Get the optimized value of a variable.

        Args:
            var_name: Name of the variable

        Returns:
            Variable value or None if not found
        """
        if var_name in self._fixed:
            return self._fixed[var_name]
        if var_name in self._vars:
            var = self._vars[var_name]
            value = var.value[0] if hasattr(var.value, '__iter__') else var.value
            return float(value)
        return None
