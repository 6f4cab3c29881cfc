"""
Tolerance Calibration
Finds the tightest per-category tolerance bands that still solve.

A loose tolerance is always easier to satisfy but lands further from the
targets. Calibration first binary-searches one uniform tolerance for every
category, then tightens categories one at a time. Categories share accounts,
so the minimum reachable for one depends on the order they are tightened in;
many random orders are tried and the map with the lowest mean wins.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np

from portfolio_rebalancer.errors import CalibrationExhausted
from portfolio_rebalancer.models.portfolio import Account

logger = logging.getLogger(__name__)

MAX_TOLERANCE = 100.0
DEFAULT_OPTIMIZE_TIL = 0.01
DEFAULT_TRIALS = 100


def binary_search(predicate: Callable[[float], bool], epsilon: float,
                  upper: float = MAX_TOLERANCE) -> Optional[float]:
    """
    Smallest probed value in [0, upper] for which `predicate` holds.

    `predicate` must be monotonic: if it holds for x it holds for anything larger.
    Probes midpoints until the search interval is no wider than `epsilon`.

    Returns:
        The last successful probe, or None if no probe succeeded
    """
    if epsilon <= 0:
        raise ValueError(f"epsilon must be positive, was: {epsilon}")

    lower_bound = 0.0
    upper_bound = upper
    last_good = None
    while abs(upper_bound - lower_bound) > epsilon:
        probe = (lower_bound + upper_bound) / 2
        if predicate(probe):
            upper_bound = probe
            last_good = probe
        else:
            lower_bound = probe
    return last_good


@dataclass
class CalibrationResult:
    tolerances: Dict[str, float]
    mean_tolerance: float
    overall_tolerance: float
    accounts: List[Account]
    objective_value: Optional[float] = None
    orders_tried: List[Tuple[str, ...]] = field(default_factory=list)
    probe_count: int = 0
    yearly_fees: Optional[float] = None


class ToleranceCalibrator:
    """
    Drives repeated solves to calibrate tolerances.

    Args:
        solver: Anything with solve(tolerances) -> SolveResult, normally a RebalanceSolver
        categories: Category names, in portfolio order
        optimize_til: Binary search epsilon, in tolerance percent
        trials: Number of random category orders to attempt
        rng: numpy Generator used for orders; pass a seeded one for reproducible runs
    """

    def __init__(self, solver, categories: Sequence[str],
                 optimize_til: float = DEFAULT_OPTIMIZE_TIL, trials: int = DEFAULT_TRIALS,
                 rng: Optional[np.random.Generator] = None):
        if optimize_til <= 0:
            raise ValueError(f"optimize_til must be positive, was: {optimize_til}")
        self.solver = solver
        self.categories = list(categories)
        self.optimize_til = optimize_til
        self.trials = trials
        self.rng = rng if rng is not None else np.random.default_rng()
        self.probe_count = 0

    def _feasible(self, tolerances: Mapping[str, float]) -> bool:
        self.probe_count += 1
        return self.solver.solve(tolerances).is_optimal

    def uniform_tolerances(self, tolerance: float) -> Dict[str, float]:
        return {category: tolerance for category in self.categories}

    def find_overall_tolerance(self) -> float:
        """Tightest single tolerance that works for every category at once."""
        overall = binary_search(
            lambda tolerance: self._feasible(self.uniform_tolerances(tolerance)),
            self.optimize_til
        )
        if overall is None:
            logger.warning("Failed to optimize wiggle percent.")
            raise CalibrationExhausted(self.optimize_til)
        logger.info(f"Overall optimized with percent {overall}.")
        return overall

    def find_category_tolerance(self, working: Mapping[str, float], category: str) -> float:
        """Tighten one category with every other category held at its working value."""
        def feasible(tolerance: float) -> bool:
            trial = dict(working)
            trial[category] = tolerance
            return self._feasible(trial)

        found = binary_search(feasible, self.optimize_til, upper=working[category])
        # The working value already solved, so keep it when nothing tighter does.
        return working[category] if found is None else found

    def random_order(self) -> Tuple[str, ...]:
        return tuple(self.categories[i] for i in self.rng.permutation(len(self.categories)))

    def refine(self, base: Mapping[str, float]) -> Tuple[Dict[str, float], List[Tuple[str, ...]]]:
        """
        Per-category refinement over random orders.

        Returns:
            (tolerance map with the lowest mean, orders actually tried)
        """
        tried: Set[Tuple[str, ...]] = set()
        orders: List[Tuple[str, ...]] = []
        lowest_solution = dict(base)
        lowest_average = float('inf')

        for i in range(self.trials):
            order = self.random_order()
            if order in tried:
                logger.debug(f"Trial {i}: skipping repeated order {order}")
                continue
            tried.add(order)
            orders.append(order)
            logger.info(f"Trial {i}: optimizing with order {list(order)}")

            working = dict(base)
            for category in order:
                working[category] = self.find_category_tolerance(working, category)

            average = float(np.mean(list(working.values()))) if working else 0.0
            if average < lowest_average:
                lowest_average = average
                lowest_solution = working
                logger.info(f"Found next smallest mean tolerance {average}")

        return lowest_solution, orders

    def calibrate(self) -> CalibrationResult:
        """
        Run the global pass, the per-category refinement and a final solve.

        Raises:
            CalibrationExhausted: no uniform tolerance in [0, 100] solves
        """
        overall = self.find_overall_tolerance()
        tolerances, orders = self.refine(self.uniform_tolerances(overall))
        logger.info(f"Smallest wiggle found {tolerances}")

        final = self.solver.solve(tolerances)
        self.probe_count += 1
        if not final.is_optimal:
            raise CalibrationExhausted(
                self.optimize_til,
                f"Final solve with calibrated tolerances was {final.status.value}: {final.message}"
            )

        mean = float(np.mean(list(tolerances.values()))) if tolerances else 0.0
        return CalibrationResult(
            tolerances=tolerances,
            mean_tolerance=mean,
            overall_tolerance=overall,
            accounts=final.accounts,
            objective_value=final.objective_value,
            yearly_fees=final.yearly_fees,
            orders_tried=orders,
            probe_count=self.probe_count
        )
