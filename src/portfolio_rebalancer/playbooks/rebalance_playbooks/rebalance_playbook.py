"""
Portfolio Rebalance Playbook
Config-driven workflow: load portfolio, validate, calibrate tolerances, save results.
"""

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import numpy as np
import pandas as pd

from portfolio_rebalancer.errors import RebalanceError
from portfolio_rebalancer.models.optimizers.base_optimizer import BaseOptimizer
from portfolio_rebalancer.models.portfolio import Account, CategoryGroup, all_categories
from portfolio_rebalancer.playbooks.rebalance_playbooks import reporting
from portfolio_rebalancer.playbooks.rebalance_playbooks.calibration import (
    DEFAULT_OPTIMIZE_TIL,
    DEFAULT_TRIALS,
    CalibrationResult,
    ToleranceCalibrator,
)
from portfolio_rebalancer.playbooks.rebalance_playbooks.feasibility_validator import (
    FeasibilityValidator,
    ValidationReport,
)
from portfolio_rebalancer.playbooks.rebalance_playbooks.problem_builder import BuildMode
from portfolio_rebalancer.playbooks.rebalance_playbooks.rebalance_solver import RebalanceSolver
from portfolio_rebalancer.storage.base_storage import StockSolverStorage
from portfolio_rebalancer.storage.csv_storage import CsvStockSolverStorage
from portfolio_rebalancer.utils.typings import OPTIMIZER_TYPES


class RebalancePlaybook:
    """Rebalances a multi-account portfolio toward category targets."""

    def __init__(self, config: Dict[str, Any], storage: Optional[StockSolverStorage] = None,
                 optimizer_factory: Optional[Callable[[], BaseOptimizer]] = None,
                 rng: Optional[np.random.Generator] = None):
        """
        Initialize playbook.

        Args:
            config: Configuration dictionary from YAML
            storage: Portfolio source (optional, defaults to the CSV files in config)
            optimizer_factory: Builds a fresh optimizer per solve (optional, defaults to config 'solver')
            rng: Generator for trial orders (optional, defaults to config 'calibration.seed')
        """
        self.config = config
        self.storage = storage
        self.optimizer_factory = optimizer_factory
        self.rng = rng
        self.result: Optional[Dict[str, Any]] = None
        self.accounts: List[Account] = []
        self.category_groups: List[CategoryGroup] = []
        self.validation: Optional[ValidationReport] = None
        self.output_dir: Optional[Path] = None

    def execute(self) -> Dict[str, Any]:
        """Execute the complete rebalance workflow."""
        start_time = time.time()

        try:
            print("\n" + "=" * 70)
            print(f"MODEL: {self.config.get('model_name', 'Rebalance')}")
            print(f"TYPE: {self.config.get('playbook_type', 'portfolio_rebalance')}")
            print("=" * 70)

            self._setup_output_directory()
            print(f"\n📁 Output Directory: {self.output_dir}")

            # Step 1: Load data
            print("\n⏳ Loading portfolio...")
            self._load_data()

            # Step 2: Validate before any solve
            print("⏳ Validating feasibility...")
            self.validation = FeasibilityValidator(self.accounts, self.category_groups).validate()
            print(f"  ✓ {len(self.validation.dependencies)} dependent categories, "
                  f"{len(self.validation.breaches)} stock warnings")

            # Step 3: Initialize optimizer
            if self.optimizer_factory is None:
                self.optimizer_factory = self._create_optimizer_factory()
            mode = BuildMode(self.config.get('mode', BuildMode.MINIMIZE_EXPENSE.value))
            solver = RebalanceSolver(self.accounts, self.category_groups, self.optimizer_factory, mode)
            print(f"⏳ Mode: {mode.value}")

            # Step 4: Calibrate tolerances
            print("\n🔄 Calibrating tolerances...")
            calibration = self._create_calibrator(solver).calibrate()

            solution = self._extract_solution(calibration)

            print("\n💾 Saving results...")
            self._save_outputs(solution)

            execution_time = time.time() - start_time
            self.result = {
                'status': 'success',
                'solution': solution,
                'execution_time': execution_time,
                'timestamp': datetime.now().isoformat(),
                'output_directory': str(self.output_dir)
            }

            print("\n" + "=" * 70)
            print("REBALANCE COMPLETE")
            print("=" * 70)
            print(f"Overall Tolerance: {calibration.overall_tolerance:.4f}%")
            print(f"Mean Category Tolerance: {calibration.mean_tolerance:.4f}%")
            print(f"Yearly Fees: {solution['yearly_fees']}")
            print(f"Solver Calls: {calibration.probe_count}")
            print(f"Total Time: {execution_time:.2f}s")
            print(f"Results: {self.output_dir}")
            print("=" * 70 + "\n")

            return self.result

        except RebalanceError as e:
            print("\n" + "=" * 70)
            print("❌ NO REBALANCE POSSIBLE")
            print("=" * 70)
            print(f"Error: {str(e)}")
            print("=" * 70 + "\n")

            self.result = {
                'status': 'failed',
                'error': str(e),
                'error_type': type(e).__name__,
                'execution_time': time.time() - start_time,
                'timestamp': datetime.now().isoformat()
            }
            return self.result

        except Exception as e:
            print("\n" + "=" * 70)
            print("❌ REBALANCE FAILED")
            print("=" * 70)
            print(f"Error: {str(e)}")
            print("=" * 70 + "\n")

            import traceback
            traceback.print_exc()

            self.result = {
                'status': 'failed',
                'error': str(e),
                'error_type': type(e).__name__,
                'execution_time': time.time() - start_time,
                'timestamp': datetime.now().isoformat()
            }
            return self.result

    def _setup_output_directory(self) -> None:
        """Setup output directory for saving results."""
        base_output = self.config.get('output', {}).get('directory', 'outputs')
        model_id = self.config.get('model_id')

        if model_id:
            self.output_dir = Path(base_output) / model_id
        else:
            model_name = self.config.get('model_name', 'rebalance')
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.output_dir = Path(base_output) / model_name / timestamp

        self.output_dir.mkdir(parents=True, exist_ok=True)

    def _load_data(self) -> None:
        """Load accounts and category groups from storage, or from the CSV files in config."""
        if self.storage is None:
            data_config = self.config.get('data', {})
            base_path = Path(self.config.get('base_path', '.'))
            missing = [key for key in ('stocks', 'allocations', 'holdings') if key not in data_config]
            if missing:
                raise ValueError(f"Missing data files in config: {missing}")
            self.storage = CsvStockSolverStorage(
                base_path / data_config['stocks'],
                base_path / data_config['allocations'],
                base_path / data_config['holdings']
            )

        self.accounts = self.storage.get_accounts()
        self.category_groups = self.storage.get_category_groups()
        print(f"  ✓ accounts: {len(self.accounts)}")
        print(f"  ✓ categories: {len(all_categories(self.category_groups))}")

    def _create_optimizer_factory(self) -> Callable[[], BaseOptimizer]:
        """Create optimizer factory based on config."""
        solver_config = self.config.get('solver', {})
        model_type = self.config.get('model_type', 'lp').lower()
        optimizer_cls = OPTIMIZER_TYPES.get(model_type)
        if optimizer_cls is None:
            valid = ", ".join(OPTIMIZER_TYPES.keys())
            raise ValueError(f"Unknown model_type {model_type!r}. Valid options: {valid}")

        optimizer_params = {
            'solver': solver_config.get('type', 'APOPT'),
            'remote': solver_config.get('remote', False),
            'time_limit': solver_config.get('time_limit'),
            'max_iter': solver_config.get('max_iter')
        }

        # Remove None values
        optimizer_params = {k: v for k, v in optimizer_params.items() if v is not None}

        return lambda: optimizer_cls(**optimizer_params)

    def _create_calibrator(self, solver: RebalanceSolver) -> ToleranceCalibrator:
        calibration_config = self.config.get('calibration', {})
        if self.rng is None:
            self.rng = np.random.default_rng(calibration_config.get('seed'))

        return ToleranceCalibrator(
            solver,
            [c.name for c in all_categories(self.category_groups)],
            optimize_til=calibration_config.get('optimize_til', DEFAULT_OPTIMIZE_TIL),
            trials=calibration_config.get('trials', DEFAULT_TRIALS),
            rng=self.rng
        )

    def _extract_solution(self, calibration: CalibrationResult) -> Dict[str, Any]:
        """Extract and format the calibrated rebalance."""
        holdings_diff = reporting.holdings_diff_frame(self.accounts, calibration.accounts)
        categories = reporting.category_summary_frame(calibration.accounts, self.category_groups)
        current_categories = reporting.category_summary_frame(self.accounts, self.category_groups)
        groups = reporting.group_totals_frame(categories)
        groups['current_actual_percent'] = reporting.group_totals_frame(current_categories)['actual_percent']
        categories['tolerance'] = categories['category'].map(calibration.tolerances)

        return {
            'status': 'optimal',
            'tolerances': calibration.tolerances,
            'overall_tolerance': calibration.overall_tolerance,
            'mean_tolerance': calibration.mean_tolerance,
            'yearly_fees': calibration.yearly_fees,
            'orders_tried': len(calibration.orders_tried),
            'solver_calls': calibration.probe_count,
            'accounts': calibration.accounts,
            'holdings': holdings_diff.to_dict(orient='records'),
            'categories': categories.to_dict(orient='records'),
            'account_summary': reporting.account_summary_frame(
                self.accounts, calibration.accounts
            ).to_dict(orient='records'),
            'groups': groups.to_dict(orient='records'),
            'current_categories': current_categories.to_dict(orient='records')
        }

    def _save_outputs(self, solution: Dict[str, Any]) -> None:
        """Save rebalance outputs."""
        pd.DataFrame(solution['holdings']).to_csv(self.output_dir / 'holdings_diff.csv', index=False)
        pd.DataFrame(solution['categories']).to_csv(self.output_dir / 'category_summary.csv', index=False)
        pd.DataFrame(solution['groups']).to_csv(self.output_dir / 'group_summary.csv', index=False)
        pd.DataFrame(solution['account_summary']).to_csv(self.output_dir / 'account_summary.csv', index=False)
        pd.DataFrame(
            [{'category': name, 'tolerance': value} for name, value in solution['tolerances'].items()]
        ).to_csv(self.output_dir / 'tolerances.csv', index=False)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        result_filename = f'rebalance_result_{timestamp}.json'

        result_data = {key: value for key, value in solution.items() if key != 'accounts'}
        with open(self.output_dir / result_filename, 'w') as f:
            json.dump(result_data, f, indent=2, default=str)

        print(f"  ✓ holdings_diff.csv")
        print(f"  ✓ category_summary.csv")
        print(f"  ✓ group_summary.csv")
        print(f"  ✓ account_summary.csv")
        print(f"  ✓ tolerances.csv")
        print(f"  ✓ {result_filename}")

    def reset(self) -> None:
        """Reset playbook to initial state."""
        self.result = None
        self.accounts = []
        self.category_groups = []
        self.validation = None
