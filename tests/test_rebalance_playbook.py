import json

import numpy as np
import pandas as pd
import pytest

from conftest import FakeOptimizer
from portfolio_rebalancer.models.portfolio import Account, Category, CategoryGroup, Holding
from portfolio_rebalancer.playbooks.rebalance_playbooks.rebalance_playbook import RebalancePlaybook
from portfolio_rebalancer.storage.base_storage import StaticStockSolverStorage


@pytest.fixture
def sixty_forty_groups():
    return [CategoryGroup("Default", (Category("X", 60), Category("Y", 40)))]


def make_config(tmp_path, **overrides):
    config = {
        'model_name': 'test_rebalance',
        'model_id': 'run',
        'calibration': {'optimize_til': 0.01, 'trials': 5, 'seed': 3},
        'output': {'directory': str(tmp_path)}
    }
    config.update(overrides)
    return config


def test_execute_writes_outputs(tmp_path, single_account, sixty_forty_groups):
    playbook = RebalancePlaybook(
        make_config(tmp_path),
        storage=StaticStockSolverStorage([single_account], sixty_forty_groups),
        optimizer_factory=lambda: FakeOptimizer({"Brokerage/XS": 540.0, "Brokerage/YS": 460.0}),
        rng=np.random.default_rng(5)
    )

    result = playbook.execute()

    assert result['status'] == 'success'
    solution = result['solution']
    assert solution['overall_tolerance'] == pytest.approx(15.0, abs=0.01)
    assert solution['tolerances']['X'] == pytest.approx(10.0, abs=0.01)
    assert solution['yearly_fees'] == pytest.approx((540 * 0.05 + 460 * 0.10) / 100)
    assert [d.category for d in playbook.validation.dependencies] == ["X", "Y"]

    output_dir = tmp_path / 'run'
    assert result['output_directory'] == str(output_dir)
    holdings = pd.read_csv(output_dir / 'holdings_diff.csv')
    assert list(holdings['new_value']) == [540.0, 460.0]
    assert list(holdings['diff']) == [-160.0, 160.0]
    tolerances = pd.read_csv(output_dir / 'tolerances.csv')
    assert list(tolerances['category']) == ["X", "Y"]
    assert (output_dir / 'category_summary.csv').exists()
    groups = pd.read_csv(output_dir / 'group_summary.csv')
    assert list(groups['group']) == ["Default"]
    assert groups['actual_value'].item() == pytest.approx(1000.0)
    assert groups['current_actual_percent'].item() == pytest.approx(100.0)
    assert (output_dir / 'account_summary.csv').exists()

    [result_file] = output_dir.glob('rebalance_result_*.json')
    saved = json.loads(result_file.read_text())
    assert 'accounts' not in saved
    assert saved['solver_calls'] == solution['solver_calls']


def test_validation_failure_is_reported(tmp_path, x_stock, sixty_forty_groups):
    x_only = Account("Brokerage", 1000.0, (Holding(x_stock, current_holding=1000.0),))
    playbook = RebalancePlaybook(
        make_config(tmp_path),
        storage=StaticStockSolverStorage([x_only], sixty_forty_groups),
        optimizer_factory=FakeOptimizer
    )

    result = playbook.execute()

    assert result['status'] == 'failed'
    assert result['error_type'] == 'InsufficientCapacityError'
    assert FakeOptimizer.instances == []


def test_calibration_exhausted_is_reported(tmp_path, single_account, sixty_forty_groups):
    # no candidate: both holdings sit at zero and never meet the account total
    playbook = RebalancePlaybook(
        make_config(tmp_path, calibration={'optimize_til': 1.0, 'trials': 2, 'seed': 3}),
        storage=StaticStockSolverStorage([single_account], sixty_forty_groups),
        optimizer_factory=FakeOptimizer
    )

    result = playbook.execute()

    assert result['status'] == 'failed'
    assert result['error_type'] == 'CalibrationExhausted'
    assert 'No rebalance possible' in result['error']


def test_unknown_model_type_fails(tmp_path, single_account, sixty_forty_groups):
    playbook = RebalancePlaybook(
        make_config(tmp_path, model_type='quadratic'),
        storage=StaticStockSolverStorage([single_account], sixty_forty_groups)
    )

    result = playbook.execute()

    assert result['status'] == 'failed'
    assert 'quadratic' in result['error']


def test_reset_clears_state(tmp_path, single_account, sixty_forty_groups):
    playbook = RebalancePlaybook(
        make_config(tmp_path),
        storage=StaticStockSolverStorage([single_account], sixty_forty_groups),
        optimizer_factory=lambda: FakeOptimizer({"Brokerage/XS": 540.0, "Brokerage/YS": 460.0})
    )
    playbook.execute()

    playbook.reset()

    assert playbook.result is None
    assert playbook.accounts == []
    assert playbook.validation is None
