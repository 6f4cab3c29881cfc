from pathlib import Path

import pytest
import yaml

from conftest import FakeOptimizer
from portfolio_rebalancer.playbooks.rebalance_playbooks.feasibility_validator import validate
from portfolio_rebalancer.rebalance_processor import load_config, rebalance_runner
from portfolio_rebalancer.storage.csv_storage import CsvStockSolverStorage

SAMPLE_DIR = Path(__file__).parent / "test_data" / "sample_data" / "rebalance"


def write_run(tmp_path, **overrides):
    (tmp_path / "stocks.csv").write_text("Ticker,Expense Ratio,X,Y\nXS,0.05,1,\nYS,0.10,,1\n")
    (tmp_path / "allocations.csv").write_text("Category,Percent\nX,0.6\nY,0.4\n")
    (tmp_path / "holdings.csv").write_text(
        "Account,Ticker,Current Value,Min Value,Locked\nBrokerage,XS,700,,\nBrokerage,YS,300,,\n"
    )
    config = {
        'model_name': 'processor_test',
        'model_id': 'run',
        'playbook_type': 'portfolio_rebalance',
        'data': {'stocks': 'stocks.csv', 'allocations': 'allocations.csv', 'holdings': 'holdings.csv'},
        'calibration': {'optimize_til': 0.01, 'trials': 3, 'seed': 11},
        'output': {'directory': str(tmp_path / 'outputs')}
    }
    config.update(overrides)
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump(config))
    return config_path


def test_sample_config_loads():
    config = load_config(SAMPLE_DIR / "config_simple.yaml")

    assert config['playbook_type'] == 'portfolio_rebalance'
    assert config['calibration']['seed'] == 42
    assert config['solver']['remote'] is False


def test_sample_portfolio_passes_validation():
    storage = CsvStockSolverStorage(
        SAMPLE_DIR / "stocks.csv", SAMPLE_DIR / "allocations.csv", SAMPLE_DIR / "holdings.csv"
    )

    report = validate(storage.get_accounts(), storage.get_category_groups())

    assert report.total_value == pytest.approx(100000.0)
    assert {(d.account, d.category) for d in report.dependencies} == {
        ("401k", "Bonds"), ("Roth IRA", "Domestic Total"), ("Roth IRA", "Foreign Total")
    }


def test_runner_resolves_data_relative_to_config(tmp_path):
    config_path = write_run(tmp_path)

    result = rebalance_runner(
        str(config_path),
        optimizer_factory=lambda: FakeOptimizer({"Brokerage/XS": 540.0, "Brokerage/YS": 460.0})
    )

    assert result['status'] == 'success'
    assert result['solution']['tolerances']['Y'] == pytest.approx(15.0, abs=0.01)
    assert (tmp_path / 'outputs' / 'run' / 'holdings_diff.csv').exists()


def test_runner_reports_missing_data_files(tmp_path):
    config_path = write_run(tmp_path, data={'stocks': 'stocks.csv'})

    result = rebalance_runner(str(config_path), optimizer_factory=FakeOptimizer)

    assert result['status'] == 'failed'
    assert 'allocations' in result['error']


def test_unknown_playbook_type(tmp_path):
    config_path = write_run(tmp_path, playbook_type='tax_transition')

    with pytest.raises(ValueError, match="tax_transition"):
        rebalance_runner(str(config_path))
