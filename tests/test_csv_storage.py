from pathlib import Path

import pytest

from portfolio_rebalancer.storage.csv_storage import CsvStockSolverStorage

SAMPLE_DIR = Path(__file__).parent / "test_data" / "sample_data" / "rebalance"


def sample_storage():
    return CsvStockSolverStorage(
        SAMPLE_DIR / "stocks.csv", SAMPLE_DIR / "allocations.csv", SAMPLE_DIR / "holdings.csv"
    ).load()


def write_csvs(tmp_path, stocks, allocations, holdings):
    paths = []
    for name, content in (("stocks.csv", stocks), ("allocations.csv", allocations), ("holdings.csv", holdings)):
        path = tmp_path / name
        path.write_text(content)
        paths.append(path)
    return CsvStockSolverStorage(*paths)


def test_sample_stocks_convert_fractions_to_percents():
    storage = sample_storage()

    vtsax = storage.stocks_by_ticker["VTSAX"]
    assert vtsax.expense_ratio == pytest.approx(0.04)
    assert vtsax.percentage("Domestic Total") == pytest.approx(56.0)
    assert vtsax.percentage("Domestic Value") == pytest.approx(44.0)
    assert not vtsax.has_allocation("Validation")
    assert not vtsax.has_allocation("Bonds")


def test_sample_groups_keep_first_seen_order():
    groups = sample_storage().get_category_groups()

    assert [g.name for g in groups] == ["Fixed Income", "Equity"]
    assert [(c.name, c.target_percent) for c in groups[1].categories] == [
        ("Domestic Total", pytest.approx(35.0)),
        ("Domestic Value", pytest.approx(15.0)),
        ("Foreign Total", pytest.approx(20.0)),
    ]


def test_sample_holdings_build_accounts():
    accounts = {a.name: a for a in sample_storage().get_accounts()}

    assert list(accounts) == ["Roth IRA", "401k", "Taxable"]
    assert accounts["Roth IRA"].value == pytest.approx(45000.0)
    assert accounts["401k"].holding("FXNAX").minimum_balance == pytest.approx(1000.0)
    assert accounts["Taxable"].holding("VTSAX").locked
    assert not accounts["Taxable"].holding("VBTLX").locked


def test_unknown_tickers_still_count_toward_account_value(tmp_path, caplog):
    storage = write_csvs(
        tmp_path,
        "Ticker,Expense Ratio,X\nXS,0.1,1\n",
        "Category,Percent\nX,1\n",
        "Account,Ticker,Current Value\nIRA,XS,100\nIRA,MYSTERY,50\nEmpty,XS,0\n",
    )

    accounts = storage.get_accounts()

    assert [a.name for a in accounts] == ["IRA"]
    assert accounts[0].value == pytest.approx(150.0)
    assert [h.ticker for h in accounts[0].holdings] == ["XS"]
    assert "MYSTERY" in caplog.text


def test_account_with_only_unknown_tickers_is_skipped(tmp_path, caplog):
    storage = write_csvs(
        tmp_path,
        "Ticker,Expense Ratio,X\nXS,0.1,1\n",
        "Category,Percent\nX,1\n",
        "Account,Ticker,Current Value\nMain,XS,1000\nOld401k,DELISTED,500\n",
    )

    accounts = storage.get_accounts()

    assert [a.name for a in accounts] == ["Main"]
    assert "no known stocks: Old401k" in caplog.text


def test_missing_group_defaults_and_zero_percent_skipped(tmp_path):
    storage = write_csvs(
        tmp_path,
        "Ticker,Expense Ratio,X,Y\nXS,0.1,1,\nYS,0.1,,1\n",
        "Category,Percent,Group\nX,0.6,\nY,0.4,Bonds\nZ,0,Bonds\nValidation,1,\n",
        "Account,Ticker,Current Value\nIRA,XS,100\n",
    )

    groups = storage.get_category_groups()

    assert [(g.name, [c.name for c in g.categories]) for g in groups] == [("Default", ["X"]), ("Bonds", ["Y"])]


def test_targets_must_sum_to_one_hundred(tmp_path):
    storage = write_csvs(
        tmp_path,
        "Ticker,Expense Ratio,X\nXS,0.1,1\n",
        "Category,Percent\nX,0.9\n",
        "Account,Ticker,Current Value\nIRA,XS,100\n",
    )

    with pytest.raises(ValueError, match="sum to 100"):
        storage.load()


def test_bad_stock_rows_are_rejected(tmp_path):
    missing_expense = write_csvs(
        tmp_path,
        "Ticker,Expense Ratio,X\nXS,,1\n",
        "Category,Percent\nX,1\n",
        "Account,Ticker,Current Value\nIRA,XS,100\n",
    )
    with pytest.raises(ValueError, match="Expense ratio missing"):
        missing_expense.load()

    missing_column = write_csvs(
        tmp_path,
        "Symbol,X\nXS,1\n",
        "Category,Percent\nX,1\n",
        "Account,Ticker,Current Value\nIRA,XS,100\n",
    )
    with pytest.raises(ValueError, match="missing columns"):
        missing_column.load()
