"""
CSV Storage Provider
Loads stocks, target allocations and holdings from three CSV files.

stocks.csv       Ticker, Expense Ratio, [Validation], one column per category (fractions)
allocations.csv  Category, Percent (fraction), [Group]
holdings.csv     Account, Ticker, Current Value, [Min Value], [Locked]

Fractions are converted to percents (0.74 -> 74). Blank or zero category and
percent cells are skipped. Any non-zero Locked cell marks the holding locked.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd

from portfolio_rebalancer.models.portfolio import (
    ALLOCATION_SUM_EPSILON,
    Account,
    Category,
    CategoryGroup,
    Holding,
    Stock,
    all_categories,
)
from portfolio_rebalancer.storage.base_storage import StockSolverStorage

logger = logging.getLogger(__name__)

TICKER_COLUMN = 'Ticker'
EXPENSE_RATIO_COLUMN = 'Expense Ratio'
VALIDATION_COLUMN = 'Validation'
CATEGORY_COLUMN = 'Category'
PERCENT_COLUMN = 'Percent'
GROUP_COLUMN = 'Group'
ACCOUNT_COLUMN = 'Account'
CURRENT_VALUE_COLUMN = 'Current Value'
MIN_VALUE_COLUMN = 'Min Value'
LOCKED_COLUMN = 'Locked'

DEFAULT_GROUP = 'Default'

PathLike = Union[str, Path]


def _require_columns(df: pd.DataFrame, columns: List[str], source: PathLike) -> None:
    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise ValueError(f"{source} missing columns: {missing}")


def _numeric(df: pd.DataFrame, column: str) -> pd.Series:
    if column not in df.columns:
        return pd.Series([float('nan')] * len(df), index=df.index)
    return pd.to_numeric(df[column], errors='coerce')


class CsvStockSolverStorage(StockSolverStorage):
    """Reads the three portfolio CSVs with pandas and builds the data model."""

    def __init__(self, stocks_path: PathLike, allocations_path: PathLike, holdings_path: PathLike):
        self.stocks_path = Path(stocks_path)
        self.allocations_path = Path(allocations_path)
        self.holdings_path = Path(holdings_path)
        self.stocks_by_ticker: Dict[str, Stock] = {}
        self._accounts: Optional[List[Account]] = None
        self._category_groups: Optional[List[CategoryGroup]] = None

    def load(self) -> 'CsvStockSolverStorage':
        self.stocks_by_ticker = self._parse_stocks(pd.read_csv(self.stocks_path))
        self._category_groups = self._parse_allocations(pd.read_csv(self.allocations_path))
        self._accounts = self._parse_holdings(pd.read_csv(self.holdings_path))
        return self

    def get_accounts(self) -> List[Account]:
        if self._accounts is None:
            self.load()
        return list(self._accounts)

    def get_category_groups(self) -> List[CategoryGroup]:
        if self._category_groups is None:
            self.load()
        return list(self._category_groups)

    def _parse_stocks(self, df: pd.DataFrame) -> Dict[str, Stock]:
        _require_columns(df, [TICKER_COLUMN, EXPENSE_RATIO_COLUMN], self.stocks_path)
        df = df.dropna(subset=[TICKER_COLUMN])

        category_columns = [
            col for col in df.columns
            if col not in (TICKER_COLUMN, EXPENSE_RATIO_COLUMN, VALIDATION_COLUMN)
        ]
        fractions = {col: _numeric(df, col) for col in category_columns}
        expense_ratios = _numeric(df, EXPENSE_RATIO_COLUMN)

        stocks = {}
        for idx, row in df.iterrows():
            ticker = str(row[TICKER_COLUMN]).strip()
            if pd.isna(expense_ratios[idx]):
                raise ValueError(f"Expense ratio missing for stock {ticker}")

            allocation = {}
            for col in category_columns:
                fraction = fractions[col][idx]
                if pd.isna(fraction) or fraction == 0:
                    continue
                allocation[col] = 100 * float(fraction)

            stock = Stock(ticker=ticker, expense_ratio=float(expense_ratios[idx]), allocation=allocation)
            stocks[ticker] = stock
            logger.debug(f"Loaded {stock}")
        return stocks

    def _parse_allocations(self, df: pd.DataFrame) -> List[CategoryGroup]:
        _require_columns(df, [CATEGORY_COLUMN, PERCENT_COLUMN], self.allocations_path)
        df = df.dropna(subset=[CATEGORY_COLUMN])
        percents = _numeric(df, PERCENT_COLUMN)

        categories_by_group: Dict[str, List[Category]] = {}
        for idx, row in df.iterrows():
            name = str(row[CATEGORY_COLUMN]).strip()
            if name == VALIDATION_COLUMN:
                continue
            if pd.isna(percents[idx]) or percents[idx] == 0:
                logger.debug(f"Skipping category {name} with no target")
                continue

            group = row.get(GROUP_COLUMN)
            group = DEFAULT_GROUP if group is None or pd.isna(group) else str(group).strip()
            categories_by_group.setdefault(group, []).append(
                Category(name=name, target_percent=100 * float(percents[idx]))
            )

        groups = [CategoryGroup(name=name, categories=tuple(cats)) for name, cats in categories_by_group.items()]

        total = sum(c.target_percent for c in all_categories(groups))
        if abs(total - 100.0) > ALLOCATION_SUM_EPSILON:
            raise ValueError(f"{self.allocations_path} category targets must sum to 100, was: {total}")
        return groups

    def _parse_holdings(self, df: pd.DataFrame) -> List[Account]:
        _require_columns(df, [ACCOUNT_COLUMN, TICKER_COLUMN, CURRENT_VALUE_COLUMN], self.holdings_path)
        df = df.dropna(subset=[ACCOUNT_COLUMN, TICKER_COLUMN])
        current_values = _numeric(df, CURRENT_VALUE_COLUMN).fillna(0.0)
        min_values = _numeric(df, MIN_VALUE_COLUMN).fillna(0.0)
        locked_flags = _numeric(df, LOCKED_COLUMN).fillna(0.0)

        holdings_by_account: Dict[str, List[Holding]] = {}
        value_by_account: Dict[str, float] = {}
        for idx, row in df.iterrows():
            account = str(row[ACCOUNT_COLUMN]).strip()
            ticker = str(row[TICKER_COLUMN]).strip()
            current_value = float(current_values[idx])
            # Cash sitting in unknown tickers still belongs to the account.
            value_by_account[account] = value_by_account.get(account, 0.0) + current_value

            if ticker not in self.stocks_by_ticker:
                logger.warning(f"skipping adding ticker to account because not defined in stocks: {ticker}")
                continue

            locked = locked_flags[idx] != 0
            if locked:
                logger.info(f"setting locked value to true: {account} {ticker}")
            holdings_by_account.setdefault(account, []).append(Holding(
                stock=self.stocks_by_ticker[ticker],
                minimum_balance=float(min_values[idx]),
                locked=bool(locked),
                current_holding=current_value
            ))

        accounts = []
        for name, value in value_by_account.items():
            if value == 0:
                logger.debug(f"skipping account with zero value: {name}")
                continue
            if name not in holdings_by_account:
                logger.warning(f"skipping account with no known stocks: {name}")
                continue
            accounts.append(Account(name=name, value=value, holdings=tuple(holdings_by_account[name])))
        return accounts
