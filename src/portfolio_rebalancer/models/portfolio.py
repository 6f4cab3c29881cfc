"""
Portfolio Data Model
Immutable value types for stocks, holdings, accounts and target categories.
"""

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

# Allocation percents are floats read from spreadsheets, so accept a band around 100.
ALLOCATION_SUM_EPSILON = 0.001


@dataclass(frozen=True)
class Stock:
    """A buyable fund or stock and how it splits across categories."""

    ticker: str
    expense_ratio: float
    allocation: Mapping[str, float] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        if not self.ticker:
            raise ValueError("ticker is empty")
        if self.expense_ratio is None or self.expense_ratio < 0:
            raise ValueError(f"{self.ticker} expense ratio must be >= 0, was: {self.expense_ratio}")

        total = sum(self.allocation.values())
        if abs(total - 100.0) > ALLOCATION_SUM_EPSILON:
            raise ValueError(
                f"{self.ticker} percentage total must be 100, was: {total} {dict(self.allocation)}"
            )
        object.__setattr__(self, 'allocation', MappingProxyType(dict(self.allocation)))

    def percentage(self, category: str) -> float:
        """Percent of this stock allocated to `category` (0 when absent)."""
        return self.allocation.get(category, 0.0)

    def has_allocation(self, category: str) -> bool:
        return category in self.allocation


@dataclass(frozen=True)
class Holding:
    """
    A stock held inside an account.

    `current_holding` is the dollar value held today. Locked holdings keep that
    exact value through any rebalance.
    """

    stock: Stock
    minimum_balance: float = 0.0
    locked: bool = False
    current_holding: float = 0.0

    def __post_init__(self):
        if self.minimum_balance < 0:
            raise ValueError(f"{self.stock.ticker} minimum balance must be >= 0")
        if self.current_holding < 0:
            raise ValueError(f"{self.stock.ticker} current holding must be >= 0")

    @property
    def ticker(self) -> str:
        return self.stock.ticker


@dataclass(frozen=True)
class Account:
    name: str
    value: float
    holdings: Tuple[Holding, ...]

    def __post_init__(self):
        if not self.name:
            raise ValueError("name not set")
        holdings = tuple(self.holdings)
        if not holdings:
            raise ValueError(f"no stocks added to {self.name}")

        tickers = [holding.ticker for holding in holdings]
        duplicates = sorted({t for t in tickers if tickers.count(t) > 1})
        if duplicates:
            raise ValueError(f"Account {self.name} holds duplicate tickers: {duplicates}")
        object.__setattr__(self, 'holdings', holdings)

    def holding(self, ticker: str) -> Holding:
        for holding in self.holdings:
            if holding.ticker == ticker:
                return holding
        raise KeyError(f"{self.name} has no holding {ticker}")

    def with_values(self, values: Mapping[str, float]) -> 'Account':
        """New account whose holdings carry the given dollar values, keyed by ticker."""
        holdings = tuple(
            replace(holding, current_holding=values[holding.ticker])
            for holding in self.holdings
        )
        return Account(
            name=self.name,
            value=sum(h.current_holding for h in holdings),
            holdings=holdings
        )


@dataclass(frozen=True)
class Category:
    name: str
    target_percent: float

    def __post_init__(self):
        if not self.name:
            raise ValueError("category name not set")
        if not 0 <= self.target_percent <= 100:
            raise ValueError(f"{self.name} target percent must be within [0, 100], was: {self.target_percent}")


@dataclass(frozen=True)
class CategoryGroup:
    name: str
    categories: Tuple[Category, ...]

    def __post_init__(self):
        if not self.name:
            raise ValueError("name not set")
        categories = tuple(self.categories)
        if not categories:
            raise ValueError(f"no categories added to group {self.name}")
        object.__setattr__(self, 'categories', categories)


def total_value(accounts: Iterable[Account]) -> float:
    return sum(account.value for account in accounts)


def all_categories(category_groups: Sequence[CategoryGroup]) -> List[Category]:
    """Flatten groups into one ordered category list, rejecting duplicate names."""
    categories: List[Category] = []
    seen: Dict[str, str] = {}
    for group in category_groups:
        for category in group.categories:
            if category.name in seen:
                raise ValueError(
                    f"Category {category.name} appears in groups {seen[category.name]} and {group.name}"
                )
            seen[category.name] = group.name
            categories.append(category)
    return categories
