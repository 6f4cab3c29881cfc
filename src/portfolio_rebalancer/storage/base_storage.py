"""
Storage Providers
Interface the rebalance workflow reads portfolio data through.
"""

from abc import ABC, abstractmethod
from typing import List, Sequence

from portfolio_rebalancer.models.portfolio import Account, CategoryGroup


class StockSolverStorage(ABC):
    """Source of accounts and target category groups for one run."""

    @abstractmethod
    def get_accounts(self) -> List[Account]:
        pass

    @abstractmethod
    def get_category_groups(self) -> List[CategoryGroup]:
        pass


class StaticStockSolverStorage(StockSolverStorage):
    """Storage over already-built model objects."""

    def __init__(self, accounts: Sequence[Account], category_groups: Sequence[CategoryGroup]):
        self._accounts = list(accounts)
        self._category_groups = list(category_groups)

    def get_accounts(self) -> List[Account]:
        return list(self._accounts)

    def get_category_groups(self) -> List[CategoryGroup]:
        return list(self._category_groups)
