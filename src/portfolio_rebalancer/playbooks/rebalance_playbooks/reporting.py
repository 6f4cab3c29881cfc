"""
Rebalance Reporting
DataFrames comparing current and rebalanced holdings against category targets.
"""

from typing import Dict, Sequence

import pandas as pd

from portfolio_rebalancer.models.portfolio import Account, CategoryGroup, total_value


def holdings_diff_frame(original: Sequence[Account], rebalanced: Sequence[Account]) -> pd.DataFrame:
    """One row per account/ticker with old value, new value and the trade between them."""
    current = {(a.name, h.ticker): h for a in original for h in a.holdings}
    rows = []
    for account in rebalanced:
        for holding in account.holdings:
            before = current[(account.name, holding.ticker)]
            rows.append({
                'account': account.name,
                'ticker': holding.ticker,
                'locked': before.locked,
                'min_value': before.minimum_balance,
                'old_value': before.current_holding,
                'new_value': holding.current_holding,
                'diff': holding.current_holding - before.current_holding,
                'percent_of_account': holding.current_holding / account.value * 100 if account.value else 0.0
            })
    return pd.DataFrame(rows, columns=[
        'account', 'ticker', 'locked', 'min_value', 'old_value', 'new_value', 'diff', 'percent_of_account'
    ])


def category_actuals(accounts: Sequence[Account], category: str) -> float:
    """Dollars the accounts currently hold in `category`."""
    return sum(
        h.current_holding * h.stock.percentage(category) / 100.0
        for a in accounts for h in a.holdings
    )


def category_summary_frame(accounts: Sequence[Account], category_groups: Sequence[CategoryGroup]) -> pd.DataFrame:
    """Target vs actual dollars and percents per category, using each holding's current value."""
    total_cash = total_value(accounts)
    rows = []
    for group in category_groups:
        for category in group.categories:
            actual = category_actuals(accounts, category.name)
            rows.append({
                'group': group.name,
                'category': category.name,
                'target_percent': category.target_percent,
                'target_value': category.target_percent / 100.0 * total_cash,
                'actual_value': actual,
                'actual_percent': actual / total_cash * 100 if total_cash else 0.0
            })
    df = pd.DataFrame(rows, columns=[
        'group', 'category', 'target_percent', 'target_value', 'actual_value', 'actual_percent'
    ])
    df['deviation_percent'] = df['actual_percent'] - df['target_percent']
    return df


def group_totals_frame(category_summary: pd.DataFrame) -> pd.DataFrame:
    return category_summary.groupby('group', sort=False).agg({
        'target_percent': 'sum',
        'target_value': 'sum',
        'actual_value': 'sum',
        'actual_percent': 'sum'
    }).reset_index()


def account_summary_frame(original: Sequence[Account], rebalanced: Sequence[Account]) -> pd.DataFrame:
    available: Dict[str, float] = {a.name: a.value for a in original}
    rows = [{
        'account': account.name,
        'available': available[account.name],
        'invested': account.value,
        'uninvested': available[account.name] - account.value
    } for account in rebalanced]
    return pd.DataFrame(rows, columns=['account', 'available', 'invested', 'uninvested'])
