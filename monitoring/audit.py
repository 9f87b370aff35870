"""
Audit Reports — reconcile the JSONL event log with pandas.

Fixed-point values are stored as decimal strings in the log, so sums are done
with decimal.Decimal to stay exact.
"""
from decimal import Decimal

import pandas as pd

from monitoring.events import load_records


def load_events(path: str) -> pd.DataFrame:
    """One row per event; columns are the union of all event fields."""
    return pd.DataFrame.from_records(load_records(path))


def _exact_sum(values: pd.Series) -> Decimal:
    return sum((Decimal(str(v)) for v in values.dropna()), Decimal(0))


def _position_changes(frame: pd.DataFrame) -> pd.DataFrame:
    if frame.empty or 'event' not in frame.columns:
        return frame.iloc[0:0]
    return frame[frame['event'] == 'PositionChanged']


def realized_pnl_by_trader(frame: pd.DataFrame) -> dict:
    changes = _position_changes(frame)
    if changes.empty:
        return {}
    return changes.groupby('trader')['realized_pnl'].agg(_exact_sum).to_dict()


def bad_debt_by_market(frame: pd.DataFrame) -> dict:
    changes = _position_changes(frame)
    if changes.empty:
        return {}
    return changes.groupby('amm')['bad_debt'].agg(_exact_sum).to_dict()


def liquidation_summary(frame: pd.DataFrame) -> dict:
    """Count, total fees and total bad debt of liquidations per market."""
    if frame.empty or 'event' not in frame.columns:
        return {}
    liquidations = frame[frame['event'] == 'PositionLiquidated']
    return {
        amm: {
            'liquidations': len(group),
            'fees': _exact_sum(group['liquidation_fee']),
            'bad_debt': _exact_sum(group['bad_debt']),
        }
        for amm, group in liquidations.groupby('amm')
    }
