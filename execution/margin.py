"""
Margin & Funding Calculator.

One routine serves margin top-up/withdrawal, increases, reductions and full
closes; only the meaning of `margin_delta` changes (added margin, required new
margin, or realized PnL).

  funding_payment = -(latest_cumulative_funding - checkpoint) × size
  remain_margin   = funding_payment + margin + margin_delta
  remain < 0      → bad_debt = |remain|, remain = 0
"""
from dataclasses import dataclass

from data.ledger import Position, PositionLedger
from numeric.fixed_point import FixedPoint, SDecimal, UDecimal


@dataclass(frozen=True)
class MarginCalc:
    remain_margin:             UDecimal
    bad_debt:                  UDecimal
    funding_payment:           SDecimal   # positive adds to margin
    latest_cumulative_funding: SDecimal   # new checkpoint for the position


def calc_funding_payment(position: Position, latest_cumulative_funding: SDecimal) -> SDecimal:
    if position.is_flat:
        return SDecimal.zero()
    return -((latest_cumulative_funding - position.last_funding_checkpoint) * position.size)


def calc_remain_margin(
    ledger: PositionLedger, amm, old_position: Position, margin_delta: FixedPoint,
) -> MarginCalc:
    """Pure: reads the funding history, never writes."""
    latest = ledger.latest_cumulative_funding(amm)
    funding_payment = calc_funding_payment(old_position, latest)

    remain = funding_payment + old_position.margin + margin_delta
    if remain.is_negative():
        return MarginCalc(UDecimal.zero(), remain.abs(), funding_payment, latest)
    return MarginCalc(remain.to_unsigned(), UDecimal.zero(), funding_payment, latest)


def calc_unrealized_pnl(position: Position, position_notional: UDecimal) -> SDecimal:
    """
    long:  notional now − cost basis
    short: cost basis − notional now
    """
    if position.is_short:
        return position.open_notional.to_signed() - position_notional
    return position_notional.to_signed() - position.open_notional


def margin_ratio(calc: MarginCalc, position_notional: UDecimal) -> SDecimal:
    """(remaining margin − bad debt) / position notional."""
    return (calc.remain_margin.to_signed() - calc.bad_debt) / position_notional
