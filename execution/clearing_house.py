"""
Clearing House — position transition engine for AMM-backed perpetuals.

═══════════════════════════════════════════════════════════════
PURPOSE:
  Owns every trader's isolated-margin position per market and moves it
  between FLAT, LONG and SHORT as trades, liquidations and shutdown
  settlement happen against an external AMM.

TRANSITIONS:
  add / remove margin     same side, funding realized into margin
  open / increase         FLAT or same side → trade notional = amount × leverage
  reduce                  opposite side, smaller than the position
  close and reverse       opposite side, at least as large as the position
  close                   full close (also used by liquidation and reversal)
  liquidate               third party closes an underwater position
  settle                  market shut down, pay out at the settlement price

GUARANTEES:
  - one operation at a time (single re-entrant lock over the whole ledger)
  - all-or-nothing ledger writes per operation (undo journal)
  - events published only when the operation commits
  - no operation returns a partial result: failures raise ClearingHouseError
    or a FixedPointError

USAGE:
  house = ClearingHouse(reserve=insurance_fund, tokens=DecimalTokenGateway(erc20),
                        fee_pool=fee_pool, clock=BlockClock())

  house.open_position('alice', amm, Side.BUY,
                      quote_asset_amount=UDecimal.of(100),
                      leverage=UDecimal.of(5))
  house.pay_funding(amm)
  house.liquidate('keeper', amm, 'alice')
═══════════════════════════════════════════════════════════════
"""
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Optional
from loguru import logger

from config import CLEARING_HOUSE_ACCOUNT, EVENT_LOG_PATH
from data.ledger import BlockClock, Position, PositionLedger
from execution.errors import InputValidationError, MarginError
from execution.interfaces import (
    Amm, Dir, FeePool, PnlCalcOption, PnlPreferenceOption,
    Reserve, Side, TokenGateway,
)
from execution.margin import (
    calc_remain_margin, calc_unrealized_pnl, margin_ratio,
)
from execution.params import ClearingHouseParams
from execution.restriction import RestrictionGuard
from execution.settlement import Settlement
from monitoring.events import EventLog
from numeric.fixed_point import FixedPoint, SDecimal, UDecimal


# ── Transition Result ────────────────────────────────────────────────
@dataclass(frozen=True)
class TransitionResult:
    """Everything one transition step produced. Never stored."""
    position:                Position
    exchanged_quote_amount:  UDecimal = field(default_factory=UDecimal.zero)
    bad_debt:                UDecimal = field(default_factory=UDecimal.zero)
    exchanged_position_size: SDecimal = field(default_factory=SDecimal.zero)
    realized_pnl:            SDecimal = field(default_factory=SDecimal.zero)
    margin_to_vault:         SDecimal = field(default_factory=SDecimal.zero)   # >0 trader pays in
    funding_payment:         SDecimal = field(default_factory=SDecimal.zero)
    unrealized_pnl_after:    SDecimal = field(default_factory=SDecimal.zero)

    def merge(self, later: 'TransitionResult') -> 'TransitionResult':
        """Combine a close with the open that followed it."""
        return TransitionResult(
            position=later.position,
            exchanged_quote_amount=self.exchanged_quote_amount + later.exchanged_quote_amount,
            bad_debt=self.bad_debt + later.bad_debt,
            exchanged_position_size=self.exchanged_position_size + later.exchanged_position_size,
            realized_pnl=self.realized_pnl + later.realized_pnl,
            margin_to_vault=self.margin_to_vault + later.margin_to_vault,
            funding_payment=self.funding_payment + later.funding_payment,
            unrealized_pnl_after=SDecimal.zero(),
        )


# ── Requirement Helpers ──────────────────────────────────────────────
def _require_valid_token_amount(amount: UDecimal):
    if amount.is_zero():
        raise InputValidationError('invalid token amount')


def _require_non_zero_input(value: FixedPoint):
    if value.is_zero():
        raise InputValidationError('input is 0')


def _require_position_size(size: SDecimal):
    if size.is_zero():
        raise InputValidationError('positionSize is 0')


def _require_margin_ratio(ratio: FixedPoint, base: UDecimal, larger_than_or_equal: bool):
    remaining = ratio.to_signed() - base
    ok = not remaining.is_negative() if larger_than_or_equal else remaining.is_negative()
    if not ok:
        raise MarginError('Margin ratio not meet criteria')


# ── Clearing House ───────────────────────────────────────────────────
class ClearingHouse:

    def __init__(
        self,
        reserve: Reserve,
        tokens: TokenGateway,
        fee_pool: Optional[FeePool] = None,
        clock: Optional[BlockClock] = None,
        params: Optional[ClearingHouseParams] = None,
        events: Optional[EventLog] = None,
        account: str = CLEARING_HOUSE_ACCOUNT,
    ):
        self._lock = threading.RLock()
        self.clock = clock or BlockClock()
        self.events = events or EventLog(EVENT_LOG_PATH or None)
        self.params = params or ClearingHouseParams.from_config()
        self.reserve = reserve
        self.ledger = PositionLedger(self.clock, self.events)
        self.guard = RestrictionGuard(self.ledger, self.clock, self.events)
        self.vault = Settlement(self.ledger, tokens, reserve, self.events, account, fee_pool)

    @contextmanager
    def _operation(self, name: str):
        """Serialize, journal ledger writes and buffer events for one call."""
        with self._lock, self.events.buffered(), self.ledger.atomic():
            try:
                yield
            except Exception as e:
                logger.warning(f'[CH] {name} failed: {e}')
                raise

    def _require_amm(self, amm: Amm, open_: bool):
        if not self.reserve.is_registered_market(amm):
            raise InputValidationError('amm not found')
        if amm.is_open() != open_:
            raise InputValidationError('amm was closed' if open_ else 'amm is open')

    # ── Parameters ───────────────────────────────────────────────────
    def set_fee_pool(self, fee_pool: Optional[FeePool]):
        with self._lock:
            self.vault.fee_pool = fee_pool

    def set_init_margin_ratio(self, ratio: UDecimal):
        with self._operation('set_init_margin_ratio'):
            self.params.update(init_margin_ratio=ratio)
            self.events.emit('MarginRatioChanged', margin_ratio=ratio)

    def set_maintenance_margin_ratio(self, ratio: UDecimal):
        with self._operation('set_maintenance_margin_ratio'):
            self.params.update(maintenance_margin_ratio=ratio)
            self.events.emit('MaintenanceMarginRatioChanged', margin_ratio=ratio)

    def set_liquidation_fee_ratio(self, ratio: UDecimal):
        with self._operation('set_liquidation_fee_ratio'):
            self.params.update(liquidation_fee_ratio=ratio)
            self.events.emit('LiquidationFeeRatioChanged', fee_ratio=ratio)

    def add_to_allow_list(self, trader: str):
        with self._operation('add_to_allow_list'):
            self.params.allow_list.add(trader)
            self.events.emit('AllowListChanged', trader=trader, allowed=True)

    def remove_from_allow_list(self, trader: str):
        with self._operation('remove_from_allow_list'):
            self.params.allow_list.discard(trader)
            self.events.emit('AllowListChanged', trader=trader, allowed=False)

    # ── Margin ───────────────────────────────────────────────────────
    def add_margin(self, trader: str, amm: Amm, added_margin: UDecimal):
        with self._operation('add_margin'):
            self._require_amm(amm, True)
            _require_valid_token_amount(added_margin)

            position = self.ledger.get_adjusted(amm, trader)
            calc = calc_remain_margin(self.ledger, amm, position, added_margin)
            if calc.bad_debt:
                raise MarginError('margin is not enough')

            self.ledger.set(amm, trader, replace(
                position,
                margin=calc.remain_margin,
                last_funding_checkpoint=calc.latest_cumulative_funding,
            ))
            self.vault.deposit(amm.quote_asset_token, trader, added_margin)
            self.events.emit(
                'MarginChanged', trader=trader, amm=amm.address,
                amount=added_margin.to_signed(), funding_payment=calc.funding_payment,
            )
            logger.info(f'[CH] {trader} added {added_margin} margin on {amm.address} → {calc.remain_margin}')

    def remove_margin(self, trader: str, amm: Amm, removed_margin: UDecimal):
        with self._operation('remove_margin'):
            self._require_amm(amm, True)
            _require_valid_token_amount(removed_margin)

            position = self.ledger.get_adjusted(amm, trader)
            margin_delta = -removed_margin
            calc = calc_remain_margin(self.ledger, amm, position, margin_delta)
            if calc.bad_debt:
                raise MarginError('margin is not enough')

            self.ledger.set(amm, trader, replace(
                position,
                margin=calc.remain_margin,
                last_funding_checkpoint=calc.latest_cumulative_funding,
            ))
            if not position.is_flat:
                _require_margin_ratio(
                    self._margin_ratio(amm, trader), self.params.init_margin_ratio, True,
                )

            self.vault.withdraw(amm.quote_asset_token, trader, removed_margin)
            self.events.emit(
                'MarginChanged', trader=trader, amm=amm.address,
                amount=margin_delta, funding_payment=calc.funding_payment,
            )
            logger.info(f'[CH] {trader} removed {removed_margin} margin on {amm.address} → {calc.remain_margin}')

    # ── Open ─────────────────────────────────────────────────────────
    def open_position(
        self,
        trader: str,
        amm: Amm,
        side: Side,
        quote_asset_amount: UDecimal,
        leverage: UDecimal,
        base_asset_amount_limit: Optional[UDecimal] = None,
    ) -> TransitionResult:
        """
        Trade `quote_asset_amount × leverage` of notional on `side`.

        Depending on the current position this increases it, reduces it, or
        closes it and opens the remainder on the other side.

        Args:
            quote_asset_amount:      margin the trader commits
            leverage:                1 / leverage must meet the initial margin ratio
            base_asset_amount_limit: slippage bound on the base amount received

        Returns:
            TransitionResult of the whole trade.
        """
        with self._operation('open_position'):
            self._require_amm(amm, True)
            _require_valid_token_amount(quote_asset_amount)
            _require_non_zero_input(leverage)
            _require_margin_ratio(UDecimal.one() / leverage, self.params.init_margin_ratio, True)
            self.guard.require_not_restricted(amm, trader)
            limit = base_asset_amount_limit or UDecimal.zero()

            old_size = self.ledger.get_adjusted(amm, trader).size
            is_new = old_size.is_zero()
            old_side = Side.BUY if old_size.is_positive() else Side.SELL

            if is_new or old_side == side:
                result = self._increase_position(
                    trader, amm, side, quote_asset_amount * leverage, limit, leverage,
                )
            else:
                result = self._open_reverse_position(
                    trader, amm, side, quote_asset_amount, leverage, limit,
                )

            self.ledger.set(amm, trader, result.position)
            # trading exactly the existing size is a close; nothing left to check
            if not is_new and not result.position.is_flat:
                _require_margin_ratio(
                    self._margin_ratio(amm, trader), self.params.maintenance_margin_ratio, True,
                )

            # bad debt here would let the trader pull reserve funds through a trade
            if result.bad_debt:
                raise MarginError('bad debt')
            self.vault.require_fee_pool(amm, result.exchanged_quote_amount)

            token = amm.quote_asset_token
            if result.margin_to_vault.is_positive():
                self.vault.deposit(token, trader, result.margin_to_vault.abs())
            elif result.margin_to_vault.is_negative():
                self.vault.withdraw(token, trader, result.margin_to_vault.abs())

            fee = self.vault.transfer_fee(trader, amm, result.exchanged_quote_amount)
            self._emit_position_changed(trader, amm, result, fee)

            logger.info(
                f'[CH] OPEN {side.value.upper()} {trader} on {amm.address} | '
                f'Notional: {result.exchanged_quote_amount} | '
                f'Size: {old_size} → {result.position.size} | '
                f'Margin: {result.position.margin} | Fee: {fee}'
            )
            return result

    def _increase_position(
        self, trader: str, amm: Amm, side: Side,
        open_notional: UDecimal, min_position_size: UDecimal, leverage: UDecimal,
    ) -> TransitionResult:
        old = self.ledger.get(amm, trader)
        self._update_open_interest(trader, amm, open_notional.to_signed())

        exchanged_size = self._swap_input(amm, side, open_notional, min_position_size)
        new_size = old.size + exchanged_size

        if not self.params.is_allow_listed(trader):
            max_holding = amm.get_max_holding_base_asset()
            if not max_holding.is_zero() and new_size.abs() > max_holding:
                raise InputValidationError('hit position size upper bound')

        margin_requirement = open_notional / leverage
        calc = calc_remain_margin(self.ledger, amm, old, margin_requirement)

        position = Position(
            size=new_size,
            margin=calc.remain_margin,
            open_notional=old.open_notional + open_notional,
            last_funding_checkpoint=calc.latest_cumulative_funding,
            liquidity_basis=amm.get_cumulative_position_multiplier(),
            block_number=self.clock.block_number(),
        )
        _, unrealized_pnl = self._position_notional_and_unrealized_pnl(
            amm, position, PnlCalcOption.SPOT_PRICE,
        )
        return TransitionResult(
            position=position,
            exchanged_quote_amount=open_notional,
            bad_debt=calc.bad_debt,
            exchanged_position_size=exchanged_size,
            margin_to_vault=margin_requirement.to_signed(),
            funding_payment=calc.funding_payment,
            unrealized_pnl_after=unrealized_pnl,
        )

    def _open_reverse_position(
        self, trader: str, amm: Amm, side: Side,
        quote_asset_amount: UDecimal, leverage: UDecimal, base_asset_amount_limit: UDecimal,
    ) -> TransitionResult:
        open_notional = quote_asset_amount * leverage
        old = self.ledger.get(amm, trader)
        old_notional, unrealized_pnl = self._position_notional_and_unrealized_pnl(
            amm, old, PnlCalcOption.SPOT_PRICE,
        )

        if old_notional > open_notional:
            return self._reduce_position(
                trader, amm, side, old, old_notional, unrealized_pnl,
                open_notional, base_asset_amount_limit,
            )
        return self._close_and_open_reverse_position(
            trader, amm, side, quote_asset_amount, leverage, base_asset_amount_limit,
        )

    def _reduce_position(
        self, trader: str, amm: Amm, side: Side, old: Position,
        old_notional: UDecimal, unrealized_pnl: SDecimal,
        open_notional: UDecimal, base_asset_amount_limit: UDecimal,
    ) -> TransitionResult:
        self._update_open_interest(trader, amm, -open_notional)
        exchanged_size = self._swap_input(amm, side, open_notional, base_asset_amount_limit)

        # realized share = closed size / old size
        realized_pnl = unrealized_pnl * exchanged_size.abs() / old.size.abs()
        calc = calc_remain_margin(self.ledger, amm, old, realized_pnl)
        unrealized_pnl_after = unrealized_pnl - realized_pnl

        # long:  unrealized = notional - open notional → open notional = notional - unrealized
        # short: unrealized = open notional - notional → open notional = notional + unrealized
        # notional here is what is left after this trade
        if old.is_long:
            remain_open_notional = old_notional.to_signed() - open_notional - unrealized_pnl_after
        else:
            remain_open_notional = unrealized_pnl_after + old_notional - open_notional
        if not remain_open_notional.is_positive():
            raise InputValidationError('value of openNotional <= 0')

        return TransitionResult(
            position=Position(
                size=old.size + exchanged_size,
                margin=calc.remain_margin,
                open_notional=remain_open_notional.abs(),
                last_funding_checkpoint=calc.latest_cumulative_funding,
                liquidity_basis=amm.get_cumulative_position_multiplier(),
                block_number=self.clock.block_number(),
            ),
            exchanged_quote_amount=open_notional,
            bad_debt=calc.bad_debt,
            exchanged_position_size=exchanged_size,
            realized_pnl=realized_pnl,
            funding_payment=calc.funding_payment,
            unrealized_pnl_after=unrealized_pnl_after,
        )

    def _close_and_open_reverse_position(
        self, trader: str, amm: Amm, side: Side,
        quote_asset_amount: UDecimal, leverage: UDecimal, base_asset_amount_limit: UDecimal,
    ) -> TransitionResult:
        closed = self._close_position(trader, amm, UDecimal.zero(), skip_fluctuation_check=True)
        # an underwater position has to be reduced, not flipped
        if closed.bad_debt:
            raise MarginError('reduce an underwater position')

        open_notional = quote_asset_amount * leverage - closed.exchanged_quote_amount

        # dust left over: the required margin rounds to zero, stop at flat
        if (open_notional / leverage).is_zero():
            return closed

        closed_size = closed.exchanged_position_size.abs()
        updated_limit = UDecimal.zero()
        if base_asset_amount_limit > closed_size:
            updated_limit = base_asset_amount_limit - closed_size

        increased = self._increase_position(trader, amm, side, open_notional, updated_limit, leverage)
        return closed.merge(increased)

    # ── Close ────────────────────────────────────────────────────────
    def close_position(
        self, trader: str, amm: Amm, quote_asset_amount_limit: Optional[UDecimal] = None,
    ) -> TransitionResult:
        with self._operation('close_position'):
            self._require_amm(amm, True)
            self.guard.require_not_restricted(amm, trader)

            self.ledger.get_adjusted(amm, trader)
            result = self._close_position(
                trader, amm, quote_asset_amount_limit or UDecimal.zero(),
                skip_fluctuation_check=False,
            )
            self.vault.require_fee_pool(amm, result.exchanged_quote_amount)

            token = amm.quote_asset_token
            if result.bad_debt:
                self.guard.enter(amm)
                self.vault.realize_bad_debt(token, result.bad_debt)
            self.vault.withdraw(token, trader, result.margin_to_vault.abs())

            fee = self.vault.transfer_fee(trader, amm, result.exchanged_quote_amount)
            self._emit_position_changed(trader, amm, result, fee)

            outcome = 'WIN' if result.realized_pnl.is_positive() else 'LOSS'
            logger.info(
                f'[CH] CLOSE {outcome} {trader} on {amm.address} | '
                f'Notional: {result.exchanged_quote_amount} | '
                f'PnL: {result.realized_pnl} | Funding: {result.funding_payment} | '
                f'Bad debt: {result.bad_debt} | Fee: {fee}'
            )
            return result

    def _close_position(
        self, trader: str, amm: Amm, quote_asset_amount_limit: UDecimal,
        skip_fluctuation_check: bool,
    ) -> TransitionResult:
        old = self.ledger.get(amm, trader)
        _require_position_size(old.size)

        _, unrealized_pnl = self._position_notional_and_unrealized_pnl(
            amm, old, PnlCalcOption.SPOT_PRICE,
        )
        calc = calc_remain_margin(self.ledger, amm, old, unrealized_pnl)

        # closing a long sells base into the pool, closing a short buys it back
        direction = Dir.ADD_TO_AMM if old.is_long else Dir.REMOVE_FROM_AMM
        exchanged_quote = amm.swap_output(
            direction, old.size.abs(), quote_asset_amount_limit, skip_fluctuation_check,
        )

        # a bankrupt position's bad debt counts toward the open interest it frees
        self._update_open_interest(
            trader, amm, -(unrealized_pnl + calc.bad_debt + old.open_notional),
        )
        self.ledger.clear(amm, trader)

        return TransitionResult(
            position=self.ledger.get(amm, trader),
            exchanged_quote_amount=exchanged_quote,
            bad_debt=calc.bad_debt,
            exchanged_position_size=-old.size,
            realized_pnl=unrealized_pnl,
            margin_to_vault=-calc.remain_margin,
            funding_payment=calc.funding_payment,
        )

    # ── Liquidation ──────────────────────────────────────────────────
    def liquidate(self, liquidator: str, amm: Amm, trader: str) -> TransitionResult:
        """
        Close an underwater position on behalf of the system.

        The liquidator always receives the full fee (closed notional ×
        liquidation fee ratio). If the trader's remaining margin cannot cover
        it the gap is bad debt; otherwise the surplus goes to the reserve.
        """
        with self._operation('liquidate'):
            self._require_amm(amm, True)
            _require_margin_ratio(
                self._margin_ratio(amm, trader), self.params.maintenance_margin_ratio, False,
            )

            result = self._close_position(
                trader, amm, UDecimal.zero(), skip_fluctuation_check=True,
            )
            remain_margin = result.margin_to_vault.abs()
            liquidation_fee = result.exchanged_quote_amount * self.params.liquidation_fee_ratio

            total_bad_debt = result.bad_debt
            surplus = UDecimal.zero()
            if liquidation_fee > remain_margin:
                total_bad_debt = total_bad_debt + (liquidation_fee - remain_margin)
            else:
                surplus = remain_margin - liquidation_fee

            token = amm.quote_asset_token
            if total_bad_debt:
                self.vault.realize_bad_debt(token, total_bad_debt)
            if surplus:
                self.vault.transfer_to_reserve(token, surplus)
            self.vault.withdraw(token, liquidator, liquidation_fee)
            self.guard.enter(amm)

            self.events.emit(
                'PositionLiquidated',
                trader=trader,
                amm=amm.address,
                position_notional=result.exchanged_quote_amount,
                position_size=result.exchanged_position_size.abs(),
                liquidation_fee=liquidation_fee,
                liquidator=liquidator,
                bad_debt=total_bad_debt,
            )
            result = replace(result, bad_debt=total_bad_debt)
            self._emit_position_changed(
                trader, amm, result, UDecimal.zero(), liquidation_penalty=liquidation_fee,
            )

            logger.warning(
                f'[CH] LIQUIDATED {trader} on {amm.address} by {liquidator} | '
                f'Notional: {result.exchanged_quote_amount} | Fee: {liquidation_fee} | '
                f'Bad debt: {total_bad_debt}'
            )
            return result

    # ── Shutdown Settlement ──────────────────────────────────────────
    def settle_position(self, trader: str, amm: Amm) -> UDecimal:
        """
        Pay out a position in a shut-down market.

        Settlement price 0 → the trader gets the margin back.
        Otherwise          → size × (settlement price − open price) + margin,
                             floored at zero. The reserve does not top up.
        """
        with self._operation('settle_position'):
            self._require_amm(amm, False)
            position = self.ledger.get_adjusted(amm, trader)
            _require_position_size(position.size)
            self.ledger.clear(amm, trader)

            settlement_price = amm.get_settlement_price()
            if settlement_price.is_zero():
                settled_value = position.margin
            else:
                open_price = position.open_notional / position.size.abs()
                returned_fund = (
                    position.size * (settlement_price.to_signed() - open_price) + position.margin
                )
                settled_value = returned_fund.abs() if returned_fund.is_positive() else UDecimal.zero()

            if settled_value:
                self.vault.pay_out(amm.quote_asset_token, trader, settled_value)
            self.events.emit(
                'PositionSettled', amm=amm.address, trader=trader, value_transferred=settled_value,
            )
            logger.info(f'[CH] SETTLED {trader} on {amm.address} → {settled_value}')
            return settled_value

    # ── Funding ──────────────────────────────────────────────────────
    def pay_funding(self, amm: Amm) -> SDecimal:
        """
        Close the AMM's funding period and book its premium fraction.

        Traders' payments are realized lazily at their next position change.
        The reserve is the counterparty for the AMM's net side right away:
        it pays when the AMM loses on funding and receives when it gains.
        """
        with self._operation('pay_funding'):
            self._require_amm(amm, True)
            premium_fraction = amm.settle_funding()
            cumulative = premium_fraction + self.ledger.latest_cumulative_funding(amm)
            self.ledger.append_cumulative_funding(amm, cumulative)

            # positive premium: longs pay shorts
            reserve_profit = premium_fraction * amm.get_base_asset_delta_this_funding_period()
            token = amm.quote_asset_token
            if reserve_profit.is_negative():
                self.reserve.withdraw(token, reserve_profit.abs())
            else:
                self.vault.transfer_to_reserve(token, reserve_profit.abs())

            self.events.emit(
                'FundingPaid',
                amm=amm.address,
                premium_fraction=premium_fraction,
                cumulative_funding=cumulative,
                reserve_funding_profit=reserve_profit,
            )
            return premium_fraction

    # ── Queries ──────────────────────────────────────────────────────
    def get_position(self, amm: Amm, trader: str) -> Position:
        with self._operation('get_position'):
            return self.ledger.get_adjusted(amm, trader)

    def get_personal_position_with_funding_payment(self, amm: Amm, trader: str) -> Position:
        """Position with pending funding folded into margin (floored at zero)."""
        with self._operation('get_personal_position_with_funding_payment'):
            position = self.ledger.get_adjusted(amm, trader)
            calc = calc_remain_margin(self.ledger, amm, position, UDecimal.zero())
            return replace(position, margin=calc.remain_margin)

    def get_margin_ratio(self, amm: Amm, trader: str) -> SDecimal:
        with self._operation('get_margin_ratio'):
            return self._margin_ratio(amm, trader)

    def get_position_notional_and_unrealized_pnl(
        self, amm: Amm, trader: str, option: PnlCalcOption = PnlCalcOption.SPOT_PRICE,
    ) -> tuple[UDecimal, SDecimal]:
        with self._operation('get_position_notional_and_unrealized_pnl'):
            position = self.ledger.get_adjusted(amm, trader)
            return self._position_notional_and_unrealized_pnl(amm, position, option)

    def get_preference_position_notional_and_unrealized_pnl(
        self, amm: Amm, trader: str, preference: PnlPreferenceOption,
    ) -> tuple[UDecimal, SDecimal]:
        with self._operation('get_preference_position_notional_and_unrealized_pnl'):
            position = self.ledger.get_adjusted(amm, trader)
            return self._preference_notional_and_pnl(amm, position, preference)

    def get_latest_cumulative_funding(self, amm: Amm) -> SDecimal:
        with self._lock:
            return self.ledger.latest_cumulative_funding(amm)

    def get_prepaid_bad_debt(self, token) -> UDecimal:
        with self._lock:
            return self.ledger.prepaid_bad_debt(token)

    # ── Valuation ────────────────────────────────────────────────────
    def _margin_ratio(self, amm: Amm, trader: str) -> SDecimal:
        position = self.ledger.get_adjusted(amm, trader)
        _require_position_size(position.size)
        notional, unrealized_pnl = self._preference_notional_and_pnl(
            amm, position, PnlPreferenceOption.MAX_PNL,
        )
        calc = calc_remain_margin(self.ledger, amm, position, unrealized_pnl)
        return margin_ratio(calc, notional)

    def _position_notional_and_unrealized_pnl(
        self, amm: Amm, position: Position, option: PnlCalcOption,
    ) -> tuple[UDecimal, SDecimal]:
        size = position.size.abs()
        if size.is_zero():
            return UDecimal.zero(), SDecimal.zero()

        direction = Dir.REMOVE_FROM_AMM if position.is_short else Dir.ADD_TO_AMM
        if option == PnlCalcOption.TWAP:
            notional = amm.get_output_twap(direction, size)
        else:
            notional = amm.get_output_price(direction, size)
        return notional, calc_unrealized_pnl(position, notional)

    def _preference_notional_and_pnl(
        self, amm: Amm, position: Position, preference: PnlPreferenceOption,
    ) -> tuple[UDecimal, SDecimal]:
        spot = self._position_notional_and_unrealized_pnl(amm, position, PnlCalcOption.SPOT_PRICE)
        twap = self._position_notional_and_unrealized_pnl(amm, position, PnlCalcOption.TWAP)
        spot_is_larger = spot[1] > twap[1]
        if preference == PnlPreferenceOption.MAX_PNL:
            return spot if spot_is_larger else twap
        return twap if spot_is_larger else spot

    # ── Internals ────────────────────────────────────────────────────
    def _swap_input(
        self, amm: Amm, side: Side, quote_amount: UDecimal, base_asset_amount_limit: UDecimal,
    ) -> SDecimal:
        """Quote-denominated trade; returns the signed base amount the trader gained."""
        direction = Dir.ADD_TO_AMM if side == Side.BUY else Dir.REMOVE_FROM_AMM
        output = amm.swap_input(direction, quote_amount, base_asset_amount_limit).to_signed()
        return -output if direction == Dir.REMOVE_FROM_AMM else output

    def _update_open_interest(self, trader: str, amm: Amm, amount: SDecimal):
        cap = amm.get_open_interest_notional_cap()
        if cap.is_zero():
            return

        updated = self.ledger.open_interest_notional(amm).to_signed() + amount
        # profits paid out to winners can exceed what bankrupt positions left behind
        if updated.is_negative():
            updated = SDecimal.zero()
        if amount.is_positive() and updated > cap and not self.params.is_allow_listed(trader):
            raise InputValidationError('over limit')
        self.ledger.set_open_interest_notional(amm, updated.abs())

    def _emit_position_changed(
        self, trader: str, amm: Amm, result: TransitionResult, fee: UDecimal,
        liquidation_penalty: Optional[UDecimal] = None,
    ):
        quote_reserve, base_reserve = amm.get_reserves()
        exchanged = result.exchanged_position_size
        self.events.emit(
            'PositionChanged',
            trader=trader,
            amm=amm.address,
            side=Side.BUY if exchanged.is_positive() else Side.SELL,
            margin=result.position.margin,
            position_notional=result.exchanged_quote_amount,
            exchanged_position_size=exchanged,
            fee=fee,
            position_size_after=result.position.size,
            realized_pnl=result.realized_pnl,
            unrealized_pnl_after=result.unrealized_pnl_after,
            bad_debt=result.bad_debt,
            liquidation_penalty=liquidation_penalty or UDecimal.zero(),
            funding_payment=result.funding_payment,
            quote_asset_reserve=quote_reserve,
            base_asset_reserve=base_reserve,
        )
