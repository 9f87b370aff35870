"""
Settlement & Bad-Debt Reconciliation — the vault side of the clearing house.

Moves quote tokens between traders, the vault, the reserve and the fee pool:
  deposit              trader → vault (margin)
  withdraw             vault → receiver; shortfall borrowed from the reserve
                       and booked as prepaid bad debt
  realize_bad_debt     offset prepaid bad debt first, draw the rest
  transfer_to_reserve  vault → reserve, capped at the vault balance
  transfer_fee         trader → reserve (spread) and fee pool (toll)
  pay_out              vault → receiver, no reserve support
"""
from typing import Hashable, Optional
from loguru import logger

from data.ledger import PositionLedger
from execution.errors import CollaboratorError
from execution.interfaces import Amm, FeePool, Reserve, TokenGateway
from monitoring.events import EventLog
from numeric.fixed_point import UDecimal


class Settlement:

    def __init__(
        self,
        ledger: PositionLedger,
        tokens: TokenGateway,
        reserve: Reserve,
        events: EventLog,
        account: str,
        fee_pool: Optional[FeePool] = None,
    ):
        self.ledger = ledger
        self.tokens = tokens
        self.reserve = reserve
        self.events = events
        self.account = account
        self.fee_pool = fee_pool

    def balance(self, token: Hashable) -> UDecimal:
        return self.tokens.balance_of(token, self.account)

    # ── Trader Flows ─────────────────────────────────────────────────
    def deposit(self, token: Hashable, trader: str, amount: UDecimal):
        self.tokens.transfer(token, trader, self.account, amount)
        self.events.emit('Deposited', token=token, trader=trader, amount=amount)

    def withdraw(self, token: Hashable, receiver: str, amount: UDecimal):
        """
        Pay out of the vault. If the vault is short, this profit is backed by
        other positions' future losses: borrow the gap from the reserve now and
        remember it as prepaid bad debt.
        """
        balance = self.balance(token)
        if balance < amount:
            shortage = amount - balance
            self.ledger.set_prepaid_bad_debt(token, self.ledger.prepaid_bad_debt(token) + shortage)
            self.reserve.withdraw(token, shortage)
            logger.warning(
                f'[VAULT] Short {shortage} {token} paying {receiver}: '
                f'borrowed from reserve, prepaid bad debt now {self.ledger.prepaid_bad_debt(token)}'
            )
        self.tokens.transfer(token, self.account, receiver, amount)

    def pay_out(self, token: Hashable, receiver: str, amount: UDecimal):
        self.tokens.transfer(token, self.account, receiver, amount)

    # ── Reserve Flows ────────────────────────────────────────────────
    def realize_bad_debt(self, token: Hashable, bad_debt: UDecimal):
        prepaid = self.ledger.prepaid_bad_debt(token)
        if prepaid > bad_debt:
            # the reserve already paid for this one
            self.ledger.set_prepaid_bad_debt(token, prepaid - bad_debt)
        else:
            self.reserve.withdraw(token, bad_debt - prepaid)
            self.ledger.set_prepaid_bad_debt(token, UDecimal.zero())
        logger.warning(f'[VAULT] Bad debt realized: {bad_debt} {token} (prepaid offset {min(prepaid, bad_debt)})')

    def transfer_to_reserve(self, token: Hashable, amount: UDecimal):
        balance = self.balance(token)
        self.tokens.transfer(token, self.account, self.reserve.address, min(balance, amount))

    # ── Fees ─────────────────────────────────────────────────────────
    def require_fee_pool(self, amm: Amm, position_notional: UDecimal):
        """Fail before any margin moves if a toll would be owed with no pool to receive it."""
        toll, _ = amm.calc_fee(position_notional)
        if not toll.is_zero() and self.fee_pool is None:
            raise CollaboratorError('Invalid FeePool')

    def transfer_fee(self, trader: str, amm: Amm, position_notional: UDecimal) -> UDecimal:
        """Charge the trader spread (→ reserve) and toll (→ fee pool). Returns the total."""
        toll, spread = amm.calc_fee(position_notional)
        has_toll = not toll.is_zero()
        has_spread = not spread.is_zero()
        if not has_toll and not has_spread:
            return UDecimal.zero()

        if has_toll and self.fee_pool is None:
            raise CollaboratorError('Invalid FeePool')

        token = amm.quote_asset_token
        if has_spread:
            self.tokens.transfer(token, trader, self.reserve.address, spread)
        if has_toll:
            self.tokens.transfer(token, trader, self.fee_pool.address, toll)
            self.fee_pool.notify_fee_received(token, toll)
        return toll + spread
