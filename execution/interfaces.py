"""
Collaborator contracts — what the clearing house expects from the outside.

The AMM (pricing and liquidity), the reserve (insurance fund), the fee pool and
the token layer are black boxes. Amounts crossing these interfaces are 18-digit
fixed point; native token precision is handled by execution/token_gateway.py.
"""
from enum import Enum
from typing import Hashable, Protocol

from numeric.fixed_point import SDecimal, UDecimal


class Side(str, Enum):
    BUY  = 'buy'
    SELL = 'sell'


class Dir(str, Enum):
    """Swap direction, from the AMM's point of view."""
    ADD_TO_AMM      = 'add_to_amm'
    REMOVE_FROM_AMM = 'remove_from_amm'


class PnlCalcOption(str, Enum):
    SPOT_PRICE = 'spot_price'
    TWAP       = 'twap'


class PnlPreferenceOption(str, Enum):
    MAX_PNL = 'max_pnl'
    MIN_PNL = 'min_pnl'


class Amm(Protocol):
    address: str
    quote_asset_token: Hashable

    def swap_input(self, direction: Dir, quote_amount: UDecimal, base_asset_amount_limit: UDecimal) -> UDecimal:
        """Trade quote in/out of the pool; returns the base amount exchanged."""

    def swap_output(
        self, direction: Dir, base_amount: UDecimal,
        quote_asset_amount_limit: UDecimal, skip_fluctuation_check: bool,
    ) -> UDecimal:
        """Trade base in/out of the pool; returns the quote notional exchanged."""

    def get_output_price(self, direction: Dir, base_amount: UDecimal) -> UDecimal: ...

    def get_output_twap(self, direction: Dir, base_amount: UDecimal) -> UDecimal: ...

    def get_spot_price(self) -> UDecimal: ...

    def get_cumulative_position_multiplier(self) -> UDecimal: ...

    def get_max_holding_base_asset(self) -> UDecimal:
        """Zero means no cap."""

    def get_open_interest_notional_cap(self) -> UDecimal:
        """Zero means open interest is not tracked."""

    def calc_fee(self, quote_amount: UDecimal) -> tuple[UDecimal, UDecimal]:
        """(toll, spread) owed on a trade of `quote_amount`."""

    def get_reserves(self) -> tuple[UDecimal, UDecimal]:
        """(quote reserve, base reserve)."""

    def is_open(self) -> bool: ...

    def get_settlement_price(self) -> UDecimal: ...

    def settle_funding(self) -> SDecimal:
        """Close the funding period; returns its premium fraction."""

    def get_base_asset_delta_this_funding_period(self) -> SDecimal: ...


class Reserve(Protocol):
    address: str

    def withdraw(self, token: Hashable, amount: UDecimal) -> None:
        """Pay `amount` from the reserve to the clearing house."""

    def is_registered_market(self, amm: Amm) -> bool: ...


class FeePool(Protocol):
    address: str

    def notify_fee_received(self, token: Hashable, amount: UDecimal) -> None: ...


class TokenGateway(Protocol):

    def balance_of(self, token: Hashable, account: str) -> UDecimal: ...

    def transfer(self, token: Hashable, sender: str, recipient: str, amount: UDecimal) -> None: ...


class NativeTokenBackend(Protocol):
    """Token ledger in native units (e.g. 6 decimals for USDC)."""

    def decimals(self, token: Hashable) -> int: ...

    def balance_of(self, token: Hashable, account: str) -> int: ...

    def transfer(self, token: Hashable, sender: str, recipient: str, amount: int) -> None: ...
