"""
In-memory collaborators for the clearing house: a constant-price AMM, a
native-precision token ledger, an insurance fund and a fee pool.
"""
from decimal import Decimal

import pytest

from config import CLEARING_HOUSE_ACCOUNT
from data.ledger import BlockClock
from execution.clearing_house import ClearingHouse
from execution.interfaces import Dir
from execution.params import ClearingHouseParams
from execution.token_gateway import DecimalTokenGateway
from monitoring.events import EventLog
from numeric.fixed_point import SDecimal, UDecimal

TOKEN = 'USDC'
HOUSE = CLEARING_HOUSE_ACCOUNT


def U(value) -> UDecimal:
    return UDecimal.of(value)


def S(value) -> SDecimal:
    return SDecimal.of(value)


# ── Fakes ────────────────────────────────────────────────────────────
class FakeAmm:
    """
    Trades fill at `price` with no slippage. Spot and TWAP valuations default
    to the fill price and can be moved independently.
    """

    def __init__(self, price='10', address='amm-eth', token=TOKEN):
        self.address = address
        self.quote_asset_token = token
        self.price = U(price)
        self.spot: UDecimal | None = None
        self.twap: UDecimal | None = None
        self.multiplier = U(1)
        self.max_holding = UDecimal.zero()
        self.open_interest_cap = UDecimal.zero()
        self.toll_ratio = UDecimal.zero()
        self.spread_ratio = UDecimal.zero()
        self.open = True
        self.settlement_price = UDecimal.zero()
        self.next_premium = SDecimal.zero()
        self.base_asset_delta = SDecimal.zero()
        self.swaps: list[tuple] = []

    def set_price(self, price):
        self.price = U(price)

    # ── Trading ──────────────────────────────────────────────────────
    def swap_input(self, direction, quote_amount, base_asset_amount_limit):
        base = quote_amount / self.price
        self.swaps.append(('input', direction, quote_amount, base_asset_amount_limit))
        if direction == Dir.ADD_TO_AMM:
            self.base_asset_delta = self.base_asset_delta + base
        else:
            self.base_asset_delta = self.base_asset_delta - base
        return base

    def swap_output(self, direction, base_amount, quote_asset_amount_limit, skip_fluctuation_check):
        self.swaps.append(('output', direction, base_amount, skip_fluctuation_check))
        if direction == Dir.ADD_TO_AMM:
            self.base_asset_delta = self.base_asset_delta - base_amount
        else:
            self.base_asset_delta = self.base_asset_delta + base_amount
        return base_amount * self.price

    # ── Valuation ────────────────────────────────────────────────────
    def get_spot_price(self):
        return self.spot or self.price

    def get_output_price(self, direction, base_amount):
        return base_amount * self.get_spot_price()

    def get_output_twap(self, direction, base_amount):
        return base_amount * (self.twap or self.get_spot_price())

    # ── Market Settings ──────────────────────────────────────────────
    def get_cumulative_position_multiplier(self):
        return self.multiplier

    def get_max_holding_base_asset(self):
        return self.max_holding

    def get_open_interest_notional_cap(self):
        return self.open_interest_cap

    def calc_fee(self, quote_amount):
        return quote_amount * self.toll_ratio, quote_amount * self.spread_ratio

    def get_reserves(self):
        return U(10000), U(1000)

    def is_open(self):
        return self.open

    def get_settlement_price(self):
        return self.settlement_price

    # ── Funding ──────────────────────────────────────────────────────
    def settle_funding(self):
        return self.next_premium

    def get_base_asset_delta_this_funding_period(self):
        return self.base_asset_delta


class FakeTokenBackend:
    """ERC20-style balances in native units."""

    def __init__(self, decimals: int = 18):
        self._decimals = decimals
        self.balances: dict[tuple, int] = {}

    def mint(self, token, account, amount):
        raw = int(Decimal(str(amount)) * 10 ** self._decimals)
        self.balances[(token, account)] = self.balances.get((token, account), 0) + raw

    def decimals(self, token):
        return self._decimals

    def balance_of(self, token, account):
        return self.balances.get((token, account), 0)

    def transfer(self, token, sender, recipient, amount):
        if self.balance_of(token, sender) < amount:
            raise ValueError(f'insufficient balance: {sender}')
        self.balances[(token, sender)] -= amount
        self.balances[(token, recipient)] = self.balance_of(token, recipient) + amount


class FakeReserve:

    def __init__(self, tokens, address='insurance_fund', house=HOUSE):
        self.address = address
        self.tokens = tokens
        self.house = house
        self.markets = set()
        self.withdrawals: list[UDecimal] = []

    def register(self, amm):
        self.markets.add(amm)

    def is_registered_market(self, amm):
        return amm in self.markets

    def withdraw(self, token, amount):
        self.withdrawals.append(amount)
        self.tokens.transfer(token, self.address, self.house, amount)


class FakeFeePool:

    def __init__(self, address='fee_pool'):
        self.address = address
        self.received: list[tuple] = []

    def notify_fee_received(self, token, amount):
        self.received.append((token, amount))


# ── Fixtures ─────────────────────────────────────────────────────────
@pytest.fixture
def backend():
    b = FakeTokenBackend()
    b.mint(TOKEN, 'alice', 10000)
    b.mint(TOKEN, 'bob', 10000)
    b.mint(TOKEN, 'insurance_fund', 100000)
    return b


@pytest.fixture
def tokens(backend):
    return DecimalTokenGateway(backend)


@pytest.fixture
def amm():
    return FakeAmm()


@pytest.fixture
def reserve(tokens, amm):
    r = FakeReserve(tokens)
    r.register(amm)
    return r


@pytest.fixture
def fee_pool():
    return FakeFeePool()


@pytest.fixture
def clock():
    return BlockClock()


@pytest.fixture
def params():
    return ClearingHouseParams(
        init_margin_ratio=U('0.1'),
        maintenance_margin_ratio=U('0.0625'),
        liquidation_fee_ratio=U('0.0125'),
    )


@pytest.fixture
def house(reserve, tokens, fee_pool, clock, params):
    return ClearingHouse(
        reserve=reserve,
        tokens=tokens,
        fee_pool=fee_pool,
        clock=clock,
        params=params,
        events=EventLog(),
    )


@pytest.fixture
def balance(tokens):
    def _balance(account):
        return tokens.balance_of(TOKEN, account)
    return _balance
