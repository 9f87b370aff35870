import pytest

from conftest import HOUSE, TOKEN, FakeAmm, FakeFeePool, U
from data.ledger import PositionLedger
from execution.errors import CollaboratorError
from execution.settlement import Settlement
from monitoring.events import EventLog
from numeric.fixed_point import UDecimal


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def ledger(clock, events):
    return PositionLedger(clock, events)


@pytest.fixture
def vault(ledger, tokens, reserve, events, fee_pool):
    return Settlement(ledger, tokens, reserve, events, HOUSE, fee_pool)


class TestTraderFlows:
    def test_deposit_emits_event(self, vault, events, balance):
        vault.deposit(TOKEN, 'alice', U(100))
        assert balance('alice') == U(9900)
        assert vault.balance(TOKEN) == U(100)
        [event] = events.named('Deposited')
        assert event['trader'] == 'alice'
        assert event['amount'] == U(100)

    def test_withdraw_within_balance(self, vault, ledger, reserve, balance):
        vault.deposit(TOKEN, 'alice', U(100))
        vault.withdraw(TOKEN, 'bob', U(40))
        assert balance('bob') == U(10040)
        assert reserve.withdrawals == []
        assert ledger.prepaid_bad_debt(TOKEN) == UDecimal.zero()

    def test_withdraw_shortfall_borrows_from_reserve(self, vault, ledger, reserve, balance):
        vault.deposit(TOKEN, 'alice', U(10))
        vault.withdraw(TOKEN, 'bob', U(25))
        assert reserve.withdrawals == [U(15)]
        assert ledger.prepaid_bad_debt(TOKEN) == U(15)
        assert balance('bob') == U(10025)
        assert vault.balance(TOKEN) == UDecimal.zero()

    def test_pay_out_has_no_reserve_support(self, vault, reserve):
        with pytest.raises(ValueError, match='insufficient balance'):
            vault.pay_out(TOKEN, 'alice', U(1))
        assert reserve.withdrawals == []


class TestBadDebt:
    def test_prepaid_covers_bad_debt(self, vault, ledger, reserve):
        vault.withdraw(TOKEN, 'bob', U(10))
        vault.realize_bad_debt(TOKEN, U(4))
        assert ledger.prepaid_bad_debt(TOKEN) == U(6)
        assert reserve.withdrawals == [U(10)]

    def test_remainder_drawn_from_reserve(self, vault, ledger, reserve):
        vault.withdraw(TOKEN, 'bob', U(10))
        vault.realize_bad_debt(TOKEN, U(12))
        assert reserve.withdrawals == [U(10), U(2)]
        assert ledger.prepaid_bad_debt(TOKEN) == UDecimal.zero()

    def test_equal_prepaid_draws_nothing_more(self, vault, ledger, reserve):
        vault.withdraw(TOKEN, 'bob', U(10))
        vault.realize_bad_debt(TOKEN, U(10))
        assert reserve.withdrawals == [U(10), UDecimal.zero()]
        assert ledger.prepaid_bad_debt(TOKEN) == UDecimal.zero()

    def test_transfer_to_reserve_capped_at_balance(self, vault, balance):
        vault.deposit(TOKEN, 'alice', U(30))
        vault.transfer_to_reserve(TOKEN, U(50))
        assert balance('insurance_fund') == U(100030)
        assert vault.balance(TOKEN) == UDecimal.zero()


class TestFees:
    def test_no_fee(self, vault, amm, balance):
        assert vault.transfer_fee('alice', amm, U(500)) == UDecimal.zero()
        assert balance('alice') == U(10000)

    def test_toll_to_fee_pool_spread_to_reserve(self, vault, amm, fee_pool, balance):
        amm.toll_ratio = U('0.002')
        amm.spread_ratio = U('0.001')
        assert vault.transfer_fee('alice', amm, U(500)) == U('1.5')
        assert balance('alice') == U('9998.5')
        assert balance('fee_pool') == U(1)
        assert balance('insurance_fund') == U('100000.5')
        assert fee_pool.received == [(TOKEN, U(1))]

    def test_spread_only_needs_no_fee_pool(self, ledger, tokens, reserve, events, balance):
        vault = Settlement(ledger, tokens, reserve, events, HOUSE)
        amm = FakeAmm()
        amm.spread_ratio = U('0.01')
        assert vault.transfer_fee('alice', amm, U(100)) == U(1)
        assert balance('insurance_fund') == U(100001)

    def test_toll_without_fee_pool(self, ledger, tokens, reserve, events):
        vault = Settlement(ledger, tokens, reserve, events, HOUSE)
        amm = FakeAmm()
        amm.toll_ratio = U('0.01')
        with pytest.raises(CollaboratorError, match='Invalid FeePool'):
            vault.transfer_fee('alice', amm, U(100))

    def test_require_fee_pool(self, ledger, tokens, reserve, events):
        vault = Settlement(ledger, tokens, reserve, events, HOUSE)
        amm = FakeAmm()
        amm.spread_ratio = U('0.01')
        vault.require_fee_pool(amm, U(100))
        amm.toll_ratio = U('0.01')
        with pytest.raises(CollaboratorError, match='Invalid FeePool'):
            vault.require_fee_pool(amm, U(100))

    def test_custom_fee_pool_address(self, vault, amm, balance):
        vault.fee_pool = FakeFeePool(address='dao_treasury')
        amm.toll_ratio = U('0.01')
        vault.transfer_fee('alice', amm, U(100))
        assert balance('dao_treasury') == U(1)
