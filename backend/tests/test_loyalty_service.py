from types import SimpleNamespace

import pytest

from branchpos.errors import BalanceConsistency, InvalidRedemption
from branchpos.services.loyalty_service import LoyaltyLedger
from branchpos.values import Money


def customer(id, points=0, referred_by_id=None):
    return SimpleNamespace(id=id, loyalty_points_cents=points, referred_by_id=referred_by_id)


@pytest.fixture
def ledger():
    return LoyaltyLedger()


def test_walk_in_earns_nothing(ledger):
    result = ledger.compute(None, None, Money(30000), is_new_customer=False)
    assert result.earned == Money(0)
    assert result.referrer_bonus == Money(0)
    assert result.referrer_id is None


def test_existing_customer_earns_five_percent(ledger):
    result = ledger.compute(customer(1, 50000), None, Money(30000), is_new_customer=False)
    assert result.earned == Money(1500)


def test_new_customer_earns_nothing_but_referrer_gets_bonus(ledger):
    referrer = customer(1, 5000)
    buyer = customer(2, 0, referred_by_id=1)

    result = ledger.compute(buyer, referrer, Money(30000), is_new_customer=True)

    assert result.earned == Money(0)
    assert result.referrer_bonus == Money(600)
    assert result.referrer_id == 1


def test_referrer_bonus_is_not_chained(ledger):
    grand = customer(1)
    referrer = customer(2, referred_by_id=1)
    buyer = customer(3, referred_by_id=2)

    # Only the direct referrer is ever passed; a mismatched one gets nothing
    assert ledger.compute(buyer, grand, Money(10000), False).referrer_bonus == Money(0)
    assert ledger.compute(buyer, referrer, Money(10000), False).referrer_bonus == Money(200)


def test_self_referral_earns_no_bonus(ledger):
    buyer = customer(1, referred_by_id=1)
    result = ledger.compute(buyer, buyer, Money(10000), is_new_customer=False)
    assert result.referrer_bonus == Money(0)
    assert result.earned == Money(500)


def test_negative_profit_earns_nothing(ledger):
    referrer = customer(1)
    buyer = customer(2, referred_by_id=1)
    result = ledger.compute(buyer, referrer, Money(-5000), is_new_customer=False)
    assert result.earned == Money(0)
    assert result.referrer_bonus == Money(0)


def test_rates_are_configurable():
    ledger = LoyaltyLedger(earn_rate_bps=1000, referral_rate_bps=0)
    referrer = customer(1)
    buyer = customer(2, referred_by_id=1)
    result = ledger.compute(buyer, referrer, Money(10000), is_new_customer=False)
    assert result.earned == Money(1000)
    assert result.referrer_bonus == Money(0)


class TestRedeem:
    def test_capped_by_balance_and_total(self, ledger):
        buyer = customer(1, points=500)
        assert ledger.redeem(buyer, Money(100), Money(60000)) == Money(100)
        assert ledger.redeem(buyer, Money(900), Money(60000)) == Money(500)
        assert ledger.redeem(buyer, Money(400), Money(300)) == Money(300)

    def test_new_customer_and_walk_in_redeem_zero(self, ledger):
        assert ledger.redeem(customer(1, points=500), Money(100), Money(1000), is_new_customer=True) == Money(0)
        assert ledger.redeem(None, Money(100), Money(1000)) == Money(0)

    def test_negative_request_rejected(self, ledger):
        with pytest.raises(InvalidRedemption):
            ledger.redeem(customer(1, points=500), Money(-1), Money(1000))


class TestSettleBalance:
    def test_balance_identity(self, ledger):
        assert ledger.settle_balance(Money(50000), Money(10000), Money(1500)) == Money(41500)

    def test_negative_result_raises(self, ledger):
        with pytest.raises(BalanceConsistency) as exc:
            ledger.settle_balance(Money(100), Money(500), Money(0))
        assert exc.value.details["clamped_to_cents"] == 0
