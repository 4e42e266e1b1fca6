"""
Two-tier loyalty program.

Points are a monetary balance in cents (1 point = 1 cent of store credit).

- The buying customer earns LOYALTY_EARN_RATE_BPS of the sale profit (5%).
- The customer who referred the buyer earns REFERRAL_BONUS_RATE_BPS (2%),
  credited straight to their balance. Referrals are never chained: the
  referrer's own referrer gets nothing.
- A customer created by the sale earns nothing on that sale and has
  nothing to redeem. Their referrer still gets the bonus.
- A loss-making sale (negative profit) earns nothing.

LoyaltyLedger is pure: it reads balances off the objects it is given and
returns amounts. Persisting the new balances is the sale transaction's job.
"""
from __future__ import annotations

from dataclasses import dataclass

from ..errors import BalanceConsistency, InvalidRedemption
from ..values import Money

DEFAULT_EARN_RATE_BPS = 500
DEFAULT_REFERRAL_RATE_BPS = 200


@dataclass(frozen=True)
class LoyaltyResult:
    earned: Money
    referrer_bonus: Money
    referrer_id: int | None = None


class LoyaltyLedger:
    def __init__(
        self,
        earn_rate_bps: int = DEFAULT_EARN_RATE_BPS,
        referral_rate_bps: int = DEFAULT_REFERRAL_RATE_BPS,
    ):
        if earn_rate_bps < 0 or referral_rate_bps < 0:
            raise ValueError("loyalty rates must not be negative")
        self.earn_rate_bps = earn_rate_bps
        self.referral_rate_bps = referral_rate_bps

    def compute(self, customer, referrer, profit: Money, is_new_customer: bool) -> LoyaltyResult:
        if customer is None:
            return LoyaltyResult(earned=Money.zero(), referrer_bonus=Money.zero())

        basis = profit if profit.cents > 0 else Money.zero()

        earned = Money.zero() if is_new_customer else basis.apply_rate_bps(self.earn_rate_bps)

        referrer_bonus = Money.zero()
        referrer_id = None
        if referrer is not None and self._is_referrer_of(referrer, customer):
            referrer_bonus = basis.apply_rate_bps(self.referral_rate_bps)
            referrer_id = referrer.id

        return LoyaltyResult(earned=earned, referrer_bonus=referrer_bonus, referrer_id=referrer_id)

    @staticmethod
    def _is_referrer_of(referrer, customer) -> bool:
        if referrer.id is not None and referrer.id == customer.id:
            return False
        return customer.referred_by_id is not None and customer.referred_by_id == referrer.id

    def redeem(self, customer, requested: Money, sale_total: Money, is_new_customer: bool = False) -> Money:
        """
        Points actually redeemed: min(requested, balance, sale_total).

        Walk-ins and brand-new customers have no balance, so they redeem 0.
        """
        if requested.is_negative:
            raise InvalidRedemption(
                "Redeemed points must not be negative",
                details={"requested_cents": requested.cents},
            )
        if customer is None or is_new_customer:
            return Money.zero()

        balance = Money(customer.loyalty_points_cents or 0)
        ceiling = sale_total if sale_total.cents > 0 else Money.zero()
        return max(Money.zero(), min(requested, balance, ceiling))

    @staticmethod
    def settle_balance(balance: Money, redeemed: Money, earned: Money) -> Money:
        """
        New balance = balance - redeemed + earned.

        Never negative. If it would be, the inputs were inconsistent (e.g. a
        redemption computed against a stale balance) and BalanceConsistency
        is raised so the enclosing transaction rolls back.
        """
        result = balance - redeemed + earned
        if result.is_negative:
            raise BalanceConsistency(
                "Loyalty balance would become negative",
                details={
                    "balance_cents": balance.cents,
                    "redeemed_cents": redeemed.cents,
                    "earned_cents": earned.cents,
                    "clamped_to_cents": 0,
                },
            )
        return result
