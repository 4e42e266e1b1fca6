import pytest
from sqlalchemy import update

from branchpos.errors import (
    BelowMinimumPrice,
    InsufficientStock,
    InvalidValue,
    NotFound,
    PersistenceFailure,
    TransactionCancelled,
    user_message,
)
from branchpos.models import Customer, InventoryLogEntry, Item, Sale, SaleLine
from branchpos.services.audit_details import SaleDetails, parse_details
from branchpos.services.audit_service import AuditLog
from branchpos.services.cancellation import CancellationToken
from branchpos.services.sales_service import SaleLineRequest, SaleRequest, SaleTransaction
from branchpos.services.store import SqlAlchemyInventoryStore
from branchpos.services.transfer_service import TransferRequest
from branchpos.values import Money, Quantity


def line(item, quantity, sell_price_cents):
    return SaleLineRequest(item_id=item.id, quantity=Quantity(quantity), sell_price=Money(sell_price_cents))


def sale_request(branch, *lines, **fields):
    fields.setdefault("user_id", "u-1")
    fields.setdefault("user_name", "Cashier")
    return SaleRequest(branch_id=branch.id, lines=tuple(lines), **fields)


@pytest.fixture
def shuka(branch_a, make_item):
    # cost 100.00, minimum 150.00
    return make_item(
        branch_a, sku="101005", name="Maasai Shuka", quantity=10,
        price_cents=10000, minimum_sell_price_cents=15000, category="Textiles",
    )


class FailingLogStore(SqlAlchemyInventoryStore):
    def append_log_entry(self, **fields):
        raise RuntimeError("log table unavailable")


class StockRaceStore(SqlAlchemyInventoryStore):
    """Empties the item right before the guarded decrement, as a concurrent sale would."""

    def adjust_item_quantity(self, item_id, delta):
        self.session.execute(
            update(Item).where(Item.id == item_id).values(quantity=0)
            .execution_options(synchronize_session=False)
        )
        return super().adjust_item_quantity(item_id, delta)


class ConcurrentBalanceStore(SqlAlchemyInventoryStore):
    """Bumps the customer row version before the balance write, as a concurrent sale would."""

    def __init__(self, session, conflicts):
        super().__init__(session)
        self.conflicts = conflicts
        self.balance_writes = 0

    def update_customer_balance(self, customer_id, new_balance_cents):
        self.balance_writes += 1
        if self.conflicts > 0:
            self.conflicts -= 1
            self.session.execute(
                update(Customer).where(Customer.id == customer_id)
                .values(version_id=Customer.version_id + 1)
                .execution_options(synchronize_session=False)
            )
        return super().update_customer_balance(customer_id, new_balance_cents)


class LatePhoneStore(SqlAlchemyInventoryStore):
    """The first phone lookup misses, as if another sale registered the customer meanwhile."""

    def __init__(self, session):
        super().__init__(session)
        self.misses = 1

    def find_customer_by_phone(self, phone, *, for_update=False):
        if self.misses > 0:
            self.misses -= 1
            return None
        return super().find_customer_by_phone(phone, for_update=for_update)


class CancelAtStage(CancellationToken):
    def __init__(self, stage):
        super().__init__()
        self.stage = stage

    def check(self, stage):
        if stage == self.stage:
            self.cancel()
        super().check(stage)


def test_walk_in_sale_profit_and_no_loyalty(sale_tx, shuka, branch_a, db_session):
    sale = sale_tx.execute(sale_request(branch_a, line(shuka, 3, 20000)))

    assert sale.total_amount_cents == 60000
    assert sale.total_profit_cents == 30000
    assert sale.loyalty_points_earned_cents == 0
    assert sale.customer_id is None
    assert len(sale.lines) == 1
    assert sale.lines[0].profit_cents == 30000
    assert sale.lines[0].item_price_cents == 10000
    assert db_session.get(Item, shuka.id).quantity == 7


def test_existing_customer_redeems_and_earns(sale_tx, shuka, branch_a, make_customer, db_session):
    make_customer("0711000001", name="Ann", points=50000)

    sale = sale_tx.execute(sale_request(
        branch_a, line(shuka, 3, 20000),
        customer_phone="0711000001", redeem_points=Money(10000),
    ))

    assert sale.loyalty_points_redeemed_cents == 10000
    assert sale.loyalty_points_earned_cents == 1500
    assert sale.amount_due_cents == 50000
    ann = db_session.query(Customer).filter_by(phone="0711000001").one()
    assert ann.loyalty_points_cents == 41500


def test_new_customer_earns_nothing_referrer_gets_bonus(sale_tx, shuka, branch_a, make_customer, db_session):
    referrer = make_customer("0722000000", name="Rita", points=5000)

    sale = sale_tx.execute(sale_request(
        branch_a, line(shuka, 3, 20000),
        customer_phone="0733000000", customer_name="Newton",
        referred_by_phone="0722000000", redeem_points=Money(1000),
    ))

    newton = db_session.query(Customer).filter_by(phone="0733000000").one()
    assert newton.referred_by_id == referrer.id
    assert newton.loyalty_points_cents == 0
    assert sale.customer_id == newton.id
    assert sale.loyalty_points_earned_cents == 0
    assert sale.loyalty_points_redeemed_cents == 0
    assert sale.referrer_customer_id == referrer.id
    assert sale.referrer_points_cents == 600
    assert db_session.get(Customer, referrer.id).loyalty_points_cents == 5600


def test_insufficient_stock_changes_nothing(sale_tx, branch_a, make_item, db_session):
    item = make_item(branch_a, sku="202001", name="Bowl", quantity=5)

    with pytest.raises(InsufficientStock) as exc:
        sale_tx.execute(sale_request(branch_a, line(item, 10, 20000)))

    assert exc.value.details["requested_quantity"] == 10
    assert exc.value.details["on_hand"] == 5
    assert user_message(exc.value) == "Not enough stock for Bowl"
    assert db_session.get(Item, item.id).quantity == 5
    assert db_session.query(Sale).count() == 0
    assert db_session.query(InventoryLogEntry).count() == 0


def test_profit_identity_and_one_log_entry_per_item(sale_tx, shuka, branch_a, make_item, db_session):
    coffee = make_item(branch_a, sku="303001", name="Coffee", quantity=20, price_cents=4500)

    sale = sale_tx.execute(sale_request(
        branch_a,
        line(shuka, 2, 20000),
        line(coffee, 4, 7000),
        line(shuka, 1, 18000),
    ))

    lines = db_session.query(SaleLine).filter_by(sale_id=sale.id).all()
    assert sale.total_profit_cents == sum(l.profit_cents for l in lines)
    assert sale.total_profit_cents == sum(
        (l.sell_price_cents - l.item_price_cents) * l.quantity_sold for l in lines
    )
    assert sale.total_profit_cents == 2 * 10000 + 8000 + 4 * 2500
    assert sale.total_amount_cents == 40000 + 28000 + 18000

    entries = db_session.query(InventoryLogEntry).filter_by(sale_id=sale.id).all()
    assert len(entries) == 2
    by_item = {e.item_id: parse_details(e.details) for e in entries}
    shuka_details = by_item[shuka.id]
    assert isinstance(shuka_details, SaleDetails)
    assert shuka_details.quantity_sold == 3
    assert shuka_details.quantity_change.before == 10
    assert shuka_details.quantity_change.after == 7
    assert all(e.action == "sale" and e.user_id == "u-1" for e in entries)


def test_same_item_lines_are_aggregated_for_stock(sale_tx, branch_a, make_item, db_session):
    item = make_item(branch_a, sku="404001", name="Beads", quantity=6)

    with pytest.raises(InsufficientStock):
        sale_tx.execute(sale_request(branch_a, line(item, 3, 20000), line(item, 4, 20000)))

    assert db_session.get(Item, item.id).quantity == 6


def test_below_minimum_price(sale_tx, shuka, branch_a, db_session):
    with pytest.raises(BelowMinimumPrice) as exc:
        sale_tx.execute(sale_request(branch_a, line(shuka, 1, 14999)))

    assert user_message(exc.value) == "Cannot sell below minimum price of 150.00"
    assert db_session.get(Item, shuka.id).quantity == 10


def test_item_in_other_branch_is_not_found(sale_tx, shuka, branch_b):
    with pytest.raises(NotFound):
        sale_tx.execute(sale_request(branch_b, line(shuka, 1, 20000)))


def test_deleted_item_is_not_found(sale_tx, shuka, branch_a, db_session):
    shuka.is_deleted = True
    db_session.commit()

    with pytest.raises(NotFound):
        sale_tx.execute(sale_request(branch_a, line(shuka, 1, 20000)))


def test_empty_sale_rejected(sale_tx, branch_a):
    with pytest.raises(InvalidValue):
        sale_tx.execute(sale_request(branch_a))


def test_non_cash_payment_needs_reference(sale_tx, shuka, branch_a):
    with pytest.raises(InvalidValue):
        sale_tx.execute(sale_request(branch_a, line(shuka, 1, 20000), payment_method="mobile"))

    sale = sale_tx.execute(sale_request(
        branch_a, line(shuka, 1, 20000), payment_method="mobile", payment_reference="QX12AB",
    ))
    assert sale.payment_reference == "QX12AB"


def test_unknown_phone_without_name_is_walk_in(sale_tx, shuka, branch_a, db_session):
    sale = sale_tx.execute(sale_request(branch_a, line(shuka, 1, 20000), customer_phone="0799999999"))

    assert sale.customer_id is None
    assert db_session.query(Customer).count() == 0


def test_unknown_referrer_creates_customer_without_referral(sale_tx, shuka, branch_a, db_session):
    sale = sale_tx.execute(sale_request(
        branch_a, line(shuka, 1, 20000),
        customer_phone="0744000000", customer_name="Wanjiru", referred_by_phone="0700000000",
    ))

    customer = db_session.get(Customer, sale.customer_id)
    assert customer.referred_by_id is None
    assert sale.referrer_points_cents == 0


def test_redemption_capped_by_sale_total(sale_tx, shuka, branch_a, make_customer, db_session):
    make_customer("0711000002", points=90000)

    sale = sale_tx.execute(sale_request(
        branch_a, line(shuka, 1, 20000),
        customer_phone="0711000002", redeem_points=Money(50000),
    ))

    assert sale.loyalty_points_redeemed_cents == 20000
    assert sale.amount_due_cents == 0
    # 90000 - 20000 + 5% of 10000 profit
    assert db_session.query(Customer).filter_by(phone="0711000002").one().loyalty_points_cents == 70500


def test_cancelled_before_start(sale_tx, shuka, branch_a, db_session):
    token = CancellationToken()
    token.cancel()

    with pytest.raises(TransactionCancelled) as exc:
        sale_tx.execute(sale_request(branch_a, line(shuka, 1, 20000)), cancellation=token)

    assert exc.value.details["reason"] == "cancelled"
    assert db_session.query(Sale).count() == 0


def test_expired_deadline(sale_tx, shuka, branch_a):
    with pytest.raises(TransactionCancelled) as exc:
        sale_tx.execute(sale_request(branch_a, line(shuka, 1, 20000)), cancellation=CancellationToken.with_timeout(0))
    assert exc.value.details["reason"] == "deadline"


def test_cancelled_right_before_commit_rolls_back(sale_tx, shuka, branch_a, make_customer, db_session):
    make_customer("0711000003", points=1000)

    with pytest.raises(TransactionCancelled):
        sale_tx.execute(
            sale_request(branch_a, line(shuka, 2, 20000), customer_phone="0711000003"),
            cancellation=CancelAtStage("commit"),
        )

    assert db_session.get(Item, shuka.id).quantity == 10
    assert db_session.query(Sale).count() == 0
    assert db_session.query(SaleLine).count() == 0
    assert db_session.query(Customer).filter_by(phone="0711000003").one().loyalty_points_cents == 1000


def test_guarded_decrement_rejects_concurrent_stock_loss(shuka, branch_a, audit_log, db_session):
    tx = SaleTransaction(StockRaceStore(db_session), audit_log, retry_attempts=1)

    with pytest.raises(InsufficientStock):
        tx.execute(sale_request(branch_a, line(shuka, 2, 20000)))

    assert db_session.get(Item, shuka.id).quantity == 10
    assert db_session.query(Sale).count() == 0


def test_audit_failure_does_not_fail_the_sale(store, shuka, branch_a, db_session):
    failures = []
    audit_log = AuditLog(FailingLogStore(db_session))
    audit_log.on_error(lambda entry, exc: failures.append((entry.item_id, str(exc))))

    sale = SaleTransaction(store, audit_log).execute(sale_request(branch_a, line(shuka, 1, 20000)))

    assert db_session.query(Sale).filter_by(id=sale.id).count() == 1
    assert db_session.get(Item, shuka.id).quantity == 9
    assert db_session.query(InventoryLogEntry).count() == 0
    assert failures == [(shuka.id, "log table unavailable")]


def test_request_from_dict():
    request = SaleRequest.from_dict({
        "branch_id": "1",
        "lines": [{"item_id": 3, "quantity": 2, "sell_price_cents": 20000}],
        "customer_phone": " 0711 ",
        "payment_method": "CARD",
        "payment_reference": "TX-9",
        "redeem_points_cents": 500,
    })

    assert request.branch_id == 1
    assert request.lines[0].quantity == Quantity(2)
    assert request.customer_phone == "0711"
    assert request.payment_method == "card"
    assert request.redeem_points == Money(500)

    with pytest.raises(InvalidValue):
        SaleRequest.from_dict({"branch_id": 1, "lines": [{"item_id": 3, "quantity": 0, "sell_price_cents": 1}]})


def test_balance_conflict_is_retried(shuka, branch_a, audit_log, make_customer, db_session):
    ann = make_customer("0711000001", name="Ann", points=50000)
    store = ConcurrentBalanceStore(db_session, conflicts=1)
    tx = SaleTransaction(store, audit_log, retry_attempts=3)

    sale = tx.execute(sale_request(branch_a, line(shuka, 3, 20000), customer_phone="0711000001"))

    assert store.balance_writes == 2
    assert sale.loyalty_points_earned_cents == 1500
    assert db_session.get(Customer, ann.id).loyalty_points_cents == 51500
    assert db_session.get(Item, shuka.id).quantity == 7
    assert db_session.query(Sale).count() == 1


def test_balance_conflict_exhausts_retries(shuka, branch_a, audit_log, make_customer, db_session):
    ann = make_customer("0711000001", name="Ann", points=50000)
    tx = SaleTransaction(ConcurrentBalanceStore(db_session, conflicts=99), audit_log, retry_attempts=1)

    with pytest.raises(PersistenceFailure) as exc:
        tx.execute(sale_request(branch_a, line(shuka, 3, 20000), customer_phone="0711000001"))

    assert exc.value.details["cause"] == "StaleDataError"
    assert db_session.get(Customer, ann.id).loyalty_points_cents == 50000
    assert db_session.get(Item, shuka.id).quantity == 10
    assert db_session.query(Sale).count() == 0
    assert db_session.query(InventoryLogEntry).count() == 0


def test_customer_registered_concurrently_is_reused(shuka, branch_a, audit_log, make_customer, db_session):
    ann = make_customer("0711000001", name="Ann", points=50000)
    tx = SaleTransaction(LatePhoneStore(db_session), audit_log, retry_attempts=1)

    sale = tx.execute(sale_request(
        branch_a, line(shuka, 3, 20000), customer_phone="0711000001", customer_name="Ann",
    ))

    # Reused as an existing customer, so the sale earns points
    assert sale.customer_id == ann.id
    assert sale.loyalty_points_earned_cents == 1500
    assert db_session.query(Customer).count() == 1
    assert db_session.get(Customer, ann.id).loyalty_points_cents == 51500


def test_loyalty_balance_identity_over_many_sales(sale_tx, branch_a, make_item, db_session):
    # cost 100.00, so every unit sold at 200.00 is 100.00 of profit
    beads = make_item(branch_a, sku="404001", name="Beads", quantity=50)
    redemptions = [0, 500, 700, 5000, 300]

    sales = []
    for index, redeem in enumerate(redemptions):
        sales.append(sale_tx.execute(sale_request(
            branch_a, line(beads, index + 1, 20000),
            customer_phone="0755000000", customer_name="Zawadi", redeem_points=Money(redeem),
        )))

    zawadi = db_session.query(Customer).filter_by(phone="0755000000").one()
    assert sales[0].loyalty_points_earned_cents == 0
    assert all(s.customer_id == zawadi.id for s in sales)
    assert zawadi.loyalty_points_cents == (
        sum(s.loyalty_points_earned_cents for s in sales)
        - sum(s.loyalty_points_redeemed_cents for s in sales)
    )
    # The balance is still empty when the second sale redeems
    assert [s.loyalty_points_earned_cents for s in sales] == [0, 1000, 1500, 2000, 2500]
    assert [s.loyalty_points_redeemed_cents for s in sales] == [0, 0, 700, 1800, 300]
    assert zawadi.loyalty_points_cents == 4200


def test_stock_never_negative_across_sales_and_transfers(sale_tx, transfer_tx, shuka, branch_a, branch_b, db_session):
    sold = 0

    def check_stock():
        quantities = [i.quantity for i in db_session.query(Item).all()]
        assert all(q >= 0 for q in quantities)
        assert sum(quantities) + sold == 10

    sale_tx.execute(sale_request(branch_a, line(shuka, 4, 20000)))
    sold += 4
    check_stock()

    transfer = transfer_tx.execute(TransferRequest(item_id=shuka.id, quantity=Quantity(5), to_branch_id=branch_b.id))
    check_stock()
    copy = db_session.get(Item, transfer.destination_item_id)

    with pytest.raises(InsufficientStock):
        sale_tx.execute(sale_request(branch_a, line(shuka, 3, 20000)))
    check_stock()

    sale_tx.execute(sale_request(branch_b, line(copy, 2, 20000)))
    sold += 2
    check_stock()

    transfer_tx.execute(TransferRequest(item_id=copy.id, quantity=Quantity(3), to_branch_id=branch_a.id))
    check_stock()

    with pytest.raises(InsufficientStock):
        transfer_tx.execute(TransferRequest(item_id=copy.id, quantity=Quantity(1), to_branch_id=branch_a.id))
    check_stock()

    sale_tx.execute(sale_request(branch_a, line(shuka, 4, 20000)))
    sold += 4
    check_stock()
    assert db_session.get(Item, shuka.id).quantity == 0
    assert db_session.get(Item, copy.id).quantity == 0
