"""
Sale transaction: sell one or more items at a branch in a single unit of work.

Order of operations:
1. Validate every line against the stored item (exists, not deleted, in the
   sale branch, enough stock, not below the minimum sell price).
2. Resolve the customer by phone, creating them when a name is supplied.
3. Price the lines (profit = (sell price - cost) x quantity).
4. Work out loyalty: redemption against the locked balance, points earned,
   referrer bonus.
5. Write everything in one transaction: guarded stock decrements, the Sale
   with its lines, customer and referrer balances.
6. After commit, one `sale` audit entry per distinct item.

Validation failures raise before anything is committed; any failure inside
the transaction rolls the whole sale back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import (
    BelowMinimumPrice,
    InsufficientStock,
    InvalidValue,
    NotFound,
    PersistenceFailure,
)
from ..models import Sale
from ..models.sales import PAYMENT_METHODS
from ..values import Money, Quantity, coerce_int, optional_str
from .audit_details import QuantityChange, SaleDetails
from .audit_service import DEFAULT_PAGE_SIZE, AuditEntry, AuditLog, clamp_page
from .cancellation import CancellationToken
from .concurrency import run_with_retry
from .loyalty_service import LoyaltyLedger
from .store import InventoryStore, SaleLineDraft

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaleLineRequest:
    item_id: int
    quantity: Quantity
    sell_price: Money


@dataclass(frozen=True)
class SaleRequest:
    branch_id: int
    lines: tuple[SaleLineRequest, ...]
    user_id: str | None = None
    user_name: str | None = None
    customer_phone: str | None = None
    customer_name: str | None = None
    referred_by_phone: str | None = None
    redeem_points: Money = field(default_factory=Money.zero)
    payment_method: str = "cash"
    payment_reference: str | None = None

    @classmethod
    def from_dict(cls, payload: dict) -> "SaleRequest":
        """
        Build a request from a JSON body. Amounts are in cents:

            {"branch_id": 1, "user_id": "u1", "user_name": "Jane",
             "lines": [{"item_id": 3, "quantity": 2, "sell_price_cents": 20000}],
             "customer_phone": "0712345678", "customer_name": "Ann",
             "referred_by_phone": "0799999999", "redeem_points_cents": 1000,
             "payment_method": "mobile", "payment_reference": "QX12"}
        """
        if not isinstance(payload, dict):
            raise InvalidValue("request body must be a JSON object")

        raw_lines = payload.get("lines")
        if not isinstance(raw_lines, list):
            raise InvalidValue("lines must be a list", details={"field": "lines"})

        lines = []
        for index, raw in enumerate(raw_lines):
            if not isinstance(raw, dict):
                raise InvalidValue(f"lines[{index}] must be an object", details={"field": f"lines[{index}]"})
            lines.append(SaleLineRequest(
                item_id=coerce_int(raw.get("item_id"), f"lines[{index}].item_id"),
                quantity=Quantity.parse(raw.get("quantity"), f"lines[{index}].quantity"),
                sell_price=Money.from_cents(raw.get("sell_price_cents"), f"lines[{index}].sell_price_cents"),
            ))

        redeem_raw = payload.get("redeem_points_cents")
        return cls(
            branch_id=coerce_int(payload.get("branch_id"), "branch_id"),
            lines=tuple(lines),
            user_id=optional_str(payload.get("user_id")),
            user_name=optional_str(payload.get("user_name")),
            customer_phone=optional_str(payload.get("customer_phone")),
            customer_name=optional_str(payload.get("customer_name")),
            referred_by_phone=optional_str(payload.get("referred_by_phone")),
            redeem_points=Money.zero() if redeem_raw is None else Money.from_cents(redeem_raw, "redeem_points_cents"),
            payment_method=(optional_str(payload.get("payment_method")) or "cash").lower(),
            payment_reference=optional_str(payload.get("payment_reference")),
        )


@dataclass
class _ItemDemand:
    """All request lines touching one item, after validation."""
    item: object
    quantity: int = 0
    lines: list[SaleLineRequest] = field(default_factory=list)


class SaleTransaction:
    def __init__(
        self,
        store: InventoryStore,
        audit_log: AuditLog,
        ledger: LoyaltyLedger | None = None,
        retry_attempts: int = 3,
    ):
        self.store = store
        self.audit_log = audit_log
        self.ledger = ledger or LoyaltyLedger()
        self.retry_attempts = retry_attempts

    def execute(self, request: SaleRequest, cancellation: CancellationToken | None = None) -> Sale:
        cancellation = cancellation or CancellationToken()
        self._validate_request(request)

        try:
            sale, entries = run_with_retry(
                lambda: self._execute_once(request, cancellation),
                rollback=self.store.rollback,
                attempts=self.retry_attempts,
            )
        except SQLAlchemyError as exc:
            logger.error("Sale at branch %s could not be saved: %s", request.branch_id, exc.__class__.__name__)
            raise PersistenceFailure(
                "Sale could not be saved",
                details={"branch_id": request.branch_id, "cause": exc.__class__.__name__},
            ) from exc

        self.audit_log.append_all(entries)
        logger.info(
            "Sale %s committed: branch=%s total=%s profit=%s lines=%d",
            sale.id, sale.branch_id, sale.total_amount_cents, sale.total_profit_cents, len(sale.lines),
            extra={"sale_id": sale.id, "branch_id": sale.branch_id},
        )
        return sale

    @staticmethod
    def _validate_request(request: SaleRequest) -> None:
        if not request.lines:
            raise InvalidValue("A sale needs at least one line", details={"field": "lines"})
        for line in request.lines:
            if line.sell_price.is_negative:
                raise InvalidValue(
                    "sell price must not be negative",
                    details={"field": "sell_price_cents", "item_id": line.item_id},
                )
        if request.payment_method not in PAYMENT_METHODS:
            raise InvalidValue(
                f"payment_method must be one of {', '.join(PAYMENT_METHODS)}",
                details={"field": "payment_method", "value": request.payment_method},
            )
        if request.payment_method != "cash" and not request.payment_reference:
            raise InvalidValue(
                "payment_reference is required for non-cash payments",
                details={"field": "payment_reference", "payment_method": request.payment_method},
            )

    def _execute_once(self, request: SaleRequest, cancellation: CancellationToken):
        with self.store.transaction():
            cancellation.check("validation")
            demands = self._load_items(request)

            customer, is_new_customer = self._resolve_customer(request)
            referrer = None
            if customer is not None and customer.referred_by_id is not None:
                referrer = self.store.get_customer(customer.referred_by_id, for_update=True)

            drafts, total, profit = self._price_lines(demands)

            redeemed = self.ledger.redeem(customer, request.redeem_points, total, is_new_customer)
            loyalty = self.ledger.compute(customer, referrer, profit, is_new_customer)

            cancellation.check("stock")
            adjustments = {
                item_id: self.store.adjust_item_quantity(item_id, -demand.quantity)
                for item_id, demand in demands.items()
            }

            if customer is not None:
                balance = self.ledger.settle_balance(
                    Money(customer.loyalty_points_cents or 0), redeemed, loyalty.earned
                )
                self.store.update_customer_balance(customer.id, balance.cents)

            if referrer is not None and loyalty.referrer_bonus.cents > 0:
                referrer_balance = self.ledger.settle_balance(
                    Money(referrer.loyalty_points_cents or 0), Money.zero(), loyalty.referrer_bonus
                )
                self.store.update_customer_balance(referrer.id, referrer_balance.cents)

            sale = self.store.create_sale(
                lines=drafts,
                branch_id=request.branch_id,
                user_id=request.user_id,
                user_name=request.user_name,
                customer_id=customer.id if customer is not None else None,
                customer_name=customer.name if customer is not None else None,
                customer_phone=customer.phone if customer is not None else None,
                total_amount_cents=total.cents,
                total_profit_cents=profit.cents,
                loyalty_points_earned_cents=loyalty.earned.cents,
                loyalty_points_redeemed_cents=redeemed.cents,
                referrer_customer_id=loyalty.referrer_id,
                referrer_points_cents=loyalty.referrer_bonus.cents,
                payment_method=request.payment_method,
                payment_reference=request.payment_reference,
            )

            entries = [
                self._audit_entry(request, sale.id, demand, adjustments[item_id])
                for item_id, demand in demands.items()
            ]

            cancellation.check("commit")
        return sale, entries

    def _load_items(self, request: SaleRequest) -> dict[int, _ItemDemand]:
        demands: dict[int, _ItemDemand] = {}
        for line in request.lines:
            demand = demands.get(line.item_id)
            if demand is None:
                item = self.store.get_item(line.item_id, for_update=True)
                if item is None or item.is_deleted or item.branch_id != request.branch_id:
                    raise NotFound(
                        f"Item {line.item_id} not found in branch {request.branch_id}",
                        details={"item_id": line.item_id, "branch_id": request.branch_id},
                    )
                demand = demands[line.item_id] = _ItemDemand(item=item)

            item = demand.item
            minimum = Money(item.minimum_sell_price_cents or 0)
            if line.sell_price < minimum:
                raise BelowMinimumPrice(
                    f"Sell price {line.sell_price} is below the minimum of {minimum} for {item.name}",
                    details={
                        "item_id": item.id,
                        "item_name": item.name,
                        "sell_price": str(line.sell_price),
                        "minimum_sell_price": str(minimum),
                    },
                )
            demand.quantity += line.quantity.value
            demand.lines.append(line)

        for demand in demands.values():
            item = demand.item
            if demand.quantity > item.quantity:
                raise InsufficientStock(
                    f"Not enough stock for {item.name}",
                    details={
                        "item_id": item.id,
                        "item_name": item.name,
                        "requested_quantity": demand.quantity,
                        "on_hand": item.quantity,
                    },
                )
        return demands

    def _resolve_customer(self, request: SaleRequest):
        """Return (customer or None, is_new_customer)."""
        phone = request.customer_phone
        if not phone:
            return None, False

        customer = self.store.find_customer_by_phone(phone, for_update=True)
        if customer is not None:
            return customer, False

        if not request.customer_name:
            # Unknown phone without a name: treat as a walk-in
            return None, False

        referred_by_id = None
        if request.referred_by_phone:
            referrer = self.store.find_customer_by_phone(request.referred_by_phone)
            if referrer is None:
                logger.warning("Referrer phone %s not found; creating customer without referral", request.referred_by_phone)
            else:
                referred_by_id = referrer.id

        try:
            customer = self.store.create_customer(
                name=request.customer_name, phone=phone, referred_by_id=referred_by_id
            )
        except IntegrityError:
            # Another sale registered the phone first; use that customer
            customer = self.store.find_customer_by_phone(phone, for_update=True)
            if customer is None:
                raise
            logger.info("Customer %s was created concurrently; using existing record", phone)
            return customer, False

        logger.info("Created customer %s during sale", customer.id, extra={"customer_id": customer.id})
        return customer, True

    @staticmethod
    def _price_lines(demands: dict[int, _ItemDemand]):
        """Build line snapshots and return (drafts, total amount, total profit)."""
        drafts: list[SaleLineDraft] = []
        total = Money.zero()
        profit = Money.zero()
        for demand in demands.values():
            item = demand.item
            cost = Money(item.price_cents or 0)

            # Lines for the same item at the same price collapse into one
            merged: dict[Money, int] = {}
            for line in demand.lines:
                merged[line.sell_price] = merged.get(line.sell_price, 0) + line.quantity.value

            for sell_price, quantity in merged.items():
                line_profit = (sell_price - cost) * quantity
                drafts.append(SaleLineDraft(
                    item_id=item.id,
                    item_name=item.name,
                    item_category=item.category,
                    item_price_cents=cost.cents,
                    sell_price_cents=sell_price.cents,
                    quantity_sold=quantity,
                    profit_cents=line_profit.cents,
                ))
                total = total + sell_price * quantity
                profit = profit + line_profit
        return drafts, total, profit

    @staticmethod
    def _audit_entry(request: SaleRequest, sale_id: int, demand: _ItemDemand, adjustment) -> AuditEntry:
        revenue = sum(line.sell_price.cents * line.quantity.value for line in demand.lines)
        # Average unit price rounded half-up; exact when every line used the same price
        unit_price = Money((revenue * 2 + demand.quantity) // (demand.quantity * 2))
        return AuditEntry(
            item_id=demand.item.id,
            item_name=demand.item.name,
            user_id=request.user_id,
            user_name=request.user_name,
            sale_id=sale_id,
            details=SaleDetails(
                sale_id=sale_id,
                quantity_change=QuantityChange(before=adjustment.before, after=adjustment.after),
                quantity_sold=demand.quantity,
                sell_price_cents=unit_price.cents,
            ),
        )


def get_sale(store: InventoryStore, sale_id: int) -> Sale:
    sale = store.get_sale(sale_id)
    if sale is None:
        raise NotFound(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def list_sales(
    store: InventoryStore,
    branch_id: int | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> list[Sale]:
    limit, offset = clamp_page(limit, offset)
    return store.list_sales(
        branch_id=branch_id,
        limit=limit,
        offset=offset,
    )
