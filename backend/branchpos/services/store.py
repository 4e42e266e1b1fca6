"""
Persistence boundary for the inventory transaction engine.

InventoryStore is the interface the sale and transfer transactions consume.
SqlAlchemyInventoryStore implements it over a SQLAlchemy session; the Flask
bootstrap builds one per request from the request-scoped session
(see services.engine).

Invariants the store guarantees:
- Item quantities only change through adjust_item_quantity(), a guarded
  UPDATE that never lets quantity drop below zero. The check happens at
  write time, so two concurrent sales cannot both take the last unit.
- create_item() runs inside a SAVEPOINT. A duplicate (branch_id, sku) only
  undoes that insert and surfaces as DuplicateSku; earlier writes in the
  enclosing transaction survive so the caller can retry.
- transaction() commits on normal exit and rolls back on any exception.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError

from ..errors import DuplicateSku, InsufficientStock, NotFound
from ..models import Branch, Customer, InventoryLogEntry, Item, Sale, SaleLine, StockTransfer
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SaleLineDraft:
    item_id: int
    item_name: str
    item_category: str
    item_price_cents: int
    sell_price_cents: int
    quantity_sold: int
    profit_cents: int


@dataclass(frozen=True)
class QuantityAdjustment:
    item_id: int
    before: int
    after: int


class InventoryStore(ABC):
    """Everything the engine needs from persistence, behind one transactional scope."""

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator[None]:
        """All-or-nothing scope: commit on exit, roll back on exception."""

    @abstractmethod
    def rollback(self) -> None:
        ...

    # Items

    @abstractmethod
    def get_item(self, item_id: int, *, for_update: bool = False) -> Item | None:
        ...

    @abstractmethod
    def find_item_by_name(self, branch_id: int, name: str, *, for_update: bool = False) -> Item | None:
        """Case-insensitive name match among non-deleted items of a branch."""

    @abstractmethod
    def list_items_by_branch_and_sku_prefix(self, branch_id: int, prefix: str) -> list[Item]:
        ...

    @abstractmethod
    def adjust_item_quantity(self, item_id: int, delta: int) -> QuantityAdjustment:
        """Guarded quantity change. Raises InsufficientStock if the result would be negative."""

    @abstractmethod
    def create_item(self, **fields) -> Item:
        """Insert an item. Raises DuplicateSku if the SKU exists in the branch."""

    @abstractmethod
    def update_item(self, item: Item, **fields) -> Item:
        ...

    # Branches

    @abstractmethod
    def get_branch(self, branch_id: int) -> Branch | None:
        ...

    # Customers

    @abstractmethod
    def get_customer(self, customer_id: int, *, for_update: bool = False) -> Customer | None:
        ...

    @abstractmethod
    def find_customer_by_phone(self, phone: str, *, for_update: bool = False) -> Customer | None:
        ...

    @abstractmethod
    def create_customer(self, *, name: str, phone: str, referred_by_id: int | None = None) -> Customer:
        ...

    @abstractmethod
    def update_customer_balance(self, customer_id: int, new_balance_cents: int) -> Customer:
        ...

    # Documents

    @abstractmethod
    def create_sale(self, *, lines: list[SaleLineDraft], **fields) -> Sale:
        ...

    @abstractmethod
    def create_stock_transfer(self, **fields) -> StockTransfer:
        ...

    @abstractmethod
    def append_log_entry(self, **fields) -> InventoryLogEntry:
        ...

    # Reads

    @abstractmethod
    def get_sale(self, sale_id: int) -> Sale | None:
        ...

    @abstractmethod
    def list_sales(self, *, branch_id: int | None = None, limit: int = 50, offset: int = 0) -> list[Sale]:
        ...

    @abstractmethod
    def list_transfers(self, *, branch_id: int | None = None, limit: int = 50, offset: int = 0) -> list[StockTransfer]:
        ...

    @abstractmethod
    def list_log_entries(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        item_id: int | None = None,
        action: str | None = None,
    ) -> list[InventoryLogEntry]:
        """Newest first."""

    @abstractmethod
    def list_low_stock_items(self, *, branch_id: int | None = None) -> list[Item]:
        ...


class SqlAlchemyInventoryStore(InventoryStore):
    """InventoryStore over a SQLAlchemy session (normally Flask-SQLAlchemy's db.session)."""

    def __init__(self, session):
        self.session = session

    @contextmanager
    def transaction(self):
        try:
            yield
            self.session.commit()
        except BaseException:
            self.session.rollback()
            raise

    def rollback(self) -> None:
        self.session.rollback()

    # ------------------------------------------------------------------ items

    def get_item(self, item_id, *, for_update=False):
        query = self.session.query(Item).filter_by(id=item_id)
        if for_update:
            query = lock_for_update(query)
        return query.first()

    def find_item_by_name(self, branch_id, name, *, for_update=False):
        # Fold in Python: SQLite's lower() only folds ASCII
        key = name.strip().casefold()
        candidates = (
            self.session.query(Item.id, Item.name)
            .filter(Item.branch_id == branch_id, Item.is_deleted.is_(False))
            .order_by(Item.id.asc())
            .all()
        )
        for item_id, item_name in candidates:
            if item_name.strip().casefold() == key:
                return self.get_item(item_id, for_update=for_update)
        return None

    def list_items_by_branch_and_sku_prefix(self, branch_id, prefix):
        # LIKE is case-insensitive on SQLite; compare the prefix exactly
        return (
            self.session.query(Item)
            .filter(
                Item.branch_id == branch_id,
                func.substr(Item.sku, 1, len(prefix)) == prefix,
            )
            .order_by(Item.sku.asc())
            .all()
        )

    def adjust_item_quantity(self, item_id, delta):
        item = self.get_item(item_id)
        if item is None:
            raise NotFound(f"Item {item_id} not found", details={"item_id": item_id})

        stmt = (
            update(Item)
            .where(Item.id == item_id, Item.quantity + delta >= 0)
            .values(quantity=Item.quantity + delta, version_id=Item.version_id + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)

        self.session.refresh(item)
        if result.rowcount != 1:
            raise InsufficientStock(
                f"Insufficient stock for item {item_id}",
                details={
                    "item_id": item_id,
                    "item_name": item.name,
                    "requested_quantity": -delta,
                    "on_hand": item.quantity,
                },
            )
        return QuantityAdjustment(item_id=item_id, before=item.quantity - delta, after=item.quantity)

    def create_item(self, **fields):
        item = Item(**fields)
        try:
            with self.session.begin_nested():
                self.session.add(item)
                self.session.flush()
        except IntegrityError as exc:
            if not self._is_sku_conflict(fields.get("branch_id"), fields.get("sku")):
                raise
            raise DuplicateSku(
                f"SKU {fields.get('sku')} already exists in branch {fields.get('branch_id')}",
                details={"branch_id": fields.get("branch_id"), "sku": fields.get("sku")},
            ) from exc
        return item

    def _is_sku_conflict(self, branch_id, sku, exclude_id=None) -> bool:
        if branch_id is None or sku is None:
            return False
        query = self.session.query(Item.id).filter_by(branch_id=branch_id, sku=sku)
        if exclude_id is not None:
            query = query.filter(Item.id != exclude_id)
        return query.first() is not None

    def update_item(self, item, **fields):
        target_branch_id = fields.get("branch_id", item.branch_id)
        target_sku = fields.get("sku", item.sku)
        try:
            # begin_nested() flushes pending state first, so assign inside the savepoint
            with self.session.begin_nested():
                for key, value in fields.items():
                    setattr(item, key, value)
                self.session.flush()
        except IntegrityError as exc:
            moves_sku = "sku" in fields or "branch_id" in fields
            if moves_sku and self._is_sku_conflict(target_branch_id, target_sku, exclude_id=item.id):
                raise DuplicateSku(
                    f"SKU {target_sku} already exists in branch {target_branch_id}",
                    details={"branch_id": target_branch_id, "sku": target_sku},
                ) from exc
            raise
        return item

    # --------------------------------------------------------------- branches

    def get_branch(self, branch_id):
        return self.session.get(Branch, branch_id)

    # -------------------------------------------------------------- customers

    def get_customer(self, customer_id, *, for_update=False):
        query = self.session.query(Customer).filter_by(id=customer_id)
        if for_update:
            query = lock_for_update(query)
        return query.first()

    def find_customer_by_phone(self, phone, *, for_update=False):
        query = self.session.query(Customer).filter_by(phone=phone.strip())
        if for_update:
            query = lock_for_update(query)
        return query.first()

    def create_customer(self, *, name, phone, referred_by_id=None):
        customer = Customer(
            name=name.strip(),
            phone=phone.strip(),
            loyalty_points_cents=0,
            referred_by_id=referred_by_id,
        )
        # A duplicate phone only undoes this insert; the caller decides what to do
        with self.session.begin_nested():
            self.session.add(customer)
            self.session.flush()
        return customer

    def update_customer_balance(self, customer_id, new_balance_cents):
        customer = self.get_customer(customer_id)
        if customer is None:
            raise NotFound(f"Customer {customer_id} not found", details={"customer_id": customer_id})
        customer.loyalty_points_cents = new_balance_cents
        # version_id_col turns a concurrent balance write into StaleDataError here
        self.session.flush()
        return customer

    # -------------------------------------------------------------- documents

    def create_sale(self, *, lines, **fields):
        sale = Sale(**fields)
        self.session.add(sale)
        self.session.flush()

        for draft in lines:
            self.session.add(SaleLine(
                sale_id=sale.id,
                item_id=draft.item_id,
                item_name=draft.item_name,
                item_category=draft.item_category,
                item_price_cents=draft.item_price_cents,
                sell_price_cents=draft.sell_price_cents,
                quantity_sold=draft.quantity_sold,
                profit_cents=draft.profit_cents,
            ))
        self.session.flush()
        return sale

    def create_stock_transfer(self, **fields):
        transfer = StockTransfer(**fields)
        self.session.add(transfer)
        self.session.flush()
        return transfer

    def append_log_entry(self, **fields):
        entry = InventoryLogEntry(**fields)
        self.session.add(entry)
        self.session.flush()
        return entry

    # ------------------------------------------------------------------ reads

    def get_sale(self, sale_id):
        return self.session.get(Sale, sale_id)

    def list_sales(self, *, branch_id=None, limit=50, offset=0):
        query = self.session.query(Sale)
        if branch_id is not None:
            query = query.filter(Sale.branch_id == branch_id)
        return (
            query.order_by(Sale.created_at.desc(), Sale.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def list_transfers(self, *, branch_id=None, limit=50, offset=0):
        query = self.session.query(StockTransfer)
        if branch_id is not None:
            query = query.filter(
                or_(StockTransfer.from_branch_id == branch_id, StockTransfer.to_branch_id == branch_id)
            )
        return (
            query.order_by(StockTransfer.transfer_date.desc(), StockTransfer.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def list_log_entries(self, *, limit=50, offset=0, item_id=None, action=None):
        query = self.session.query(InventoryLogEntry)
        if item_id is not None:
            query = query.filter(InventoryLogEntry.item_id == item_id)
        if action is not None:
            query = query.filter(InventoryLogEntry.action == action)
        return (
            query.order_by(InventoryLogEntry.created_at.desc(), InventoryLogEntry.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def list_low_stock_items(self, *, branch_id=None):
        query = self.session.query(Item).filter(
            Item.is_deleted.is_(False),
            Item.quantity <= Item.minimum_stock_level,
        )
        if branch_id is not None:
            query = query.filter(Item.branch_id == branch_id)
        return query.order_by(Item.branch_id.asc(), Item.quantity.asc(), Item.name.asc()).all()
