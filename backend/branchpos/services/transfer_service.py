"""
Branch-to-branch stock transfer.

A transfer moves quantity of one item out of its branch and into the
destination branch in a single transaction:

1. Validate: source item exists and is not deleted, destination branch
   exists and differs from the source branch, enough stock on hand.
2. Guarded decrement of the source item.
3. Destination item: an existing non-deleted item with the same name
   (case-insensitive) is incremented and has its descriptive attributes
   resynced from the source. Otherwise a new item is created with a SKU
   allocated from the source SKU's category prefix.
4. Record the StockTransfer.
5. After commit, two `transfer` audit entries (source "out", destination "in").

SKU allocation races are resolved by the (branch_id, sku) unique constraint:
each create runs in a savepoint, a DuplicateSku re-allocates, and after
SKU_ALLOCATION_ATTEMPTS collisions the whole transfer rolls back with
SkuAllocationFailed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from ..errors import (
    DuplicateSku,
    InsufficientStock,
    InvalidValue,
    NotFound,
    PersistenceFailure,
    SameBranchTransfer,
    SkuAllocationFailed,
)
from ..models import Item, StockTransfer
from ..values import Quantity, Sku, coerce_int, optional_str
from .audit_details import QuantityChange, TransferDetails
from .audit_service import DEFAULT_PAGE_SIZE, AuditEntry, AuditLog, clamp_page
from .cancellation import CancellationToken
from .concurrency import run_with_retry
from .sku_service import SkuAllocator
from .store import InventoryStore, QuantityAdjustment

logger = logging.getLogger(__name__)

DEFAULT_SKU_ATTEMPTS = 3

# Copied onto an existing destination item on every transfer
RESYNC_FIELDS = ("price_cents", "description", "category", "minimum_stock_level", "origin", "image_url")

# Copied onto a destination item the transfer creates
CREATE_FIELDS = RESYNC_FIELDS + ("name", "minimum_sell_price_cents")


@dataclass(frozen=True)
class TransferRequest:
    item_id: int
    quantity: Quantity
    to_branch_id: int
    user_id: str | None = None
    user_name: str | None = None

    @classmethod
    def from_dict(cls, payload: dict) -> "TransferRequest":
        if not isinstance(payload, dict):
            raise InvalidValue("request body must be a JSON object")
        return cls(
            item_id=coerce_int(payload.get("item_id"), "item_id"),
            quantity=Quantity.parse(payload.get("quantity"), "quantity"),
            to_branch_id=coerce_int(payload.get("to_branch_id"), "to_branch_id"),
            user_id=optional_str(payload.get("user_id")),
            user_name=optional_str(payload.get("user_name")),
        )


class StockTransferTransaction:
    def __init__(
        self,
        store: InventoryStore,
        audit_log: AuditLog,
        allocator: SkuAllocator | None = None,
        sku_attempts: int = DEFAULT_SKU_ATTEMPTS,
        retry_attempts: int = 3,
    ):
        if sku_attempts < 1:
            raise ValueError("sku_attempts must be at least 1")
        self.store = store
        self.audit_log = audit_log
        self.allocator = allocator or SkuAllocator(store)
        self.sku_attempts = sku_attempts
        self.retry_attempts = retry_attempts

    def execute(self, request: TransferRequest, cancellation: CancellationToken | None = None) -> StockTransfer:
        cancellation = cancellation or CancellationToken()

        try:
            transfer, entries = run_with_retry(
                lambda: self._execute_once(request, cancellation),
                rollback=self.store.rollback,
                attempts=self.retry_attempts,
            )
        except SQLAlchemyError as exc:
            logger.error("Transfer of item %s could not be saved: %s", request.item_id, exc.__class__.__name__)
            raise PersistenceFailure(
                "Transfer could not be saved",
                details={"item_id": request.item_id, "cause": exc.__class__.__name__},
            ) from exc

        self.audit_log.append_all(entries)
        logger.info(
            "Transfer %s committed: item=%s qty=%s branch %s -> %s (created=%s)",
            transfer.id, transfer.item_id, transfer.quantity,
            transfer.from_branch_id, transfer.to_branch_id, transfer.destination_created,
            extra={"transfer_id": transfer.id},
        )
        return transfer

    def _execute_once(self, request: TransferRequest, cancellation: CancellationToken):
        with self.store.transaction():
            cancellation.check("validation")
            source = self._validate(request)
            quantity = request.quantity.value

            cancellation.check("stock")
            outgoing = self.store.adjust_item_quantity(source.id, -quantity)

            destination = self.store.find_item_by_name(request.to_branch_id, source.name, for_update=True)
            if destination is not None:
                created = False
                incoming = self.store.adjust_item_quantity(destination.id, quantity)
                self.store.update_item(destination, **{name: getattr(source, name) for name in RESYNC_FIELDS})
            else:
                created = True
                destination = self._create_destination(source, request.to_branch_id, quantity)
                incoming = QuantityAdjustment(item_id=destination.id, before=0, after=destination.quantity)

            transfer = self.store.create_stock_transfer(
                quantity=quantity,
                item_id=source.id,
                from_branch_id=source.branch_id,
                to_branch_id=request.to_branch_id,
                destination_item_id=destination.id,
                destination_created=created,
                user_id=request.user_id,
                user_name=request.user_name,
            )

            entries = self._audit_entries(request, transfer, source, destination, outgoing, incoming, created)

            cancellation.check("commit")
        return transfer, entries

    def _validate(self, request: TransferRequest) -> Item:
        source = self.store.get_item(request.item_id, for_update=True)
        if source is None or source.is_deleted:
            raise NotFound(f"Item {request.item_id} not found", details={"item_id": request.item_id})

        if self.store.get_branch(request.to_branch_id) is None:
            raise NotFound(
                f"Branch {request.to_branch_id} not found", details={"branch_id": request.to_branch_id}
            )

        if request.quantity.value > source.quantity:
            raise InsufficientStock(
                "Not enough stock in source branch",
                details={
                    "operation": "transfer",
                    "item_id": source.id,
                    "item_name": source.name,
                    "requested_quantity": request.quantity.value,
                    "on_hand": source.quantity,
                },
            )

        if request.to_branch_id == source.branch_id:
            raise SameBranchTransfer(
                "Cannot transfer to the same branch",
                details={"item_id": source.id, "branch_id": source.branch_id},
            )
        return source

    def _create_destination(self, source: Item, branch_id: int, quantity: int) -> Item:
        prefix = Sku(source.sku).prefix
        fields = {name: getattr(source, name) for name in CREATE_FIELDS}

        collisions = []
        for attempt in range(1, self.sku_attempts + 1):
            sku = self.allocator.allocate(branch_id, prefix)
            try:
                return self.store.create_item(branch_id=branch_id, sku=str(sku), quantity=quantity, **fields)
            except DuplicateSku:
                collisions.append(str(sku))
                logger.warning(
                    "SKU %s already taken in branch %s (attempt %d of %d)",
                    sku, branch_id, attempt, self.sku_attempts,
                )

        raise SkuAllocationFailed(
            f"Could not allocate a SKU with prefix {prefix} in branch {branch_id}",
            details={"branch_id": branch_id, "prefix": prefix, "attempts": self.sku_attempts, "collisions": collisions},
        )

    @staticmethod
    def _audit_entries(request, transfer, source, destination, outgoing, incoming, created) -> list[AuditEntry]:
        common = dict(
            transfer_id=transfer.id,
            quantity=transfer.quantity,
            from_branch_id=transfer.from_branch_id,
            to_branch_id=transfer.to_branch_id,
        )
        return [
            AuditEntry(
                item_id=source.id,
                item_name=source.name,
                user_id=request.user_id,
                user_name=request.user_name,
                transfer_id=transfer.id,
                details=TransferDetails(
                    direction="out",
                    quantity_change=QuantityChange(before=outgoing.before, after=outgoing.after),
                    **common,
                ),
            ),
            AuditEntry(
                item_id=destination.id,
                item_name=destination.name,
                user_id=request.user_id,
                user_name=request.user_name,
                transfer_id=transfer.id,
                details=TransferDetails(
                    direction="in",
                    quantity_change=QuantityChange(before=incoming.before, after=incoming.after),
                    created=created,
                    sku=destination.sku,
                    **common,
                ),
            ),
        ]


def list_transfers(
    store: InventoryStore,
    branch_id: int | None = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> list[StockTransfer]:
    limit, offset = clamp_page(limit, offset)
    return store.list_transfers(
        branch_id=branch_id,
        limit=limit,
        offset=offset,
    )
