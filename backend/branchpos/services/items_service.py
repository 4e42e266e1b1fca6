# backend/branchpos/services/items_service.py
"""
Item catalog: create, edit and soft-delete the items a branch stocks.

Every mutation writes an inventory log entry after commit:
- create: the created fields
- update: a {field: {from, to}} map, only when price, quantity or branch changed
- delete: a snapshot of the item as it was (items are only soft-deleted so
  past sales and transfers keep their references)
"""
from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from ..errors import InvalidValue, NotFound, PersistenceFailure
from ..models import Item
from ..values import MAX_AMOUNT_CENTS, Money, Sku, coerce_int, optional_str
from .audit_details import CreateDetails, DeleteDetails, FieldChange, UpdateDetails
from .audit_service import AuditEntry, AuditLog
from .store import InventoryStore

logger = logging.getLogger(__name__)

ITEM_MUTABLE_FIELDS = {
    "sku",
    "name",
    "description",
    "category",
    "origin",
    "image_url",
    "price_cents",
    "minimum_sell_price_cents",
    "quantity",
    "minimum_stock_level",
    "branch_id",
}

ITEM_REQUIRED_FIELDS = ("branch_id", "sku", "name", "category", "price_cents")

# Edits to these fields are what the inventory log records
SIGNIFICANT_FIELDS = ("price_cents", "quantity", "branch_id")

DEFAULT_MINIMUM_STOCK_LEVEL = 10

_TEXT_LIMITS = {"name": 255, "category": 128, "origin": 128, "image_url": 512}


def _non_negative_int(value, field: str, maximum: int | None = None) -> int:
    n = coerce_int(value, field)
    if n < 0:
        raise InvalidValue(f"{field} must not be negative", details={"field": field})
    if maximum is not None and n > maximum:
        raise InvalidValue(f"{field} exceeds maximum", details={"field": field, "max": maximum})
    return n


def validate_item_patch(payload: dict, *, partial: bool) -> dict:
    """
    Turn request input into column values.

    Unknown keys are ignored. With partial=False the required fields must be
    present.
    """
    if not isinstance(payload, dict):
        raise InvalidValue("request body must be a JSON object")

    patch = {}
    for key, value in payload.items():
        if key not in ITEM_MUTABLE_FIELDS:
            continue

        if key == "sku":
            patch[key] = Sku(value).code
        elif key in ("name", "category"):
            text = optional_str(value)
            if text is None:
                raise InvalidValue(f"{key} is required", details={"field": key})
            patch[key] = text
        elif key in ("description", "origin", "image_url"):
            patch[key] = optional_str(value)
        elif key in ("price_cents", "minimum_sell_price_cents"):
            patch[key] = _non_negative_int(value, key, MAX_AMOUNT_CENTS)
        else:
            # quantity, minimum_stock_level, branch_id
            patch[key] = _non_negative_int(value, key)

        limit = _TEXT_LIMITS.get(key)
        if limit is not None and patch[key] is not None and len(patch[key]) > limit:
            raise InvalidValue(f"{key} is too long", details={"field": key, "max_length": limit})

    if not partial:
        missing = [name for name in ITEM_REQUIRED_FIELDS if name not in patch]
        if missing:
            raise InvalidValue(
                f"missing required fields: {', '.join(missing)}",
                details={"missing": missing},
            )
    return patch


def _require_branch(store: InventoryStore, branch_id: int):
    branch = store.get_branch(branch_id)
    if branch is None:
        raise NotFound(f"Branch {branch_id} not found", details={"branch_id": branch_id})
    return branch


def _require_item(store: InventoryStore, item_id: int) -> Item:
    item = store.get_item(item_id, for_update=True)
    if item is None or item.is_deleted:
        raise NotFound(f"Item {item_id} not found", details={"item_id": item_id})
    return item


def create_item(
    store: InventoryStore,
    audit_log: AuditLog,
    *,
    patch: dict,
    user_id: str | None = None,
    user_name: str | None = None,
) -> Item:
    """
    Create an item from a validated patch.

    Raises:
        NotFound: the branch does not exist
        DuplicateSku: the SKU already exists in the branch
    """
    fields = dict(patch)
    fields.setdefault("quantity", 0)
    fields.setdefault("minimum_stock_level", DEFAULT_MINIMUM_STOCK_LEVEL)
    fields.setdefault("minimum_sell_price_cents", 0)

    try:
        with store.transaction():
            _require_branch(store, fields["branch_id"])
            item = store.create_item(**fields)
    except SQLAlchemyError as exc:
        raise PersistenceFailure("Item could not be saved", details={"cause": exc.__class__.__name__}) from exc

    audit_log.append(AuditEntry(
        item_id=item.id,
        item_name=item.name,
        user_id=user_id,
        user_name=user_name,
        details=CreateDetails(fields={key: fields[key] for key in sorted(fields)}),
    ))
    logger.info("Created item %s (sku=%s) in branch %s", item.id, item.sku, item.branch_id)
    return item


def update_item(
    store: InventoryStore,
    audit_log: AuditLog,
    *,
    item_id: int,
    patch: dict,
    user_id: str | None = None,
    user_name: str | None = None,
) -> Item:
    """Apply a validated partial patch. Only changed fields are written."""
    try:
        with store.transaction():
            item = _require_item(store, item_id)
            if "branch_id" in patch and patch["branch_id"] != item.branch_id:
                _require_branch(store, patch["branch_id"])

            changes = {
                key: FieldChange(before=getattr(item, key), after=value)
                for key, value in patch.items()
                if getattr(item, key) != value
            }
            if changes:
                store.update_item(item, **{key: change.after for key, change in changes.items()})
            branch = store.get_branch(item.branch_id)
            branch_name = branch.name if branch is not None else None
    except SQLAlchemyError as exc:
        raise PersistenceFailure("Item could not be saved", details={"cause": exc.__class__.__name__}) from exc

    if any(key in changes for key in SIGNIFICANT_FIELDS):
        audit_log.append(AuditEntry(
            item_id=item.id,
            item_name=item.name,
            user_id=user_id,
            user_name=user_name,
            details=UpdateDetails(changes=changes, branch_name=branch_name),
        ))
    return item


def delete_item(
    store: InventoryStore,
    audit_log: AuditLog,
    *,
    item_id: int,
    user_id: str | None = None,
    user_name: str | None = None,
) -> Item:
    """Soft-delete an item. Deleting twice is NotFound."""
    try:
        with store.transaction():
            item = _require_item(store, item_id)
            branch = store.get_branch(item.branch_id)
            snapshot = DeleteDetails(
                name=item.name,
                category=item.category,
                price_cents=item.price_cents,
                quantity=item.quantity,
                branch_id=item.branch_id,
                branch_name=branch.name if branch is not None else None,
            )
            store.update_item(item, is_deleted=True)
    except SQLAlchemyError as exc:
        raise PersistenceFailure("Item could not be deleted", details={"cause": exc.__class__.__name__}) from exc

    audit_log.append(AuditEntry(
        item_id=item.id,
        item_name=snapshot.name,
        user_id=user_id,
        user_name=user_name,
        details=snapshot,
    ))
    logger.info("Soft-deleted item %s", item.id)
    return item


def list_low_stock_items(store: InventoryStore, branch_id: int | None = None) -> list[Item]:
    """Items at or below their minimum stock level."""
    return store.list_low_stock_items(branch_id=branch_id)


def format_price(cents: int, currency: str = "KES") -> str:
    return f"{currency} {Money(cents)}"
