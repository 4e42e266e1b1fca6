# Overview: Builds engine components for the current Flask app from its config and db.session.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from .audit_service import AuditLog
from .loyalty_service import LoyaltyLedger
from .sales_service import SaleTransaction
from .sku_service import SkuAllocator
from .store import SqlAlchemyInventoryStore
from .transfer_service import StockTransferTransaction


def build_store() -> SqlAlchemyInventoryStore:
    """A store over the request-scoped session."""
    return SqlAlchemyInventoryStore(db.session)


def build_audit_log(store=None) -> AuditLog:
    audit_log = AuditLog(store or build_store())
    for handler in current_app.extensions.get("branchpos_audit_error_handlers", ()):
        audit_log.on_error(handler)
    return audit_log


def build_loyalty_ledger() -> LoyaltyLedger:
    return LoyaltyLedger(
        earn_rate_bps=current_app.config["LOYALTY_EARN_RATE_BPS"],
        referral_rate_bps=current_app.config["REFERRAL_BONUS_RATE_BPS"],
    )


def build_sale_transaction(store=None) -> SaleTransaction:
    store = store or build_store()
    return SaleTransaction(
        store,
        build_audit_log(store),
        ledger=build_loyalty_ledger(),
        retry_attempts=current_app.config["TRANSACTION_RETRY_ATTEMPTS"],
    )


def build_transfer_transaction(store=None) -> StockTransferTransaction:
    store = store or build_store()
    return StockTransferTransaction(
        store,
        build_audit_log(store),
        allocator=SkuAllocator(store),
        sku_attempts=current_app.config["SKU_ALLOCATION_ATTEMPTS"],
        retry_attempts=current_app.config["TRANSACTION_RETRY_ATTEMPTS"],
    )
