"""
Inventory audit log.

Invariants:
- Append-only. Entries are never updated or deleted.
- No domain logic here; callers build the typed details.
- Appends run after the business transaction has committed, each in its
  own short transaction. They are best effort: a failed append is rolled
  back, logged and handed to the registered error handlers, but never
  raised to the caller. The sale or transfer it describes already happened.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from ..errors import InvalidValue
from ..models import InventoryLogEntry
from ..models.audit import LOG_ACTIONS
from .audit_details import LogDetails, details_to_dict, parse_details, serialize_details
from .store import InventoryStore

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500
DEFAULT_PAGE_SIZE = 50


def clamp_page(limit: int | None, offset: int | None) -> tuple[int, int]:
    """Bound list paging to 1..MAX_PAGE_SIZE rows from a non-negative offset."""
    limit = DEFAULT_PAGE_SIZE if limit is None else limit
    return max(1, min(limit, MAX_PAGE_SIZE)), max(0, offset or 0)


@dataclass(frozen=True)
class AuditEntry:
    """An entry waiting to be appended. The action is the details kind."""

    item_id: int
    item_name: str
    details: LogDetails
    user_id: str | None = None
    user_name: str | None = None
    sale_id: int | None = None
    transfer_id: int | None = None

    @property
    def action(self) -> str:
        return self.details.kind


class AuditLog:
    def __init__(self, store: InventoryStore):
        self.store = store
        self._subscribers: list[Callable[[InventoryLogEntry], None]] = []
        self._error_handlers: list[Callable[[AuditEntry, Exception], None]] = []

    def subscribe(self, callback: Callable[[InventoryLogEntry], None]) -> None:
        """Call `callback(row)` after every successful append."""
        self._subscribers.append(callback)

    def on_error(self, callback: Callable[[AuditEntry, Exception], None]) -> None:
        """Call `callback(entry, exc)` when an append fails."""
        self._error_handlers.append(callback)

    def append(self, entry: AuditEntry) -> InventoryLogEntry | None:
        try:
            if entry.action not in LOG_ACTIONS:
                raise InvalidValue(f"unknown log action: {entry.action!r}", details={"action": entry.action})
            with self.store.transaction():
                row = self.store.append_log_entry(
                    action=entry.action,
                    item_id=entry.item_id,
                    item_name=entry.item_name,
                    user_id=entry.user_id,
                    user_name=entry.user_name,
                    sale_id=entry.sale_id,
                    transfer_id=entry.transfer_id,
                    details=serialize_details(entry.details),
                )
        except Exception as exc:
            logger.exception(
                "Failed to append %s log entry for item %s", entry.action, entry.item_id,
                extra={"item_id": entry.item_id, "sale_id": entry.sale_id, "transfer_id": entry.transfer_id},
            )
            self._publish_error(entry, exc)
            return None

        for callback in self._subscribers:
            try:
                callback(row)
            except Exception:
                logger.exception("Audit subscriber %r failed", callback)
        return row

    def append_all(self, entries: list[AuditEntry]) -> list[InventoryLogEntry]:
        written = []
        for entry in entries:
            row = self.append(entry)
            if row is not None:
                written.append(row)
        return written

    def _publish_error(self, entry: AuditEntry, exc: Exception) -> None:
        for handler in self._error_handlers:
            try:
                handler(entry, exc)
            except Exception:
                logger.exception("Audit error handler %r failed", handler)

    def list_entries(
        self,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        item_id: int | None = None,
        action: str | None = None,
    ) -> list[dict]:
        """Entries newest first, with details decoded."""
        if action is not None and action not in LOG_ACTIONS:
            raise InvalidValue(f"unknown log action: {action!r}", details={"action": action})
        limit, offset = clamp_page(limit, offset)

        rows = self.store.list_log_entries(limit=limit, offset=offset, item_id=item_id, action=action)
        return [entry_to_dict(row) for row in rows]


def entry_to_dict(row: InventoryLogEntry) -> dict:
    data = row.to_dict()
    try:
        data["details"] = details_to_dict(parse_details(row.details))
    except InvalidValue:
        # Keep the raw text visible rather than hiding the row
        logger.warning("Inventory log entry %s has unreadable details", row.id)
        data["details"] = {"kind": None, "raw": row.details}
    return data
