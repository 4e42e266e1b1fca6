"""
Typed payloads for inventory log entries.

Each entry's `details` column stores a self-describing envelope:

    {"kind": "sale", "version": 1, "data": {...}}

parse_details() dispatches on "kind" instead of guessing from field names.
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any, Union

from ..errors import InvalidValue

ENVELOPE_VERSION = 1


@dataclass(frozen=True)
class QuantityChange:
    before: int
    after: int

    @property
    def delta(self) -> int:
        return self.after - self.before


@dataclass(frozen=True)
class SaleDetails:
    kind = "sale"

    sale_id: int
    quantity_change: QuantityChange
    quantity_sold: int
    sell_price_cents: int


@dataclass(frozen=True)
class TransferDetails:
    kind = "transfer"

    transfer_id: int
    direction: str  # "out" at the source item, "in" at the destination item
    quantity: int
    from_branch_id: int
    to_branch_id: int
    quantity_change: QuantityChange
    created: bool = False
    sku: str | None = None


@dataclass(frozen=True)
class CreateDetails:
    kind = "create"

    fields: dict[str, Any]


@dataclass(frozen=True)
class FieldChange:
    before: Any
    after: Any


@dataclass(frozen=True)
class UpdateDetails:
    kind = "update"

    changes: dict[str, FieldChange]
    branch_name: str | None = None


@dataclass(frozen=True)
class DeleteDetails:
    kind = "delete"

    name: str
    category: str
    price_cents: int
    quantity: int
    branch_id: int
    branch_name: str | None = None


LogDetails = Union[SaleDetails, TransferDetails, CreateDetails, UpdateDetails, DeleteDetails]


def _encode_data(details: LogDetails) -> dict:
    data = asdict(details)
    # JSON reads better with "from"/"to" than the Python-safe attribute names
    if isinstance(details, (SaleDetails, TransferDetails)):
        data["quantity_change"] = {
            "from": details.quantity_change.before,
            "to": details.quantity_change.after,
        }
    if isinstance(details, UpdateDetails):
        data["changes"] = {
            name: {"from": change.before, "to": change.after}
            for name, change in details.changes.items()
        }
    return data


def serialize_details(details: LogDetails) -> str:
    return json.dumps(
        {"kind": details.kind, "version": ENVELOPE_VERSION, "data": _encode_data(details)},
        sort_keys=True,
        default=str,
    )


def _quantity_change(raw: dict) -> QuantityChange:
    return QuantityChange(before=raw["from"], after=raw["to"])


def _decode_sale(data: dict) -> SaleDetails:
    return SaleDetails(
        sale_id=data["sale_id"],
        quantity_change=_quantity_change(data["quantity_change"]),
        quantity_sold=data["quantity_sold"],
        sell_price_cents=data["sell_price_cents"],
    )


def _decode_transfer(data: dict) -> TransferDetails:
    return TransferDetails(
        transfer_id=data["transfer_id"],
        direction=data["direction"],
        quantity=data["quantity"],
        from_branch_id=data["from_branch_id"],
        to_branch_id=data["to_branch_id"],
        quantity_change=_quantity_change(data["quantity_change"]),
        created=data.get("created", False),
        sku=data.get("sku"),
    )


def _decode_create(data: dict) -> CreateDetails:
    return CreateDetails(fields=dict(data["fields"]))


def _decode_update(data: dict) -> UpdateDetails:
    return UpdateDetails(
        changes={
            name: FieldChange(before=change["from"], after=change["to"])
            for name, change in data["changes"].items()
        },
        branch_name=data.get("branch_name"),
    )


def _decode_delete(data: dict) -> DeleteDetails:
    return DeleteDetails(**data)


_DECODERS = {
    SaleDetails.kind: _decode_sale,
    TransferDetails.kind: _decode_transfer,
    CreateDetails.kind: _decode_create,
    UpdateDetails.kind: _decode_update,
    DeleteDetails.kind: _decode_delete,
}


def parse_details(raw: str) -> LogDetails:
    """Decode a details envelope. Unknown kinds or malformed payloads raise InvalidValue."""
    try:
        envelope = json.loads(raw)
    except (TypeError, ValueError):
        raise InvalidValue("details is not valid JSON")

    if not isinstance(envelope, dict):
        raise InvalidValue("details envelope must be an object")

    kind = envelope.get("kind")
    decoder = _DECODERS.get(kind)
    if decoder is None:
        raise InvalidValue(f"unknown details kind: {kind!r}", details={"kind": kind})

    try:
        return decoder(envelope.get("data") or {})
    except (KeyError, TypeError) as exc:
        raise InvalidValue(f"malformed {kind} details", details={"kind": kind, "missing": str(exc)})


def details_to_dict(details: LogDetails) -> dict:
    """JSON-ready view of a decoded payload (same shape as the stored data)."""
    return {"kind": details.kind, **_encode_data(details)}
