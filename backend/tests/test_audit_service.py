import json

import pytest

from branchpos.errors import InvalidValue
from branchpos.models import InventoryLogEntry
from branchpos.services.audit_details import (
    CreateDetails,
    DeleteDetails,
    FieldChange,
    QuantityChange,
    SaleDetails,
    TransferDetails,
    UpdateDetails,
    details_to_dict,
    parse_details,
    serialize_details,
)
from branchpos.services.audit_service import AuditEntry, AuditLog


def test_envelope_is_self_describing():
    raw = serialize_details(SaleDetails(
        sale_id=12, quantity_change=QuantityChange(before=10, after=7), quantity_sold=3, sell_price_cents=20000,
    ))

    envelope = json.loads(raw)
    assert envelope["kind"] == "sale"
    assert envelope["version"] == 1
    assert envelope["data"]["quantity_change"] == {"from": 10, "to": 7}


def test_parse_dispatches_on_kind():
    update = UpdateDetails(
        changes={"price_cents": FieldChange(before=100, after=150)}, branch_name="Westlands",
    )
    parsed = parse_details(serialize_details(update))
    assert parsed == update

    transfer = TransferDetails(
        transfer_id=3, direction="in", quantity=5, from_branch_id=1, to_branch_id=2,
        quantity_change=QuantityChange(before=0, after=5), created=True, sku="101001",
    )
    assert parse_details(serialize_details(transfer)) == transfer
    assert parse_details(serialize_details(transfer)).quantity_change.delta == 5


@pytest.mark.parametrize("raw", [
    "not json",
    "[1, 2]",
    json.dumps({"kind": "restock", "version": 1, "data": {}}),
    json.dumps({"kind": "sale", "version": 1, "data": {"sale_id": 1}}),
])
def test_parse_rejects_bad_payloads(raw):
    with pytest.raises(InvalidValue):
        parse_details(raw)


def test_details_to_dict_uses_from_to():
    data = details_to_dict(UpdateDetails(changes={"quantity": FieldChange(before=3, after=9)}))
    assert data["kind"] == "update"
    assert data["changes"] == {"quantity": {"from": 3, "to": 9}}


def test_append_and_subscribe(audit_log, branch_a, make_item, db_session):
    item = make_item(branch_a, sku="101001", name="Shuka")
    seen = []
    audit_log.subscribe(seen.append)

    row = audit_log.append(AuditEntry(
        item_id=item.id, item_name=item.name, user_id="u-1", user_name="Admin",
        details=CreateDetails(fields={"sku": "101001"}),
    ))

    assert row is not None
    assert row.action == "create"
    assert seen == [row]
    assert db_session.query(InventoryLogEntry).count() == 1


def test_failing_subscriber_does_not_break_append(audit_log, branch_a, make_item, db_session):
    item = make_item(branch_a, sku="101001", name="Shuka")

    def boom(row):
        raise RuntimeError("observer down")

    audit_log.subscribe(boom)
    row = audit_log.append(AuditEntry(item_id=item.id, item_name=item.name, details=CreateDetails(fields={})))

    assert row is not None
    assert db_session.query(InventoryLogEntry).count() == 1


def test_append_failure_is_reported_not_raised(audit_log, db_session, caplog):
    errors = []
    audit_log.on_error(lambda entry, exc: errors.append(type(exc).__name__))

    # Unknown action: rejected before touching the database
    class Bogus:
        kind = "restock"

    row = audit_log.append(AuditEntry(item_id=1, item_name="Ghost", details=Bogus()))

    assert row is None
    assert errors == ["InvalidValue"]
    assert "Failed to append restock log entry" in caplog.text
    assert db_session.query(InventoryLogEntry).count() == 0


def test_list_entries_newest_first_with_filters(audit_log, branch_a, make_item):
    shuka = make_item(branch_a, sku="101001", name="Shuka")
    bowl = make_item(branch_a, sku="202001", name="Bowl")

    audit_log.append(AuditEntry(item_id=shuka.id, item_name="Shuka", details=CreateDetails(fields={"n": 1})))
    audit_log.append(AuditEntry(item_id=bowl.id, item_name="Bowl", details=CreateDetails(fields={"n": 2})))
    audit_log.append(AuditEntry(
        item_id=shuka.id, item_name="Shuka",
        details=DeleteDetails(name="Shuka", category="General", price_cents=100, quantity=0, branch_id=branch_a.id),
    ))

    entries = audit_log.list_entries()
    assert [e["item_name"] for e in entries] == ["Shuka", "Bowl", "Shuka"]
    assert entries[0]["details"]["kind"] == "delete"
    assert entries[2]["details"]["fields"] == {"n": 1}

    assert len(audit_log.list_entries(item_id=shuka.id)) == 2
    assert [e["action"] for e in audit_log.list_entries(action="delete")] == ["delete"]
    assert [e["item_name"] for e in audit_log.list_entries(limit=1, offset=1)] == ["Bowl"]

    with pytest.raises(InvalidValue):
        audit_log.list_entries(action="restock")
