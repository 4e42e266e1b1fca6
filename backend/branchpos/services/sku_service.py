"""
SKU allocation for items materialized in a destination branch.

A SKU is a 3-character category prefix followed by a per-branch sequence
("101005"). allocate() looks at the SKUs already in the branch under the
same prefix and returns the next sequence number, zero-padded to 3 digits.

Allocation itself takes no locks. Two concurrent transfers can compute the
same SKU; the (branch_id, sku) unique constraint rejects the second insert
with DuplicateSku and the transfer retries allocation.
"""
from __future__ import annotations

import logging

from ..errors import InvalidValue
from ..values import SKU_PREFIX_LENGTH, Sku
from .store import InventoryStore

logger = logging.getLogger(__name__)

FIRST_SEQUENCE = 1


class SkuAllocator:
    def __init__(self, store: InventoryStore):
        self.store = store

    def allocate(self, branch_id: int, category_prefix: str) -> Sku:
        if not isinstance(category_prefix, str) or len(category_prefix) != SKU_PREFIX_LENGTH:
            raise InvalidValue(
                f"category prefix must be {SKU_PREFIX_LENGTH} characters",
                details={"prefix": category_prefix},
            )

        highest = None
        for item in self.store.list_items_by_branch_and_sku_prefix(branch_id, category_prefix):
            try:
                sequence = Sku(item.sku).sequence
            except InvalidValue:
                sequence = None
            if sequence is None:
                # Hand-entered SKUs like "101-A" do not take part in the sequence
                continue
            if highest is None or sequence > highest:
                highest = sequence

        next_sequence = FIRST_SEQUENCE if highest is None else highest + 1
        sku = Sku.compose(category_prefix, next_sequence)
        logger.debug("Allocated SKU %s in branch %s", sku, branch_id)
        return sku
