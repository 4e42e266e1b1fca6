from .branches import Branch
from .inventory import Item, StockTransfer
from .customers import Customer
from .sales import Sale, SaleLine
from .audit import InventoryLogEntry

__all__ = [
    'Branch',
    'Item', 'StockTransfer',
    'Customer',
    'Sale', 'SaleLine',
    'InventoryLogEntry',
]
