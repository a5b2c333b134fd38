from .catalog import Product, Branch, ToleranceSetting
from .feeds import StockSnapshot, SalesRecord, ProductionConsumption, ProductionConversion
from .ledger import WarehouseEntry, WarehouseLedgerEvent
from .purchasing import PurchaseOrder, ReceivingLine

__all__ = [
    'Product', 'Branch', 'ToleranceSetting',
    'StockSnapshot', 'SalesRecord', 'ProductionConsumption', 'ProductionConversion',
    'WarehouseEntry', 'WarehouseLedgerEvent',
    'PurchaseOrder', 'ReceivingLine',
]
