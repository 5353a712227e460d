from .products import Product
from .customers import Customer
from .documents import SaleDocument, LineItem, DocumentSequence
from .inventory import StockLedgerEntry

__all__ = [
    'Product',
    'Customer',
    'SaleDocument', 'LineItem', 'DocumentSequence',
    'StockLedgerEntry',
]
