from .branches import Branch
from .inventory import Product, ProductPackage, StockLevel, StockMovement, ProductBatch
from .sales import Transaction, TransactionItem
from .documents import ProductionRequest, Return, ReturnItem

__all__ = [
    'Branch',
    'Product', 'ProductPackage', 'StockLevel', 'StockMovement', 'ProductBatch',
    'Transaction', 'TransactionItem',
    'ProductionRequest', 'Return', 'ReturnItem',
]
