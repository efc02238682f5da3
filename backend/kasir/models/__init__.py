from .storage import KvEntry
from .inventory import Category, Product, StockMovement, MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT
from .customers import Customer
from .promotions import Discount, DiscountTier, PERCENTAGE, FIXED, TIERED
from .sales import CartItem, Transaction
from .ledger import AuditLog, Expense, Kasbon
from .sync import SyncOperation, SyncTable, SyncQueueItem

__all__ = [
    'KvEntry',
    'Category', 'Product', 'StockMovement',
    'MOVEMENT_IN', 'MOVEMENT_OUT', 'MOVEMENT_ADJUSTMENT',
    'Customer',
    'Discount', 'DiscountTier', 'PERCENTAGE', 'FIXED', 'TIERED',
    'CartItem', 'Transaction',
    'AuditLog', 'Expense', 'Kasbon',
    'SyncOperation', 'SyncTable', 'SyncQueueItem',
]
