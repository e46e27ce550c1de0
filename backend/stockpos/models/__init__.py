from .auth import User
from .inventory import Product, Supplier, Inventory, StockTransaction, product_suppliers
from .sales import Sale, SaleLine
from .purchases import Purchase, PurchaseLine
from .customers import Customer, LoyaltyTransaction
from .promotions import Coupon
from .documents import DocumentSequence

__all__ = [
    'User',
    'Product', 'Supplier', 'Inventory', 'StockTransaction', 'product_suppliers',
    'Sale', 'SaleLine',
    'Purchase', 'PurchaseLine',
    'Customer', 'LoyaltyTransaction',
    'Coupon',
    'DocumentSequence',
]
