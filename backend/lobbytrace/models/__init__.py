from .inventory import InventoryItem, StockMovement
from .products import Product, ProductIngredient
from .square import ProductMapping, WebhookLog, SquareConfig

__all__ = [
    'InventoryItem', 'StockMovement',
    'Product', 'ProductIngredient',
    'ProductMapping', 'WebhookLog', 'SquareConfig',
]
