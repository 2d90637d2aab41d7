from .catalog import Product
from .orders import Order

__all__ = [
    'Product',
    'Order',
]
