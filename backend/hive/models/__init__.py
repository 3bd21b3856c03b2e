from .auth import User, SessionToken
from .catalog import Product
from .orders import Order, OrderItem, OrderSequence
from .payments import Transaction

__all__ = [
    'User', 'SessionToken',
    'Product',
    'Order', 'OrderItem', 'OrderSequence',
    'Transaction',
]
