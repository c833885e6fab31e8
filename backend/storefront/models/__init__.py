from .auth import User, SessionToken
from .catalog import Product, ProductVariant
from .cart import Cart, CartItem
from .coupons import Coupon, coupon_products
from .orders import Order, OrderItem, OrderStatusHistory, Payment

__all__ = [
    'User', 'SessionToken',
    'Product', 'ProductVariant',
    'Cart', 'CartItem',
    'Coupon', 'coupon_products',
    'Order', 'OrderItem', 'OrderStatusHistory', 'Payment',
]
