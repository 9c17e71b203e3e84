from .accounts import Account, Marketplace, Role
from .catalog import Product, ProductAuditEntry
from .cart import CartItem
from .orders import Order, DeliveryLogEntry, OrderStatus
from .refunds import Payment, RefundTicket, Disbursement

__all__ = [
    'Account', 'Marketplace', 'Role',
    'Product', 'ProductAuditEntry',
    'CartItem',
    'Order', 'DeliveryLogEntry', 'OrderStatus',
    'Payment', 'RefundTicket', 'Disbursement',
]
