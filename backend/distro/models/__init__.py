from .users import User
from .catalog import Product, Customer
from .orders import Order, CollectionRecord
from .cheques import Cheque
from .allocations import DriverAllocation
from .documents import DocumentSequence, OrderEvent

__all__ = [
    'User',
    'Product', 'Customer',
    'Order', 'CollectionRecord', 'Cheque',
    'DriverAllocation',
    'DocumentSequence', 'OrderEvent',
]
