from .catalog import Location, ProductVariant, PaymentMethod, Customer
from .inventory import StockLevel, StockMovement, DocumentSequence
from .sales import Sale, SaleItem, SalePayment
from .shifts import Shift
from .reports import ZReport
from .orders import OnlineOrder, OrderItem
from .outbox import OutboxMessage

__all__ = [
    'Location', 'ProductVariant', 'PaymentMethod', 'Customer',
    'StockLevel', 'StockMovement', 'DocumentSequence',
    'Sale', 'SaleItem', 'SalePayment',
    'Shift',
    'ZReport',
    'OnlineOrder', 'OrderItem',
    'OutboxMessage',
]
