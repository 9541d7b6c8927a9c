from .branches import Branch, Location
from .inventory import Product, StockEntry, Movement
from .sales import Sale, SaleLine, Payment
from .cash import CashSession
from .petty_cash import PettyCashDelivery, PettyCashExpense
from .auth import User, SessionToken

__all__ = [
    'Branch', 'Location',
    'Product', 'StockEntry', 'Movement',
    'Sale', 'SaleLine', 'Payment',
    'CashSession',
    'PettyCashDelivery', 'PettyCashExpense',
    'User', 'SessionToken',
]
