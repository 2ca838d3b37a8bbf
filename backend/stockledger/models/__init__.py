from .inventory import Product, MovementEvent
from .balances import DailyBalance
from .documents import StockTransfer, DocumentSequence, VerificationSession, VerificationLine

__all__ = [
    'Product', 'MovementEvent',
    'DailyBalance',
    'StockTransfer', 'DocumentSequence',
    'VerificationSession', 'VerificationLine',
]
