"""Data models for the Midtrans Payment Backend."""

from .notification import CanonicalNotification, FraudStatus, TransactionStatus
from .order import Order, PaymentState, TERMINAL_STATES, generate_order_id
from .result import Err, Ok, Result

__all__ = [
    'CanonicalNotification',
    'FraudStatus',
    'TransactionStatus',
    'Order',
    'PaymentState',
    'TERMINAL_STATES',
    'generate_order_id',
    'Ok',
    'Err',
    'Result'
]
