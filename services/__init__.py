"""Services module for the Midtrans Payment Backend."""

from .gateway_client import MidtransClient
from .notification_processor import NotificationProcessor, ProcessingResult
from .payment_service import PaymentService
from .reconciliation import (
    DatabaseReconciliationSink,
    InMemoryReconciliationSink,
    ReconciliationSink
)

__all__ = [
    'MidtransClient',
    'NotificationProcessor',
    'ProcessingResult',
    'PaymentService',
    'ReconciliationSink',
    'DatabaseReconciliationSink',
    'InMemoryReconciliationSink'
]
