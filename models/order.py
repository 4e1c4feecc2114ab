"""
Order data model.

Represents a merchant order paid through the Midtrans gateway and its
canonical payment state.
"""

import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


ORDER_ID_PREFIX = 'ORDER'

_BASE36_ALPHABET = string.digits + string.ascii_lowercase


class PaymentState(str, Enum):
    """Canonical payment state of an order."""
    PENDING = "pending"
    CHALLENGED = "challenged"
    SUCCESS = "success"
    DENIED = "denied"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    PaymentState.SUCCESS,
    PaymentState.DENIED,
    PaymentState.CANCELLED,
})


def generate_order_id(prefix: str = ORDER_ID_PREFIX, random_length: int = 9) -> str:
    """
    Generate a unique order ID.

    Format: PREFIX-<epoch millis>-<random base36 suffix>

    Args:
        prefix: Order ID prefix
        random_length: Length of the random suffix (0 to omit it)

    Returns:
        Order ID string
    """
    order_id = f"{prefix}-{int(time.time() * 1000)}"
    if random_length > 0:
        suffix = ''.join(secrets.choice(_BASE36_ALPHABET) for _ in range(random_length))
        order_id = f"{order_id}-{suffix}"
    return order_id


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal('0')
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass
class Order:
    """
    Represents an order tracked by the payment backend.

    Attributes:
        order_id: Unique order identifier sent to the gateway
        gross_amount: Order total in the gateway's currency
        state: Current canonical payment state
        transaction_status: Last gateway transaction status applied
        fraud_status: Last gateway fraud status applied
        payment_type: Payment method reported by the gateway
        refunded_amount: Cumulative refunded amount reported by the gateway
        last_notification_at: Time of the last notification applied
        created_at: Timestamp when the order was registered
        updated_at: Timestamp of last update
    """

    order_id: str
    gross_amount: Decimal
    state: PaymentState = PaymentState.PENDING
    transaction_status: Optional[str] = None
    fraud_status: Optional[str] = None
    payment_type: Optional[str] = None
    refunded_amount: Decimal = Decimal('0')
    last_notification_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self):
        """Normalize state and amounts."""
        if isinstance(self.state, str):
            self.state = PaymentState(self.state)
        self.gross_amount = _to_decimal(self.gross_amount)
        self.refunded_amount = _to_decimal(self.refunded_amount)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Order':
        """
        Create Order from dictionary (e.g., database row).

        Args:
            data: Dictionary with order data

        Returns:
            Order instance
        """
        return cls(
            order_id=data['order_id'],
            gross_amount=data['gross_amount'],
            state=data.get('state', PaymentState.PENDING),
            transaction_status=data.get('transaction_status'),
            fraud_status=data.get('fraud_status'),
            payment_type=data.get('payment_type'),
            refunded_amount=data.get('refunded_amount'),
            last_notification_at=_to_datetime(data.get('last_notification_at')),
            created_at=_to_datetime(data.get('created_at')) or datetime.utcnow(),
            updated_at=_to_datetime(data.get('updated_at')) or datetime.utcnow()
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert Order to a JSON-friendly dictionary.

        Returns:
            Dictionary representation
        """
        return {
            'order_id': self.order_id,
            'gross_amount': str(self.gross_amount),
            'state': self.state.value,
            'transaction_status': self.transaction_status,
            'fraud_status': self.fraud_status,
            'payment_type': self.payment_type,
            'refunded_amount': str(self.refunded_amount),
            'last_notification_at': (
                self.last_notification_at.isoformat() if self.last_notification_at else None
            ),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

    def is_terminal(self) -> bool:
        """Check if the order reached a final payment state."""
        return self.state.is_terminal

    def __repr__(self) -> str:
        return (
            f"Order(id={self.order_id}, "
            f"state={self.state.value}, "
            f"amount={self.gross_amount})"
        )
