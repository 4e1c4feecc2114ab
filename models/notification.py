"""
Notification data models.

Represents payment-status notifications pushed by the Midtrans gateway.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class TransactionStatus(str, Enum):
    """Transaction statuses reported by the gateway."""
    CAPTURE = "capture"
    SETTLEMENT = "settlement"
    DENY = "deny"
    CANCEL = "cancel"
    EXPIRE = "expire"
    PENDING = "pending"
    REFUND = "refund"
    PARTIAL_REFUND = "partial_refund"
    AUTHORIZE = "authorize"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> 'TransactionStatus':
        """Map a raw gateway value, falling back to UNKNOWN."""
        if not isinstance(value, str):
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN


class FraudStatus(str, Enum):
    """Fraud screening results accompanying card captures."""
    ACCEPT = "accept"
    CHALLENGE = "challenge"
    DENY = "deny"

    @classmethod
    def parse(cls, value: Any) -> Optional['FraudStatus']:
        """Map a raw gateway value, returning None when absent or unknown."""
        if not isinstance(value, str) or not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


REFUND_STATUSES = frozenset({
    TransactionStatus.REFUND,
    TransactionStatus.PARTIAL_REFUND,
})


@dataclass(frozen=True)
class CanonicalNotification:
    """
    Validated, gateway-independent view of a notification.

    gross_amount_raw keeps the exact text the gateway sent since the
    signature is computed over it.
    """

    order_id: str
    transaction_status: TransactionStatus
    gross_amount: Decimal
    gross_amount_raw: str
    status_code: str
    fraud_status: Optional[FraudStatus] = None
    raw_transaction_status: Optional[str] = None
    signature_key: Optional[str] = None
    payment_type: Optional[str] = None
    transaction_id: Optional[str] = None
    transaction_time: Optional[datetime] = None
    refund_amount: Optional[Decimal] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_refund(self) -> bool:
        return self.transaction_status in REFUND_STATUSES

    @property
    def is_unknown(self) -> bool:
        return self.transaction_status == TransactionStatus.UNKNOWN

    def describe(self) -> str:
        """Short status tuple used in log lines."""
        fraud = self.fraud_status.value if self.fraud_status else '-'
        status = self.raw_transaction_status or self.transaction_status.value
        return f"{status}/{fraud}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'order_id': self.order_id,
            'transaction_status': self.transaction_status.value,
            'fraud_status': self.fraud_status.value if self.fraud_status else None,
            'gross_amount': self.gross_amount_raw,
            'status_code': self.status_code,
            'payment_type': self.payment_type,
            'transaction_id': self.transaction_id,
            'transaction_time': (
                self.transaction_time.isoformat() if self.transaction_time else None
            ),
            'refund_amount': str(self.refund_amount) if self.refund_amount is not None else None
        }
