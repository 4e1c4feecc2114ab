"""
Notification Normalizer.

Turns a raw gateway notification body into a CanonicalNotification,
returning a tagged result instead of raising.
"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from models.notification import CanonicalNotification, FraudStatus, TransactionStatus
from models.result import Err, Ok, Result
from services.exceptions import ValidationError

logger = logging.getLogger(__name__)

TRANSACTION_TIME_FORMAT = '%Y-%m-%d %H:%M:%S'


def _parse_amount(value: Any) -> Optional[Decimal]:
    """Parse a non-negative finite decimal amount."""
    if isinstance(value, bool) or value is None:
        return None
    if not isinstance(value, (str, int, float, Decimal)):
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount < 0:
        return None
    return amount


def _optional_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (str, int)):
        text = str(value).strip()
        return text or None
    return None


def _parse_time(value: Any) -> Optional[datetime]:
    text = _optional_text(value)
    if not text:
        return None
    try:
        return datetime.strptime(text, TRANSACTION_TIME_FORMAT)
    except ValueError:
        return None


def normalize_notification(raw: Any) -> Result[CanonicalNotification, ValidationError]:
    """
    Validate and normalize a gateway notification payload.

    Unknown transaction statuses do not fail: they become
    TransactionStatus.UNKNOWN so new gateway statuses are tolerated.

    Args:
        raw: Decoded JSON notification body

    Returns:
        Ok(CanonicalNotification) or Err(ValidationError)
    """
    if not isinstance(raw, Mapping):
        return Err(ValidationError("Notification body must be a JSON object"))

    order_id = raw.get('order_id')
    if not isinstance(order_id, str) or not order_id.strip():
        return Err(ValidationError("order_id is required", field='order_id'))

    raw_status = raw.get('transaction_status')
    if not isinstance(raw_status, str) or not raw_status.strip():
        return Err(ValidationError("transaction_status is required", field='transaction_status'))

    gross_amount_raw = raw.get('gross_amount')
    gross_amount = _parse_amount(gross_amount_raw)
    if gross_amount is None:
        return Err(ValidationError(
            "gross_amount must be a non-negative decimal",
            field='gross_amount'
        ))

    status_code = _optional_text(raw.get('status_code'))
    if status_code is None:
        return Err(ValidationError("status_code is required", field='status_code'))

    transaction_status = TransactionStatus.parse(raw_status)
    if transaction_status == TransactionStatus.UNKNOWN:
        logger.warning(f"Unrecognised transaction_status '{raw_status}' for order {order_id}")

    raw_fraud = raw.get('fraud_status')
    fraud_status = FraudStatus.parse(raw_fraud)
    if raw_fraud and fraud_status is None:
        logger.warning(f"Ignoring unrecognised fraud_status '{raw_fraud}' for order {order_id}")

    return Ok(CanonicalNotification(
        order_id=order_id,
        transaction_status=transaction_status,
        gross_amount=gross_amount,
        gross_amount_raw=str(gross_amount_raw),
        status_code=status_code,
        fraud_status=fraud_status,
        raw_transaction_status=raw_status,
        signature_key=_optional_text(raw.get('signature_key')),
        payment_type=_optional_text(raw.get('payment_type')),
        transaction_id=_optional_text(raw.get('transaction_id')),
        transaction_time=_parse_time(raw.get('transaction_time')),
        refund_amount=_parse_amount(raw.get('refund_amount')),
        raw=dict(raw)
    ))
