"""
Notification signature verification.

Midtrans signs each notification with
SHA512(order_id + status_code + gross_amount + server_key), hex-encoded.
"""

import hashlib
import hmac
from typing import Any, Optional


def _field_text(value: Any) -> Optional[str]:
    # bool is an int subclass but never a valid signing field
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value if value else None
    if isinstance(value, int):
        return str(value)
    return None


def compute_signature(
    order_id: str,
    status_code: str,
    gross_amount: str,
    server_key: str
) -> str:
    """
    Compute the expected notification signature.

    Args:
        order_id: Order ID as sent by the gateway
        status_code: Status code as sent by the gateway
        gross_amount: Gross amount exactly as sent (e.g. "10000.00")
        server_key: Merchant server key

    Returns:
        Hex-encoded SHA-512 digest
    """
    payload = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(payload.encode('utf-8')).hexdigest()


def verify_signature(
    order_id: Any,
    status_code: Any,
    gross_amount: Any,
    provided_signature: Any,
    server_key: Any
) -> bool:
    """
    Verify a notification signature.

    Never raises: any missing or mis-shaped field simply fails verification.
    Amounts are used verbatim, so a float gross_amount is rejected rather
    than reformatted.

    Args:
        order_id: Order ID from the notification
        status_code: Status code from the notification
        gross_amount: Gross amount string from the notification
        provided_signature: signature_key from the notification
        server_key: Merchant server key

    Returns:
        True if the signature matches
    """
    fields = [_field_text(order_id), _field_text(status_code)]
    if any(f is None for f in fields):
        return False

    if not isinstance(gross_amount, str) or not gross_amount:
        return False

    if not isinstance(provided_signature, str) or not provided_signature:
        return False

    if not isinstance(server_key, str) or not server_key:
        return False

    expected = compute_signature(fields[0], fields[1], gross_amount, server_key)
    return hmac.compare_digest(
        expected.encode('ascii'),
        provided_signature.encode('utf-8')
    )
