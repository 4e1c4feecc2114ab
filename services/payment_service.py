"""
Payment Service Layer

Payment session creation and pass-through management operations
(status, cancel, refund) against the gateway. Orders created here are
registered with the reconciliation sink so notifications can be
resolved against them.
"""

import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from config import CallbackConfig
from models.order import Order, generate_order_id
from .exceptions import ValidationError
from .gateway_client import MidtransClient
from .reconciliation import ReconciliationSink

logger = logging.getLogger(__name__)


PAYMENT_METHODS: Dict[str, List[str]] = {
    'credit_card': ['visa', 'mastercard', 'jcb'],
    'bank_transfer': ['bca', 'bni', 'bri', 'mandiri', 'permata'],
    'e_wallet': ['gopay', 'shopeepay', 'dana'],
    'over_the_counter': ['indomaret', 'alfamart'],
    'cardless_credit': ['akulaku'],
}

DEFAULT_REFUND_REASON = 'Customer request'


def _parse_amount(value: Any, field: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number", field=field)
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field} must be greater than zero", field=field)
    return amount


def _gateway_amount(amount: Decimal) -> Any:
    """Send whole amounts as integers, as the gateway expects for IDR."""
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


class PaymentService:
    """
    Business operations exposed by the payment API.

    All gateway traffic goes through the injected MidtransClient; order
    bookkeeping goes through the injected ReconciliationSink.
    """

    def __init__(
        self,
        gateway: MidtransClient,
        sink: ReconciliationSink,
        callbacks: CallbackConfig,
        order_id_prefix: str = 'ORDER'
    ):
        self.gateway = gateway
        self.sink = sink
        self.callbacks = callbacks
        self.order_id_prefix = order_id_prefix

    def build_transaction_parameter(
        self,
        order_id: str,
        amount: Decimal,
        customer_details: Dict[str, Any],
        item_details: List[Dict[str, Any]],
        custom_expiry: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Build the Snap transaction parameter.

        Returns:
            Request body for the Snap API
        """
        parameter = {
            'transaction_details': {
                'order_id': order_id,
                'gross_amount': _gateway_amount(amount)
            },
            'credit_card': {
                'secure': True
            },
            'customer_details': customer_details,
            'item_details': item_details,
            'callbacks': {
                'finish': self.callbacks.finish_url,
                'error': self.callbacks.error_url,
                'pending': self.callbacks.pending_url
            }
        }

        if custom_expiry:
            parameter['custom_expiry'] = custom_expiry

        return parameter

    async def create_transaction(
        self,
        amount: Any,
        customer_details: Any,
        item_details: Any,
        custom_expiry: Optional[Any] = None,
        order_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a payment session for a new order.

        Args:
            amount: Gross amount
            customer_details: Snap customer_details object
            item_details: Snap item_details list
            custom_expiry: Optional Snap custom_expiry object
            order_id: Caller-supplied order ID (generated when omitted)

        Returns:
            Dictionary with token, redirect_url and order_id

        Raises:
            ValidationError: Missing or malformed fields
            GatewayError: Snap call failed
        """
        missing = [
            name for name, value in (
                ('amount', amount),
                ('customerDetails', customer_details),
                ('itemDetails', item_details)
            ) if not value
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        gross_amount = _parse_amount(amount, 'amount')

        if not isinstance(customer_details, dict):
            raise ValidationError("customerDetails must be an object", field='customerDetails')
        if not isinstance(item_details, list):
            raise ValidationError("itemDetails must be a list", field='itemDetails')
        if custom_expiry is not None and not isinstance(custom_expiry, dict):
            raise ValidationError("customExpiry must be an object", field='customExpiry')

        if order_id is not None and (not isinstance(order_id, str) or not order_id.strip()):
            raise ValidationError("orderId must be a non-empty string", field='orderId')
        order_id = order_id or generate_order_id(self.order_id_prefix)

        parameter = self.build_transaction_parameter(
            order_id=order_id,
            amount=gross_amount,
            customer_details=customer_details,
            item_details=item_details,
            custom_expiry=custom_expiry
        )

        transaction = await self.gateway.create_transaction(parameter)

        await self.sink.register_order(Order(order_id=order_id, gross_amount=gross_amount))
        logger.info(f"Created transaction for order {order_id} ({gross_amount})")

        return {
            'token': transaction.get('token'),
            'redirect_url': transaction.get('redirect_url'),
            'order_id': order_id
        }

    async def get_status(self, order_id: str) -> Dict[str, Any]:
        """Get the gateway's status object for an order."""
        return await self.gateway.get_status(order_id)

    async def cancel(self, order_id: str) -> Dict[str, Any]:
        """Cancel a transaction at the gateway."""
        response = await self.gateway.cancel(order_id)
        logger.info(f"Cancel requested for order {order_id}")
        return response

    async def refund(
        self,
        order_id: str,
        amount: Optional[Any] = None,
        reason: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Refund a transaction at the gateway.

        Args:
            order_id: Order to refund
            amount: Amount to refund (full refund when omitted)
            reason: Refund reason shown in the gateway dashboard
        """
        params: Dict[str, Any] = {
            'refund_key': f"refund-{order_id}-{int(time.time() * 1000)}",
            'reason': reason or DEFAULT_REFUND_REASON
        }
        if amount is not None:
            params['amount'] = _gateway_amount(_parse_amount(amount, 'amount'))

        response = await self.gateway.refund(order_id, params)
        logger.info(f"Refund requested for order {order_id}")
        return response

    @staticmethod
    def payment_methods() -> Dict[str, List[str]]:
        """Static catalogue of supported payment methods."""
        return {group: list(methods) for group, methods in PAYMENT_METHODS.items()}
