"""
Notification Processor Service.

Runs an inbound gateway notification through signature verification,
normalization and the transaction state machine, then hands accepted
transitions to the reconciliation sink.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator, Dict, Mapping, Optional

from models.notification import CanonicalNotification, FraudStatus, TransactionStatus
from models.order import Order
from .exceptions import OrderNotFoundError, PaymentServiceError, SignatureError, ValidationError
from .gateway_client import MidtransClient
from .normalizer import normalize_notification
from .reconciliation import ReconciliationSink
from .signature import verify_signature
from .state_machine import Transition, resolve

logger = logging.getLogger(__name__)


class OrderLocks:
    """
    Per-order mutual exclusion.

    Notifications for the same order run one at a time; different orders
    never wait on each other. Locks are dropped once nobody holds or
    waits for them.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, order_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(order_id, asyncio.Lock())
        self._users[order_id] = self._users.get(order_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[order_id] -= 1
            if self._users[order_id] == 0:
                del self._users[order_id]
                del self._locks[order_id]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass(frozen=True)
class ProcessingResult:
    """Outcome of processing one notification."""
    notification: CanonicalNotification
    transition: Transition
    order: Optional[Order]

    @property
    def applied(self) -> bool:
        return self.transition.applied

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the `data` section of the webhook response."""
        data = {
            'order_id': self.notification.order_id,
            'transaction_status': self.notification.transaction_status.value,
            'state': self.transition.new_state.value,
            'action': self.transition.action.value,
            'applied': self.applied
        }
        if not self.applied:
            data['ignored'] = True
            data['reason'] = self.transition.reason
        return data


class NotificationProcessor:
    """
    Central handler for gateway payment notifications.

    Delivery from the gateway is at-least-once and unordered, so each
    notification is verified, normalized and resolved against the
    order's current state under a per-order lock.
    """

    MAX_APPLY_ATTEMPTS = 3

    def __init__(
        self,
        sink: ReconciliationSink,
        server_key: str,
        gateway_client: Optional[MidtransClient] = None,
        verify_with_gateway: bool = False
    ):
        """
        Initialize the notification processor.

        Args:
            sink: Where resolved transitions are applied
            server_key: Merchant server key used for signatures
            gateway_client: Client used to re-fetch statuses
            verify_with_gateway: Replace the webhook's statuses with the
                gateway's current answer before resolving
        """
        if verify_with_gateway and gateway_client is None:
            raise ValueError("verify_with_gateway requires a gateway client")

        self.sink = sink
        self.server_key = server_key
        self.gateway_client = gateway_client
        self.verify_with_gateway = verify_with_gateway
        self._locks = OrderLocks()
        self._stats = {
            "total_notifications": 0,
            "applied": 0,
            "ignored": 0,
            "invalid_signature": 0,
            "invalid_payload": 0,
            "conflicts": 0
        }

    async def process(
        self,
        payload: Any,
        remote: Optional[str] = None
    ) -> ProcessingResult:
        """
        Process a raw notification body.

        Args:
            payload: Decoded JSON body sent by the gateway
            remote: Remote address, for security logging

        Returns:
            ProcessingResult (ignored duplicates included)

        Raises:
            ValidationError: Body is not an object or is malformed
            SignatureError: Signature does not match
            GatewayError: Status re-fetch failed
        """
        self._stats["total_notifications"] += 1

        if not isinstance(payload, Mapping):
            self._stats["invalid_payload"] += 1
            raise ValidationError("Notification body must be a JSON object")

        order_id = payload.get('order_id')

        if not verify_signature(
            payload.get('order_id'),
            payload.get('status_code'),
            payload.get('gross_amount'),
            payload.get('signature_key'),
            self.server_key
        ):
            self._stats["invalid_signature"] += 1
            logger.warning(
                f"SECURITY: invalid notification signature for order {order_id!r} "
                f"from {remote or 'unknown'}"
            )
            raise SignatureError("Invalid signature key", order_id=order_id)

        result = normalize_notification(payload)
        if not result.is_ok:
            self._stats["invalid_payload"] += 1
            logger.warning(f"Rejected notification for order {order_id!r}: {result.error}")
            raise result.error

        notification = result.value

        if self.verify_with_gateway:
            notification = await self._refresh_from_gateway(notification)

        logger.info(
            f"Transaction notification received. Order ID: {notification.order_id}. "
            f"Status: {notification.describe()}"
        )

        async with self._locks.hold(notification.order_id):
            return await self._reconcile(notification)

    async def _refresh_from_gateway(
        self,
        notification: CanonicalNotification
    ) -> CanonicalNotification:
        """Take the transaction and fraud status from the gateway's own answer."""
        status = await self.gateway_client.get_status(notification.order_id)

        raw_status = status.get('transaction_status') or notification.raw_transaction_status
        refreshed = replace(
            notification,
            transaction_status=TransactionStatus.parse(raw_status),
            raw_transaction_status=raw_status,
            fraud_status=FraudStatus.parse(status.get('fraud_status'))
        )

        if refreshed.describe() != notification.describe():
            logger.info(
                f"Gateway status for {notification.order_id} is {refreshed.describe()}, "
                f"notification said {notification.describe()}"
            )

        return refreshed

    async def _load_order(self, notification: CanonicalNotification) -> Order:
        order = await self.sink.get_order(notification.order_id)
        if order is not None:
            return order

        logger.warning(
            f"Order {notification.order_id} not registered, tracking it from notification"
        )
        await self.sink.register_order(Order(
            order_id=notification.order_id,
            gross_amount=notification.gross_amount
        ))

        order = await self.sink.get_order(notification.order_id)
        if order is None:
            raise OrderNotFoundError(f"Order {notification.order_id} could not be registered")
        return order

    async def _reconcile(self, notification: CanonicalNotification) -> ProcessingResult:
        """Resolve and apply, re-reading the order if another writer got there first."""
        for attempt in range(1, self.MAX_APPLY_ATTEMPTS + 1):
            order = await self._load_order(notification)
            transition = resolve(order.state, notification, order.refunded_amount)

            if not transition.applied:
                self._stats["ignored"] += 1
                logger.info(
                    f"Ignoring {notification.describe()} for order {order.order_id}: "
                    f"{transition.reason}"
                )
                return ProcessingResult(notification, transition, order)

            if await self.sink.apply(order, transition, notification):
                self._stats["applied"] += 1
                logger.info(
                    f"Order {order.order_id}: {transition.reason} "
                    f"({transition.action.value})"
                )
                updated = await self.sink.get_order(order.order_id)
                return ProcessingResult(notification, transition, updated)

            self._stats["conflicts"] += 1
            logger.warning(
                f"Order {order.order_id} changed concurrently, "
                f"re-resolving (attempt {attempt}/{self.MAX_APPLY_ATTEMPTS})"
            )

        raise PaymentServiceError(
            f"Could not apply notification for order {notification.order_id} "
            f"after {self.MAX_APPLY_ATTEMPTS} attempts"
        )

    def get_stats(self) -> Dict[str, int]:
        """
        Get notification statistics.

        Returns:
            Statistics dictionary
        """
        return self._stats.copy()

    def reset_stats(self) -> None:
        """Reset statistics counters."""
        for key in self._stats:
            self._stats[key] = 0
