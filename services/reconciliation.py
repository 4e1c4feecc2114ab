"""
Reconciliation Sinks.

A sink is where resolved transitions land: it owns the order records
and applies the actions emitted by the state machine. The notification
processor only talks to the ReconciliationSink contract.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Dict, Optional

from database.db import Database
from models.notification import CanonicalNotification
from models.order import Order
from .state_machine import Transition

logger = logging.getLogger(__name__)


class ReconciliationSink(ABC):
    """Persistence contract for order payment state."""

    @abstractmethod
    async def register_order(self, order: Order) -> bool:
        """
        Start tracking an order. Already-known orders are left untouched.

        Returns:
            True if the order was newly registered
        """

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]:
        """Load an order, or None if it is not tracked."""

    @abstractmethod
    async def apply(
        self,
        order: Order,
        transition: Transition,
        notification: CanonicalNotification
    ) -> bool:
        """
        Apply an accepted transition.

        Must be a compare-and-set on transition.previous_state and
        order.refunded_amount: when the stored record moved on since
        `order` was loaded, nothing is written.

        Returns:
            True if the transition was written
        """


def _applied_order(
    order: Order,
    transition: Transition,
    notification: CanonicalNotification
) -> Order:
    """Build the order record that results from a transition."""
    refunded = order.refunded_amount
    if transition.refunded_amount is not None:
        refunded = transition.refunded_amount

    return replace(
        order,
        state=transition.new_state,
        transaction_status=notification.transaction_status.value,
        fraud_status=notification.fraud_status.value if notification.fraud_status else None,
        payment_type=notification.payment_type or order.payment_type,
        refunded_amount=refunded,
        last_notification_at=notification.transaction_time or datetime.utcnow(),
        updated_at=datetime.utcnow()
    )


class InMemoryReconciliationSink(ReconciliationSink):
    """
    Process-local sink backed by a dictionary.

    Used in tests and for running the service without a database.
    """

    def __init__(self):
        self._orders: Dict[str, Order] = {}

    async def register_order(self, order: Order) -> bool:
        if order.order_id in self._orders:
            return False
        self._orders[order.order_id] = order
        return True

    async def get_order(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    async def apply(
        self,
        order: Order,
        transition: Transition,
        notification: CanonicalNotification
    ) -> bool:
        stored = self._orders.get(order.order_id)
        if stored is None or stored.state != transition.previous_state:
            return False
        if stored.refunded_amount != order.refunded_amount:
            return False

        self._orders[order.order_id] = _applied_order(stored, transition, notification)
        return True

    def __len__(self) -> int:
        return len(self._orders)


class DatabaseReconciliationSink(ReconciliationSink):
    """Sink that stores orders in the `orders` table."""

    def __init__(self, db: Database):
        """
        Initialize the sink.

        Args:
            db: Connected Database instance
        """
        self.db = db

    async def register_order(self, order: Order) -> bool:
        inserted = await self.db.create_order(
            order_id=order.order_id,
            gross_amount=str(order.gross_amount),
            state=order.state.value
        )
        if inserted:
            logger.debug(f"Registered order {order.order_id}")
        return inserted

    async def get_order(self, order_id: str) -> Optional[Order]:
        row = await self.db.get_order(order_id)
        return Order.from_dict(row) if row else None

    async def apply(
        self,
        order: Order,
        transition: Transition,
        notification: CanonicalNotification
    ) -> bool:
        updated = _applied_order(order, transition, notification)

        return await self.db.update_order_state(
            order_id=order.order_id,
            expected_state=transition.previous_state.value,
            expected_refunded_amount=str(order.refunded_amount),
            state=updated.state.value,
            transaction_status=updated.transaction_status,
            fraud_status=updated.fraud_status,
            payment_type=updated.payment_type,
            refunded_amount=str(updated.refunded_amount),
            notification_time=updated.last_notification_at
        )
