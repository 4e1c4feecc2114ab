"""
Transaction State Machine.

Maps gateway status combinations onto canonical payment states and
decides whether a notification may move an order forward. Gateway
notifications are delivered at least once and in no guaranteed order,
so every decision here must be safe to repeat.

The state machine is pure: it never touches storage. Accepted
transitions carry a ReconciliationAction that a ReconciliationSink
applies.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple

from models.notification import CanonicalNotification, FraudStatus, TransactionStatus
from models.order import PaymentState

logger = logging.getLogger(__name__)


class ReconciliationAction(str, Enum):
    """What the reconciliation sink must do for a resolved transition."""
    MARK_PENDING = "mark_pending"
    MARK_CHALLENGED = "mark_challenged"
    MARK_SUCCESS = "mark_success"
    MARK_DENIED = "mark_denied"
    MARK_CANCELLED = "mark_cancelled"
    RECORD_REFUND = "record_refund"
    NOOP = "noop"


STATE_ACTIONS: Dict[PaymentState, ReconciliationAction] = {
    PaymentState.PENDING: ReconciliationAction.MARK_PENDING,
    PaymentState.CHALLENGED: ReconciliationAction.MARK_CHALLENGED,
    PaymentState.SUCCESS: ReconciliationAction.MARK_SUCCESS,
    PaymentState.DENIED: ReconciliationAction.MARK_DENIED,
    PaymentState.CANCELLED: ReconciliationAction.MARK_CANCELLED,
}

# (transaction_status, fraud_status) pairs that depend on fraud screening
CAPTURE_TRANSITIONS: Dict[Tuple[TransactionStatus, Optional[FraudStatus]], PaymentState] = {
    (TransactionStatus.CAPTURE, FraudStatus.ACCEPT): PaymentState.SUCCESS,
    (TransactionStatus.CAPTURE, FraudStatus.CHALLENGE): PaymentState.CHALLENGED,
    (TransactionStatus.CAPTURE, FraudStatus.DENY): PaymentState.DENIED,
}

# Statuses whose canonical state ignores fraud screening
STATUS_TRANSITIONS: Dict[TransactionStatus, PaymentState] = {
    TransactionStatus.SETTLEMENT: PaymentState.SUCCESS,
    TransactionStatus.DENY: PaymentState.DENIED,
    TransactionStatus.CANCEL: PaymentState.CANCELLED,
    TransactionStatus.EXPIRE: PaymentState.CANCELLED,
    TransactionStatus.PENDING: PaymentState.PENDING,
    TransactionStatus.AUTHORIZE: PaymentState.PENDING,
    TransactionStatus.REFUND: PaymentState.SUCCESS,
    TransactionStatus.PARTIAL_REFUND: PaymentState.SUCCESS,
}


@dataclass(frozen=True)
class Transition:
    """
    Outcome of resolving one notification against an order.

    Attributes:
        previous_state: State before the notification
        new_state: State after the notification (equal to previous_state for no-ops)
        action: Action the sink must apply
        reason: Human-readable explanation, used in logs and responses
        refunded_amount: New cumulative refund total, set by refund notifications
    """

    previous_state: PaymentState
    new_state: PaymentState
    action: ReconciliationAction
    reason: str
    refunded_amount: Optional[Decimal] = None

    @property
    def applied(self) -> bool:
        return self.action != ReconciliationAction.NOOP

    @classmethod
    def noop(cls, state: PaymentState, reason: str) -> 'Transition':
        return cls(
            previous_state=state,
            new_state=state,
            action=ReconciliationAction.NOOP,
            reason=reason
        )


def target_state(notification: CanonicalNotification) -> Optional[PaymentState]:
    """
    Look up the canonical state a notification points to.

    Returns:
        The target state, or None when the status combination is unhandled
    """
    status = notification.transaction_status
    if status == TransactionStatus.CAPTURE:
        return CAPTURE_TRANSITIONS.get((status, notification.fraud_status))
    return STATUS_TRANSITIONS.get(status)


def _resolve_refund(
    current_state: PaymentState,
    notification: CanonicalNotification,
    refunded_amount: Decimal
) -> Transition:
    # Refunds settle non-terminal orders as success; denied and cancelled stay final.
    if current_state in (PaymentState.DENIED, PaymentState.CANCELLED):
        return Transition.noop(
            current_state,
            f"refund ignored for order in state {current_state.value}"
        )

    reported = notification.refund_amount
    if reported is None and notification.transaction_status == TransactionStatus.REFUND:
        reported = notification.gross_amount

    if current_state != PaymentState.SUCCESS:
        recorded = None
        if reported is not None:
            recorded = max(reported, refunded_amount)
        return Transition(
            previous_state=current_state,
            new_state=PaymentState.SUCCESS,
            action=ReconciliationAction.MARK_SUCCESS,
            reason=f"{current_state.value} -> success (refund)",
            refunded_amount=recorded
        )

    if reported is None:
        return Transition.noop(current_state, "partial refund without refund_amount")

    if reported <= refunded_amount:
        return Transition.noop(current_state, f"refund of {reported} already recorded")

    return Transition(
        previous_state=current_state,
        new_state=PaymentState.SUCCESS,
        action=ReconciliationAction.RECORD_REFUND,
        reason=f"refunded total now {reported}",
        refunded_amount=reported
    )


def resolve(
    current_state: PaymentState,
    notification: CanonicalNotification,
    refunded_amount: Decimal = Decimal('0')
) -> Transition:
    """
    Resolve the transition a notification causes.

    Terminal states never change. A challenged order never falls back to
    pending. Re-delivered notifications resolve to NOOP.

    Args:
        current_state: Order's currently recorded state
        notification: Validated notification
        refunded_amount: Refund total already recorded for the order

    Returns:
        Transition describing the new state and the action to apply
    """
    if notification.is_unknown:
        logger.warning(
            f"Unhandled transaction status '{notification.raw_transaction_status}' "
            f"for order {notification.order_id}"
        )
        return Transition.noop(current_state, "unhandled transaction status")

    if notification.is_refund:
        return _resolve_refund(current_state, notification, refunded_amount)

    target = target_state(notification)
    if target is None:
        logger.warning(
            f"Unhandled status combination {notification.describe()} "
            f"for order {notification.order_id}"
        )
        return Transition.noop(current_state, "unhandled status combination")

    if target == current_state:
        return Transition.noop(current_state, f"order already {current_state.value}")

    if current_state.is_terminal:
        return Transition.noop(
            current_state,
            f"order is final ({current_state.value}), ignoring {target.value}"
        )

    if current_state == PaymentState.CHALLENGED and target == PaymentState.PENDING:
        return Transition.noop(current_state, "challenged order cannot return to pending")

    return Transition(
        previous_state=current_state,
        new_state=target,
        action=STATE_ACTIONS[target],
        reason=f"{current_state.value} -> {target.value}"
    )
