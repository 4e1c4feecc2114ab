"""
Tests for the notification processor.

Run with: pytest tests/test_processor.py -v
"""

import asyncio
from dataclasses import replace
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from database.db import Database
from factories import signed_notification
from models.order import Order, PaymentState
from services.exceptions import GatewayError, PaymentServiceError, SignatureError, ValidationError
from services.notification_processor import NotificationProcessor, OrderLocks
from services.reconciliation import DatabaseReconciliationSink, InMemoryReconciliationSink
from services.state_machine import ReconciliationAction


ORDER_ID = 'ORDER-1700000000000-abc123def'


@pytest.fixture
def processor(sink, server_key):
    return NotificationProcessor(sink, server_key)


async def _register(sink, order_id=ORDER_ID, amount='150000.00', state=PaymentState.PENDING):
    await sink.register_order(Order(order_id=order_id, gross_amount=Decimal(amount), state=state))


class TestOrderLocks:
    """Tests for the per-order lock registry."""

    @pytest.mark.asyncio
    async def test_lock_released_and_dropped(self):
        """Locks disappear once nobody holds them."""
        locks = OrderLocks()

        async with locks.hold('A'):
            assert len(locks) == 1

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_same_order_serialized(self):
        """Two holders of the same order never overlap."""
        locks = OrderLocks()
        events = []

        async def worker(name):
            async with locks.hold('A'):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker('1'), worker('2'))

        assert events in (
            ['1-in', '1-out', '2-in', '2-out'],
            ['2-in', '2-out', '1-in', '1-out'],
        )

    @pytest.mark.asyncio
    async def test_different_orders_do_not_block(self):
        """Orders are locked independently."""
        locks = OrderLocks()

        async with locks.hold('A'):
            await asyncio.wait_for(self._enter(locks, 'B'), timeout=1)

    async def _enter(self, locks, order_id):
        async with locks.hold(order_id):
            return True


class TestNotificationProcessor:
    """Tests for NotificationProcessor.process."""

    @pytest.mark.asyncio
    async def test_settlement_applied(self, processor, sink):
        """A valid settlement moves a pending order to success."""
        await _register(sink)

        result = await processor.process(signed_notification())

        assert result.applied
        assert result.transition.action == ReconciliationAction.MARK_SUCCESS
        assert result.order.state == PaymentState.SUCCESS
        assert result.order.transaction_status == 'settlement'
        assert result.order.payment_type == 'credit_card'
        assert processor.get_stats()['applied'] == 1

    @pytest.mark.asyncio
    async def test_bad_signature_leaves_state_unchanged(self, processor, sink):
        """A tampered notification is rejected before any state change."""
        await _register(sink)
        body = signed_notification()
        body['signature_key'] = '0' * 128

        with pytest.raises(SignatureError):
            await processor.process(body, remote='203.0.113.7')

        order = await sink.get_order(ORDER_ID)
        assert order.state == PaymentState.PENDING
        assert processor.get_stats()['invalid_signature'] == 1

    @pytest.mark.asyncio
    async def test_tampered_amount_rejected(self, processor, sink):
        """Changing the amount after signing invalidates the signature."""
        body = signed_notification()
        body['gross_amount'] = '1.00'

        with pytest.raises(SignatureError):
            await processor.process(body)

        assert len(sink) == 0

    @pytest.mark.asyncio
    async def test_signature_with_other_key_rejected(self, processor):
        """Notifications signed with another merchant's key are rejected."""
        with pytest.raises(SignatureError):
            await processor.process(signed_notification(server_key='another-key'))

    @pytest.mark.asyncio
    async def test_non_object_body_rejected(self, processor):
        """Non-object bodies raise ValidationError."""
        with pytest.raises(ValidationError):
            await processor.process(['not', 'an', 'object'])

        assert processor.get_stats()['invalid_payload'] == 1

    @pytest.mark.asyncio
    async def test_missing_signature_rejected(self, processor):
        """A body without signature_key fails verification."""
        body = signed_notification()
        del body['signature_key']

        with pytest.raises(SignatureError):
            await processor.process(body)

    @pytest.mark.asyncio
    async def test_duplicate_is_ignored(self, processor, sink):
        """Re-delivery of the same notification is acknowledged without change."""
        await _register(sink)
        body = signed_notification()

        first = await processor.process(body)
        second = await processor.process(body)

        assert first.applied
        assert not second.applied
        assert second.order.state == PaymentState.SUCCESS
        data = second.to_dict()
        assert data['ignored'] is True
        assert data['reason'] == 'order already success'
        assert processor.get_stats()['ignored'] == 1

    @pytest.mark.asyncio
    async def test_challenge_then_settlement(self, processor, sink):
        """capture/challenge followed by settlement ends in success."""
        await _register(sink)

        challenged = await processor.process(
            signed_notification(transaction_status='capture', fraud_status='challenge')
        )
        settled = await processor.process(signed_notification(transaction_status='settlement'))
        late_pending = await processor.process(
            signed_notification(transaction_status='pending', status_code='201')
        )

        assert challenged.order.state == PaymentState.CHALLENGED
        assert settled.order.state == PaymentState.SUCCESS
        assert not late_pending.applied
        assert (await sink.get_order(ORDER_ID)).state == PaymentState.SUCCESS

    @pytest.mark.asyncio
    async def test_unknown_order_is_registered(self, processor, sink):
        """Notifications for untracked orders register the order first."""
        result = await processor.process(signed_notification(order_id='ORDER-unknown'))

        assert result.applied
        order = await sink.get_order('ORDER-unknown')
        assert order.gross_amount == Decimal('150000.00')
        assert order.state == PaymentState.SUCCESS

    @pytest.mark.asyncio
    async def test_unknown_status_acknowledged(self, processor, sink):
        """Unknown statuses are acknowledged without a state change."""
        await _register(sink)

        result = await processor.process(signed_notification(transaction_status='chargeback'))

        assert not result.applied
        assert (await sink.get_order(ORDER_ID)).state == PaymentState.PENDING

    @pytest.mark.asyncio
    async def test_concurrent_conflicting_notifications(self, processor, sink):
        """Settlement and deny racing for one order: exactly one wins."""
        await _register(sink)

        results = await asyncio.gather(
            processor.process(signed_notification(transaction_status='settlement')),
            processor.process(signed_notification(transaction_status='deny', status_code='202')),
        )

        applied = [r for r in results if r.applied]
        assert len(applied) == 1

        final = await sink.get_order(ORDER_ID)
        assert final.state == applied[0].transition.new_state
        assert final.state in (PaymentState.SUCCESS, PaymentState.DENIED)

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_apply_once(self, processor, sink):
        """Many copies of one notification delivered at once apply once."""
        await _register(sink)
        body = signed_notification()

        results = await asyncio.gather(*(processor.process(dict(body)) for _ in range(10)))

        assert sum(1 for r in results if r.applied) == 1
        assert processor.get_stats()['ignored'] == 9

    @pytest.mark.asyncio
    async def test_refund_recorded(self, processor, sink):
        """A partial refund on a settled order records the refund total."""
        await _register(sink, state=PaymentState.SUCCESS)

        result = await processor.process(signed_notification(
            transaction_status='partial_refund',
            refund_amount='50000.00'
        ))
        repeat = await processor.process(signed_notification(
            transaction_status='partial_refund',
            refund_amount='50000.00'
        ))

        assert result.transition.action == ReconciliationAction.RECORD_REFUND
        assert result.order.refunded_amount == Decimal('50000.00')
        assert result.order.state == PaymentState.SUCCESS
        assert not repeat.applied

    @pytest.mark.asyncio
    async def test_refund_before_settlement(self, processor, sink):
        """A refund delivered ahead of settlement keeps its amount."""
        await _register(sink)

        refund = await processor.process(signed_notification(
            transaction_status='partial_refund',
            refund_amount='50000.00'
        ))
        settlement = await processor.process(signed_notification(transaction_status='settlement'))

        assert refund.applied
        assert refund.transition.action == ReconciliationAction.MARK_SUCCESS
        assert not settlement.applied

        order = await sink.get_order(ORDER_ID)
        assert order.state == PaymentState.SUCCESS
        assert order.refunded_amount == Decimal('50000.00')

    @pytest.mark.asyncio
    async def test_refund_before_settlement_in_database(self, server_key):
        """The early refund amount is written in the same update as the state."""
        db = Database('sqlite:///:memory:')
        await db.connect()
        await db.init_schema()
        try:
            sink = DatabaseReconciliationSink(db)
            await _register(sink)
            processor = NotificationProcessor(sink, server_key)

            await processor.process(signed_notification(
                transaction_status='partial_refund',
                refund_amount='50000.00'
            ))
            await processor.process(signed_notification(transaction_status='settlement'))

            order = await sink.get_order(ORDER_ID)
        finally:
            await db.disconnect()

        assert order.state == PaymentState.SUCCESS
        assert order.refunded_amount == Decimal('50000.00')

    @pytest.mark.asyncio
    async def test_refund_on_cancelled_order_ignored(self, processor, sink):
        """A refund never revives a cancelled order."""
        await _register(sink, state=PaymentState.CANCELLED)

        result = await processor.process(signed_notification(transaction_status='refund'))

        assert not result.applied
        order = await sink.get_order(ORDER_ID)
        assert order.state == PaymentState.CANCELLED
        assert order.refunded_amount == Decimal('0')

    @pytest.mark.asyncio
    async def test_stats_reset(self, processor, sink):
        """reset_stats zeroes every counter."""
        await processor.process(signed_notification())

        processor.reset_stats()

        assert all(value == 0 for value in processor.get_stats().values())


class TestConflictRetry:
    """Tests for compare-and-set conflicts."""

    @pytest.mark.asyncio
    async def test_conflict_re_resolves(self, server_key):
        """When another writer moves the order, the notification is re-resolved."""
        sink = InMemoryReconciliationSink()
        await _register(sink)
        original_apply = sink.apply
        calls = []

        async def racing_apply(order, transition, notification):
            calls.append(transition.action)
            if len(calls) == 1:
                stored = sink._orders[order.order_id]
                sink._orders[order.order_id] = replace(stored, state=PaymentState.CANCELLED)
            return await original_apply(order, transition, notification)

        sink.apply = racing_apply
        processor = NotificationProcessor(sink, server_key)

        result = await processor.process(signed_notification())

        assert not result.applied
        assert result.order.state == PaymentState.CANCELLED
        assert processor.get_stats()['conflicts'] == 1

    @pytest.mark.asyncio
    async def test_conflict_exhaustion(self, server_key):
        """Persistent conflicts surface as an error instead of looping."""
        sink = InMemoryReconciliationSink()
        await _register(sink)
        sink.apply = AsyncMock(return_value=False)
        processor = NotificationProcessor(sink, server_key)

        with pytest.raises(PaymentServiceError):
            await processor.process(signed_notification())

        assert sink.apply.await_count == NotificationProcessor.MAX_APPLY_ATTEMPTS


class TestGatewayVerification:
    """Tests for re-fetching the status from the gateway."""

    def test_requires_client(self, sink, server_key):
        """verify_with_gateway without a client is a configuration error."""
        with pytest.raises(ValueError):
            NotificationProcessor(sink, server_key, verify_with_gateway=True)

    @pytest.mark.asyncio
    async def test_gateway_status_wins(self, sink, server_key):
        """The gateway's answer replaces the webhook's status."""
        await _register(sink)
        client = AsyncMock()
        client.get_status.return_value = {
            'order_id': ORDER_ID,
            'transaction_status': 'deny',
            'status_code': '202'
        }
        processor = NotificationProcessor(
            sink, server_key, gateway_client=client, verify_with_gateway=True
        )

        result = await processor.process(signed_notification(transaction_status='settlement'))

        client.get_status.assert_awaited_once_with(ORDER_ID)
        assert result.order.state == PaymentState.DENIED

    @pytest.mark.asyncio
    async def test_gateway_failure_propagates(self, sink, server_key):
        """A failed re-fetch leaves the order untouched."""
        await _register(sink)
        client = AsyncMock()
        client.get_status.side_effect = GatewayError("Gateway unreachable")
        processor = NotificationProcessor(
            sink, server_key, gateway_client=client, verify_with_gateway=True
        )

        with pytest.raises(GatewayError):
            await processor.process(signed_notification())

        assert (await sink.get_order(ORDER_ID)).state == PaymentState.PENDING


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
