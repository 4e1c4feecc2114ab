"""
Tests for reconciliation sinks and the orders table.

Run with: pytest tests/test_reconciliation.py -v
"""

from decimal import Decimal

import pytest

from database.db import Database
from factories import canonical
from models.notification import FraudStatus, TransactionStatus
from models.order import Order, PaymentState
from services.reconciliation import DatabaseReconciliationSink
from services.state_machine import resolve


async def _sqlite_sink():
    db = Database('sqlite:///:memory:')
    await db.connect()
    await db.init_schema()
    return db, DatabaseReconciliationSink(db)


class TestInMemorySink:
    """Tests for InMemoryReconciliationSink."""

    @pytest.mark.asyncio
    async def test_register_once(self, sink):
        """Registering the same order twice keeps the first record."""
        assert await sink.register_order(Order(order_id='ORDER-1', gross_amount='100'))
        assert not await sink.register_order(Order(order_id='ORDER-1', gross_amount='999'))

        order = await sink.get_order('ORDER-1')
        assert order.gross_amount == Decimal('100')
        assert len(sink) == 1

    @pytest.mark.asyncio
    async def test_apply_transition(self, sink):
        """An accepted transition updates the stored order."""
        await sink.register_order(Order(order_id='ORDER-1', gross_amount='150000.00'))
        order = await sink.get_order('ORDER-1')
        notification = canonical(TransactionStatus.CAPTURE, FraudStatus.CHALLENGE)
        transition = resolve(order.state, notification)

        assert await sink.apply(order, transition, notification)

        stored = await sink.get_order('ORDER-1')
        assert stored.state == PaymentState.CHALLENGED
        assert stored.transaction_status == 'capture'
        assert stored.fraud_status == 'challenge'
        assert stored.last_notification_at is not None

    @pytest.mark.asyncio
    async def test_stale_transition_rejected(self, sink):
        """A transition computed from an outdated state is not written."""
        await sink.register_order(Order(order_id='ORDER-1', gross_amount='150000.00'))
        stale = await sink.get_order('ORDER-1')

        settle = canonical(TransactionStatus.SETTLEMENT)
        deny = canonical(TransactionStatus.DENY)

        assert await sink.apply(stale, resolve(stale.state, settle), settle)
        assert not await sink.apply(stale, resolve(stale.state, deny), deny)

        assert (await sink.get_order('ORDER-1')).state == PaymentState.SUCCESS

    @pytest.mark.asyncio
    async def test_early_refund_sets_state_and_amount(self, sink):
        """A refund on a pending order writes success and the refund total together."""
        await sink.register_order(Order(order_id='ORDER-1', gross_amount='150000.00'))
        order = await sink.get_order('ORDER-1')
        notification = canonical(TransactionStatus.PARTIAL_REFUND, refund_amount='50000.00')

        assert await sink.apply(order, resolve(order.state, notification), notification)

        stored = await sink.get_order('ORDER-1')
        assert stored.state == PaymentState.SUCCESS
        assert stored.refunded_amount == Decimal('50000.00')

    @pytest.mark.asyncio
    async def test_unknown_order_not_applied(self, sink):
        """Applying to an unregistered order writes nothing."""
        order = Order(order_id='ORDER-missing', gross_amount='1')
        notification = canonical(TransactionStatus.SETTLEMENT, order_id='ORDER-missing')

        assert not await sink.apply(order, resolve(order.state, notification), notification)
        assert await sink.get_order('ORDER-missing') is None


class TestDatabaseSink:
    """Tests for DatabaseReconciliationSink on SQLite."""

    @pytest.mark.asyncio
    async def test_register_and_load(self):
        """Orders round-trip through the orders table."""
        db, sink = await _sqlite_sink()
        try:
            assert await sink.register_order(
                Order(order_id='ORDER-1', gross_amount=Decimal('150000.00'))
            )
            assert not await sink.register_order(
                Order(order_id='ORDER-1', gross_amount=Decimal('1'))
            )

            order = await sink.get_order('ORDER-1')
            assert order.gross_amount == Decimal('150000.00')
            assert order.state == PaymentState.PENDING
            assert order.refunded_amount == Decimal('0')
            assert await sink.get_order('ORDER-2') is None
        finally:
            await db.disconnect()

    @pytest.mark.asyncio
    async def test_apply_is_compare_and_set(self):
        """Only the first of two transitions from the same state is written."""
        db, sink = await _sqlite_sink()
        try:
            await sink.register_order(Order(order_id='ORDER-1', gross_amount='150000.00'))
            order = await sink.get_order('ORDER-1')

            settle = canonical(TransactionStatus.SETTLEMENT)
            deny = canonical(TransactionStatus.DENY)

            assert await sink.apply(order, resolve(order.state, settle), settle)
            assert not await sink.apply(order, resolve(order.state, deny), deny)

            stored = await sink.get_order('ORDER-1')
            assert stored.state == PaymentState.SUCCESS
            assert stored.transaction_status == 'settlement'
            assert stored.last_notification_at is not None
        finally:
            await db.disconnect()

    @pytest.mark.asyncio
    async def test_refund_recorded(self):
        """Refund totals are stored and guard against stale writes."""
        db, sink = await _sqlite_sink()
        try:
            await sink.register_order(
                Order(order_id='ORDER-1', gross_amount='150000.00', state=PaymentState.SUCCESS)
            )
            order = await sink.get_order('ORDER-1')

            first = canonical(TransactionStatus.PARTIAL_REFUND, refund_amount='50000.00')
            second = canonical(TransactionStatus.PARTIAL_REFUND, refund_amount='80000.00')

            assert await sink.apply(order, resolve(order.state, first), first)
            assert not await sink.apply(order, resolve(order.state, second), second)

            stored = await sink.get_order('ORDER-1')
            assert stored.refunded_amount == Decimal('50000.00')
            assert stored.state == PaymentState.SUCCESS

            assert await sink.apply(
                stored, resolve(stored.state, second, stored.refunded_amount), second
            )
            assert (await sink.get_order('ORDER-1')).refunded_amount == Decimal('80000.00')
        finally:
            await db.disconnect()


class TestDatabase:
    """Tests for Database helpers."""

    def test_backend_detection(self):
        """postgres URLs select asyncpg, everything else SQLite."""
        assert Database('postgresql://user@localhost/payments').is_postgres
        assert Database('postgres://user@localhost/payments').is_postgres
        assert not Database('sqlite:///./payments.db').is_postgres

    def test_convert_params(self):
        """Numbered placeholders become SQLite question marks."""
        db = Database('sqlite:///:memory:')
        assert db._convert_params("WHERE a = $1 AND b = $10") == "WHERE a = ? AND b = ?"


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
