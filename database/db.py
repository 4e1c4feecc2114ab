"""
Database connection and query module.

Provides a clean interface for database operations with support
for both PostgreSQL and SQLite backends.
"""

import logging
import os
import re
from datetime import datetime
from typing import Any, Dict, Optional

import asyncpg
import aiosqlite

logger = logging.getLogger(__name__)


class Database:
    """
    Async database connection manager.

    Supports PostgreSQL (production) and SQLite (development, tests).
    Provides connection pooling and query execution methods.
    """

    def __init__(self, database_url: str):
        """
        Initialize database manager.

        Args:
            database_url: Database connection URL
                (postgresql://... or sqlite:///path, sqlite:///:memory:)
        """
        self.database_url = database_url
        self._pool = None
        self._sqlite_conn = None
        self._is_postgres = self.database_url.startswith(('postgresql', 'postgres://'))

    @property
    def is_postgres(self) -> bool:
        return self._is_postgres

    async def connect(self) -> None:
        """Establish database connection(s)."""
        if self._is_postgres:
            logger.info("Connecting to PostgreSQL database...")
            self._pool = await asyncpg.create_pool(
                self.database_url,
                min_size=2,
                max_size=10,
                command_timeout=60
            )
        else:
            # SQLite for development
            db_path = self.database_url.replace('sqlite:///', '')
            logger.info(f"Connecting to SQLite database: {db_path}")
            self._sqlite_conn = await aiosqlite.connect(db_path)
            self._sqlite_conn.row_factory = aiosqlite.Row

        logger.info("Database connection established")

    async def disconnect(self) -> None:
        """Close database connection(s)."""
        if self._is_postgres and self._pool:
            await self._pool.close()
            self._pool = None
        elif self._sqlite_conn:
            await self._sqlite_conn.close()
            self._sqlite_conn = None

        logger.info("Database connection closed")

    async def execute(self, query: str, *args) -> int:
        """
        Execute a query without returning results.

        Args:
            query: SQL query to execute ($1, $2 placeholders)
            *args: Query parameters

        Returns:
            Number of rows affected
        """
        if self._is_postgres:
            async with self._pool.acquire() as conn:
                status = await conn.execute(query, *args)
            # asyncpg returns a command tag such as "UPDATE 1"
            tail = status.rsplit(' ', 1)[-1]
            return int(tail) if tail.isdigit() else 0
        else:
            cursor = await self._sqlite_conn.execute(self._convert_params(query), args)
            await self._sqlite_conn.commit()
            return cursor.rowcount

    async def fetch_one(self, query: str, *args) -> Optional[Dict[str, Any]]:
        """
        Execute a query and fetch one row.

        Args:
            query: SQL query to execute
            *args: Query parameters

        Returns:
            Row as dictionary or None if no results
        """
        if self._is_postgres:
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(query, *args)
                return dict(row) if row else None
        else:
            sqlite_query = self._convert_params(query)
            cursor = await self._sqlite_conn.execute(sqlite_query, args)
            row = await cursor.fetchone()
            if row:
                columns = [d[0] for d in cursor.description]
                return dict(zip(columns, row))
            return None

    def _convert_params(self, query: str) -> str:
        """Convert PostgreSQL $1, $2 style params to SQLite ? style."""
        return re.sub(r'\$\d+', '?', query)

    def _timestamp(self, value: Optional[datetime]) -> Any:
        """asyncpg takes datetimes, SQLite stores ISO strings."""
        if value is None or self._is_postgres:
            return value
        return value.isoformat()

    async def init_schema(self) -> None:
        """Initialize database schema from schema.sql file."""
        schema_path = os.path.join(os.path.dirname(__file__), 'schema.sql')

        with open(schema_path, 'r') as f:
            schema = f.read()

        # Split by semicolons and execute each statement
        statements = [s.strip() for s in schema.split(';') if s.strip()]

        for statement in statements:
            # Skip comment-only chunks
            lines = [line for line in statement.splitlines() if not line.strip().startswith('--')]
            statement = '\n'.join(lines).strip()
            if not statement:
                continue

            try:
                if self._is_postgres:
                    async with self._pool.acquire() as conn:
                        await conn.execute(statement)
                else:
                    await self._sqlite_conn.execute(statement)
            except Exception as e:
                # Log but continue - some statements may fail on re-run
                logger.debug(f"Schema statement skipped: {e}")

        if not self._is_postgres:
            await self._sqlite_conn.commit()

        logger.info("Database schema initialized")

    # -------------------------------------------------------------------------
    # Order Operations
    # -------------------------------------------------------------------------

    async def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        """Get order by ID."""
        return await self.fetch_one(
            "SELECT * FROM orders WHERE order_id = $1",
            order_id
        )

    async def create_order(
        self,
        order_id: str,
        gross_amount: str,
        state: str = 'pending'
    ) -> bool:
        """
        Register a new order. Existing orders are left untouched.

        Returns:
            True if a row was inserted
        """
        now = datetime.utcnow()

        if self._is_postgres:
            inserted = await self.execute(
                """
                INSERT INTO orders (order_id, gross_amount, state, refunded_amount,
                                    created_at, updated_at)
                VALUES ($1, $2, $3, '0', $4, $5)
                ON CONFLICT (order_id) DO NOTHING
                """,
                order_id, gross_amount, state, now, now
            )
        else:
            inserted = await self.execute(
                """
                INSERT OR IGNORE INTO orders (order_id, gross_amount, state, refunded_amount,
                                              created_at, updated_at)
                VALUES ($1, $2, $3, '0', $4, $5)
                """,
                order_id, gross_amount, state, now.isoformat(), now.isoformat()
            )

        return inserted > 0

    async def update_order_state(
        self,
        order_id: str,
        expected_state: str,
        expected_refunded_amount: str,
        state: str,
        transaction_status: Optional[str],
        fraud_status: Optional[str],
        payment_type: Optional[str],
        refunded_amount: str,
        notification_time: Optional[datetime]
    ) -> bool:
        """
        Compare-and-set update of an order's payment state.

        The row only changes if its state and refund total are still the
        ones the caller read, so two writers racing on the same order
        cannot both win.

        Returns:
            True if the order was updated
        """
        updated = await self.execute(
            """
            UPDATE orders
            SET state = $1, transaction_status = $2, fraud_status = $3,
                payment_type = COALESCE($4, payment_type), refunded_amount = $5,
                last_notification_at = $6, updated_at = $7
            WHERE order_id = $8 AND state = $9 AND refunded_amount = $10
            """,
            state, transaction_status, fraud_status, payment_type, refunded_amount,
            self._timestamp(notification_time),
            self._timestamp(datetime.utcnow()),
            order_id, expected_state, expected_refunded_amount
        )
        return updated > 0
