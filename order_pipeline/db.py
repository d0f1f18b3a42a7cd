"""
Async Postgres access for the order pipeline: orders, order_items, payments and
order_status_history. The tables are owned by the shop backend; init_schema exists
for local development and integration runs.

Everything the transition manager and the payment validator need from the store is
described by OrderStore; PostgresOrderStore is the asyncpg-backed implementation.
"""
import json
from typing import Protocol

import asyncpg

from order_pipeline.config import settings
from order_pipeline.models import Order, OrderStatusHistoryEntry, Payment
from order_pipeline.order_state import OrderStatus, PaymentStatus

_pool: asyncpg.Pool | None = None


class OrderStore(Protocol):
    async def get_order(self, order_id: int) -> Order | None: ...

    async def get_payment(self, payment_id: int) -> Payment | None: ...

    async def list_payments_for_order(self, order_id: int) -> list[Payment]: ...

    async def list_status_history(self, order_id: int) -> list[OrderStatusHistoryEntry]: ...

    async def update_order_status(self, order_id: int, new_status: str, expected_status: str) -> bool:
        """Write new_status only if the row still holds expected_status. False when it does not."""
        ...

    async def insert_status_history(
        self,
        order_id: int,
        previous_status: str | None,
        new_status: str,
        changed_by: str,
        reason: str,
    ) -> None: ...

    async def count_payments_with_transaction_id(self, transaction_id: str, exclude_payment_id: int) -> int: ...


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


def _in_list(values) -> str:
    return ", ".join(f"'{v.value}'" for v in values)


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute(f"""
            CREATE TABLE IF NOT EXISTS orders (
                id SERIAL PRIMARY KEY,
                user_id INT NOT NULL,
                total_amount NUMERIC(10,2) NOT NULL,
                status VARCHAR(50) NOT NULL DEFAULT 'pending'
                    CHECK (status IN ({_in_list(OrderStatus)})),
                created_at TIMESTAMP DEFAULT NOW(),
                updated_at TIMESTAMP DEFAULT NOW()
            );
        """)
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_orders_user_id ON orders(user_id);")
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status);")
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_items (
                id SERIAL PRIMARY KEY,
                order_id INT NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                product_id INT NOT NULL,
                quantity INT NOT NULL,
                price NUMERIC(10,2) NOT NULL,
                created_at TIMESTAMP DEFAULT NOW()
            );
        """)
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_order_items_order_id ON order_items(order_id);")
        await conn.execute(f"""
            CREATE TABLE IF NOT EXISTS payments (
                id SERIAL PRIMARY KEY,
                order_id INT NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                payment_method VARCHAR(50) NOT NULL,
                amount NUMERIC(10,2) NOT NULL,
                status VARCHAR(20) NOT NULL DEFAULT 'pending'
                    CHECK (status IN ({_in_list(PaymentStatus)})),
                transaction_id VARCHAR(255) UNIQUE,
                payment_data JSONB,
                created_at TIMESTAMP DEFAULT NOW(),
                updated_at TIMESTAMP DEFAULT NOW()
            );
        """)
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_payments_order_id ON payments(order_id);")
        await conn.execute("CREATE INDEX IF NOT EXISTS idx_payments_status ON payments(status);")
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_status_history (
                id SERIAL PRIMARY KEY,
                order_id INT NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                previous_status VARCHAR(50),
                new_status VARCHAR(50) NOT NULL,
                changed_by VARCHAR(100),
                reason TEXT,
                created_at TIMESTAMP DEFAULT NOW()
            );
        """)
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_order_status_history_order_id ON order_status_history(order_id);"
        )


def _payment_from_row(row: asyncpg.Record) -> Payment:
    data = dict(row)
    raw = data.get("payment_data")
    # asyncpg returns JSONB as text unless a codec is registered
    if isinstance(raw, str):
        data["payment_data"] = json.loads(raw)
    elif raw is None:
        data["payment_data"] = {}
    return Payment(**data)


class PostgresOrderStore:
    """OrderStore over an asyncpg pool. Each call is one statement on its own connection."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_order(self, order_id: int) -> Order | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, user_id, total_amount, status, created_at, updated_at
                FROM orders WHERE id = $1;
                """,
                order_id,
            )
        return Order(**dict(row)) if row is not None else None

    async def get_payment(self, payment_id: int) -> Payment | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM payments WHERE id = $1;", payment_id)
        return _payment_from_row(row) if row is not None else None

    async def list_payments_for_order(self, order_id: int) -> list[Payment]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM payments WHERE order_id = $1 ORDER BY id ASC;",
                order_id,
            )
        return [_payment_from_row(r) for r in rows]

    async def list_status_history(self, order_id: int) -> list[OrderStatusHistoryEntry]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, order_id, previous_status, new_status, changed_by, reason, created_at
                FROM order_status_history
                WHERE order_id = $1
                ORDER BY created_at DESC, id DESC;
                """,
                order_id,
            )
        return [OrderStatusHistoryEntry(**dict(r)) for r in rows]

    async def update_order_status(self, order_id: int, new_status: str, expected_status: str) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE orders SET status = $1, updated_at = NOW()
                WHERE id = $2 AND status = $3;
                """,
                new_status,
                order_id,
                expected_status,
            )
        # command tag is "UPDATE <rowcount>"
        return result.split()[-1] != "0"

    async def insert_status_history(
        self,
        order_id: int,
        previous_status: str | None,
        new_status: str,
        changed_by: str,
        reason: str,
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO order_status_history (order_id, previous_status, new_status, changed_by, reason)
                VALUES ($1, $2, $3, $4, $5);
                """,
                order_id,
                previous_status,
                new_status,
                changed_by,
                reason,
            )

    async def count_payments_with_transaction_id(self, transaction_id: str, exclude_payment_id: int) -> int:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM payments WHERE transaction_id = $1 AND id != $2;",
                transaction_id,
                exclude_payment_id,
            )


async def get_store() -> OrderStore:
    """FastAPI dependency: store over the shared pool."""
    return PostgresOrderStore(await get_pool())
