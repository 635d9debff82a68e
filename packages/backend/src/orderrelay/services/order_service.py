"""Order service — parameterized CRUD against the orders table.

Learn: Each mutation is one statement in its own transaction:
execute → commit on success, rollback on any error. The relay depends
on this: the orders trigger calls pg_notify inside the transaction, and
Postgres only delivers the notification when the transaction commits.
So one committed mutation = exactly one change event; a rolled-back
one = none.

INSERT/UPDATE/DELETE use RETURNING so the API can echo the row without
a second round trip.
"""

from typing import Optional

from sqlalchemy import delete, func, insert, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession

from orderrelay.db.models import Order

NOTIFY_FUNCTION = "notify_orders_change"


class OrderNotFoundError(Exception):
    """Raised when an order id doesn't exist."""
    pass


class OrderService:
    """Business logic for order CRUD."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Read ────────────────────────────────────────────

    async def list_orders(self) -> list[Order]:
        result = await self.db.execute(select(Order).order_by(Order.id.desc()))
        return list(result.scalars().all())

    # ─── Mutations ───────────────────────────────────────

    async def create_order(
        self,
        customer_name: str,
        product_name: str,
        status: str = "pending",
    ) -> Order:
        stmt = (
            insert(Order)
            .values(
                customer_name=customer_name,
                product_name=product_name,
                status=status,
            )
            .returning(Order)
        )
        return await self._commit_one(stmt, order_id=None)

    async def update_status(self, order_id: int, status: str) -> Order:
        """Change an order's status and bump updated_at."""
        stmt = (
            update(Order)
            .where(Order.id == order_id)
            .values(status=status, updated_at=func.now())
            .returning(Order)
            .execution_options(synchronize_session=False)
        )
        return await self._commit_one(stmt, order_id=order_id)

    async def delete_order(self, order_id: int) -> Order:
        """Delete an order, returning the row as it was."""
        stmt = (
            delete(Order)
            .where(Order.id == order_id)
            .returning(Order)
            .execution_options(synchronize_session=False)
        )
        return await self._commit_one(stmt, order_id=order_id)

    async def _commit_one(self, stmt, order_id: Optional[int]) -> Order:
        try:
            result = await self.db.execute(stmt)
            order = result.scalars().first()
            if order is None:
                await self.db.rollback()
                raise OrderNotFoundError(f"Order {order_id} not found")
            await self.db.commit()
        except OrderNotFoundError:
            raise
        except Exception:
            await self.db.rollback()
            raise
        return order

    # ─── Diagnostics ─────────────────────────────────────

    async def verify_triggers(self) -> dict:
        """Report the triggers on orders and whether the notify function exists."""
        triggers = await self.db.execute(text("""
            SELECT
                trigger_name,
                event_manipulation,
                action_timing,
                action_statement
            FROM information_schema.triggers
            WHERE event_object_table = 'orders'
            ORDER BY trigger_name
        """))
        func_row = (
            await self.db.execute(
                text("SELECT proname, prosrc FROM pg_proc WHERE proname = :name"),
                {"name": NOTIFY_FUNCTION},
            )
        ).first()

        return {
            "triggers": [dict(row._mapping) for row in triggers],
            "function_exists": func_row is not None,
            "function_source": (
                func_row.prosrc[:200] + "..." if func_row is not None else None
            ),
        }
