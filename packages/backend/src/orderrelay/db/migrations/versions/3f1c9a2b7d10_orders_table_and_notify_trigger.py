"""orders table and change NOTIFY trigger

Learn: PostgreSQL LISTEN/NOTIFY enables instant push notifications.
Every committed INSERT/UPDATE/DELETE on orders fires pg_notify on the
'orders_changes' channel with {operation, table, row}. The relay's
supervisor LISTENs on that channel and broadcasts to WebSocket clients.

NOTIFY is transactional: a rolled-back write never notifies, and a
committed one notifies exactly once.

Revision ID: 3f1c9a2b7d10
Revises:
Create Date: 2026-10-19 09:12:44.517302
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a2b7d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("customer_name", sa.String(200), nullable=False),
        sa.Column("product_name", sa.String(200), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default="pending"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ─── Orders change trigger ───────────────────────────
    # DELETE has no NEW row, so publish OLD for it.
    op.execute("""
        CREATE OR REPLACE FUNCTION notify_orders_change()
        RETURNS TRIGGER AS $$
        DECLARE
            changed RECORD;
        BEGIN
            IF TG_OP = 'DELETE' THEN
                changed := OLD;
            ELSE
                changed := NEW;
            END IF;
            PERFORM pg_notify('orders_changes', json_build_object(
                'operation', lower(TG_OP),
                'table', TG_TABLE_NAME,
                'row', row_to_json(changed)
            )::text);
            RETURN changed;
        END;
        $$ LANGUAGE plpgsql;
    """)

    op.execute("""
        CREATE TRIGGER orders_change_notify
            AFTER INSERT OR UPDATE OR DELETE ON orders
            FOR EACH ROW
            EXECUTE FUNCTION notify_orders_change();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS orders_change_notify ON orders;")
    op.execute("DROP FUNCTION IF EXISTS notify_orders_change;")
    op.drop_table("orders")
