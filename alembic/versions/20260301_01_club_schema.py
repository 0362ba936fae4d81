"""club schema: users, stores, orders, order_items, subscriptions

Revision ID: 20260301_01
Revises:
Create Date: 2026-03-01
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "20260301_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _column_exists(inspector: sa.Inspector, table_name: str, column_name: str) -> bool:
    return any(column["name"] == column_name for column in inspector.get_columns(table_name))


def _ensure_users(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.BigInteger(), nullable=False),
            sa.Column("nickname", sa.String(length=255), nullable=False, server_default="user"),
            sa.Column("phone", sa.String(length=64), nullable=True),
            sa.Column("sub_status", sa.String(length=32), nullable=False, server_default="inactive"),
            sa.Column("sub_until", sa.DateTime(timezone=True), nullable=True),
            sa.Column("selected_store", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index("ix_users_id", "users", ["id"], unique=False)
        op.create_index("ix_users_user_id", "users", ["user_id"], unique=True)
        return

    # databases created before store selection existed
    if not _column_exists(inspector, "users", "selected_store"):
        op.add_column("users", sa.Column("selected_store", sa.String(length=64), nullable=True))


def _ensure_stores(inspector: sa.Inspector) -> None:
    if _table_exists(inspector, "stores"):
        return
    op.create_table(
        "stores",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_stores_id", "stores", ["id"], unique=False)
    op.create_index("ix_stores_code", "stores", ["code"], unique=True)


def _ensure_orders(inspector: sa.Inspector) -> None:
    if not _table_exists(inspector, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.BigInteger(), nullable=False),
            sa.Column("store_code", sa.String(length=64), nullable=True),
            sa.Column("total_amount", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("payment_method", sa.String(length=32), nullable=False, server_default="kaspi_link"),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="new"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index("ix_orders_id", "orders", ["id"], unique=False)
        op.create_index("ix_orders_user_id", "orders", ["user_id"], unique=False)

    if not _table_exists(inspector, "order_items"):
        op.create_table(
            "order_items",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("product_id", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("unit", sa.String(length=64), nullable=False),
            sa.Column("qty", sa.Numeric(12, 3), nullable=False),
            sa.Column("price", sa.Integer(), nullable=False),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index("ix_order_items_id", "order_items", ["id"], unique=False)
        op.create_index("ix_order_items_order_id", "order_items", ["order_id"], unique=False)


def _ensure_subscriptions(inspector: sa.Inspector) -> None:
    if _table_exists(inspector, "subscriptions"):
        return
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_subscriptions_id", "subscriptions", ["id"], unique=False)
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"], unique=False)


def upgrade() -> None:
    bind = op.get_bind()
    _ensure_users(sa.inspect(bind))
    _ensure_stores(sa.inspect(bind))
    _ensure_orders(sa.inspect(bind))
    _ensure_subscriptions(sa.inspect(bind))


def downgrade() -> None:
    op.drop_table("subscriptions")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("stores")
    op.drop_table("users")
