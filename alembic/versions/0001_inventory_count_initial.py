"""inventory count initial schema: stores / products / ledger / count sessions & items

Revision ID: 0001_inventory_count
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001_inventory_count"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _now() -> sa.TextClause:
    return sa.text("CURRENT_TIMESTAMP")


def upgrade() -> None:
    # 1) 主档
    op.create_table(
        "stores",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
    )
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("description", sa.String(length=1024), nullable=True),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(length=64), nullable=False, unique=True),
        sa.Column("name", sa.String(length=128), nullable=False, server_default=""),
    )
    op.create_table(
        "store_products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column(
            "product_id",
            sa.Integer(),
            sa.ForeignKey("products.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("store_id", "product_id", name="uq_store_products_store_product"),
    )
    op.create_index("ix_store_products_store_active", "store_products", ["store_id", "is_active"])

    op.create_table(
        "store_capability_grants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("capability", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.UniqueConstraint("user_id", "store_id", "capability", name="uq_store_capability_grants"),
    )

    # 2) 台账（只增不改）
    op.create_table(
        "inventory_movements",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "store_product_id",
            sa.Integer(),
            sa.ForeignKey("store_products.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=512), nullable=True),
        sa.Column(
            "created_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.UniqueConstraint("idempotency_key", name="uq_inventory_movements_idem_key"),
        sa.CheckConstraint(
            "type IN ('INCOMING','OUTGOING','SALE','RETURN','ADJUST')",
            name="ck_inventory_movements_type",
        ),
    )
    op.create_index(
        "ix_inventory_movements_store_product_id", "inventory_movements", ["store_product_id"]
    )
    op.create_index("ix_inventory_movements_created_at", "inventory_movements", ["created_at"])

    # 3) 盘点会话 / 盘点行
    op.create_table(
        "inventory_count_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column(
            "created_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closing_since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reconciled", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index(
        "ix_inventory_count_sessions_store_created",
        "inventory_count_sessions",
        ["store_id", "created_at"],
    )

    op.create_table(
        "inventory_count_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "session_id",
            sa.Integer(),
            sa.ForeignKey("inventory_count_sessions.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "store_product_id",
            sa.Integer(),
            sa.ForeignKey("store_products.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("physical_stock", sa.Integer(), nullable=False),
        sa.Column("expected_stock", sa.Integer(), nullable=False),
        sa.Column("difference", sa.Integer(), nullable=False),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.UniqueConstraint(
            "session_id", "store_product_id", name="uq_inventory_count_items_session_sp"
        ),
        sa.CheckConstraint("physical_stock >= 0", name="ck_inventory_count_items_physical_ge0"),
        sa.CheckConstraint(
            "difference = physical_stock - expected_stock",
            name="ck_inventory_count_items_difference",
        ),
    )

    # 4) 审计
    op.create_table(
        "audit_events",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("ref", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column(
            "meta", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False
        ),
    )
    op.create_index("ix_audit_events_category", "audit_events", ["category"])
    op.create_index(
        "ix_audit_events_cat_ref_time", "audit_events", ["category", "ref", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_audit_events_cat_ref_time", table_name="audit_events")
    op.drop_index("ix_audit_events_category", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_table("inventory_count_items")
    op.drop_index(
        "ix_inventory_count_sessions_store_created", table_name="inventory_count_sessions"
    )
    op.drop_table("inventory_count_sessions")
    op.drop_index("ix_inventory_movements_created_at", table_name="inventory_movements")
    op.drop_index("ix_inventory_movements_store_product_id", table_name="inventory_movements")
    op.drop_table("inventory_movements")
    op.drop_table("store_capability_grants")
    op.drop_index("ix_store_products_store_active", table_name="store_products")
    op.drop_table("store_products")
    op.drop_table("users")
    op.drop_table("products")
    op.drop_table("stores")
