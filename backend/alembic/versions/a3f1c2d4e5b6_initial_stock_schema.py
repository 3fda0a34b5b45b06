"""initial stock schema

Revision ID: a3f1c2d4e5b6
Revises:
Create Date: 2026-03-02
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "a3f1c2d4e5b6"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")

# les Enum SQLAlchemy stockent le nom des membres
site_type = sa.Enum("storage", "exit", name="site_type")
supply_risk = sa.Enum("high", "medium", "low", name="supply_risk")
movement_type = sa.Enum("inbound", "outbound", "transfer", name="movement_type")
stock_condition = sa.Enum("new", "used", name="stock_condition")
# second usage: the type already exists once stock_movements is created
stock_condition_existing = postgresql.ENUM("new", "used", name="stock_condition", create_type=False)
order_status = sa.Enum("pending", "completed", "cancelled", name="order_status")


def upgrade() -> None:
    op.create_table(
        "sites",
        sa.Column("id", PK, primary_key=True),
        sa.Column("name", sa.String(50), nullable=False, unique=True),
        sa.Column("type", site_type, nullable=False),
        sa.Column("address", sa.Text()),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "products",
        sa.Column("id", PK, primary_key=True),
        sa.Column("reference", sa.String(50), nullable=False, unique=True),
        sa.Column("description", sa.String(255)),
        sa.Column("qty_per_unit", sa.Integer(), nullable=False),
        sa.Column("supply_risk", supply_risk),
        sa.Column("location", sa.String(20)),
        sa.Column("min_stock", sa.Integer()),
        sa.Column("comment", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("qty_per_unit > 0", name="ck_product_qty_per_unit_pos"),
        sa.CheckConstraint("min_stock IS NULL OR min_stock >= 0", name="ck_product_min_stock_nonneg"),
    )

    op.create_table(
        "suppliers",
        sa.Column("id", PK, primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("contact", sa.String(100)),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(20)),
        sa.Column("website", sa.String(255)),
        sa.Column("address", sa.Text()),
        sa.Column("postal_code", sa.String(10)),
        sa.Column("city", sa.String(100)),
        sa.Column("country", sa.String(100)),
        sa.Column("comment", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "stocks",
        sa.Column("id", PK, primary_key=True),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("site_id", sa.BigInteger(), sa.ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity_new", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quantity_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("product_id", "site_id", name="uq_stock_product_site"),
    )

    op.create_table(
        "stock_movements",
        sa.Column("id", PK, primary_key=True),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("type", movement_type, nullable=False),
        sa.Column("source_site_id", sa.BigInteger(), sa.ForeignKey("sites.id", ondelete="RESTRICT")),
        sa.Column("target_site_id", sa.BigInteger(), sa.ForeignKey("sites.id", ondelete="RESTRICT")),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("condition", stock_condition, nullable=False),
        sa.Column("movement_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("operator", sa.String(50)),
        sa.Column("comment", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_stock_movement_qty_pos"),
    )
    op.create_index("ix_stock_movements_product_id", "stock_movements", ["product_id"])
    op.create_index("ix_stock_movements_product_date", "stock_movements", ["product_id", "movement_date"])

    op.create_table(
        "orders",
        sa.Column("id", PK, primary_key=True),
        sa.Column("order_number", sa.String(32), nullable=False, unique=True),
        sa.Column("supplier_id", sa.BigInteger(), sa.ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("title", sa.String(200)),
        sa.Column("status", order_status, nullable=False),
        sa.Column("order_date", sa.Date(), nullable=False),
        sa.Column("expected_date", sa.Date()),
        sa.Column("received_date", sa.Date()),
        sa.Column("destination_site_id", sa.BigInteger(), sa.ForeignKey("sites.id", ondelete="SET NULL")),
        sa.Column("responsible", sa.String(50)),
        sa.Column("supplier_ref", sa.String(100)),
        sa.Column("comment", sa.Text()),
        sa.Column("created_by", sa.String(100)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "order_items",
        sa.Column("id", PK, primary_key=True),
        sa.Column("order_id", sa.BigInteger(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2)),
        sa.Column("received_qty", sa.Integer()),
        sa.Column("received_date", sa.Date()),
        sa.Column("condition", stock_condition_existing),
        sa.CheckConstraint("quantity > 0", name="ck_order_item_qty_pos"),
        sa.CheckConstraint("unit_price IS NULL OR unit_price >= 0", name="ck_order_item_unit_price_nonneg"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    op.create_table(
        "order_sequences",
        sa.Column("year", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("last_value", sa.Integer(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("order_sequences")
    op.drop_index("ix_order_items_order_id", table_name="order_items")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_index("ix_stock_movements_product_date", table_name="stock_movements")
    op.drop_index("ix_stock_movements_product_id", table_name="stock_movements")
    op.drop_table("stock_movements")
    op.drop_table("stocks")
    op.drop_table("suppliers")
    op.drop_table("products")
    op.drop_table("sites")

    bind = op.get_bind()
    for enum_type in (order_status, stock_condition, movement_type, supply_risk, site_type):
        enum_type.drop(bind, checkfirst=True)
