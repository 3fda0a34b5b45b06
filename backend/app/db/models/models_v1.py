from __future__ import annotations

from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.db.base import Base, BigIntPK
from backend.app.db.models.core_types import (
    SiteType,
    SupplyRisk,
    MovementType,
    Condition,
    OrderStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# shared by stock_movements and order_items
CONDITION_ENUM = Enum(Condition, name="stock_condition")


# ---------- REFERENCE DATA ----------
class Site(Base):
    __tablename__ = "sites"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    type: Mapped[SiteType] = mapped_column(Enum(SiteType, name="site_type"), default=SiteType.storage, nullable=False)
    address: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    reference: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(String(255))
    qty_per_unit: Mapped[int] = mapped_column(Integer, default=1, nullable=False)  # qté pour 1 borne
    supply_risk: Mapped[SupplyRisk | None] = mapped_column(Enum(SupplyRisk, name="supply_risk"))
    location: Mapped[str | None] = mapped_column(String(20))
    min_stock: Mapped[int | None] = mapped_column(Integer)
    comment: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("qty_per_unit > 0", name="ck_product_qty_per_unit_pos"),
        CheckConstraint("min_stock IS NULL OR min_stock >= 0", name="ck_product_min_stock_nonneg"),
    )


class Supplier(Base):
    __tablename__ = "suppliers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    contact: Mapped[str | None] = mapped_column(String(100))
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(20))
    website: Mapped[str | None] = mapped_column(String(255))
    address: Mapped[str | None] = mapped_column(Text)
    postal_code: Mapped[str | None] = mapped_column(String(10))
    city: Mapped[str | None] = mapped_column(String(100))
    country: Mapped[str | None] = mapped_column(String(100))
    comment: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ---------- INVENTORY ----------
class Stock(Base):
    """Ledger entry: quantities held for one (product, site) pair."""

    __tablename__ = "stocks"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    site_id: Mapped[int] = mapped_column(ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False)

    quantity_new: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quantity_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    product: Mapped[Product] = relationship()
    site: Mapped[Site] = relationship()

    __table_args__ = (UniqueConstraint("product_id", "site_id", name="uq_stock_product_site"),)


class StockMovement(Base):
    __tablename__ = "stock_movements"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    type: Mapped[MovementType] = mapped_column(Enum(MovementType, name="movement_type"), nullable=False)
    source_site_id: Mapped[int | None] = mapped_column(ForeignKey("sites.id", ondelete="RESTRICT"))
    target_site_id: Mapped[int | None] = mapped_column(ForeignKey("sites.id", ondelete="RESTRICT"))

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    condition: Mapped[Condition] = mapped_column(CONDITION_ENUM, nullable=False)

    movement_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    operator: Mapped[str | None] = mapped_column(String(50))
    comment: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    product: Mapped[Product] = relationship()
    source_site: Mapped[Site | None] = relationship(foreign_keys=[source_site_id])
    target_site: Mapped[Site | None] = relationship(foreign_keys=[target_site_id])

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_movement_qty_pos"),
        Index("ix_stock_movements_product_date", "product_id", "movement_date"),
    )


# ---------- PROCUREMENT ----------
class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)
    title: Mapped[str | None] = mapped_column(String(200))
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status"),
        default=OrderStatus.pending,
        nullable=False,
    )

    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_date: Mapped[date | None] = mapped_column(Date)
    received_date: Mapped[date | None] = mapped_column(Date)
    destination_site_id: Mapped[int | None] = mapped_column(ForeignKey("sites.id", ondelete="SET NULL"))

    responsible: Mapped[str | None] = mapped_column(String(50))
    supplier_ref: Mapped[str | None] = mapped_column(String(100))
    comment: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    supplier: Mapped[Supplier] = relationship()
    destination_site: Mapped[Site | None] = relationship()
    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))

    # set once, on receipt
    received_qty: Mapped[int | None] = mapped_column(Integer)
    received_date: Mapped[date | None] = mapped_column(Date)
    condition: Mapped[Condition | None] = mapped_column(CONDITION_ENUM)

    order: Mapped[Order] = relationship(back_populates="items")
    product: Mapped[Product] = relationship()

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_item_qty_pos"),
        CheckConstraint("unit_price IS NULL OR unit_price >= 0", name="ck_order_item_unit_price_nonneg"),
    )


class OrderSequence(Base):
    """Last order number handed out for a calendar year."""

    __tablename__ = "order_sequences"
    year: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
