from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from backend.app.db.models.core_types import Condition, OrderStatus
from backend.app.schemas.reference import ProductRead, SiteRead, SupplierRead


# ---------- Input ----------
class OrderItemCreate(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, gt=0)


class OrderCreate(BaseModel):
    supplier_id: int
    title: str | None = Field(default=None, max_length=200)
    order_date: date | None = None  # defaults to today
    expected_date: date | None = None
    destination_site_id: int | None = None
    responsible: str | None = Field(default=None, max_length=50)
    supplier_ref: str | None = Field(default=None, max_length=100)
    comment: str | None = None
    created_by: str | None = Field(default=None, max_length=100)
    items: list[OrderItemCreate] = Field(min_length=1)


class OrderUpdate(BaseModel):
    title: str | None = Field(default=None, max_length=200)
    order_date: date | None = None
    expected_date: date | None = None
    destination_site_id: int | None = None
    responsible: str | None = Field(default=None, max_length=50)
    supplier_ref: str | None = Field(default=None, max_length=100)
    comment: str | None = None
    status: OrderStatus | None = None

    @field_validator("order_date")
    @classmethod
    def order_date_not_null(cls, v: date | None) -> date:
        # absent = inchangé ; null n'est pas une valeur
        if v is None:
            raise ValueError("order_date cannot be null")
        return v


class ReceiveItem(BaseModel):
    received_date: date
    received_qty: int = Field(gt=0)
    condition: Condition = Condition.new
    site_id: int | None = None
    comment: str | None = None


class ReceiveAllLine(BaseModel):
    item_id: int
    received_qty: int = Field(gt=0)
    condition: Condition = Condition.new


class ReceiveAll(BaseModel):
    received_date: date
    site_id: int | None = None
    comment: str | None = None
    items: list[ReceiveAllLine] = Field(min_length=1)


class OrderFilters(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    status: OrderStatus | None = None
    supplier_id: int | None = None
    product_id: int | None = None
    start_date: date | None = None
    end_date: date | None = None
    search: str | None = Field(default=None, max_length=200)


# ---------- Output ----------
class OrderItemRead(BaseModel):
    id: int
    product_id: int
    quantity: int
    unit_price: Decimal | None = None
    received_qty: int | None = None
    received_date: date | None = None
    condition: Condition | None = None

    product: ProductRead | None = None

    class Config:
        from_attributes = True


class OrderRead(BaseModel):
    id: int
    order_number: str
    supplier_id: int
    title: str | None = None
    status: OrderStatus
    order_date: date
    expected_date: date | None = None
    received_date: date | None = None
    destination_site_id: int | None = None
    responsible: str | None = None
    supplier_ref: str | None = None
    comment: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None

    supplier: SupplierRead | None = None
    destination_site: SiteRead | None = None
    items: list[OrderItemRead] = Field(default_factory=list)

    class Config:
        from_attributes = True
