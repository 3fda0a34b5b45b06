from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from backend.app.db.models.core_types import SiteType, SupplyRisk


class SiteRead(BaseModel):
    id: int
    name: str
    type: SiteType
    address: str | None = None
    is_active: bool

    class Config:
        from_attributes = True


class ProductRead(BaseModel):
    id: int
    reference: str
    description: str | None = None
    qty_per_unit: int
    supply_risk: SupplyRisk | None = None
    location: str | None = None
    min_stock: int | None = None
    comment: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class SupplierRead(BaseModel):
    id: int
    name: str
    contact: str | None = None
    email: str | None = None
    phone: str | None = None
    website: str | None = None
    address: str | None = None
    postal_code: str | None = None
    city: str | None = None
    country: str | None = None
    comment: str | None = None

    class Config:
        from_attributes = True
