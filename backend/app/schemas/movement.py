from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from backend.app.db.models.core_types import Condition, MovementType
from backend.app.schemas.reference import ProductRead, SiteRead


class MovementCreate(BaseModel):
    product_id: int
    type: MovementType
    source_site_id: int | None = None
    target_site_id: int | None = None
    quantity: int = Field(gt=0)
    condition: Condition
    movement_date: datetime
    operator: str | None = Field(default=None, max_length=50)
    comment: str | None = None


class MovementFilters(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    product_id: int | None = None
    type: MovementType | None = None
    site_id: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    operator: str | None = None


class MovementRead(BaseModel):
    id: int
    product_id: int
    type: MovementType
    source_site_id: int | None = None
    target_site_id: int | None = None
    quantity: int
    condition: Condition
    movement_date: datetime
    operator: str | None = None
    comment: str | None = None
    created_at: datetime | None = None

    product: ProductRead | None = None
    source_site: SiteRead | None = None
    target_site: SiteRead | None = None

    class Config:
        from_attributes = True
