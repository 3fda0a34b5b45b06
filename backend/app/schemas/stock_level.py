from pydantic import BaseModel

from backend.app.schemas.reference import ProductRead, SiteRead


class StockRead(BaseModel):
    id: int
    product_id: int
    site_id: int

    quantity_new: int
    quantity_used: int

    product: ProductRead | None = None
    site: SiteRead | None = None

    class Config:
        from_attributes = True


class StockTotals(BaseModel):
    total_new: int
    total_used: int
    total: int


class ProductStockRead(BaseModel):
    stocks: list[StockRead]
    totals: StockTotals


class StockAlertRead(BaseModel):
    product: ProductRead
    stocks: list[StockRead]
    total_stock: int
    threshold: int
    is_critical: bool
