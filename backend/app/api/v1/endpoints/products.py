from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_actor, get_db, get_publisher
from backend.app.api.responses import ok
from backend.app.core.errors import ConflictError, NotFoundError
from backend.app.db.models.core_types import EventAction, SupplyRisk
from backend.app.db.models.models_v1 import OrderItem, Product, Stock, StockMovement
from backend.app.schemas.reference import ProductRead
from backend.services.events import Actor, EventPublisher

router = APIRouter(prefix="/products")


class ProductCreate(BaseModel):
    reference: str = Field(min_length=1, max_length=50)
    description: str | None = Field(default=None, max_length=255)
    qty_per_unit: int = Field(default=1, gt=0)
    supply_risk: SupplyRisk | None = None
    location: str | None = Field(default=None, max_length=20)
    min_stock: int | None = Field(default=None, ge=0)
    comment: str | None = None

    @field_validator("reference")
    @classmethod
    def upper_reference(cls, v: str) -> str:
        return v.strip().upper()


class ProductUpdate(BaseModel):
    reference: str | None = Field(default=None, min_length=1, max_length=50)
    description: str | None = Field(default=None, max_length=255)
    qty_per_unit: int | None = Field(default=None, gt=0)
    supply_risk: SupplyRisk | None = None
    location: str | None = Field(default=None, max_length=20)
    min_stock: int | None = Field(default=None, ge=0)
    comment: str | None = None

    @field_validator("reference")
    @classmethod
    def upper_reference(cls, v: str | None) -> str | None:
        return v.strip().upper() if v is not None else v


def _get_product(db: Session, product_id: int) -> Product:
    p = db.get(Product, product_id)
    if not p:
        raise NotFoundError("Product not found")
    return p


def _reference_taken(db: Session, reference: str, exclude_id: int | None = None) -> bool:
    stmt = select(Product.id).where(Product.reference == reference)
    if exclude_id is not None:
        stmt = stmt.where(Product.id != exclude_id)
    return db.execute(stmt).first() is not None


@router.get("")
def list_products(search: str | None = None, db: Session = Depends(get_db)):
    stmt = select(Product).order_by(Product.reference)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(Product.reference.ilike(pattern) | Product.description.ilike(pattern))
    rows = db.execute(stmt).scalars().all()
    return ok([ProductRead.model_validate(p) for p in rows])


@router.get("/{product_id}")
def get_product(product_id: int, db: Session = Depends(get_db)):
    return ok(ProductRead.model_validate(_get_product(db, product_id)))


@router.post("", status_code=201)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    actor: Actor | None = Depends(get_actor),
):
    if _reference_taken(db, payload.reference):
        raise HTTPException(status_code=409, detail="Reference already exists")

    p = Product(**payload.model_dump())
    db.add(p)
    db.commit()
    db.refresh(p)

    data = ProductRead.model_validate(p)
    publisher.publish_crud("products", EventAction.inserted, data.model_dump(mode="json"), actor)
    return ok(data)


@router.put("/{product_id}")
def update_product(
    product_id: int,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    actor: Actor | None = Depends(get_actor),
):
    p = _get_product(db, product_id)
    changes = payload.model_dump(exclude_unset=True)

    if changes.get("reference") and _reference_taken(db, changes["reference"], exclude_id=p.id):
        raise HTTPException(status_code=409, detail="Reference already exists")

    for field, value in changes.items():
        setattr(p, field, value)
    db.commit()
    db.refresh(p)

    data = ProductRead.model_validate(p)
    publisher.publish_crud("products", EventAction.updated, data.model_dump(mode="json"), actor)
    return ok(data)


@router.delete("/{product_id}")
def delete_product(
    product_id: int,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    actor: Actor | None = Depends(get_actor),
):
    p = _get_product(db, product_id)

    # stock, mouvements et lignes de commande gardent l'historique
    for model in (Stock, StockMovement, OrderItem):
        if db.execute(select(exists().where(model.product_id == p.id))).scalar():
            raise ConflictError(f"Product {p.reference} is still referenced by {model.__tablename__}")

    data = ProductRead.model_validate(p).model_dump(mode="json")
    db.delete(p)
    db.commit()

    publisher.publish_crud("products", EventAction.deleted, data, actor)
    return ok({"id": product_id})
