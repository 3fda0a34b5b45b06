from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_actor, get_db, get_publisher
from backend.app.api.responses import ok
from backend.app.core.errors import ConflictError, NotFoundError
from backend.app.db.models.core_types import EventAction
from backend.app.db.models.models_v1 import Order, Supplier
from backend.app.schemas.reference import SupplierRead
from backend.services.events import Actor, EventPublisher

router = APIRouter(prefix="/suppliers")


class SupplierCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    contact: str | None = Field(default=None, max_length=100)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=20)
    website: str | None = Field(default=None, max_length=255)
    address: str | None = None
    postal_code: str | None = Field(default=None, max_length=10)
    city: str | None = Field(default=None, max_length=100)
    country: str | None = Field(default=None, max_length=100)
    comment: str | None = None


class SupplierUpdate(SupplierCreate):
    name: str | None = Field(default=None, min_length=1, max_length=100)


def _get_supplier(db: Session, supplier_id: int) -> Supplier:
    s = db.get(Supplier, supplier_id)
    if not s:
        raise NotFoundError("Supplier not found")
    return s


def _name_taken(db: Session, name: str, exclude_id: int | None = None) -> bool:
    stmt = select(Supplier.id).where(Supplier.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Supplier.id != exclude_id)
    return db.execute(stmt).first() is not None


@router.get("")
def list_suppliers(db: Session = Depends(get_db)):
    rows = db.execute(select(Supplier).order_by(Supplier.name)).scalars().all()
    return ok([SupplierRead.model_validate(s) for s in rows])


@router.get("/{supplier_id}")
def get_supplier(supplier_id: int, db: Session = Depends(get_db)):
    return ok(SupplierRead.model_validate(_get_supplier(db, supplier_id)))


@router.post("", status_code=201)
def create_supplier(
    payload: SupplierCreate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    actor: Actor | None = Depends(get_actor),
):
    if _name_taken(db, payload.name):
        raise HTTPException(status_code=409, detail="Supplier already exists")

    s = Supplier(**payload.model_dump())
    db.add(s)
    db.commit()
    db.refresh(s)

    data = SupplierRead.model_validate(s)
    publisher.publish_crud("suppliers", EventAction.inserted, data.model_dump(mode="json"), actor)
    return ok(data)


@router.put("/{supplier_id}")
def update_supplier(
    supplier_id: int,
    payload: SupplierUpdate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    actor: Actor | None = Depends(get_actor),
):
    s = _get_supplier(db, supplier_id)
    changes = payload.model_dump(exclude_unset=True)

    if changes.get("name") and _name_taken(db, changes["name"], exclude_id=s.id):
        raise HTTPException(status_code=409, detail="Supplier already exists")

    for field, value in changes.items():
        setattr(s, field, value)
    db.commit()
    db.refresh(s)

    data = SupplierRead.model_validate(s)
    publisher.publish_crud("suppliers", EventAction.updated, data.model_dump(mode="json"), actor)
    return ok(data)


@router.delete("/{supplier_id}")
def delete_supplier(
    supplier_id: int,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    actor: Actor | None = Depends(get_actor),
):
    s = _get_supplier(db, supplier_id)

    if db.execute(select(exists().where(Order.supplier_id == s.id))).scalar():
        raise ConflictError(f"Supplier {s.name} still has orders")

    data = SupplierRead.model_validate(s).model_dump(mode="json")
    db.delete(s)
    db.commit()

    publisher.publish_crud("suppliers", EventAction.deleted, data, actor)
    return ok({"id": supplier_id})
