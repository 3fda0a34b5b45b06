from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import exists, or_, select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_actor, get_db, get_publisher
from backend.app.api.responses import ok
from backend.app.core.errors import ConflictError, NotFoundError
from backend.app.db.models.core_types import EventAction, SiteType
from backend.app.db.models.models_v1 import Site, Stock, StockMovement
from backend.app.schemas.reference import SiteRead
from backend.services.events import Actor, EventPublisher

router = APIRouter(prefix="/sites")


class SiteCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    type: SiteType = SiteType.storage
    address: str | None = None
    is_active: bool = True


class SiteUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=50)
    type: SiteType | None = None
    address: str | None = None
    is_active: bool | None = None


def _get_site(db: Session, site_id: int) -> Site:
    s = db.get(Site, site_id)
    if not s:
        raise NotFoundError("Site not found")
    return s


def _name_taken(db: Session, name: str, exclude_id: int | None = None) -> bool:
    stmt = select(Site.id).where(Site.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Site.id != exclude_id)
    return db.execute(stmt).first() is not None


@router.get("")
def list_sites(
    type: SiteType | None = None,
    is_active: bool | None = None,
    db: Session = Depends(get_db),
):
    stmt = select(Site).order_by(Site.name)
    if type is not None:
        stmt = stmt.where(Site.type == type)
    if is_active is not None:
        stmt = stmt.where(Site.is_active == is_active)
    rows = db.execute(stmt).scalars().all()
    return ok([SiteRead.model_validate(s) for s in rows])


@router.get("/{site_id}")
def get_site(site_id: int, db: Session = Depends(get_db)):
    return ok(SiteRead.model_validate(_get_site(db, site_id)))


@router.post("", status_code=201)
def create_site(
    payload: SiteCreate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    actor: Actor | None = Depends(get_actor),
):
    if _name_taken(db, payload.name):
        raise HTTPException(status_code=409, detail="Site already exists")

    s = Site(**payload.model_dump())
    db.add(s)
    db.commit()
    db.refresh(s)

    data = SiteRead.model_validate(s)
    publisher.publish_crud("sites", EventAction.inserted, data.model_dump(mode="json"), actor)
    return ok(data)


@router.put("/{site_id}")
def update_site(
    site_id: int,
    payload: SiteUpdate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    actor: Actor | None = Depends(get_actor),
):
    s = _get_site(db, site_id)
    changes = payload.model_dump(exclude_unset=True)

    if changes.get("name") and _name_taken(db, changes["name"], exclude_id=s.id):
        raise HTTPException(status_code=409, detail="Site already exists")

    for field, value in changes.items():
        setattr(s, field, value)
    db.commit()
    db.refresh(s)

    data = SiteRead.model_validate(s)
    publisher.publish_crud("sites", EventAction.updated, data.model_dump(mode="json"), actor)
    return ok(data)


@router.delete("/{site_id}")
def delete_site(
    site_id: int,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    actor: Actor | None = Depends(get_actor),
):
    s = _get_site(db, site_id)

    referenced = db.execute(
        select(exists().where(Stock.site_id == s.id))
    ).scalar() or db.execute(
        select(
            exists().where(
                or_(StockMovement.source_site_id == s.id, StockMovement.target_site_id == s.id)
            )
        )
    ).scalar()
    if referenced:
        raise ConflictError(f"Site {s.name} still holds stock or movements")

    data = SiteRead.model_validate(s).model_dump(mode="json")
    db.delete(s)
    db.commit()

    publisher.publish_crud("sites", EventAction.deleted, data, actor)
    return ok({"id": site_id})
