from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backend.app.api.deps import get_actor, get_db, get_publisher
from backend.app.api.responses import ok, paginated
from backend.app.db.models.core_types import EventAction, MovementType
from backend.app.schemas.movement import MovementCreate, MovementFilters, MovementRead
from backend.services import movements
from backend.services.events import Actor, EventPublisher

router = APIRouter(prefix="/movements")


def movement_filters(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    product_id: int | None = None,
    type: MovementType | None = None,
    site_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    operator: str | None = None,
) -> MovementFilters:
    return MovementFilters(
        page=page,
        limit=limit,
        product_id=product_id,
        type=type,
        site_id=site_id,
        start_date=start_date,
        end_date=end_date,
        operator=operator,
    )


@router.get("")
def list_movements(
    filters: MovementFilters = Depends(movement_filters),
    db: Session = Depends(get_db),
):
    rows, total = movements.list_movements(db, filters)
    return paginated(
        [MovementRead.model_validate(m) for m in rows],
        page=filters.page,
        limit=filters.limit,
        total=total,
    )


@router.get("/{movement_id}")
def get_movement(movement_id: int, db: Session = Depends(get_db)):
    return ok(MovementRead.model_validate(movements.get_movement(db, movement_id)))


@router.post("", status_code=201)
def create_movement(
    payload: MovementCreate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    actor: Actor | None = Depends(get_actor),
):
    # mouvement + ajustements du ledger : un seul commit
    mv = movements.record_movement(db, payload)
    db.commit()

    data = MovementRead.model_validate(movements.get_movement(db, mv.id))
    publisher.publish_crud("stock_movements", EventAction.inserted, data.model_dump(mode="json"), actor)
    return ok(data)
