from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.api.deps import get_actor, get_db, get_publisher, get_today
from backend.app.api.responses import ok, paginated
from backend.app.core.config import settings
from backend.app.db.models.core_types import EventAction, OrderStatus
from backend.app.schemas.order import (
    OrderCreate,
    OrderFilters,
    OrderRead,
    OrderUpdate,
    ReceiveAll,
    ReceiveItem,
)
from backend.services import orders
from backend.services.events import Actor, EventPublisher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders")


def order_filters(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status: OrderStatus | None = None,
    supplier_id: int | None = None,
    product_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    search: str | None = Query(default=None, max_length=200),
) -> OrderFilters:
    return OrderFilters(
        page=page,
        limit=limit,
        status=status,
        supplier_id=supplier_id,
        product_id=product_id,
        start_date=start_date,
        end_date=end_date,
        search=search,
    )


def _read(db: Session, order_id: int) -> OrderRead:
    return OrderRead.model_validate(orders.get_order(db, order_id))


def _publish(publisher: EventPublisher, action: EventAction, data: OrderRead, actor: Actor | None) -> None:
    publisher.publish_crud("orders", action, data.model_dump(mode="json"), actor)


@router.get("")
def list_orders(
    filters: OrderFilters = Depends(order_filters),
    db: Session = Depends(get_db),
):
    rows, total = orders.list_orders(db, filters)
    return paginated(
        [OrderRead.model_validate(o) for o in rows],
        page=filters.page,
        limit=filters.limit,
        total=total,
    )


@router.get("/{order_id}")
def get_order(order_id: int, db: Session = Depends(get_db)):
    return ok(_read(db, order_id))


@router.post("", status_code=201)
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    publisher: EventPublisher = Depends(get_publisher),
    actor: Actor | None = Depends(get_actor),
):
    # deux créations simultanées peuvent viser le même numéro : on rejoue
    # toute la transaction
    attempts = max(settings.ORDER_NUMBER_RETRIES, 1)
    for attempt in range(1, attempts + 1):
        try:
            order = orders.create_order(db, payload, today=today)
            db.commit()
            break
        except IntegrityError:
            db.rollback()
            if attempt == attempts:
                raise
            logger.warning("Order number conflict, retrying (%s/%s)", attempt, attempts)

    data = _read(db, order.id)
    _publish(publisher, EventAction.inserted, data, actor)
    return ok(data)


@router.put("/{order_id}")
def update_order(
    order_id: int,
    payload: OrderUpdate,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    actor: Actor | None = Depends(get_actor),
):
    orders.update_order(db, order_id, payload)
    db.commit()

    data = _read(db, order_id)
    _publish(publisher, EventAction.updated, data, actor)
    return ok(data)


@router.post("/{order_id}/items/{item_id}/receive")
def receive_order_item(
    order_id: int,
    item_id: int,
    payload: ReceiveItem,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    actor: Actor | None = Depends(get_actor),
):
    orders.receive_item(db, order_id, item_id, payload)
    db.commit()

    data = _read(db, order_id)
    _publish(publisher, EventAction.updated, data, actor)
    return ok(data)


@router.post("/{order_id}/receive-all")
def receive_all_items(
    order_id: int,
    payload: ReceiveAll,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    actor: Actor | None = Depends(get_actor),
):
    orders.receive_all(db, order_id, payload)
    db.commit()

    data = _read(db, order_id)
    _publish(publisher, EventAction.updated, data, actor)
    return ok(data)


@router.delete("/{order_id}")
def delete_order(
    order_id: int,
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    actor: Actor | None = Depends(get_actor),
):
    data = _read(db, order_id)
    orders.remove_order(db, order_id)
    db.commit()

    _publish(publisher, EventAction.deleted, data, actor)
    return ok({"id": order_id})
