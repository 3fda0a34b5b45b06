"""
Order fulfillment workflow.

PENDING -> COMPLETED quand toutes les lignes sont réceptionnées (ou par mise
à jour explicite) ; PENDING -> CANCELLED uniquement par mise à jour explicite.
Chaque réception écrit un mouvement IN via le movement recorder, donc le
ledger est ajusté dans la même transaction.

Aucune fonction ici ne commit : l'endpoint possède la transaction.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Iterable

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session, selectinload

from backend.app.core.errors import (
    AlreadyReceivedError,
    DomainError,
    MissingDestinationError,
    NotFoundError,
    OrderLockedError,
    OrderNotPendingError,
)
from backend.app.db.models.models_v1 import (
    Order,
    OrderItem,
    OrderSequence,
    Product,
    Site,
    Supplier,
)
from backend.app.db.models.core_types import Condition, MovementType, OrderStatus
from backend.app.schemas.movement import MovementCreate
from backend.app.schemas.order import (
    OrderCreate,
    OrderFilters,
    OrderUpdate,
    ReceiveAll,
    ReceiveItem,
)
from backend.services.movements import record_movement

logger = logging.getLogger(__name__)

ORDER_PREFIX = "CMD"


# ---------- Numbering ----------
def format_order_number(year: int, seq: int) -> str:
    return f"{ORDER_PREFIX}-{year}-{seq:04d}"


def parse_order_sequence(order_number: str, year: int) -> int | None:
    prefix = f"{ORDER_PREFIX}-{year}-"
    if not order_number.startswith(prefix):
        return None
    tail = order_number[len(prefix):]
    return int(tail) if tail.isdigit() else None


def _highest_existing_sequence(db: Session, year: int) -> int:
    numbers = db.execute(
        select(Order.order_number).where(Order.order_number.like(f"{ORDER_PREFIX}-{year}-%"))
    ).scalars()
    seqs = [s for s in (parse_order_sequence(n, year) for n in numbers) if s is not None]
    return max(seqs, default=0)


def allocate_order_number(db: Session, year: int) -> str:
    """
    Next CMD-<year>-NNNN number.

    The per-year counter row is incremented with a single UPDATE ... RETURNING,
    so two transactions can never read the same value. The first order of a
    year creates the row, seeded from any number already present for that
    year; two concurrent first orders collide on the primary key and the loser
    gets an IntegrityError (the endpoint retries the whole transaction).
    """
    seq = db.execute(
        update(OrderSequence)
        .where(OrderSequence.year == year)
        .values(last_value=OrderSequence.last_value + 1)
        .returning(OrderSequence.last_value)
        .execution_options(synchronize_session=False)
    ).scalar_one_or_none()

    if seq is None:
        seq = _highest_existing_sequence(db, year) + 1
        db.add(OrderSequence(year=year, last_value=seq))
        db.flush()

    return format_order_number(year, seq)


# ---------- Lookups ----------
def _order_query():
    return select(Order).options(
        selectinload(Order.supplier),
        selectinload(Order.destination_site),
        selectinload(Order.items).selectinload(OrderItem.product),
    )


def get_order(db: Session, order_id: int) -> Order:
    order = db.execute(_order_query().where(Order.id == order_id)).scalar_one_or_none()
    if not order:
        raise NotFoundError("Order not found")
    return order


def list_orders(db: Session, filters: OrderFilters) -> tuple[list[Order], int]:
    conditions = []

    if filters.status is not None:
        conditions.append(Order.status == filters.status)
    if filters.supplier_id is not None:
        conditions.append(Order.supplier_id == filters.supplier_id)
    if filters.product_id is not None:
        conditions.append(Order.items.any(OrderItem.product_id == filters.product_id))
    if filters.start_date is not None:
        conditions.append(Order.order_date >= filters.start_date)
    if filters.end_date is not None:
        conditions.append(Order.order_date <= filters.end_date)
    if filters.search:
        pattern = f"%{filters.search}%"
        conditions.append(or_(Order.order_number.ilike(pattern), Order.title.ilike(pattern)))

    total = db.execute(select(func.count(Order.id)).where(*conditions)).scalar_one()

    rows = (
        db.execute(
            _order_query()
            .where(*conditions)
            .order_by(Order.order_date.desc(), Order.id.desc())
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        )
        .scalars()
        .all()
    )
    return list(rows), int(total)


def _ensure_site(db: Session, site_id: int) -> Site:
    site = db.get(Site, site_id)
    if not site:
        raise NotFoundError(f"Site {site_id} not found")
    return site


def _ensure_products(db: Session, product_ids: Iterable[int]) -> None:
    for pid in sorted(set(product_ids)):
        if not db.get(Product, pid):
            raise NotFoundError(f"Product {pid} not found")


# ---------- Create / update / delete ----------
def create_order(db: Session, payload: OrderCreate, *, today: date) -> Order:
    if not db.get(Supplier, payload.supplier_id):
        raise NotFoundError(f"Supplier {payload.supplier_id} not found")
    if payload.destination_site_id is not None:
        _ensure_site(db, payload.destination_site_id)
    _ensure_products(db, (it.product_id for it in payload.items))

    order_number = allocate_order_number(db, today.year)

    order = Order(
        order_number=order_number,
        supplier_id=payload.supplier_id,
        title=payload.title,
        status=OrderStatus.pending,
        order_date=payload.order_date or today,
        expected_date=payload.expected_date,
        destination_site_id=payload.destination_site_id,
        responsible=payload.responsible,
        supplier_ref=payload.supplier_ref,
        comment=payload.comment,
        created_by=payload.created_by,
        items=[
            OrderItem(
                product_id=it.product_id,
                quantity=it.quantity,
                unit_price=it.unit_price,
            )
            for it in payload.items
        ],
    )
    db.add(order)
    db.flush()

    logger.info("Order %s created (%s items)", order_number, len(payload.items))
    return order


def update_order(db: Session, order_id: int, payload: OrderUpdate) -> Order:
    order = get_order(db, order_id)
    changes = payload.model_dump(exclude_unset=True)

    new_status = changes.pop("status", None)
    if new_status is not None and new_status != order.status:
        # COMPLETED et CANCELLED sont terminaux
        if order.status != OrderStatus.pending:
            raise OrderNotPendingError(f"Order {order.order_number} is {order.status.value}")
        order.status = new_status

    if changes.get("destination_site_id") is not None:
        _ensure_site(db, changes["destination_site_id"])

    for field, value in changes.items():
        setattr(order, field, value)

    db.flush()
    return order


def remove_order(db: Session, order_id: int) -> Order:
    order = get_order(db, order_id)

    if order.status == OrderStatus.completed:
        raise OrderLockedError("Cannot delete a completed order")
    if any(i.received_qty is not None and i.received_qty > 0 for i in order.items):
        raise OrderLockedError("Cannot delete an order with received items")

    db.delete(order)
    db.flush()
    logger.info("Order %s deleted", order.order_number)
    return order


# ---------- Receipt ----------
def _resolve_site(db: Session, order: Order, site_id: int | None) -> int:
    resolved = site_id if site_id is not None else order.destination_site_id
    if resolved is None:
        raise MissingDestinationError(f"No destination site for order {order.order_number}")
    _ensure_site(db, resolved)
    return resolved


def _movement_datetime(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def _mark_received(db: Session, item: OrderItem, qty: int, received_date: date, condition: Condition) -> None:
    # conditionné sur received_qty IS NULL : de deux réceptions concurrentes,
    # la seconde ne touche aucune ligne
    result = db.execute(
        update(OrderItem)
        .where(OrderItem.id == item.id)
        .where(OrderItem.received_qty.is_(None))
        .values(received_qty=qty, received_date=received_date, condition=condition)
    )
    if result.rowcount == 0:
        raise AlreadyReceivedError(f"Order item {item.id} has already been received")


def _receive(
    db: Session,
    order: Order,
    item: OrderItem,
    *,
    qty: int,
    received_date: date,
    condition: Condition,
    site_id: int,
    comment: str | None,
) -> None:
    _mark_received(db, item, qty, received_date, condition)
    record_movement(
        db,
        MovementCreate(
            product_id=item.product_id,
            type=MovementType.inbound,
            target_site_id=site_id,
            quantity=qty,
            condition=condition,
            movement_date=_movement_datetime(received_date),
            operator=order.responsible,
            comment=comment or f"Réception commande {order.order_number}",
        ),
    )


def _complete_if_received(db: Session, order: Order, received_date: date) -> None:
    pending = db.execute(
        select(func.count())
        .select_from(OrderItem)
        .where(OrderItem.order_id == order.id)
        .where(OrderItem.received_qty.is_(None))
    ).scalar_one()

    if pending == 0:
        order.status = OrderStatus.completed
        order.received_date = received_date
        db.flush()
        logger.info("Order %s completed", order.order_number)


def receive_item(db: Session, order_id: int, item_id: int, payload: ReceiveItem) -> Order:
    order = get_order(db, order_id)

    item = next((i for i in order.items if i.id == item_id), None)
    if not item:
        raise NotFoundError("Order item not found")
    if item.received_qty is not None:
        raise AlreadyReceivedError(f"Order item {item_id} has already been received")
    if order.status != OrderStatus.pending:
        raise OrderNotPendingError(f"Order {order.order_number} is {order.status.value}")

    site_id = _resolve_site(db, order, payload.site_id)

    _receive(
        db,
        order,
        item,
        qty=payload.received_qty,
        received_date=payload.received_date,
        condition=payload.condition,
        site_id=site_id,
        comment=payload.comment,
    )
    _complete_if_received(db, order, payload.received_date)
    return order


def receive_all(db: Session, order_id: int, payload: ReceiveAll) -> Order:
    order = get_order(db, order_id)

    if order.status != OrderStatus.pending:
        raise OrderNotPendingError(f"Order {order.order_number} is {order.status.value}")

    requested = [line.item_id for line in payload.items]
    if len(requested) != len(set(requested)):
        raise DomainError("Each order item can only be received once per request")

    items_by_id = {i.id: i for i in order.items}
    for line in payload.items:
        item = items_by_id.get(line.item_id)
        if not item:
            raise NotFoundError(f"Order item {line.item_id} not found")
        if item.received_qty is not None:
            raise AlreadyReceivedError(f"Order item {line.item_id} has already been received")

    site_id = _resolve_site(db, order, payload.site_id)

    for line in payload.items:
        _receive(
            db,
            order,
            items_by_id[line.item_id],
            qty=line.received_qty,
            received_date=payload.received_date,
            condition=line.condition,
            site_id=site_id,
            comment=payload.comment,
        )

    _complete_if_received(db, order, payload.received_date)
    return order
