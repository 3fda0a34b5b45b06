"""
Movement recorder.

Un mouvement est immuable. L'enregistrer applique exactement un ajustement du
ledger par site référencé : source -quantité, cible +quantité, dans la
transaction de l'appelant.
"""

from __future__ import annotations

import logging

from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import Session, selectinload

from backend.app.core.errors import MovementValidationError, NotFoundError
from backend.app.db.models.models_v1 import Product, Site, StockMovement
from backend.app.db.models.core_types import MovementType
from backend.app.schemas.movement import MovementCreate, MovementFilters
from backend.services import ledger

logger = logging.getLogger(__name__)

# type -> (source requise, cible requise)
SITE_RULES = {
    MovementType.inbound: (False, True),
    MovementType.outbound: (True, False),
    MovementType.transfer: (True, True),
}


def validate_movement(payload: MovementCreate) -> None:
    needs_source, needs_target = SITE_RULES[payload.type]
    has_source = payload.source_site_id is not None
    has_target = payload.target_site_id is not None

    if has_source != needs_source or has_target != needs_target:
        raise MovementValidationError(
            f"Invalid source/target sites for a {payload.type.value} movement",
            details={
                "type": payload.type.value,
                "source_required": needs_source,
                "target_required": needs_target,
            },
        )

    if payload.type == MovementType.transfer and payload.source_site_id == payload.target_site_id:
        raise MovementValidationError("source_site_id and target_site_id must differ")


def _ensure_references(db: Session, payload: MovementCreate) -> None:
    if not db.get(Product, payload.product_id):
        raise NotFoundError(f"Product {payload.product_id} not found")
    for site_id in (payload.source_site_id, payload.target_site_id):
        if site_id is not None and not db.get(Site, site_id):
            raise NotFoundError(f"Site {site_id} not found")


def record_movement(db: Session, payload: MovementCreate) -> StockMovement:
    """
    Validate, then write the movement and its ledger adjustments.

    Nothing is committed here. Any error leaves the session without a pending
    movement, so the caller's rollback (or a per-row skip during import)
    never observes a movement without its adjustments.
    """
    validate_movement(payload)
    _ensure_references(db, payload)

    # sortie d'abord : c'est le seul ajustement qui peut être refusé
    if payload.source_site_id is not None:
        ledger.adjust(db, payload.product_id, payload.source_site_id, payload.condition, -payload.quantity)
    if payload.target_site_id is not None:
        ledger.adjust(db, payload.product_id, payload.target_site_id, payload.condition, payload.quantity)

    mv = StockMovement(
        product_id=payload.product_id,
        type=payload.type,
        source_site_id=payload.source_site_id,
        target_site_id=payload.target_site_id,
        quantity=payload.quantity,
        condition=payload.condition,
        movement_date=payload.movement_date,
        operator=payload.operator,
        comment=payload.comment,
    )
    db.add(mv)
    db.flush()

    logger.info(
        "Movement %s recorded: %s product=%s qty=%s %s source=%s target=%s",
        mv.id,
        payload.type.value,
        payload.product_id,
        payload.quantity,
        payload.condition.value,
        payload.source_site_id,
        payload.target_site_id,
    )
    return mv


def get_movement(db: Session, movement_id: int) -> StockMovement:
    mv = db.execute(
        select(StockMovement)
        .where(StockMovement.id == movement_id)
        .options(
            selectinload(StockMovement.product),
            selectinload(StockMovement.source_site),
            selectinload(StockMovement.target_site),
        )
    ).scalar_one_or_none()
    if not mv:
        raise NotFoundError("Movement not found")
    return mv


def filtered_query(filters: MovementFilters) -> Select:
    stmt = select(StockMovement)

    if filters.product_id is not None:
        stmt = stmt.where(StockMovement.product_id == filters.product_id)
    if filters.type is not None:
        stmt = stmt.where(StockMovement.type == filters.type)
    if filters.operator:
        stmt = stmt.where(StockMovement.operator.ilike(f"%{filters.operator}%"))
    if filters.site_id is not None:
        stmt = stmt.where(
            or_(
                StockMovement.source_site_id == filters.site_id,
                StockMovement.target_site_id == filters.site_id,
            )
        )
    if filters.start_date is not None:
        stmt = stmt.where(StockMovement.movement_date >= filters.start_date)
    if filters.end_date is not None:
        stmt = stmt.where(StockMovement.movement_date <= filters.end_date)

    return stmt


def list_movements(db: Session, filters: MovementFilters) -> tuple[list[StockMovement], int]:
    stmt = filtered_query(filters)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()

    rows = (
        db.execute(
            stmt.options(
                selectinload(StockMovement.product),
                selectinload(StockMovement.source_site),
                selectinload(StockMovement.target_site),
            )
            .order_by(StockMovement.movement_date.desc(), StockMovement.id.desc())
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        )
        .scalars()
        .all()
    )
    return list(rows), int(total)
