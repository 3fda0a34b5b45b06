from __future__ import annotations

from dataclasses import asdict
from datetime import date

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from backend.app.api.deps import get_actor, get_db, get_publisher, get_today
from backend.app.api.responses import ok
from backend.app.api.v1.endpoints.stock_movements import movement_filters
from backend.app.core.errors import DomainError
from backend.app.db.models.core_types import EventAction, OrderStatus
from backend.app.schemas.movement import MovementFilters
from backend.services import spreadsheet
from backend.services.events import Actor, EventPublisher

router = APIRouter()


def _xlsx(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type=spreadsheet.XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/import/excel")
def import_excel(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
    actor: Actor | None = Depends(get_actor),
):
    if not file.filename or not file.filename.lower().endswith((".xlsx", ".xlsm")):
        raise DomainError("Expected an .xlsx workbook")

    result = spreadsheet.import_workbook(db, file.file.read())
    db.commit()

    data = asdict(result)
    publisher.publish_crud("stocks", EventAction.updated, {"import": data}, actor)
    return ok(data)


@router.get("/export/stocks")
def export_stocks(
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    return _xlsx(spreadsheet.export_stocks(db), f"stocks_{today.isoformat()}.xlsx")


@router.get("/export/movements")
def export_movements(
    filters: MovementFilters = Depends(movement_filters),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    return _xlsx(spreadsheet.export_movements(db, filters), f"mouvements_{today.isoformat()}.xlsx")


@router.get("/export/products")
def export_products(
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    return _xlsx(spreadsheet.export_products(db), f"produits_{today.isoformat()}.xlsx")


@router.get("/export/orders")
def export_orders(
    status: OrderStatus | None = None,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    return _xlsx(spreadsheet.export_orders(db, status), f"commandes_{today.isoformat()}.xlsx")


@router.get("/export/all")
def export_all(
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
):
    return _xlsx(spreadsheet.export_all(db), f"export_complet_{today.isoformat()}.xlsx")
