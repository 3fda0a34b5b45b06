from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.api.responses import ok
from backend.app.schemas.stock_level import ProductStockRead, StockAlertRead, StockRead
from backend.services import ledger

router = APIRouter(prefix="/stocks")


@router.get("")
def get_stocks(db: Session = Depends(get_db)):
    """
    Stock (READ ONLY)
    - une ligne par couple produit / site, compteurs neuf et occasion
    - seuls les mouvements et les réceptions modifient ces valeurs
    """
    return ok([StockRead.model_validate(s) for s in ledger.list_stocks(db)])


@router.get("/alerts")
def get_stock_alerts(
    threshold: int = Query(default=ledger.DEFAULT_ALERT_THRESHOLD, ge=0),
    db: Session = Depends(get_db),
):
    alerts = ledger.stock_alerts(db, threshold)
    return ok([StockAlertRead.model_validate(a, from_attributes=True) for a in alerts])


@router.get("/product/{product_id}")
def get_product_stocks(product_id: int, db: Session = Depends(get_db)):
    stocks, totals = ledger.stocks_for_product(db, product_id)
    return ok(
        ProductStockRead(
            stocks=[StockRead.model_validate(s) for s in stocks],
            totals=totals,
        )
    )


@router.get("/site/{site_id}")
def get_site_stocks(site_id: int, db: Session = Depends(get_db)):
    return ok([StockRead.model_validate(s) for s in ledger.stocks_for_site(db, site_id)])
