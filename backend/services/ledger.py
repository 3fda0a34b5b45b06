"""
Stock ledger.

Une ligne ``Stock`` par couple (produit, site), avec deux compteurs :
quantity_new et quantity_used. Toute écriture passe par ``adjust`` (mouvements,
réceptions) ou ``set_level`` (import administratif uniquement).

Ce module ne commit jamais : l'appelant possède la transaction, ce qui garantit
qu'un ajustement n'est jamais visible sans le mouvement qui l'a causé.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from backend.app.core.config import settings
from backend.app.core.errors import InsufficientStockError, NotFoundError
from backend.app.db.models.models_v1 import Product, Site, Stock
from backend.app.db.models.core_types import Condition, SupplyRisk

logger = logging.getLogger(__name__)

# condition -> compteur du ledger
COUNTERS = {
    Condition.new: Stock.quantity_new,
    Condition.used: Stock.quantity_used,
}

DEFAULT_ALERT_THRESHOLD = 5


@dataclass(frozen=True)
class LedgerBalance:
    quantity_new: int = 0
    quantity_used: int = 0

    def of(self, condition: Condition) -> int:
        return getattr(self, COUNTERS[condition].key)

    @property
    def total(self) -> int:
        return self.quantity_new + self.quantity_used


def _find_stock(db: Session, product_id: int, site_id: int, *, lock: bool = False) -> Stock | None:
    stmt = select(Stock).where(Stock.product_id == product_id).where(Stock.site_id == site_id)
    if lock:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalar_one_or_none()


def _get_or_create_stock(db: Session, product_id: int, site_id: int) -> Stock:
    stock = _find_stock(db, product_id, site_id, lock=True)
    if stock:
        return stock

    stock = Stock(
        product_id=product_id,
        site_id=site_id,
        quantity_new=0,
        quantity_used=0,
    )
    db.add(stock)
    db.flush()
    return stock


def get_balance(db: Session, product_id: int, site_id: int) -> LedgerBalance:
    stock = _find_stock(db, product_id, site_id)
    if not stock:
        return LedgerBalance()
    return LedgerBalance(quantity_new=stock.quantity_new, quantity_used=stock.quantity_used)


def adjust(
    db: Session,
    product_id: int,
    site_id: int,
    condition: Condition,
    delta: int,
) -> Stock:
    """
    Apply a signed delta to the counter matching ``condition``.

    The row is locked (FOR UPDATE) or created at zero. A decrement that ends
    below zero is rejected unless ALLOW_NEGATIVE_STOCK is set, in which case it
    is kept as a backorder signal. An increment is always applied.
    """
    counter = COUNTERS[condition]

    stock = _find_stock(db, product_id, site_id, lock=True)
    current = getattr(stock, counter.key) if stock else 0
    new_value = current + delta

    if delta < 0 and new_value < 0:
        if not settings.ALLOW_NEGATIVE_STOCK:
            raise InsufficientStockError(
                f"Insufficient {condition.value} stock (available={current})",
                details={
                    "product_id": product_id,
                    "site_id": site_id,
                    "condition": condition.value,
                    "available": current,
                    "requested": -delta,
                },
            )
        logger.warning(
            "Stock product=%s site=%s %s goes negative (%s -> %s)",
            product_id,
            site_id,
            condition.value,
            current,
            new_value,
        )

    if stock is None:
        stock = _get_or_create_stock(db, product_id, site_id)

    setattr(stock, counter.key, new_value)
    return stock


def set_level(
    db: Session,
    product_id: int,
    site_id: int,
    condition: Condition,
    quantity: int,
) -> bool:
    """Overwrite one counter. Returns True when the ledger row was created."""
    stock = _find_stock(db, product_id, site_id, lock=True)
    created = stock is None
    if created:
        stock = _get_or_create_stock(db, product_id, site_id)

    setattr(stock, COUNTERS[condition].key, quantity)
    return created


# ---------- Read views ----------
def list_stocks(db: Session) -> list[Stock]:
    stmt = (
        select(Stock)
        .join(Product, Product.id == Stock.product_id)
        .join(Site, Site.id == Stock.site_id)
        .options(selectinload(Stock.product), selectinload(Stock.site))
        .order_by(Product.reference, Site.name)
    )
    return list(db.execute(stmt).scalars().all())


def stocks_for_product(db: Session, product_id: int) -> tuple[list[Stock], dict[str, int]]:
    if not db.get(Product, product_id):
        raise NotFoundError("Product not found")

    stocks = list(
        db.execute(
            select(Stock)
            .join(Site, Site.id == Stock.site_id)
            .where(Stock.product_id == product_id)
            .options(selectinload(Stock.site))
            .order_by(Site.name)
        )
        .scalars()
        .all()
    )

    total_new = sum(s.quantity_new for s in stocks)
    total_used = sum(s.quantity_used for s in stocks)
    totals = {"total_new": total_new, "total_used": total_used, "total": total_new + total_used}
    return stocks, totals


def stocks_for_site(db: Session, site_id: int) -> list[Stock]:
    if not db.get(Site, site_id):
        raise NotFoundError("Site not found")

    return list(
        db.execute(
            select(Stock)
            .join(Product, Product.id == Stock.product_id)
            .where(Stock.site_id == site_id)
            .options(selectinload(Stock.product))
            .order_by(Product.reference)
        )
        .scalars()
        .all()
    )


def stock_alerts(db: Session, threshold: int = DEFAULT_ALERT_THRESHOLD) -> list[dict]:
    """
    Produits à risque appro HIGH dont le stock total (neuf + occasion, tous
    sites) est <= qty_per_unit * threshold, du plus bas au plus haut.
    """
    products = db.execute(select(Product).where(Product.supply_risk == SupplyRisk.high)).scalars().all()
    if not products:
        return []

    stocks_by_product: dict[int, list[Stock]] = {p.id: [] for p in products}
    rows = (
        db.execute(
            select(Stock)
            .where(Stock.product_id.in_(stocks_by_product.keys()))
            .options(selectinload(Stock.site))
        )
        .scalars()
        .all()
    )
    for s in rows:
        stocks_by_product[s.product_id].append(s)

    alerts = []
    for p in products:
        stocks = stocks_by_product[p.id]
        total_stock = sum(s.quantity_new + s.quantity_used for s in stocks)
        limit = p.qty_per_unit * threshold
        if total_stock <= limit:
            alerts.append(
                {
                    "product": p,
                    "stocks": stocks,
                    "total_stock": total_stock,
                    "threshold": limit,
                    "is_critical": True,
                }
            )

    alerts.sort(key=lambda a: a["total_stock"])
    return alerts
