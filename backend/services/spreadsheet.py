"""
Import / export Excel.

Contrat de colonnes (vocabulaire des classeurs historiques) :

- stock : "Référence produit" (ou "Produit") puis une colonne par site et
  état, "<Site> : neuf" / "<Site> : occasion". Un préfixe "SI " (stock
  initial) est retiré ; les colonnes "sortie" et "total" sont ignorées.
- produits : Référence produit, Description, Qté 1 borne, Risque appro,
  Emplacement, Commentaire.
- fournisseurs : une colonne "Fournisseur" (feuille REF FOURNISSEURS).
- mouvements : Produit, Mouvement, Source, Cible, Qté, Date, Opérateur,
  Commentaire. Source/Cible au format "<Site> : <neuf|occasion>".
- commandes (export seul) : une ligne par ligne de commande.

Ordre d'import : fournisseurs, produits, stock, mouvements. Les lignes de stock
écrivent le ledger en absolu ; les lignes de mouvement passent par le movement
recorder.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, BinaryIO

import pandas as pd
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from backend.app.core.errors import AppError, DomainError
from backend.app.db.models.models_v1 import Order, OrderItem, Product, Site, Stock, StockMovement, Supplier
from backend.app.db.models.core_types import Condition, MovementType, OrderStatus, SiteType, SupplyRisk
from backend.app.schemas.movement import MovementCreate, MovementFilters
from backend.services import ledger
from backend.services.movements import filtered_query, record_movement

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

PRODUCT_SHEET = "PRODUITS"
SUPPLIER_SHEET = "REF FOURNISSEURS"
STOCK_SHEET = "STOCK INITIAL"
SUMMARY_SHEET = "SYNTHESE"
MOVEMENT_SHEET = "MVT CLASSIK"
ORDER_SHEET = "COMMANDES"

PRODUCT_HEADER = "Référence produit"
DESCRIPTION_HEADER = "Description"
QTY_PER_UNIT_HEADER = "Qté 1 borne"
RISK_HEADER = "Risque appro"
LOCATION_HEADER = "Emplacement"
SUPPLIER_HEADER = "Fournisseur"

CONDITION_LABELS = {
    Condition.new: "neuf",
    Condition.used: "occasion",
}

MOVEMENT_LABELS = {
    MovementType.inbound: "Entrée",
    MovementType.outbound: "Sortie",
    MovementType.transfer: "Déplacement",
}

MOVEMENT_HEADERS = ["Produit", "Mouvement", "Source", "Cible", "Qté", "Date", "Opérateur", "Commentaire"]

RISK_LABELS = {
    SupplyRisk.high: "Élevé",
    SupplyRisk.medium: "Moyen",
    SupplyRisk.low: "Faible",
}

ORDER_STATUS_LABELS = {
    OrderStatus.pending: "En cours",
    OrderStatus.completed: "Terminé",
    OrderStatus.cancelled: "Annulé",
}

ORDER_HEADERS = [
    "N° commande",
    "Date commande",
    "Produit",
    "Fournisseur",
    "Qté",
    "État commande",
    "Destination",
    "Date prévue",
    "Date réception",
    "Qté reçue",
    "Ref fournisseur",
    "Responsable",
    "Commentaire",
]

# Excel serial dates count days from 1899-12-30
EXCEL_EPOCH = datetime(1899, 12, 30)


@dataclass
class SheetResult:
    created: int = 0
    updated: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class ImportResult:
    suppliers: SheetResult = field(default_factory=SheetResult)
    products: SheetResult = field(default_factory=SheetResult)
    sites: SheetResult = field(default_factory=SheetResult)
    stocks: SheetResult = field(default_factory=SheetResult)
    movements: SheetResult = field(default_factory=SheetResult)


@dataclass(frozen=True)
class SiteColumn:
    header: str
    site_name: str
    condition: Condition


# ---------- Field mapping ----------
def site_column_header(site_name: str, condition: Condition) -> str:
    return f"{site_name} : {CONDITION_LABELS[condition]}"


def parse_site_condition(value: Any) -> tuple[str | None, Condition | None]:
    text = _cell_str(value)
    if not text:
        return None, None

    name, _, cond = text.partition(":")
    cond = cond.strip().lower()
    if "occasion" in cond:
        condition = Condition.used
    elif "neuf" in cond:
        condition = Condition.new
    else:
        condition = None
    return name.strip(), condition


def stock_columns(headers: list[Any]) -> list[SiteColumn]:
    columns = []
    for header in headers:
        if header is None:
            continue
        text = str(header)
        if ": neuf" not in text and ": occasion" not in text:
            continue

        site_name, condition = parse_site_condition(text)
        if site_name.startswith("SI "):
            site_name = site_name[3:].strip()
        lowered = site_name.lower()
        if "sortie" in lowered or "total" in lowered:
            continue

        columns.append(SiteColumn(header=header, site_name=site_name, condition=condition))
    return columns


def product_column(headers: list[Any]) -> Any | None:
    for header in headers:
        if header is not None and ("Référence" in str(header) or str(header) == "Produit"):
            return header
    return None


def risk_column(headers: list[Any]) -> Any | None:
    return next((h for h in headers if h is not None and "risque" in str(h).lower()), None)


def movement_type_from_label(label: Any, source: Any = None) -> MovementType:
    text = _cell_str(label)
    if text == "Sortie" or "sortie" in _cell_str(source).lower():
        return MovementType.outbound
    if text in ("Déplacement", "Transfert"):
        return MovementType.transfer
    return MovementType.inbound


def supply_risk_from_label(value: Any) -> SupplyRisk | None:
    text = _cell_str(value).lower()
    if not text:
        return None
    if any(w in text for w in ("élevé", "haut", "high")) or text == "3":
        return SupplyRisk.high
    if any(w in text for w in ("moyen", "medium")) or text == "2":
        return SupplyRisk.medium
    if any(w in text for w in ("faible", "bas", "low")) or text == "1":
        return SupplyRisk.low
    return None


def parse_excel_date(value: Any) -> datetime | None:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return EXCEL_EPOCH + timedelta(days=float(value))
    try:
        parsed = pd.to_datetime(str(value), dayfirst=True)
    except (ValueError, TypeError):
        return None
    return None if pd.isna(parsed) else parsed.to_pydatetime()


def _cell_str(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str) and pd.isna(value):
        return ""
    return str(value).strip()


def _cell_int(value: Any) -> int:
    text = _cell_str(value)
    if not text:
        return 0
    try:
        return int(float(text))
    except ValueError:
        return 0


def _first(row: pd.Series, *names: str) -> str:
    for name in names:
        text = _cell_str(row.get(name))
        if text:
            return text
    return ""


def _find_sheet(sheets: dict[str, pd.DataFrame], partial: str) -> str | None:
    return next((name for name in sheets if partial.lower() in name.lower()), None)


# ---------- Import ----------
def _product_by_reference(db: Session, reference: str) -> Product | None:
    return db.execute(select(Product).where(Product.reference == reference)).scalar_one_or_none()


def _site_by_name(db: Session, name: str) -> Site | None:
    return db.execute(select(Site).where(Site.name == name)).scalar_one_or_none()


def _get_or_create_site(db: Session, name: str, result: ImportResult) -> Site:
    site = _site_by_name(db, name)
    if site:
        return site
    site = Site(name=name, type=SiteType.storage, is_active=True)
    db.add(site)
    db.flush()
    result.sites.created += 1
    return site


def _import_supplier_sheet(db: Session, df: pd.DataFrame, result: ImportResult) -> None:
    if SUPPLIER_HEADER not in df.columns:
        result.suppliers.errors.append(f'Supplier sheet has no "{SUPPLIER_HEADER}" column')
        return

    seen = set()
    for value in df[SUPPLIER_HEADER]:
        name = _cell_str(value)[:100]
        if not name or name in seen:
            continue
        seen.add(name)

        existing = db.execute(select(Supplier).where(Supplier.name == name)).scalar_one_or_none()
        if existing:
            result.suppliers.updated += 1
            continue
        db.add(Supplier(name=name))
        db.flush()
        result.suppliers.created += 1


def _import_product_sheet(db: Session, df: pd.DataFrame, result: ImportResult) -> None:
    """
    Upsert products by reference.

    Empty cells leave the existing value untouched; a new product gets
    qty_per_unit = 1 when the column is empty.
    """
    for index, row in df.iterrows():
        reference = _first(row, PRODUCT_HEADER, "Référence", "Produit").upper()
        if not reference:
            continue

        label = f'Produit "{reference}" (ligne {index + 2})'
        if len(reference) > 50:
            result.products.errors.append(f"{label}: reference too long")
            continue

        qty_text = _first(row, QTY_PER_UNIT_HEADER, "Qté")
        qty_per_unit = _cell_int(qty_text) if qty_text else None
        if qty_per_unit is not None and qty_per_unit <= 0:
            result.products.errors.append(f"{label}: invalid quantity per unit")
            continue

        values = {
            "description": _first(row, DESCRIPTION_HEADER, "Désignation")[:255] or None,
            "qty_per_unit": qty_per_unit,
            "supply_risk": supply_risk_from_label(_first(row, RISK_HEADER, "Risque")),
            "location": _first(row, LOCATION_HEADER, "Location")[:20] or None,
            "comment": _first(row, "Commentaire", "Notes") or None,
        }

        product = _product_by_reference(db, reference)
        if product:
            for key, value in values.items():
                if value is not None:
                    setattr(product, key, value)
            result.products.updated += 1
            continue

        if values["qty_per_unit"] is None:
            values["qty_per_unit"] = 1
        db.add(Product(reference=reference, **values))
        db.flush()
        result.products.created += 1


def _import_stock_sheet(db: Session, df: pd.DataFrame, result: ImportResult) -> None:
    headers = list(df.columns)
    ref_col = product_column(headers)
    risk_col = risk_column(headers)
    columns = stock_columns(headers)
    if ref_col is None or not columns:
        result.stocks.errors.append("Stock sheet has no product or site columns")
        return

    for _, row in df.iterrows():
        reference = _cell_str(row[ref_col]).upper()
        if not reference:
            continue

        product = _product_by_reference(db, reference)
        if not product:
            result.stocks.errors.append(f'Stock "{reference}": product not found')
            continue

        if risk_col is not None:
            risk = supply_risk_from_label(row[risk_col])
            if risk is not None:
                product.supply_risk = risk

        for col in columns:
            quantity = _cell_int(row[col.header])
            if quantity == 0:
                continue
            if quantity < 0:
                result.stocks.errors.append(f'Stock "{reference}" @ "{col.site_name}": negative quantity')
                continue

            site = _get_or_create_site(db, col.site_name, result)
            if ledger.set_level(db, product.id, site.id, col.condition, quantity):
                result.stocks.created += 1
            else:
                result.stocks.updated += 1


def _import_movement_sheet(db: Session, df: pd.DataFrame, result: ImportResult) -> None:
    for index, row in df.iterrows():
        reference = _cell_str(row.get("Produit")).upper()
        quantity = _cell_int(row.get("Qté"))
        if not reference or not quantity:
            continue

        label = f'Mouvement "{reference}" (ligne {index + 2})'
        product = _product_by_reference(db, reference)
        if not product:
            result.movements.errors.append(f"{label}: product not found")
            continue

        source_name, source_condition = parse_site_condition(row.get("Source"))
        target_name, target_condition = parse_site_condition(row.get("Cible"))
        movement_type = movement_type_from_label(row.get("Mouvement"), source_name)

        # OUT n'a pas de cible, IN pas de source
        if movement_type == MovementType.outbound:
            target_name = None
        elif movement_type == MovementType.inbound:
            source_name = None

        source = _site_by_name(db, source_name) if source_name else None
        target = _site_by_name(db, target_name) if target_name else None
        if source_name and not source:
            result.movements.errors.append(f'{label}: unknown site "{source_name}"')
            continue
        if target_name and not target:
            result.movements.errors.append(f'{label}: unknown site "{target_name}"')
            continue

        movement_date = parse_excel_date(row.get("Date")) or datetime.now(timezone.utc)
        operator = _cell_str(row.get("Opérateur")) or _cell_str(row.get("Responsable")) or None
        comment = _cell_str(row.get("Commentaire")) or _cell_str(row.get("Notes")) or None

        try:
            payload = MovementCreate(
                product_id=product.id,
                type=movement_type,
                source_site_id=source.id if source else None,
                target_site_id=target.id if target else None,
                quantity=quantity,
                condition=source_condition or target_condition or Condition.new,
                movement_date=movement_date,
                operator=operator[:50] if operator else None,
                comment=comment,
            )
            record_movement(db, payload)
        except ValidationError as e:
            result.movements.errors.append(f"{label}: {e.errors()[0]['msg']}")
            continue
        except AppError as e:
            result.movements.errors.append(f"{label}: {e.message}")
            continue

        result.movements.created += 1


def import_workbook(db: Session, source: bytes | BinaryIO) -> ImportResult:
    """
    Load the supplier sheet, the PRODUITS (or SYNTHESE) sheet, the STOCK INITIAL
    (or SYNTHESE) sheet, then the MVT sheet.

    Rejected rows are reported in the result and skipped; the caller commits
    the rest.
    """
    content = source if isinstance(source, bytes) else source.read()
    try:
        sheets = pd.read_excel(io.BytesIO(content), sheet_name=None, dtype=object, engine="openpyxl")
    except (ValueError, OSError) as e:
        raise DomainError(f"Unreadable workbook: {e}") from e

    result = ImportResult()

    supplier_sheet = _find_sheet(sheets, "FOURNISSEUR")
    if supplier_sheet:
        _import_supplier_sheet(db, sheets[supplier_sheet], result)

    product_sheet = _find_sheet(sheets, PRODUCT_SHEET) or _find_sheet(sheets, SUMMARY_SHEET)
    if product_sheet:
        _import_product_sheet(db, sheets[product_sheet], result)

    stock_sheet = _find_sheet(sheets, STOCK_SHEET) or _find_sheet(sheets, SUMMARY_SHEET)
    if stock_sheet:
        _import_stock_sheet(db, sheets[stock_sheet], result)

    movement_sheet = _find_sheet(sheets, "MVT")
    if movement_sheet:
        _import_movement_sheet(db, sheets[movement_sheet], result)

    logger.info(
        "Workbook import: %s suppliers, %s products created / %s updated, "
        "stocks %s created / %s updated, %s movements, %s errors",
        result.suppliers.created,
        result.products.created,
        result.products.updated,
        result.stocks.created,
        result.stocks.updated,
        result.movements.created,
        sum(len(r.errors) for r in (result.suppliers, result.products, result.stocks, result.movements)),
    )
    return result


# ---------- Export ----------
def _write_xlsx(frames: dict[str, pd.DataFrame]) -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for sheet_name, df in frames.items():
            df.to_excel(writer, sheet_name=sheet_name, index=False)
    return buffer.getvalue()


def _to_xlsx(df: pd.DataFrame, sheet_name: str) -> bytes:
    return _write_xlsx({sheet_name: df})


def _naive(dt: datetime | None) -> datetime | None:
    # openpyxl refuse les datetimes avec tz
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _storage_sites(db: Session) -> list[Site]:
    return db.execute(
        select(Site).where(Site.type == SiteType.storage).order_by(Site.name)
    ).scalars().all()


def _balances(db: Session) -> dict[tuple[int, int], ledger.LedgerBalance]:
    return {
        (s.product_id, s.site_id): ledger.LedgerBalance(quantity_new=s.quantity_new, quantity_used=s.quantity_used)
        for s in db.execute(select(Stock)).scalars()
    }


def _site_headers(sites: list[Site]) -> list[str]:
    return [site_column_header(site.name, c) for site in sites for c in CONDITION_LABELS]


def stock_frame(db: Session) -> pd.DataFrame:
    sites = _storage_sites(db)
    products = db.execute(select(Product).order_by(Product.reference)).scalars().all()
    balances = _balances(db)

    headers = [PRODUCT_HEADER, DESCRIPTION_HEADER] + _site_headers(sites)

    rows = []
    for p in products:
        row = {PRODUCT_HEADER: p.reference, DESCRIPTION_HEADER: p.description}
        for site in sites:
            balance = balances.get((p.id, site.id), ledger.LedgerBalance())
            for condition in CONDITION_LABELS:
                row[site_column_header(site.name, condition)] = balance.of(condition)
        rows.append(row)

    return pd.DataFrame(rows, columns=headers)


def export_stocks(db: Session) -> bytes:
    return _to_xlsx(stock_frame(db), STOCK_SHEET)


def product_frame(db: Session) -> pd.DataFrame:
    """
    Product catalogue with stock per storage site, totals and the number of
    kiosks the total stock can build (total // qty_per_unit).
    """
    sites = _storage_sites(db)
    products = db.execute(select(Product).order_by(Product.reference)).scalars().all()
    balances = _balances(db)

    headers = [PRODUCT_HEADER, DESCRIPTION_HEADER, QTY_PER_UNIT_HEADER, RISK_HEADER, LOCATION_HEADER]
    headers += _site_headers(sites)
    headers += ["Stock total neuf", "Stock total occasion", "Stock total", "Bornes possibles"]

    rows = []
    for p in products:
        row = {
            PRODUCT_HEADER: p.reference,
            DESCRIPTION_HEADER: p.description,
            QTY_PER_UNIT_HEADER: p.qty_per_unit,
            RISK_HEADER: RISK_LABELS.get(p.supply_risk),
            LOCATION_HEADER: p.location,
        }
        total_new = total_used = 0
        for site in sites:
            balance = balances.get((p.id, site.id), ledger.LedgerBalance())
            for condition in CONDITION_LABELS:
                row[site_column_header(site.name, condition)] = balance.of(condition)
            total_new += balance.quantity_new
            total_used += balance.quantity_used

        totals = ledger.LedgerBalance(quantity_new=total_new, quantity_used=total_used)
        row["Stock total neuf"] = totals.quantity_new
        row["Stock total occasion"] = totals.quantity_used
        row["Stock total"] = totals.total
        row["Bornes possibles"] = max(totals.total, 0) // p.qty_per_unit
        rows.append(row)

    return pd.DataFrame(rows, columns=headers)


def export_products(db: Session) -> bytes:
    return _to_xlsx(product_frame(db), SUMMARY_SHEET)


def supplier_frame(db: Session) -> pd.DataFrame:
    suppliers = db.execute(select(Supplier).order_by(Supplier.name)).scalars().all()
    records = [
        {
            SUPPLIER_HEADER: s.name,
            "Contact": s.contact,
            "Email": s.email,
            "Téléphone": s.phone,
            "Ville": s.city,
            "Pays": s.country,
        }
        for s in suppliers
    ]
    return pd.DataFrame(records, columns=[SUPPLIER_HEADER, "Contact", "Email", "Téléphone", "Ville", "Pays"])


def _site_cell(site: Site | None, condition: Condition) -> str | None:
    return site_column_header(site.name, condition) if site else None


def movement_frame(db: Session, filters: MovementFilters) -> pd.DataFrame:
    rows = (
        db.execute(filtered_query(filters).order_by(StockMovement.movement_date, StockMovement.id))
        .scalars()
        .all()
    )
    records = [
        {
            "Produit": mv.product.reference,
            "Mouvement": MOVEMENT_LABELS[mv.type],
            "Source": _site_cell(mv.source_site, mv.condition),
            "Cible": _site_cell(mv.target_site, mv.condition),
            "Qté": mv.quantity,
            "Date": _naive(mv.movement_date),
            "Opérateur": mv.operator,
            "Commentaire": mv.comment,
        }
        for mv in rows
    ]
    return pd.DataFrame(records, columns=MOVEMENT_HEADERS)


def export_movements(db: Session, filters: MovementFilters) -> bytes:
    return _to_xlsx(movement_frame(db, filters), MOVEMENT_SHEET)


def order_frame(db: Session, status: OrderStatus | None = None) -> pd.DataFrame:
    """One row per order item, oldest order first."""
    stmt = (
        select(OrderItem)
        .join(Order, Order.id == OrderItem.order_id)
        .options(
            selectinload(OrderItem.product),
            selectinload(OrderItem.order).selectinload(Order.supplier),
            selectinload(OrderItem.order).selectinload(Order.destination_site),
        )
        .order_by(Order.order_date, Order.id, OrderItem.id)
    )
    if status is not None:
        stmt = stmt.where(Order.status == status)

    records = []
    for item in db.execute(stmt).scalars():
        order = item.order
        records.append(
            {
                "N° commande": order.order_number,
                "Date commande": order.order_date,
                "Produit": item.product.reference,
                "Fournisseur": order.supplier.name,
                "Qté": item.quantity,
                "État commande": ORDER_STATUS_LABELS[order.status],
                "Destination": order.destination_site.name if order.destination_site else None,
                "Date prévue": order.expected_date,
                "Date réception": item.received_date,
                "Qté reçue": item.received_qty,
                "Ref fournisseur": order.supplier_ref,
                "Responsable": order.responsible,
                "Commentaire": order.comment,
            }
        )
    return pd.DataFrame(records, columns=ORDER_HEADERS)


def export_orders(db: Session, status: OrderStatus | None = None) -> bytes:
    return _to_xlsx(order_frame(db, status), ORDER_SHEET)


def export_all(db: Session) -> bytes:
    """Full workbook, readable back by ``import_workbook``."""
    return _write_xlsx(
        {
            SUMMARY_SHEET: product_frame(db),
            SUPPLIER_SHEET: supplier_frame(db),
            STOCK_SHEET: stock_frame(db),
            MOVEMENT_SHEET: movement_frame(db, MovementFilters()),
            ORDER_SHEET: order_frame(db),
        }
    )
