from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from backend.app.core.config import settings
from backend.app.core.errors import InsufficientStockError, MovementValidationError, NotFoundError
from backend.app.db.models.models_v1 import Stock, StockMovement
from backend.app.db.models.core_types import Condition, MovementType, SupplyRisk
from backend.app.schemas.movement import MovementCreate
from backend.services import ledger
from backend.services.movements import record_movement

WHEN = datetime(2026, 3, 15, 9, 30, tzinfo=timezone.utc)


def _movement(product, type, qty, *, source=None, target=None, condition=Condition.new):
    return MovementCreate(
        product_id=product.id,
        type=type,
        source_site_id=source.id if source else None,
        target_site_id=target.id if target else None,
        quantity=qty,
        condition=condition,
        movement_date=WHEN,
        operator="marie",
    )


def _movement_count(db_session):
    return db_session.execute(select(func.count(StockMovement.id))).scalar_one()


def test_in_movement_creates_ledger_row(db_session, product, warehouse):
    record_movement(db_session, _movement(product, MovementType.inbound, 10, target=warehouse))
    db_session.commit()

    balance = ledger.get_balance(db_session, product.id, warehouse.id)
    assert balance.quantity_new == 10
    assert balance.quantity_used == 0
    assert _movement_count(db_session) == 1


def test_absent_pair_reads_as_zero(db_session, product, warehouse):
    balance = ledger.get_balance(db_session, product.id, warehouse.id)
    assert balance == ledger.LedgerBalance(0, 0)
    assert balance.total == 0


def test_transfer_moves_quantity_between_sites(db_session, product, warehouse, workshop):
    ledger.set_level(db_session, product.id, warehouse.id, Condition.used, 7)
    db_session.commit()

    record_movement(
        db_session,
        _movement(product, MovementType.transfer, 3, source=warehouse, target=workshop, condition=Condition.used),
    )
    db_session.commit()

    assert ledger.get_balance(db_session, product.id, warehouse.id).quantity_used == 4
    assert ledger.get_balance(db_session, product.id, workshop.id).quantity_used == 3
    # seul le compteur occasion bouge
    assert ledger.get_balance(db_session, product.id, workshop.id).quantity_new == 0


def test_out_movement_decrements_source(db_session, product, warehouse):
    ledger.set_level(db_session, product.id, warehouse.id, Condition.new, 5)
    db_session.commit()

    record_movement(db_session, _movement(product, MovementType.outbound, 5, source=warehouse))
    db_session.commit()

    assert ledger.get_balance(db_session, product.id, warehouse.id).quantity_new == 0


def test_out_beyond_stock_is_rejected_without_writes(db_session, product, warehouse):
    ledger.set_level(db_session, product.id, warehouse.id, Condition.new, 2)
    db_session.commit()

    with pytest.raises(InsufficientStockError) as exc:
        record_movement(db_session, _movement(product, MovementType.outbound, 3, source=warehouse))
    db_session.rollback()

    assert exc.value.details["available"] == 2
    assert exc.value.details["requested"] == 3
    assert ledger.get_balance(db_session, product.id, warehouse.id).quantity_new == 2
    assert _movement_count(db_session) == 0


def test_out_on_missing_row_is_rejected(db_session, product, warehouse):
    with pytest.raises(InsufficientStockError):
        record_movement(db_session, _movement(product, MovementType.outbound, 1, source=warehouse))
    db_session.rollback()

    assert db_session.execute(select(func.count(Stock.id))).scalar_one() == 0


def test_negative_stock_allowed_when_configured(db_session, product, warehouse, monkeypatch):
    monkeypatch.setattr(settings, "ALLOW_NEGATIVE_STOCK", True)

    record_movement(db_session, _movement(product, MovementType.outbound, 4, source=warehouse))
    db_session.commit()

    assert ledger.get_balance(db_session, product.id, warehouse.id).quantity_new == -4


def test_inbound_refill_of_negative_counter_is_accepted(db_session, product, warehouse, monkeypatch):
    """
    GIVEN
    - un compteur neuf à -4 (backorder laissé avec ALLOW_NEGATIVE_STOCK)
    - ALLOW_NEGATIVE_STOCK repassé à False

    WHEN
    - une entrée de 2 unités

    THEN
    - l'entrée est acceptée, le compteur remonte à -2
    """
    monkeypatch.setattr(settings, "ALLOW_NEGATIVE_STOCK", True)
    record_movement(db_session, _movement(product, MovementType.outbound, 4, source=warehouse))
    db_session.commit()
    monkeypatch.setattr(settings, "ALLOW_NEGATIVE_STOCK", False)

    record_movement(db_session, _movement(product, MovementType.inbound, 2, target=warehouse))
    db_session.commit()

    assert ledger.get_balance(db_session, product.id, warehouse.id).quantity_new == -2
    assert _movement_count(db_session) == 2


@pytest.mark.parametrize(
    "type, with_source, with_target",
    [
        (MovementType.inbound, True, True),
        (MovementType.inbound, False, False),
        (MovementType.outbound, False, True),
        (MovementType.outbound, True, True),
        (MovementType.transfer, True, False),
        (MovementType.transfer, False, True),
    ],
)
def test_invalid_site_combinations(db_session, product, warehouse, workshop, type, with_source, with_target):
    payload = _movement(
        product,
        type,
        1,
        source=warehouse if with_source else None,
        target=workshop if with_target else None,
    )
    with pytest.raises(MovementValidationError):
        record_movement(db_session, payload)
    assert _movement_count(db_session) == 0


def test_transfer_to_same_site_is_rejected(db_session, product, warehouse):
    with pytest.raises(MovementValidationError):
        record_movement(
            db_session,
            _movement(product, MovementType.transfer, 1, source=warehouse, target=warehouse),
        )


def test_unknown_site_is_not_found(db_session, product, warehouse):
    payload = _movement(product, MovementType.inbound, 1, target=warehouse)
    payload.target_site_id = 999
    with pytest.raises(NotFoundError):
        record_movement(db_session, payload)


def test_set_level_reports_creation(db_session, product, warehouse):
    assert ledger.set_level(db_session, product.id, warehouse.id, Condition.new, 3) is True
    assert ledger.set_level(db_session, product.id, warehouse.id, Condition.used, 2) is False
    db_session.commit()

    assert ledger.get_balance(db_session, product.id, warehouse.id) == ledger.LedgerBalance(3, 2)


def test_stocks_for_product_totals(db_session, product, warehouse, workshop):
    ledger.set_level(db_session, product.id, warehouse.id, Condition.new, 3)
    ledger.set_level(db_session, product.id, workshop.id, Condition.used, 4)
    db_session.commit()

    stocks, totals = ledger.stocks_for_product(db_session, product.id)
    assert [s.site.name for s in stocks] == ["Atelier", "Entrepôt"]
    assert totals == {"total_new": 3, "total_used": 4, "total": 7}


def test_stocks_for_unknown_product(db_session):
    with pytest.raises(NotFoundError):
        ledger.stocks_for_product(db_session, 42)


def test_stock_alerts_only_high_risk_under_threshold(db_session, make_product, warehouse):
    low = make_product("CABLE-USB", qty_per_unit=2, supply_risk=SupplyRisk.high)
    plenty = make_product("ALIM-12V", qty_per_unit=1, supply_risk=SupplyRisk.high)
    medium = make_product("VIS-M4", qty_per_unit=1, supply_risk=SupplyRisk.medium)

    ledger.set_level(db_session, low.id, warehouse.id, Condition.new, 10)
    ledger.set_level(db_session, plenty.id, warehouse.id, Condition.new, 6)
    db_session.commit()

    alerts = ledger.stock_alerts(db_session, threshold=5)

    assert [a["product"].reference for a in alerts] == ["CABLE-USB"]
    assert alerts[0]["total_stock"] == 10
    assert alerts[0]["threshold"] == 10
    assert medium.id not in {a["product"].id for a in alerts}


def test_stock_alerts_sorted_by_total(db_session, make_product, warehouse):
    a = make_product("A-REF", supply_risk=SupplyRisk.high)
    b = make_product("B-REF", supply_risk=SupplyRisk.high)
    ledger.set_level(db_session, a.id, warehouse.id, Condition.new, 4)
    db_session.commit()

    alerts = ledger.stock_alerts(db_session)
    assert [x["product"].reference for x in alerts] == ["B-REF", "A-REF"]
    assert [x["total_stock"] for x in alerts] == [0, 4]
