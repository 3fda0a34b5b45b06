from backend.app.core.config import settings
from backend.app.db.models.core_types import Condition, EventAction
from backend.services import ledger, orders


def _order_payload(supplier, product, qty=10, **extra):
    return {
        "supplier_id": supplier.id,
        "title": "Réassort",
        "items": [{"product_id": product.id, "quantity": qty, "unit_price": "12.50"}],
        **extra,
    }


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "data": {"status": "ok"}}


# ---------- end-to-end ----------
def test_order_receipt_end_to_end(client, db_session, supplier, product, warehouse):
    """
    GIVEN
    - une commande d'une ligne (10 unités), sans site de destination

    WHEN
    - réception de la ligne sur un site explicite, en neuf

    THEN
    - la ligne porte la quantité reçue
    - un mouvement IN vers ce site est créé
    - le ledger neuf du site augmente de 10
    - la commande passe COMPLETED
    """
    resp = client.post("/api/orders", json=_order_payload(supplier, product))
    assert resp.status_code == 201
    order = resp.json()["data"]
    assert order["order_number"] == "CMD-2026-0001"
    assert order["order_date"] == "2026-03-15"
    assert order["status"] == "PENDING"
    item_id = order["items"][0]["id"]

    resp = client.post(
        f"/api/orders/{order['id']}/items/{item_id}/receive",
        json={"received_date": "2026-03-16", "received_qty": 10, "condition": "NEW", "site_id": warehouse.id},
    )
    assert resp.status_code == 200
    received = resp.json()["data"]
    assert received["status"] == "COMPLETED"
    assert received["received_date"] == "2026-03-16"
    assert received["items"][0]["received_qty"] == 10

    movements = client.get("/api/movements", params={"product_id": product.id}).json()
    assert movements["pagination"]["total"] == 1
    mv = movements["data"][0]
    assert (mv["type"], mv["target_site_id"], mv["quantity"], mv["condition"]) == ("IN", warehouse.id, 10, "NEW")
    assert mv["source_site_id"] is None

    assert ledger.get_balance(db_session, product.id, warehouse.id).quantity_new == 10


def test_transfer_end_to_end(client, db_session, product, warehouse, workshop):
    ledger.set_level(db_session, product.id, warehouse.id, Condition.used, 5)
    db_session.commit()

    resp = client.post(
        "/api/movements",
        json={
            "product_id": product.id,
            "type": "TRANSFER",
            "source_site_id": warehouse.id,
            "target_site_id": workshop.id,
            "quantity": 5,
            "condition": "USED",
            "movement_date": "2026-03-15T10:00:00Z",
        },
    )
    assert resp.status_code == 201

    stocks = client.get(f"/api/stocks/product/{product.id}").json()["data"]
    by_site = {s["site_id"]: s for s in stocks["stocks"]}
    assert by_site[warehouse.id]["quantity_used"] == 0
    assert by_site[workshop.id]["quantity_used"] == 5
    assert stocks["totals"] == {"total_new": 0, "total_used": 5, "total": 5}


def test_double_receipt_end_to_end(client, db_session, supplier, product, warehouse):
    order = client.post(
        "/api/orders",
        json=_order_payload(supplier, product, destination_site_id=warehouse.id),
    ).json()["data"]
    url = f"/api/orders/{order['id']}/items/{order['items'][0]['id']}/receive"
    body = {"received_date": "2026-03-16", "received_qty": 10}

    assert client.post(url, json=body).status_code == 200
    resp = client.post(url, json=body)

    assert resp.status_code == 400
    assert resp.json()["success"] is False
    assert ledger.get_balance(db_session, product.id, warehouse.id).quantity_new == 10


# ---------- envelope / errors ----------
def test_validation_error_envelope(client, product, warehouse):
    resp = client.post(
        "/api/movements",
        json={
            "product_id": product.id,
            "type": "IN",
            "target_site_id": warehouse.id,
            "quantity": 0,
            "condition": "NEW",
            "movement_date": "2026-03-15T10:00:00Z",
        },
    )
    body = resp.json()
    assert resp.status_code == 400
    assert body["success"] is False
    assert body["error"] == "Validation error"
    assert body["details"][0]["field"] == "quantity"


def test_insufficient_stock_is_a_client_error(client, product, warehouse):
    resp = client.post(
        "/api/movements",
        json={
            "product_id": product.id,
            "type": "OUT",
            "source_site_id": warehouse.id,
            "quantity": 3,
            "condition": "NEW",
            "movement_date": "2026-03-15T10:00:00Z",
        },
    )
    assert resp.status_code == 400
    assert resp.json()["details"]["available"] == 0


def test_unknown_order_is_404(client):
    resp = client.get("/api/orders/12345")
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Order not found"}


def test_duplicate_product_reference_conflicts(client):
    assert client.post("/api/products", json={"reference": "ecran-22"}).status_code == 201
    resp = client.post("/api/products", json={"reference": "ECRAN-22"})
    assert resp.status_code == 409
    assert resp.json()["success"] is False


def test_referenced_product_cannot_be_deleted(client, db_session, product, warehouse):
    ledger.set_level(db_session, product.id, warehouse.id, Condition.new, 1)
    db_session.commit()

    resp = client.delete(f"/api/products/{product.id}")
    assert resp.status_code == 409


def test_supplier_with_orders_cannot_be_deleted(client, supplier, product):
    client.post("/api/orders", json=_order_payload(supplier, product))
    assert client.delete(f"/api/suppliers/{supplier.id}").status_code == 409


def test_locked_order_delete_rejected(client, supplier, product, warehouse):
    order = client.post(
        "/api/orders",
        json=_order_payload(supplier, product, destination_site_id=warehouse.id),
    ).json()["data"]
    client.post(
        f"/api/orders/{order['id']}/receive-all",
        json={"received_date": "2026-03-16", "items": [{"item_id": order["items"][0]["id"], "received_qty": 10}]},
    )

    resp = client.delete(f"/api/orders/{order['id']}")
    assert resp.status_code == 400
    assert client.get(f"/api/orders/{order['id']}").status_code == 200


def test_order_number_conflict_is_retried(client, supplier, product, monkeypatch, caplog):
    """
    GIVEN
    - CMD-2026-0001 existe déjà
    - l'allocateur rend ce numéro une fois (course perdue sur le compteur)

    WHEN
    - création d'une commande

    THEN
    - la transaction est rejouée, la commande prend CMD-2026-0002
    """
    first = client.post("/api/orders", json=_order_payload(supplier, product)).json()["data"]
    assert first["order_number"] == "CMD-2026-0001"

    real_allocate = orders.allocate_order_number
    calls = []

    def allocate_once_taken(db, year):
        calls.append(year)
        if len(calls) == 1:
            return "CMD-2026-0001"
        return real_allocate(db, year)

    monkeypatch.setattr(orders, "allocate_order_number", allocate_once_taken)

    resp = client.post("/api/orders", json=_order_payload(supplier, product))

    assert resp.status_code == 201
    assert resp.json()["data"]["order_number"] == "CMD-2026-0002"
    assert len(calls) == 2
    assert "retrying" in caplog.text
    assert client.get("/api/orders").json()["pagination"]["total"] == 2


def test_order_number_conflict_gives_up_after_retries(client, supplier, product, monkeypatch):
    client.post("/api/orders", json=_order_payload(supplier, product))
    monkeypatch.setattr(settings, "ORDER_NUMBER_RETRIES", 2)
    monkeypatch.setattr(orders, "allocate_order_number", lambda db, year: "CMD-2026-0001")

    resp = client.post("/api/orders", json=_order_payload(supplier, product))

    assert resp.status_code == 409
    assert resp.json()["success"] is False
    assert client.get("/api/orders").json()["pagination"]["total"] == 1


def test_update_order_rejects_null_order_date(client, supplier, product):
    order = client.post("/api/orders", json=_order_payload(supplier, product)).json()["data"]

    resp = client.put(f"/api/orders/{order['id']}", json={"order_date": None})

    assert resp.status_code == 400
    assert resp.json()["details"][0]["field"] == "order_date"
    assert client.get(f"/api/orders/{order['id']}").json()["data"]["order_date"] == "2026-03-15"


def test_receive_all_endpoint_errors(client, db_session, supplier, product, warehouse):
    order = client.post(
        "/api/orders",
        json=_order_payload(supplier, product, destination_site_id=warehouse.id),
    ).json()["data"]
    url = f"/api/orders/{order['id']}/receive-all"

    resp = client.post(url, json={"received_date": "2026-03-16", "items": [{"item_id": 999, "received_qty": 1}]})
    assert resp.status_code == 404

    client.put(f"/api/orders/{order['id']}", json={"status": "CANCELLED"})
    resp = client.post(
        url,
        json={"received_date": "2026-03-16", "items": [{"item_id": order["items"][0]["id"], "received_qty": 10}]},
    )
    assert resp.status_code == 400
    assert resp.json()["success"] is False
    assert ledger.get_balance(db_session, product.id, warehouse.id).quantity_new == 0


# ---------- listings ----------
def test_movements_pagination(client, product, warehouse):
    for day in range(1, 4):
        client.post(
            "/api/movements",
            json={
                "product_id": product.id,
                "type": "IN",
                "target_site_id": warehouse.id,
                "quantity": day,
                "condition": "NEW",
                "movement_date": f"2026-03-0{day}T08:00:00Z",
                "operator": "Marie",
            },
        )

    body = client.get("/api/movements", params={"limit": 2, "operator": "mar"}).json()
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}
    # plus récent d'abord
    assert [m["quantity"] for m in body["data"]] == [3, 2]

    assert client.get("/api/movements", params={"limit": 101}).status_code == 400


def test_movements_filter_by_site_and_dates(client, product, warehouse, workshop, make_site):
    """
    GIVEN
    - 01/03 : entrée de 5 à l'entrepôt
    - 02/03 : déplacement de 2 entrepôt -> atelier
    - 03/03 : entrée de 1 au showroom

    THEN
    - site_id retient les mouvements dont le site est source OU cible
    - start_date / end_date sont des bornes inclusives
    """
    showroom = make_site("Showroom")

    def post(day, **body):
        resp = client.post(
            "/api/movements",
            json={
                "product_id": product.id,
                "condition": "NEW",
                "movement_date": f"2026-03-0{day}T08:00:00Z",
                **body,
            },
        )
        assert resp.status_code == 201

    post(1, type="IN", target_site_id=warehouse.id, quantity=5)
    post(2, type="TRANSFER", source_site_id=warehouse.id, target_site_id=workshop.id, quantity=2)
    post(3, type="IN", target_site_id=showroom.id, quantity=1)

    def quantities(**params):
        return [m["quantity"] for m in client.get("/api/movements", params=params).json()["data"]]

    assert quantities(site_id=warehouse.id) == [2, 5]
    assert quantities(site_id=workshop.id) == [2]
    assert quantities(site_id=showroom.id) == [1]

    assert quantities(start_date="2026-03-02T00:00:00Z") == [1, 2]
    assert quantities(end_date="2026-03-02T08:00:00Z") == [2, 5]
    assert quantities(start_date="2026-03-02T00:00:00Z", end_date="2026-03-02T23:59:59Z") == [2]
    assert quantities(site_id=warehouse.id, start_date="2026-03-02T00:00:00Z") == [2]


def test_orders_filter_by_status(client, supplier, product):
    client.post("/api/orders", json=_order_payload(supplier, product))
    second = client.post("/api/orders", json=_order_payload(supplier, product)).json()["data"]
    client.put(f"/api/orders/{second['id']}", json={"status": "CANCELLED"})

    body = client.get("/api/orders", params={"status": "CANCELLED"}).json()
    assert [o["order_number"] for o in body["data"]] == ["CMD-2026-0002"]
    assert body["pagination"]["total"] == 1


def test_stock_alerts_endpoint(client, product):
    body = client.get("/api/stocks/alerts", params={"threshold": 2}).json()
    assert body["success"] is True
    assert body["data"][0]["product"]["reference"] == "ECRAN-22"
    assert body["data"][0]["total_stock"] == 0
    assert body["data"][0]["is_critical"] is True


def test_sites_filter_by_type(client, warehouse):
    client.post("/api/sites", json={"name": "Sortie client", "type": "EXIT"})

    names = [s["name"] for s in client.get("/api/sites", params={"type": "EXIT"}).json()["data"]]
    assert names == ["Sortie client"]


# ---------- events ----------
def test_events_published_after_commit(client, publisher, warehouse):
    resp = client.post(
        "/api/products",
        json={"reference": "cable-hdmi", "qty_per_unit": 2},
        headers={"X-User-Id": "42", "X-User-Email": "marie@example.com"},
    )
    assert resp.status_code == 201

    event = publisher.events[-1]
    assert event.table == "products"
    assert event.action == EventAction.inserted
    assert event.data["reference"] == "CABLE-HDMI"
    assert event.actor.email == "marie@example.com"
    assert publisher.routing_key(event) == "stock-test.products.inserted"


def test_no_event_on_failed_request(client, publisher, product, warehouse):
    client.post(
        "/api/movements",
        json={
            "product_id": product.id,
            "type": "OUT",
            "source_site_id": warehouse.id,
            "quantity": 1,
            "condition": "NEW",
            "movement_date": "2026-03-15T10:00:00Z",
        },
    )
    assert publisher.events == []
