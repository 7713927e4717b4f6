import threading

import pytest
from kink import di

from gst_cart.api.app import create_app
from gst_cart.core.di import get_coordinator
from gst_cart.connectors.local_store import LocalCartBackend
from gst_cart.core.catalog import StaticRateTable, StaticStockService
from gst_cart.domain.services.cart_store import CartStore
from gst_cart.sync.coordinator import SyncCoordinator
from conftest import FakeRemote, RATES, STOCK, make_item

LAPTOP = {"product_id": "101", "name": "Laptop", "unit_price": "1000", "quantity": 2, "hsn_code": "8471"}


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    return app.test_client()


def _session(name):
    return {"X-Cart-Session": name, "X-Trace-Id": f"trace-{name}"}


def _install(settings, name, remote):
    """Registra um coordinator com remoto falso para a sessão informada."""
    store = CartStore(StaticRateTable(RATES), StaticStockService(STOCK), settings=settings)
    local = LocalCartBackend(di["session_factory"], settings=settings, cart_key=f"api:{name}")
    c = SyncCoordinator(store, local, lambda token: remote)
    c.start()
    di["coordinators"][name] = c
    return c


def test_healthz(client):
    assert client.get("/healthz").get_json() == {"ok": True}


def test_add_item_and_read_cart(client):
    r = client.post("/cart/items", json=LAPTOP, headers=_session("a"))
    assert r.status_code == 201
    snap = r.get_json()["snapshot"]
    assert snap["subtotal"] == "2000.00"
    assert snap["cgst_total"] == "180.00"
    cart = client.get("/cart", headers=_session("a")).get_json()
    assert cart["state"] == "anonymous"
    assert cart["snapshot"]["item_count"] == 2


def test_sessions_are_isolated(client):
    client.post("/cart/items", json=LAPTOP, headers=_session("a"))
    other = client.get("/cart", headers=_session("b")).get_json()
    assert other["snapshot"]["items"] == []


def test_update_quantity_reports_clamp(client):
    body = dict(LAPTOP, product_id="102", quantity=1)
    item_id = client.post("/cart/items", json=body, headers=_session("a")).get_json()["item"]["item_id"]
    r = client.patch(f"/cart/items/{item_id}", json={"quantity": 10}, headers=_session("a"))
    change = r.get_json()["change"]
    assert change["applied"] == 3 and change["clamped"] is True


def test_remove_and_clear(client):
    item_id = client.post("/cart/items", json=LAPTOP, headers=_session("a")).get_json()["item"]["item_id"]
    r = client.delete(f"/cart/items/{item_id}", headers=_session("a"))
    assert r.get_json()["snapshot"]["items"] == []
    assert client.delete(f"/cart/items/{item_id}", headers=_session("a")).status_code == 200
    client.post("/cart/items", json=LAPTOP, headers=_session("a"))
    assert client.delete("/cart", headers=_session("a")).get_json()["snapshot"]["item_count"] == 0


def test_jurisdiction_and_shipping(client):
    client.post("/cart/items", json=LAPTOP, headers=_session("a"))
    snap = client.put("/cart/jurisdiction", json={"buyer_state": "ka"}, headers=_session("a")).get_json()["snapshot"]
    assert snap["buyer_state"] == "KA"
    assert snap["igst_total"] == "360.00"
    snap = client.put("/cart/shipping", json={"amount": "100"}, headers=_session("a")).get_json()["snapshot"]
    assert snap["shipping_tax_amount"] == "18.00"
    assert snap["grand_total"] == "2478.00"
    assert client.put("/cart/jurisdiction", json={}, headers=_session("a")).status_code == 400


def test_summary_text(client):
    client.post("/cart/items", json=LAPTOP, headers=_session("a"))
    r = client.get("/cart/summary.txt", headers=_session("a"))
    assert r.mimetype == "text/plain"
    text = r.get_data(as_text=True)
    assert "Laptop x2" in text
    assert "CGST: 180.00" in text
    assert "Total: 2360.00" in text


def test_invalid_payload_is_400(client):
    r = client.post("/cart/items", json=dict(LAPTOP, unit_price="-1"), headers=_session("a"))
    assert r.status_code == 400
    assert r.get_json()["error"] == "invalid_request"
    assert client.post("/session/login", json={"token": ""}, headers=_session("a")).status_code == 400


def test_login_merges_anonymous_cart(client, settings):
    remote = FakeRemote()
    remote.fail_products = {"102"}
    _install(settings, "s", remote)
    client.post("/cart/items", json=LAPTOP, headers=_session("s"))
    client.post("/cart/items", json=dict(LAPTOP, product_id="102", quantity=1), headers=_session("s"))
    body = client.post("/session/login", json={"token": "tok"}, headers=_session("s")).get_json()
    assert body["state"] == "authenticated"
    assert body["partial_sync_loss"]["failed_items"][0]["product_id"] == "102"
    assert [i["product_id"] for i in body["snapshot"]["items"]] == ["101"]
    out = client.post("/session/logout", headers=_session("s")).get_json()
    assert out["state"] == "anonymous"


def test_remote_failure_is_502(client, settings):
    remote = FakeRemote()
    _install(settings, "s", remote)
    client.post("/session/login", json={"token": "tok"}, headers=_session("s"))
    remote.fail_all = True
    r = client.post("/cart/items", json=LAPTOP, headers=_session("s"))
    assert r.status_code == 502
    body = r.get_json()
    assert body["error"] == "remote_sync_failed"
    assert body["operation"] == "push_add"
    assert client.get("/cart", headers=_session("s")).get_json()["snapshot"]["items"] == []


def test_shipping_method_endpoint(client):
    client.post("/cart/items", json=LAPTOP, headers=_session("a"))
    snap = client.put("/cart/shipping", json={"method": "express"}, headers=_session("a")).get_json()["snapshot"]
    assert snap["shipping_method"] == "express"
    assert snap["shipping_amount"] == "30.00"
    body = client.put("/cart/shipping", json={"method": "teleport"}, headers=_session("a")).get_json()
    assert "método de frete desconhecido: 'teleport'" in body["warnings"]
    assert body["snapshot"]["shipping_method"] == "express"
    assert client.put("/cart/shipping", json={}, headers=_session("a")).status_code == 400
    assert client.put("/cart/shipping", json={"amount": "-1"}, headers=_session("a")).status_code == 400


def test_coupon_endpoints(client):
    client.post("/cart/items", json=LAPTOP, headers=_session("a"))
    snap = client.post("/cart/coupon", json={"code": "azlok10"}, headers=_session("a")).get_json()["snapshot"]
    assert snap["coupon_code"] == "AZLOK10"
    assert snap["discount_amount"] == "200.00"
    bad = client.post("/cart/coupon", json={"code": "NOPE"}, headers=_session("a")).get_json()
    assert "cupom inválido: 'NOPE'" in bad["warnings"]
    assert bad["snapshot"]["coupon_code"] is None
    client.post("/cart/coupon", json={"code": "AZLOK10"}, headers=_session("a"))
    out = client.delete("/cart/coupon", headers=_session("a")).get_json()["snapshot"]
    assert out["coupon_code"] is None and out["discount_amount"] == "0.00"
    assert client.post("/cart/coupon", json={}, headers=_session("a")).status_code == 400


def test_concurrent_first_requests_share_one_coordinator(app, settings):
    barrier = threading.Barrier(2)
    seen = []

    def first_request(product_id):
        barrier.wait(5)
        c = get_coordinator("race")
        seen.append(c)
        c.add_item(make_item(product_id))

    threads = [threading.Thread(target=first_request, args=(p,)) for p in ("101", "102")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)
    assert len(seen) == 2 and seen[0] is seen[1]
    local = LocalCartBackend(di["session_factory"], settings=settings, cart_key=f"{settings.local_cart_key}:race")
    assert sorted(i.product_id for i in local.load_cart()) == ["101", "102"]


def test_session_registry_evicts_least_recent(settings):
    create_app(settings.model_copy(update={"max_sessions": 2}))
    first = get_coordinator("a")
    first.add_item(make_item("101"))
    get_coordinator("b")
    assert get_coordinator("a") is first
    get_coordinator("c")
    assert list(di["coordinators"]) == ["a", "c"]
    get_coordinator("b")
    assert list(di["coordinators"]) == ["c", "b"]
    reborn = get_coordinator("a")
    assert reborn is not first
    assert [i.product_id for i in reborn.store.items()] == ["101"]
