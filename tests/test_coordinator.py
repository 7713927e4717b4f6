import threading
import time
from decimal import Decimal

import httpx
import pytest

from gst_cart.connectors.local_store import LocalCartBackend
from gst_cart.connectors.remote_cart import RemoteCartBackend
from gst_cart.core.single_flight import SingleFlight
from gst_cart.domain.errors import RemoteSyncFailed
from gst_cart.domain.models import SessionMode, SyncState
from gst_cart.domain.services import tax_engine
from gst_cart.sync.coordinator import STORAGE_FULL_WARNING, SyncCoordinator
from conftest import FakeRemote, make_item


def test_anonymous_mutations_persist_locally(coordinator, local):
    res = coordinator.add_item(make_item(qty=2))
    assert res.item.quantity == 2
    assert coordinator.mode == SessionMode.ANONYMOUS
    assert [i.quantity for i in local.load_cart()] == [2]
    coordinator.update_quantity(res.item.item_id, 5)
    assert local.load_cart()[0].quantity == 5
    coordinator.remove_item(res.item.item_id)
    assert local.load_cart() == []


def test_start_seeds_from_local(store, local, remote):
    local.save_cart([make_item("101"), make_item("102")])
    c = SyncCoordinator(store, local, lambda token: remote)
    snap = c.start()
    assert [i.product_id for i in snap.items] == ["101", "102"]


def test_login_merge_reports_partial_loss(coordinator, remote, local):
    a = coordinator.add_item(make_item("101")).item
    b = coordinator.add_item(make_item("102")).item
    remote.fail_products = {"102"}

    report = coordinator.login("token")

    assert coordinator.state == SyncState.AUTHENTICATED
    assert [i.product_id for i in coordinator.store.items()] == ["101"]
    assert report.pushed == [a.item_id]
    assert report.loss is not None
    assert [i.item_id for i in report.loss.failed_items] == [b.item_id]
    assert report.loss.errors[0].status_code == 422
    assert report.to_dict()["partial_sync_loss"]["failed_items"][0]["product_id"] == "102"
    assert [i.item_id for i in local.load_cart()] == [b.item_id]
    # logout devolve a linha que não subiu
    assert [i.product_id for i in coordinator.logout().items] == ["102"]


def test_login_without_failures_has_no_loss(coordinator, remote):
    coordinator.add_item(make_item("101", qty=2))
    report = coordinator.login("token")
    assert report.loss is None
    [item] = coordinator.store.items()
    assert item.remote_id == "1" and item.quantity == 2


def test_login_reload_failure_returns_to_anonymous(coordinator, remote, local):
    coordinator.add_item(make_item("101"))
    coordinator.add_item(make_item("102"))
    remote.fail_products = {"102"}
    remote.fail_load = True
    with pytest.raises(RemoteSyncFailed):
        coordinator.login("token")
    assert coordinator.state == SyncState.ANONYMOUS
    # só a linha que não subiu continua no carrinho local
    assert [i.product_id for i in coordinator.store.items()] == ["102"]
    assert [i.product_id for i in local.load_cart()] == ["102"]


def test_authenticated_intents_go_remote_first(coordinator, remote, local):
    coordinator.login("token")
    res = coordinator.add_item(make_item("101", qty=2))
    assert res.item.remote_id == "1"
    assert remote.rows["1"].quantity == 2
    change = coordinator.update_quantity(res.item.item_id, 10).change
    assert remote.rows["1"].quantity == 10
    assert change.applied == 10
    coordinator.remove_item(res.item.item_id)
    assert remote.rows == {}
    assert coordinator.store.items() == []
    assert local.load_cart() == []


def test_authenticated_update_is_clamped_before_push(coordinator, remote):
    coordinator.login("token")
    item = coordinator.add_item(make_item("102")).item
    change = coordinator.update_quantity(item.item_id, 10).change
    assert (change.applied, change.clamped) == (3, True)
    assert remote.rows[item.remote_id].quantity == 3
    assert coordinator.store.get(item.item_id).quantity == 3


def test_remote_failure_leaves_store_unchanged(coordinator, remote):
    coordinator.login("token")
    item = coordinator.add_item(make_item("101")).item
    before = coordinator.snapshot()
    remote.fail_all = True
    with pytest.raises(RemoteSyncFailed):
        coordinator.add_item(make_item("102"))
    with pytest.raises(RemoteSyncFailed):
        coordinator.update_quantity(item.item_id, 4)
    with pytest.raises(RemoteSyncFailed):
        coordinator.clear()
    assert coordinator.snapshot() == before
    # a fila segue atendendo depois da rejeição
    remote.fail_all = False
    assert coordinator.update_quantity(item.item_id, 4).change.applied == 4


def test_authenticated_clear(coordinator, remote):
    coordinator.login("token")
    coordinator.add_item(make_item("101"))
    coordinator.add_item(make_item("102"))
    res = coordinator.clear()
    assert res.snapshot.items == []
    assert "clear_remote" in remote.calls


def test_logout_reseeds_from_local(coordinator, remote, local):
    coordinator.add_item(make_item("101"))
    coordinator.login("token")
    coordinator.add_item(make_item("102"))
    snap = coordinator.logout()
    assert coordinator.state == SyncState.ANONYMOUS
    assert snap.items == []
    # carrinho remoto não é tocado pelo logout
    assert sorted(r.product_id for r in remote.rows.values()) == ["101", "102"]
    coordinator.add_item(make_item("103"))
    assert [i.product_id for i in local.load_cart()] == ["103"]


def test_resume_with_credential_loads_remote(store, local, remote):
    remote.push_add(make_item("101", qty=3))
    c = SyncCoordinator(store, local, lambda token: remote)
    snap = c.start("token")
    assert c.state == SyncState.AUTHENTICATED
    assert snap.item_count == 3


def test_storage_full_degrades_to_memory(store, session_factory, settings, remote):
    tiny = LocalCartBackend(session_factory, settings=settings.model_copy(update={"local_quota_bytes": 64}),
                            cart_key="tiny")
    c = SyncCoordinator(store, tiny, lambda token: remote)
    c.start()
    res = c.add_item(make_item())
    assert STORAGE_FULL_WARNING in res.warnings
    assert c.memory_only is True
    assert len(c.store.items()) == 1


def test_shipping_and_jurisdiction_intents(coordinator):
    coordinator.add_item(make_item())
    coordinator.set_buyer_state("KA")
    snap = coordinator.set_shipping(Decimal("100")).snapshot
    assert snap.igst_total == Decimal("180.00")
    assert snap.shipping_igst == Decimal("18.00")
    snap = coordinator.set_seller_state("KA").snapshot
    assert snap.cgst_total == Decimal("90.00")
    assert coordinator.set_discount(Decimal("98")).snapshot.grand_total == Decimal("1200.00")


def test_unauthenticated_remote_call_is_rejected(coordinator):
    coordinator.state = SyncState.AUTHENTICATED
    with pytest.raises(RemoteSyncFailed):
        coordinator.clear()


def test_single_flight_runs_in_submission_order():
    sf = SingleFlight()
    order = []
    gate = threading.Event()

    def first():
        with sf.turn():
            gate.wait(5)
            order.append(0)

    threads = [threading.Thread(target=first)]
    threads[0].start()
    for n in range(1, 6):
        while sf.pending < n:
            time.sleep(0.001)
        t = threading.Thread(target=lambda n=n: sf.run(lambda: order.append(n)))
        t.start()
        threads.append(t)
    while sf.pending < 6:
        time.sleep(0.001)
    gate.set()
    for t in threads:
        t.join(5)
    assert order == [0, 1, 2, 3, 4, 5]
    assert sf.pending == 0


def test_single_flight_releases_turn_on_error():
    sf = SingleFlight()

    def boom():
        raise RuntimeError("x")

    with pytest.raises(RuntimeError):
        sf.run(boom)
    assert sf.run(lambda: 42) == 42


def test_concurrent_adds_are_serialized(coordinator, local):
    threads = [threading.Thread(target=coordinator.add_item, args=(make_item("101"),)) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)
    assert coordinator.store.items()[0].quantity == 10
    assert local.load_cart()[0].quantity == 10


class _Oracle:
    def __init__(self, result):
        self.result = result

    def calculate_order_tax(self, items, buyer_state, seller_state, shipping_amount, apply_tax_to_shipping=True):
        return self.result


def test_verify_with_server(coordinator, rates):
    coordinator.add_item(make_item(qty=2))
    coordinator.set_buyer_state("MH")
    coordinator.set_shipping(Decimal("50"))
    expected = tax_engine.compute_order_tax(coordinator.store.items(), Decimal("50"), True, "MH", "MH", rates)
    assert coordinator.verify_with_server(_Oracle(expected)) == {}
    drift = expected.model_copy(update={"total_tax_amount": Decimal("361.00")})
    diff = coordinator.verify_with_server(_Oracle(drift))
    assert diff == {"tax_amount": ("360.00", "361.00")}


def test_login_with_non_json_remote_returns_to_anonymous(store, local, settings):
    transport = httpx.MockTransport(lambda r: httpx.Response(200, text="OK"))
    c = SyncCoordinator(store, local,
                        lambda token: RemoteCartBackend(token=token, settings=settings, transport=transport))
    c.start()
    c.add_item(make_item("101"))
    with pytest.raises(RemoteSyncFailed) as exc:
        c.login("token")
    assert exc.value.operation == "load_cart"
    assert c.state == SyncState.ANONYMOUS
    assert c.remote is None
    assert [i.product_id for i in local.load_cart()] == ["101"]
    c.add_item(make_item("102"))
    assert sorted(i.product_id for i in local.load_cart()) == ["101", "102"]


class _ExplodingRemote(FakeRemote):
    """Remoto que aceita o primeiro produto e quebra com erro inesperado no seguinte."""

    def push_add(self, item):
        if item.product_id == "102":
            raise RuntimeError("connection reset mid-merge")
        return super().push_add(item)


def test_unexpected_error_during_login_returns_to_anonymous(store, local):
    remote = _ExplodingRemote()
    c = SyncCoordinator(store, local, lambda token: remote)
    c.start()
    c.add_item(make_item("101"))
    c.add_item(make_item("102"))
    with pytest.raises(RuntimeError):
        c.login("token")
    assert c.state == SyncState.ANONYMOUS
    assert c.remote is None
    # 101 já vive no remoto
    assert [i.product_id for i in c.store.items()] == ["102"]
    assert [i.product_id for i in local.load_cart()] == ["102"]
    assert c.update_quantity(c.store.items()[0].item_id, 2).change.applied == 2


def test_failing_remote_factory_keeps_anonymous_cart(coordinator, local):
    def no_remote(token):
        raise RuntimeError("bad credential format")

    coordinator.remote_factory = no_remote
    coordinator.add_item(make_item("101"))
    with pytest.raises(RuntimeError):
        coordinator.login("token")
    assert coordinator.state == SyncState.ANONYMOUS
    assert [i.product_id for i in coordinator.store.items()] == ["101"]
    assert coordinator.add_item(make_item("102")).snapshot.item_count == 2


def test_min_order_applies_to_authenticated_updates(coordinator, remote):
    coordinator.login("token")
    coordinator.add_item(make_item("101", qty=5))
    remote_item = coordinator.store.items()[0].model_copy(update={"min_order": 5})
    coordinator.store.replace_all([remote_item])
    res = coordinator.update_quantity(remote_item.item_id, 2)
    assert (res.change.applied, res.change.clamped) == (5, True)
    assert remote.rows[remote_item.remote_id].quantity == 5


def test_shipping_method_and_coupon_intents(coordinator):
    coordinator.add_item(make_item())
    res = coordinator.set_shipping_method("standard")
    assert res.warnings == []
    assert res.snapshot.shipping_amount == Decimal("15.00")
    res = coordinator.set_shipping_method("teleport")
    assert res.warnings == ["método de frete desconhecido: 'teleport'"]
    assert res.snapshot.shipping_method == "standard"
    assert coordinator.apply_coupon("AZLOK10").snapshot.discount_amount == Decimal("100.00")
    res = coordinator.apply_coupon("NOPE")
    assert res.warnings == ["cupom inválido: 'NOPE'"]
    assert res.snapshot.discount_amount == 0
    coordinator.apply_coupon("AZLOK10")
    assert coordinator.remove_coupon().snapshot.coupon_code is None
