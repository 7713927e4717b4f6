from decimal import Decimal
from pathlib import Path

import pytest

from gst_cart.core.catalog import StaticRateTable, StaticStockService
from gst_cart.core.db import create_session_factory
from gst_cart.core.settings import Settings
from gst_cart.connectors.local_store import LocalCartBackend
from gst_cart.domain.errors import RemoteSyncFailed
from gst_cart.domain.models import LineItem
from gst_cart.domain.services.cart_store import CartStore
from gst_cart.repo.models import Base
from gst_cart.sync.coordinator import SyncCoordinator

CATALOG_PATH = Path(__file__).resolve().parents[1] / "config" / "catalog.json"

RATES = {"0401": 0, "0902": 5, "3304": 18, "6109": 12, "8471": 18, "8703": 28}
STOCK = {"101": 25, "102": 3, "103": 0}


def make_item(product_id="101", price="1000", qty=1, seller_id="s1", hsn="8471", **kw) -> LineItem:
    return LineItem(product_id=product_id, name=f"P{product_id}", unit_price=Decimal(price),
                    quantity=qty, seller_id=seller_id, hsn_code=hsn, **kw)


class FakeRemote:
    """Carrinho remoto em memória com falhas configuráveis."""

    def __init__(self):
        self.rows: dict[str, LineItem] = {}
        self.next_id = 1
        self.fail_products: set[str] = set()
        self.fail_load = False
        self.fail_all = False
        self.calls: list[str] = []

    def _guard(self, operation, payload=None):
        self.calls.append(operation)
        if self.fail_all:
            raise RemoteSyncFailed(operation, payload, status_code=503, detail="unavailable")

    def load_cart(self):
        self._guard("load_cart")
        if self.fail_load:
            raise RemoteSyncFailed("load_cart", status_code=500, detail="boom")
        return [it.model_copy(update={"remote_id": rid}) for rid, it in self.rows.items()]

    def save_cart(self, items):
        self.clear_remote()
        for it in items:
            self.push_add(it)

    def push_add(self, item):
        self._guard("push_add", {"product_id": item.product_id})
        if item.product_id in self.fail_products:
            raise RemoteSyncFailed("push_add", {"product_id": item.product_id}, status_code=422, detail="rejected")
        for rid, row in self.rows.items():
            if row.line_key == item.line_key:
                self.rows[rid] = row.model_copy(update={"quantity": row.quantity + item.quantity})
                return rid
        rid = str(self.next_id)
        self.next_id += 1
        self.rows[rid] = LineItem(product_id=item.product_id, name=item.name, unit_price=item.unit_price,
                                  quantity=item.quantity, seller_id=item.seller_id, hsn_code=item.hsn_code)
        return rid

    def push_remove(self, remote_id):
        self._guard("push_remove", {"remote_id": remote_id})
        self.rows.pop(remote_id, None)

    def push_update_qty(self, remote_id, quantity):
        self._guard("push_update_qty", {"remote_id": remote_id})
        self.rows[remote_id] = self.rows[remote_id].model_copy(update={"quantity": quantity})

    def clear_remote(self):
        self._guard("clear_remote")
        self.rows.clear()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        local_database_url="sqlite:///:memory:",
        catalog_path=str(CATALOG_PATH),
        default_seller_state="MH",
        rate_source="static",
        stock_source="static",
    )


@pytest.fixture
def session_factory():
    """SQLite em memória compartilhado (StaticPool) com o schema criado."""
    factory = create_session_factory("sqlite:///:memory:")
    Base.metadata.create_all(factory.kw["bind"])
    return factory


@pytest.fixture
def rates():
    return StaticRateTable(RATES)


@pytest.fixture
def stock():
    return StaticStockService(STOCK)


@pytest.fixture
def store(rates, stock, settings):
    return CartStore(rates, stock, settings=settings)


@pytest.fixture
def local(session_factory, settings):
    return LocalCartBackend(session_factory, settings=settings, cart_key="test-cart")


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def coordinator(store, local, remote):
    c = SyncCoordinator(store, local, lambda token: remote)
    c.start()
    return c
