"""Bootstrap do container de DI (kink): settings, banco local, colaboradores e sessões."""
from __future__ import annotations
import threading
from collections import OrderedDict
from kink import di
from .settings import Settings
from .db import create_session_factory
from .logging import get_logger
from .catalog import load_catalog, StaticRateTable, StaticStockService
from .summary import SummaryRenderer
from ..connectors.local_store import LocalCartBackend
from ..connectors.product_api import HttpStockService
from ..connectors.remote_cart import RemoteCartBackend
from ..connectors.tax_api import HttpRateTable, TaxApiClient
from ..domain.services.cart_store import CartStore
from ..ports.interfaces import RateTable, StockService
from ..repo.models import Base
from ..sync.coordinator import SyncCoordinator

log = get_logger()
_registry_lock = threading.Lock()

def bootstrap_di(settings: Settings | None = None) -> None:
    settings = settings or Settings()
    di[Settings] = settings
    session_factory = create_session_factory(settings.local_database_url)
    # sessionmaker é chamável: registrado como factory para o kink não instanciar uma Session
    di.factories["session_factory"] = lambda _di: session_factory
    if settings.auto_create_schema:
        Base.metadata.create_all(session_factory.kw["bind"])
    di["catalog"] = load_catalog(settings.catalog_path)
    if settings.rate_source == "remote":
        di[RateTable] = HttpRateTable(settings=settings)
    else:
        di[RateTable] = StaticRateTable.from_catalog(di["catalog"])
    if settings.stock_source == "remote":
        di[StockService] = HttpStockService(settings=settings)
    elif settings.stock_source == "static":
        di[StockService] = StaticStockService.from_catalog(di["catalog"])
    else:
        # sem teto de estoque para nenhum produto
        di[StockService] = StaticStockService({})
    di[TaxApiClient] = TaxApiClient(settings=settings)
    di[SummaryRenderer] = SummaryRenderer()
    # Uma sessão de carrinho -> um CartStore/SyncCoordinator
    di["coordinators"] = OrderedDict()

def build_coordinator(cart_key: str) -> SyncCoordinator:
    """Monta store + backends para uma sessão de carrinho e semeia do armazenamento local."""
    settings: Settings = di[Settings]
    store = CartStore(di[RateTable], di[StockService], settings=settings)
    local = LocalCartBackend(di["session_factory"], settings=settings, cart_key=cart_key)
    coordinator = SyncCoordinator(store, local, lambda token: RemoteCartBackend(token=token, settings=settings))
    coordinator.start()
    return coordinator

def get_coordinator(cart_session: str) -> SyncCoordinator:
    """Coordinator da sessão; criado uma única vez mesmo com requisições concorrentes.

    Registro LRU limitado a `max_sessions`: a sessão mais antiga é descartada e, se voltar,
    é ressemeada do armazenamento local.
    """
    with _registry_lock:
        registry: OrderedDict[str, SyncCoordinator] = di["coordinators"]
        coordinator = registry.get(cart_session)
        if coordinator is None:
            coordinator = build_coordinator(f"{di[Settings].local_cart_key}:{cart_session}")
            registry[cart_session] = coordinator
            while len(registry) > di[Settings].max_sessions:
                evicted, _ = registry.popitem(last=False)
                log.info("cart_session_evicted", cart_session=evicted)
        else:
            registry.move_to_end(cart_session)
        return coordinator
