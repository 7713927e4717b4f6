"""SyncCoordinator: reconcilia o CartStore com os backends local e remoto.

Estados: ANONYMOUS -> SYNCING -> AUTHENTICATED -> ANONYMOUS.

- ANONYMOUS: mutações só no store; os eventos de mutação gravam no backend local.
- SYNCING (login): cada linha local é enviada ao remoto em sequência; depois o store é
  substituído pelo GET /cart (o remoto é autoritativo). Falhas de push são reportadas
  em PartialSyncLoss, nunca descartadas em silêncio.
- AUTHENTICATED: remoto primeiro; o store só muda a partir do estado devolvido pelo
  remoto. Falha remota rejeita a intenção (store intacto), sem cair para o local.
- Logout: store ressemeado do backend local; o carrinho remoto fica como está.

Toda intenção passa pela fila single-flight (ordem estrita de submissão).
"""
from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence
from ..core.logging import get_logger
from ..core.single_flight import SingleFlight
from ..domain.errors import PartialSyncLoss, RemoteSyncFailed, StorageFull
from ..domain.models import (
    CartMutation,
    CartSnapshot,
    LineItem,
    QuantityChange,
    SessionMode,
    SyncState,
)
from ..domain.services.cart_store import CartStore
from ..ports.interfaces import CartBackend

log = get_logger()

RemoteFactory = Callable[[str], CartBackend]

STORAGE_FULL_WARNING = "armazenamento local cheio: o carrinho não sobreviverá a um recarregamento"

# campos do snapshot local x resposta de /tax/calculate-order-tax
_ORACLE_FIELDS = {
    "subtotal": "subtotal",
    "tax_amount": "total_tax_amount",
    "cgst_total": "total_cgst_amount",
    "sgst_total": "total_sgst_amount",
    "igst_total": "total_igst_amount",
    "shipping_tax_amount": "shipping_tax_amount",
}


@dataclass
class IntentResult:
    snapshot: CartSnapshot
    item: LineItem | None = None
    change: QuantityChange | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "snapshot": self.snapshot.model_dump(mode="json"),
            "item": self.item.model_dump(mode="json") if self.item else None,
            "change": self.change.model_dump() if self.change else None,
            "warnings": list(self.warnings),
        }


@dataclass
class SyncReport:
    snapshot: CartSnapshot
    pushed: list[str] = field(default_factory=list)
    loss: PartialSyncLoss | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "snapshot": self.snapshot.model_dump(mode="json"),
            "pushed": list(self.pushed),
            "partial_sync_loss": self.loss.to_dict() if self.loss else None,
            "warnings": list(self.warnings),
        }


class SyncCoordinator:
    def __init__(self, store: CartStore, local: CartBackend, remote_factory: RemoteFactory,
                 queue: SingleFlight | None = None):
        self.store = store
        self.local = local
        self.remote_factory = remote_factory
        self.remote: CartBackend | None = None
        self.state = SyncState.ANONYMOUS
        self.queue = queue or SingleFlight()
        self.memory_only = False
        self._warnings: list[str] = []
        self._muted = False
        store.subscribe(self._on_mutation)

    @property
    def mode(self) -> SessionMode:
        return SessionMode.ANONYMOUS if self.state == SyncState.ANONYMOUS else SessionMode.AUTHENTICATED

    # ---------- Ciclo de vida ----------
    def start(self, credential: str | None = None) -> CartSnapshot:
        """Semeia o store: do local no modo anônimo, do remoto ao retomar sessão com credencial."""
        with self.queue.turn():
            if credential:
                remote = self.remote_factory(credential)
                items = remote.load_cart()
                self.remote = remote
                self.state = SyncState.AUTHENTICATED
                self.store.replace_all(items)
            else:
                self.state = SyncState.ANONYMOUS
                with self._mute():
                    self.store.replace_all(self.local.load_cart())
            log.info("cart_started", state=self.state.value, items=len(self.store.items()))
            return self.store.snapshot()

    def login(self, credential: str) -> SyncReport:
        """Merge do carrinho anônimo no remoto e troca para AUTHENTICATED.

        Qualquer falha antes do fim da recarga devolve a sessão ao modo anônimo; linhas já
        enviadas saem do carrinho local (vivem no remoto) e o erro sobe para o chamador.
        """
        with self.queue.turn():
            self._warnings = []
            local_items = self.store.items() if self.state == SyncState.ANONYMOUS else []
            self.state = SyncState.SYNCING
            log.info("login_sync_start", local_items=len(local_items))

            pushed: list[LineItem] = []
            failed: list[LineItem] = []
            errors: list[RemoteSyncFailed] = []
            try:
                remote = self.remote_factory(credential)
                for it in local_items:
                    try:
                        remote.push_add(it)
                        pushed.append(it)
                    except RemoteSyncFailed as exc:
                        failed.append(it)
                        errors.append(exc)
                        log.warning("login_push_failed", item_id=it.item_id, product_id=it.product_id,
                                    status_code=exc.status_code, detail=exc.detail)
                items = remote.load_cart()
            except BaseException as exc:
                self._abort_login(pushed, failed, exc)
                raise

            self.remote = remote
            self.state = SyncState.AUTHENTICATED
            self.store.replace_all(items)
            # no local ficam só as linhas que não subiram (voltam no logout)
            self._persist_local(failed)

            loss = PartialSyncLoss(failed, errors) if failed else None
            if loss:
                log.warning("partial_sync_loss", failed=[i.item_id for i in failed])
            log.info("login_sync_done", pushed=len(pushed), failed=len(failed), remote_items=len(items))
            return SyncReport(
                snapshot=self.store.snapshot(),
                pushed=[i.item_id for i in pushed],
                loss=loss,
                warnings=list(self._warnings),
            )

    def logout(self) -> CartSnapshot:
        """Volta ao modo anônimo com o último carrinho local; o remoto não é tocado."""
        with self.queue.turn():
            self.state = SyncState.ANONYMOUS
            self.remote = None
            with self._mute():
                self.store.replace_all(self.local.load_cart())
            log.info("logout", items=len(self.store.items()))
            return self.store.snapshot()

    # ---------- Intenções ----------
    def snapshot(self) -> CartSnapshot:
        return self.queue.run(self.store.snapshot)

    def add_item(self, item: LineItem) -> IntentResult:
        return self._submit("add_item", lambda: self._add(item))

    def update_quantity(self, item_id: str, quantity: int) -> IntentResult:
        return self._submit("update_quantity", lambda: self._update(item_id, quantity))

    def remove_item(self, item_id: str) -> IntentResult:
        return self._submit("remove_item", lambda: self._remove(item_id))

    def clear(self) -> IntentResult:
        return self._submit("clear", self._clear)

    def set_shipping(self, amount, apply_tax: bool | None = None) -> IntentResult:
        return self._submit("set_shipping", lambda: self._no_item(self.store.set_shipping(amount, apply_tax)))

    def set_buyer_state(self, code: str | None) -> IntentResult:
        return self._submit("set_buyer_state", lambda: self._no_item(self.store.set_buyer_state(code)))

    def set_seller_state(self, code: str | None) -> IntentResult:
        return self._submit("set_seller_state", lambda: self._no_item(self.store.set_seller_state(code)))

    def set_discount(self, amount) -> IntentResult:
        return self._submit("set_discount", lambda: self._no_item(self.store.set_discount(amount)))

    def set_shipping_method(self, method_id: str, apply_tax: bool | None = None) -> IntentResult:
        return self._submit("set_shipping_method", lambda: self._checked(
            self.store.set_shipping_method(method_id, apply_tax), f"método de frete desconhecido: {method_id!r}"))

    def apply_coupon(self, code: str) -> IntentResult:
        return self._submit("apply_coupon", lambda: self._checked(
            self.store.apply_coupon(code), f"cupom inválido: {code!r}"))

    def remove_coupon(self) -> IntentResult:
        return self._submit("remove_coupon", lambda: self._no_item(self.store.remove_coupon()))

    def verify_with_server(self, tax_client) -> dict[str, tuple[str, str]]:
        """Compara os totais locais com POST /tax/calculate-order-tax; devolve os campos divergentes."""
        with self.queue.turn():
            snap = self.store.snapshot()
            server = tax_client.calculate_order_tax(
                self.store.items(), self.store.buyer_state, self.store.seller_state,
                snap.shipping_amount, self.store.apply_tax_to_shipping,
            )
            diff = {
                local: (str(getattr(snap, local)), str(getattr(server, remote)))
                for local, remote in _ORACLE_FIELDS.items()
                if getattr(snap, local) != getattr(server, remote)
            }
            if diff:
                log.warning("tax_oracle_mismatch", fields=diff)
            return diff

    # ---------- Interno ----------
    def _submit(self, name: str, fn: Callable[[], tuple]) -> IntentResult:
        with self.queue.turn():
            self._warnings = []
            try:
                item, change = fn()
            except RemoteSyncFailed as exc:
                log.warning("intent_rejected", intent=name, operation=exc.operation,
                            status_code=exc.status_code, detail=exc.detail)
                raise
            snap = self.store.snapshot()
            log.info("intent_applied", intent=name, state=self.state.value, items=snap.item_count)
            return IntentResult(snapshot=snap, item=item, change=change,
                                warnings=list(self._warnings) + list(snap.warnings))

    def _add(self, item: LineItem):
        if self.state == SyncState.ANONYMOUS:
            return self.store.add_item(item), None
        self._remote().push_add(item)
        self._reload_remote()
        return self.store.find(*item.line_key), None

    def _update(self, item_id: str, quantity: int):
        if self.state == SyncState.ANONYMOUS:
            change = self.store.update_quantity(item_id, quantity)
            return self.store.get(item_id), change

        current = self.store.get(item_id)
        if current is None:
            return None, QuantityChange(item_id=item_id, requested=quantity, applied=0)
        remote_id = self._remote_id(current, "push_update_qty")
        applied = self.store.resolve_quantity(current, quantity)
        if applied <= 0:
            self._remote().push_remove(remote_id)
        else:
            self._remote().push_update_qty(remote_id, applied)
        self._reload_remote()
        change = QuantityChange(item_id=item_id, requested=quantity, applied=applied,
                                clamped=quantity > 0 and applied != quantity, removed=applied <= 0)
        return self.store.get(item_id), change

    def _remove(self, item_id: str):
        if self.state == SyncState.ANONYMOUS:
            self.store.remove_item(item_id)
            return None, None
        current = self.store.get(item_id)
        if current is None:
            return None, None
        self._remote().push_remove(self._remote_id(current, "push_remove"))
        self._reload_remote()
        return None, None

    def _clear(self):
        if self.state == SyncState.ANONYMOUS:
            self.store.clear()
            return None, None
        self._remote().clear_remote()
        self._reload_remote()
        return None, None

    def _remote(self) -> CartBackend:
        if self.remote is None:
            raise RemoteSyncFailed("remote", detail="sessão sem credencial")
        return self.remote

    @staticmethod
    def _no_item(_snapshot: CartSnapshot):
        return None, None

    def _checked(self, accepted: bool, warning: str):
        if not accepted:
            self._warnings.append(warning)
        return None, None

    def _abort_login(self, pushed: Sequence[LineItem], failed: Sequence[LineItem], exc: BaseException) -> None:
        """Login interrompido: volta ao modo anônimo sem as linhas que já vivem no remoto."""
        self.state = SyncState.ANONYMOUS
        self.remote = None
        if pushed:
            sent = {i.item_id for i in pushed}
            self.store.replace_all([i for i in self.store.items() if i.item_id not in sent])
        log.warning("login_sync_aborted", pushed=len(pushed), failed=len(failed),
                    error=type(exc).__name__, detail=str(exc))

    @staticmethod
    def _remote_id(item: LineItem, operation: str) -> str:
        if not item.remote_id:
            raise RemoteSyncFailed(operation, {"item_id": item.item_id}, detail="item sem remote_id")
        return item.remote_id

    def _reload_remote(self) -> None:
        self.store.replace_all(self._remote().load_cart())

    def _on_mutation(self, event: CartMutation) -> None:
        if self.state != SyncState.ANONYMOUS or self._muted:
            return
        self._persist_local(event.items)

    def _persist_local(self, items: Sequence[LineItem]) -> None:
        try:
            self.local.save_cart(items)
            self.memory_only = False
        except StorageFull as exc:
            self.memory_only = True
            self._warnings.append(STORAGE_FULL_WARNING)
            log.warning("local_storage_full", cart_key=exc.cart_key, size_bytes=exc.size_bytes,
                        quota_bytes=exc.quota_bytes)

    @contextmanager
    def _mute(self):
        self._muted = True
        try:
            yield
        finally:
            self._muted = False
