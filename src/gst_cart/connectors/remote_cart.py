"""Backend remoto autoritativo: API REST do carrinho (exige credencial bearer)."""
from __future__ import annotations
from typing import Sequence
from pydantic import ValidationError
from .http import ApiClient, wire_id
from ..core.logging import get_logger
from ..domain.errors import RemoteSyncFailed
from ..domain.models import LineItem
from ..ports.interfaces import RemoteCartItemDTO

log = get_logger()


class RemoteCartBackend(ApiClient):
    """Implementa CartBackend sobre GET/POST/PUT/DELETE /cart."""

    def load_cart(self) -> list[LineItem]:
        r = self._call("load_cart", "GET", "/cart")
        data = self._json(r, "load_cart")
        rows = data.get("items", []) if isinstance(data, dict) else data
        if not isinstance(rows, list):
            raise RemoteSyncFailed("load_cart", status_code=r.status_code,
                                   detail="payload inválido: esperado lista de itens")
        try:
            items = [RemoteCartItemDTO.model_validate(row).to_line_item() for row in rows]
        except ValidationError as exc:
            raise RemoteSyncFailed("load_cart", detail=f"payload inválido: {exc.error_count()} erro(s)") from exc
        log.info("remote_cart_loaded", items=len(items))
        return items

    def save_cart(self, items: Sequence[LineItem]) -> None:
        """Substitui o carrinho remoto inteiro (limpa e reenvia cada linha)."""
        self.clear_remote()
        for it in items:
            self.push_add(it)

    def push_add(self, item: LineItem) -> str:
        payload = {"product_id": wire_id(item.product_id), "quantity": item.quantity}
        r = self._call("push_add", "POST", "/cart/items", payload=payload | {"item_id": item.item_id}, json_body=payload)
        data = self._json(r, "push_add", payload)
        remote_id = data.get("id") if isinstance(data, dict) else None
        if remote_id is None:
            raise RemoteSyncFailed("push_add", payload, status_code=r.status_code, detail="resposta sem id")
        log.info("remote_item_added", product_id=item.product_id, remote_id=remote_id, quantity=item.quantity)
        return str(remote_id)

    def push_remove(self, remote_id: str) -> None:
        self._call("push_remove", "DELETE", f"/cart/items/{remote_id}", payload={"remote_id": remote_id})
        log.info("remote_item_removed", remote_id=remote_id)

    def push_update_qty(self, remote_id: str, quantity: int) -> None:
        payload = {"quantity": quantity}
        self._call("push_update_qty", "PUT", f"/cart/items/{remote_id}",
                   payload=payload | {"remote_id": remote_id}, json_body=payload)
        log.info("remote_item_updated", remote_id=remote_id, quantity=quantity)

    def clear_remote(self) -> None:
        self._call("clear_remote", "DELETE", "/cart")
        log.info("remote_cart_cleared")
