"""Backend local durável (SQLAlchemy) para o carrinho anônimo.

- Um registro por chave de carrinho, itens em JSON (sem a quebra de GST, que é derivada).
- Cota de bytes como no localStorage; estourou -> StorageFull (não fatal para o chamador).
- Payload corrompido na leitura -> carrinho vazio + log.
"""
from __future__ import annotations
import json
from typing import Sequence
from kink import di
from pydantic import TypeAdapter, ValidationError
from sqlalchemy import delete
from sqlalchemy.exc import OperationalError
from ..core.logging import get_logger
from ..core.settings import Settings
from ..domain.errors import StorageFull
from ..domain.models import LineItem
from ..repo.models import LocalCart

log = get_logger()

_ITEMS = TypeAdapter(list[LineItem])
_DERIVED_FIELDS = {"tax", "tax_warning"}


class LocalCartBackend:
    """Implementa CartBackend sobre o banco local."""

    def __init__(self, session_factory=None, settings: Settings | None = None, cart_key: str | None = None):
        self.s = settings or di[Settings]
        self.Session = session_factory or di["session_factory"]
        self.cart_key = cart_key or self.s.local_cart_key
        self.quota_bytes = self.s.local_quota_bytes

    def load_cart(self) -> list[LineItem]:
        """Lê o último carrinho salvo; ausente ou inválido -> []."""
        with self.Session() as s:
            row = s.get(LocalCart, self.cart_key)
            raw = list(row.items or []) if row else []
        if not raw:
            return []
        try:
            return _ITEMS.validate_python(raw)
        except ValidationError as exc:
            log.warning("local_cart_corrupt", cart_key=self.cart_key, errors=exc.error_count())
            return []

    def save_cart(self, items: Sequence[LineItem]) -> None:
        """Grava o carrinho inteiro. Levanta StorageFull acima da cota ou com disco cheio."""
        payload = [i.model_dump(mode="json", exclude=_DERIVED_FIELDS) for i in items]
        size = len(json.dumps(payload, ensure_ascii=False).encode())
        if size > self.quota_bytes:
            raise StorageFull(self.cart_key, size, self.quota_bytes)
        try:
            with self.Session() as s, s.begin():
                row = s.get(LocalCart, self.cart_key)
                if not row:
                    row = LocalCart(cart_key=self.cart_key)
                    s.add(row)
                row.items = payload
                row.size_bytes = size
        except OperationalError as exc:
            if "full" in str(exc).lower():
                raise StorageFull(self.cart_key, size, self.quota_bytes) from exc
            raise
        log.info("local_cart_saved", cart_key=self.cart_key, items=len(payload), size_bytes=size)

    # --- Operações pontuais (mesma interface do remoto; o id é o item_id local) ---
    def push_add(self, item: LineItem) -> str:
        items = self.load_cart()
        existing = next((i for i in items if i.line_key == item.line_key), None)
        if existing:
            items = [i.model_copy(update={"quantity": i.quantity + item.quantity}) if i is existing else i for i in items]
            ref = existing.item_id
        else:
            items.append(item)
            ref = item.item_id
        self.save_cart(items)
        return ref

    def push_remove(self, remote_id: str) -> None:
        items = self.load_cart()
        self.save_cart([i for i in items if i.item_id != remote_id])

    def push_update_qty(self, remote_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.push_remove(remote_id)
            return
        items = self.load_cart()
        self.save_cart([i.model_copy(update={"quantity": quantity}) if i.item_id == remote_id else i for i in items])

    def clear_remote(self) -> None:
        with self.Session() as s, s.begin():
            s.execute(delete(LocalCart).where(LocalCart.cart_key == self.cart_key))
        log.info("local_cart_cleared", cart_key=self.cart_key)
