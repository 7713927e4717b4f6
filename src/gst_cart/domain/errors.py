"""Taxonomia de erros do carrinho.

- TaxRateNotFound: recuperável; a linha vira isenta (alíquota 0) com aviso.
- StorageFull: recuperável; o carrinho segue só em memória.
- RemoteSyncFailed: recuperável; a intenção é rejeitada e o chamador decide o retry.
- PartialSyncLoss: apenas reportado; itens locais que não subiram no login.
"""
from __future__ import annotations
from typing import Any


class CartError(Exception):
    """Base dos erros do motor de carrinho."""


class TaxRateNotFound(CartError):
    def __init__(self, hsn_code: str | None):
        self.hsn_code = hsn_code
        super().__init__(f"alíquota não encontrada para HSN {hsn_code!r}")


class StorageFull(CartError):
    def __init__(self, cart_key: str, size_bytes: int | None = None, quota_bytes: int | None = None):
        self.cart_key = cart_key
        self.size_bytes = size_bytes
        self.quota_bytes = quota_bytes
        super().__init__(f"armazenamento local cheio para {cart_key!r} ({size_bytes} > {quota_bytes} bytes)")


class RemoteSyncFailed(CartError):
    """Falha de chamada remota (não-2xx, erro de rede ou timeout) com o payload da operação."""

    def __init__(self, operation: str, payload: dict[str, Any] | None = None, status_code: int | None = None, detail: str | None = None):
        self.operation = operation
        self.payload = dict(payload or {})
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{operation} falhou (status={status_code}): {detail}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "remote_sync_failed",
            "operation": self.operation,
            "payload": self.payload,
            "status_code": self.status_code,
            "detail": self.detail,
        }


class PartialSyncLoss(CartError):
    """Itens do carrinho local que falharam no push durante o merge de login."""

    def __init__(self, failed_items: list, errors: list[RemoteSyncFailed]):
        self.failed_items = list(failed_items)
        self.errors = list(errors)
        names = ", ".join(i.name or i.product_id for i in self.failed_items)
        super().__init__(f"{len(self.failed_items)} item(ns) não sincronizados: {names}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "partial_sync_loss",
            "failed_items": [i.model_dump(mode="json") for i in self.failed_items],
            "errors": [e.to_dict() for e in self.errors],
        }
