"""Serviço de estoque via GET /products/{id} (campo stock_quantity)."""
from __future__ import annotations
from .http import ApiClient
from ..core.logging import get_logger
from ..domain.errors import RemoteSyncFailed

log = get_logger()


class HttpStockService(ApiClient):
    def get_stock_level(self, product_id: str) -> int | None:
        """Estoque atual; None (sem teto) quando o produto não informa ou a consulta falha."""
        try:
            r = self._call("get_stock_level", "GET", f"/products/{product_id}", payload={"product_id": product_id})
            level = (self._json(r, "get_stock_level") or {}).get("stock_quantity")
            return int(level) if level is not None else None
        except RemoteSyncFailed as exc:
            log.warning("stock_lookup_failed", product_id=product_id, status_code=exc.status_code)
        except (AttributeError, TypeError, ValueError) as exc:
            log.warning("stock_payload_invalid", product_id=product_id, error=str(exc))
        return None
