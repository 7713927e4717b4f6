"""Carregador de catálogo (JSON) com alíquotas por HSN e estoque por produto.

- Fonte: config/catalog.json
- Fornece: load_catalog(), StaticRateTable, StaticStockService
"""
from __future__ import annotations
from decimal import Decimal
from typing import Any, Dict
import json
from ..core.logging import get_logger
from ..domain.errors import TaxRateNotFound

log = get_logger()

def load_catalog(path: str) -> Dict[str, Any]:
    """Carrega o catálogo do disco. Arquivo ausente ou inválido -> estrutura vazia (com log)."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as exc:
        log.warning("catalog_unavailable", path=path, error=str(exc))
        return {"currency": "INR", "tax_rates": {}, "stock": {}}

class StaticRateTable:
    """RateTable em memória: {hsn_code: rate_percent}."""
    def __init__(self, rates: Dict[str, Any]):
        self._rates = {str(k): Decimal(str(v)) for k, v in (rates or {}).items()}

    @classmethod
    def from_catalog(cls, cat: Dict[str, Any]) -> "StaticRateTable":
        return cls(cat.get("tax_rates", {}))

    def get_tax_rate(self, hsn_code: str | None) -> Decimal:
        if not hsn_code or hsn_code not in self._rates:
            raise TaxRateNotFound(hsn_code)
        return self._rates[hsn_code]

class StaticStockService:
    """StockService em memória: {product_id: nível}; produto ausente = sem teto."""
    def __init__(self, levels: Dict[str, Any]):
        self._levels = {str(k): int(v) for k, v in (levels or {}).items()}

    @classmethod
    def from_catalog(cls, cat: Dict[str, Any]) -> "StaticStockService":
        return cls(cat.get("stock", {}))

    def get_stock_level(self, product_id: str) -> int | None:
        return self._levels.get(str(product_id))
