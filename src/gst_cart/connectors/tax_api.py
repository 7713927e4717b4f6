"""Endpoints de imposto: cálculo do pedido no servidor e tabela de alíquotas por HSN."""
from __future__ import annotations
from decimal import Decimal, InvalidOperation
from typing import Sequence
from pydantic import ValidationError
from .http import ApiClient, wire_id
from ..core.logging import get_logger
from ..domain.errors import RemoteSyncFailed, TaxRateNotFound
from ..domain.models import LineItem, OrderTaxResult

log = get_logger()


class TaxApiClient(ApiClient):
    """Cliente de POST /tax/calculate-order-tax (autoridade de alíquota no servidor)."""

    def calculate_order_tax(self, items: Sequence[LineItem], buyer_state: str, seller_state: str,
                            shipping_amount, apply_tax_to_shipping: bool = True) -> OrderTaxResult:
        body = {
            "items": [{"product_id": wire_id(i.product_id), "quantity": i.quantity} for i in items],
            "buyer_state": buyer_state,
            "seller_state": seller_state,
            "shipping_amount": float(shipping_amount or 0),
            "apply_tax_to_shipping": apply_tax_to_shipping,
        }
        r = self._call("calculate_order_tax", "POST", "/tax/calculate-order-tax", payload=body, json_body=body)
        try:
            return OrderTaxResult.model_validate(r.json())
        except (ValidationError, ValueError) as exc:
            raise RemoteSyncFailed("calculate_order_tax", body, status_code=r.status_code, detail="resposta inválida") from exc


class HttpRateTable(ApiClient):
    """RateTable via GET /tax/rates?hsn_code=..., com cache por HSN.

    Falha de rede também vira TaxRateNotFound: a linha fica isenta com aviso e o
    carrinho não trava.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._cache: dict[str, Decimal] = {}

    def get_tax_rate(self, hsn_code: str | None) -> Decimal:
        if not hsn_code:
            raise TaxRateNotFound(hsn_code)
        if hsn_code in self._cache:
            return self._cache[hsn_code]
        try:
            r = self._call("get_tax_rate", "GET", "/tax/rates", params={"hsn_code": hsn_code}, payload={"hsn_code": hsn_code})
            rows = self._json(r, "get_tax_rate", {"hsn_code": hsn_code})
        except RemoteSyncFailed as exc:
            log.warning("rate_lookup_failed", hsn_code=hsn_code, status_code=exc.status_code, detail=exc.detail)
            raise TaxRateNotFound(hsn_code) from exc
        if isinstance(rows, dict):
            rows = [rows]
        try:
            match = next((row for row in rows if str(row.get("hsn_code", "")) == hsn_code), None)
            if not match:
                raise TaxRateNotFound(hsn_code)
            rate = Decimal(str(match.get("tax_percentage", match.get("rate"))))
        except (AttributeError, TypeError, InvalidOperation) as exc:
            log.warning("rate_payload_invalid", hsn_code=hsn_code, error=str(exc))
            raise TaxRateNotFound(hsn_code) from exc
        if not rate.is_finite() or rate < 0:
            raise TaxRateNotFound(hsn_code)
        self._cache[hsn_code] = rate
        return rate
