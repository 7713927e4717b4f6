"""Modelos Pydantic do carrinho: itens, quebra de GST, snapshot e resultado de pedido.

Valores monetários são Decimal com 2 casas (ROUND_HALF_UP); valores de GST por item
são sempre por unidade.
"""
from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Literal
from uuid import uuid4
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round_money(value) -> Decimal:
    """Arredonda para 2 casas com half-up (regra de fatura)."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def normalize_state(code: str | None) -> str:
    """Normaliza código de estado (ex.: ' mh ' -> 'MH'); vazio quando ausente."""
    return (code or "").strip().upper()


class SessionMode(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"


class SyncState(str, Enum):
    ANONYMOUS = "anonymous"
    SYNCING = "syncing"
    AUTHENTICATED = "authenticated"


class JurisdictionPolicy(str, Enum):
    """Regra aplicada quando o estado do comprador ou do vendedor é desconhecido."""
    INTRA = "intra"
    INTER = "inter"


class TaxBreakdown(BaseModel):
    """Quebra de GST por unidade. CGST+SGST e IGST nunca coexistem."""
    model_config = ConfigDict(frozen=True)

    rate_percent: Decimal = Decimal("0")
    is_inclusive: bool = False
    taxable_value: Decimal = ZERO
    cgst: Decimal = ZERO
    sgst: Decimal = ZERO
    igst: Decimal = ZERO

    @model_validator(mode="after")
    def _split_is_exclusive(self) -> "TaxBreakdown":
        if (self.cgst or self.sgst) and self.igst:
            raise ValueError("cgst/sgst e igst são mutuamente exclusivos")
        return self

    @property
    def tax(self) -> Decimal:
        return self.cgst + self.sgst + self.igst

    @property
    def price_with_tax(self) -> Decimal:
        return self.taxable_value + self.tax


class LineItem(BaseModel):
    """Linha do carrinho. `item_id` é a identidade local; `remote_id` chega após o primeiro push."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    item_id: str = Field(default_factory=lambda: uuid4().hex)
    remote_id: str | None = None
    product_id: str
    name: str = ""
    unit_price: Decimal = Field(ge=0)
    quantity: int = Field(default=1, ge=1)
    min_order: int = Field(default=1, ge=1)
    seller_id: str = ""
    seller_state: str = ""
    hsn_code: str | None = None
    is_tax_inclusive: bool = False
    tax: TaxBreakdown = Field(default_factory=TaxBreakdown)
    tax_warning: str | None = None

    @field_validator("seller_state", mode="before")
    @classmethod
    def _normalize_seller_state(cls, v):
        return normalize_state(v)

    @property
    def line_key(self) -> tuple[str, str]:
        return (self.product_id, self.seller_id)


class QuantityChange(BaseModel):
    """Resultado de update_quantity: o `applied` reflete o clamp de estoque."""
    item_id: str
    requested: int
    applied: int
    clamped: bool = False
    removed: bool = False


class CartMutation(BaseModel):
    kind: Literal["add", "update", "remove", "clear", "replace"]
    item_id: str | None = None
    items: list[LineItem] = Field(default_factory=list)


class CartSnapshot(BaseModel):
    """Totais derivados; nunca persistidos nem alterados diretamente."""
    items: list[LineItem] = Field(default_factory=list)
    item_count: int = 0
    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    cgst_total: Decimal = ZERO
    sgst_total: Decimal = ZERO
    igst_total: Decimal = ZERO
    shipping_amount: Decimal = ZERO
    shipping_tax_amount: Decimal = ZERO
    shipping_cgst: Decimal = ZERO
    shipping_sgst: Decimal = ZERO
    shipping_igst: Decimal = ZERO
    shipping_method: str | None = None
    discount_amount: Decimal = ZERO
    coupon_code: str | None = None
    grand_total: Decimal = ZERO
    buyer_state: str = ""
    seller_state: str = ""
    warnings: list[str] = Field(default_factory=list)


# ---------- Formato do endpoint /tax/calculate-order-tax ----------
class OrderTaxLine(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    product_id: str
    product_name: str = ""
    quantity: int
    unit_price: Decimal
    unit_tax: Decimal = ZERO
    unit_cgst: Decimal = ZERO
    unit_sgst: Decimal = ZERO
    unit_igst: Decimal = ZERO
    item_total: Decimal = ZERO
    hsn_code: str | None = None


class OrderTaxResult(BaseModel):
    subtotal: Decimal = ZERO
    shipping_amount: Decimal = ZERO
    shipping_tax_amount: Decimal = ZERO
    total_tax_amount: Decimal = ZERO
    total_cgst_amount: Decimal = ZERO
    total_sgst_amount: Decimal = ZERO
    total_igst_amount: Decimal = ZERO
    total_amount: Decimal = ZERO
    items: list[OrderTaxLine] = Field(default_factory=list)
    # somente no cálculo local
    shipping_cgst: Decimal = ZERO
    shipping_sgst: Decimal = ZERO
    shipping_igst: Decimal = ZERO
    warnings: list[str] = Field(default_factory=list)
