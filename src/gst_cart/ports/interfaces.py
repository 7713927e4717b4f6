"""Portas hexagonais (interfaces) e DTOs."""
from __future__ import annotations
from decimal import Decimal
from typing import Protocol, Sequence
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PositiveInt
from ..domain.models import LineItem


class RateTable(Protocol):
    """Tabela de alíquotas por HSN. Levanta TaxRateNotFound quando não há alíquota."""
    def get_tax_rate(self, hsn_code: str | None) -> Decimal: ...


class StockService(Protocol):
    """Nível de estoque por produto; None quando não há teto conhecido."""
    def get_stock_level(self, product_id: str) -> int | None: ...


class CartBackend(Protocol):
    """Backend de persistência do carrinho (local durável ou remoto autoritativo)."""
    def load_cart(self) -> list[LineItem]: ...
    def save_cart(self, items: Sequence[LineItem]) -> None: ...
    def push_add(self, item: LineItem) -> str: ...
    def push_remove(self, remote_id: str) -> None: ...
    def push_update_qty(self, remote_id: str, quantity: int) -> None: ...
    def clear_remote(self) -> None: ...


class RemoteCartItemDTO(BaseModel):
    """Item como devolvido por GET /cart."""
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: str
    product_id: str
    quantity: PositiveInt
    name: str = Field(default="", validation_alias=AliasChoices("name", "product_name"))
    unit_price: Decimal = Field(validation_alias=AliasChoices("unit_price", "price"))
    min_order: PositiveInt = Field(default=1, validation_alias=AliasChoices("min_order", "minOrder"))
    seller_id: str = ""
    seller_state: str = ""
    hsn_code: str | None = None
    is_tax_inclusive: bool = False

    def to_line_item(self) -> LineItem:
        return LineItem(
            remote_id=self.id,
            product_id=self.product_id,
            name=self.name,
            unit_price=self.unit_price,
            quantity=self.quantity,
            min_order=self.min_order,
            seller_id=self.seller_id,
            seller_state=self.seller_state,
            hsn_code=self.hsn_code,
            is_tax_inclusive=self.is_tax_inclusive,
        )


# ---------- DTOs da API HTTP ----------
class AddItemDTO(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    product_id: str = Field(min_length=1)
    name: str = ""
    unit_price: Decimal = Field(ge=0)
    quantity: PositiveInt = 1
    min_order: PositiveInt = 1
    seller_id: str = ""
    seller_state: str = ""
    hsn_code: str | None = None
    is_tax_inclusive: bool = False

    def to_line_item(self) -> LineItem:
        return LineItem(**self.model_dump())


class UpdateQuantityDTO(BaseModel):
    quantity: int


class ShippingDTO(BaseModel):
    """Frete por método da tabela (`method`) ou por valor livre (`amount`)."""
    method: str | None = None
    amount: Decimal | None = Field(default=None, ge=0)
    apply_tax: bool | None = None


class CouponDTO(BaseModel):
    code: str = Field(min_length=1)


class JurisdictionDTO(BaseModel):
    buyer_state: str | None = None
    seller_state: str | None = None


class LoginDTO(BaseModel):
    token: str = Field(min_length=1)
