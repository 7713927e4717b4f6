"""Motor de GST: quebra por unidade (CGST/SGST ou IGST) e totais do pedido.

Regras:
- Mesmo estado (ou estado desconhecido com política intra) -> CGST + SGST, cada um
  rate/2 arredondado half-up; a diferença de arredondamento vai para o SGST.
- Estados diferentes -> IGST com a alíquota cheia.
- Preço com imposto incluso: base = preço / (1 + rate/100), e base + imposto == preço.

Funções puras: mesma entrada, mesma saída (necessário para reconciliar com o servidor).
"""
from __future__ import annotations
from decimal import Decimal
from typing import Sequence
from ..errors import TaxRateNotFound
from ..models import (
    ZERO,
    JurisdictionPolicy,
    LineItem,
    OrderTaxLine,
    OrderTaxResult,
    TaxBreakdown,
    normalize_state,
    round_money,
)
from ...ports.interfaces import RateTable

HUNDRED = Decimal("100")
TWO = Decimal("2")
DEFAULT_SHIPPING_RATE = Decimal("18")


def is_intra_state(buyer_state: str | None, seller_state: str | None,
                   policy: JurisdictionPolicy = JurisdictionPolicy.INTRA) -> bool:
    """True quando a operação é intraestadual (CGST+SGST)."""
    buyer, seller = normalize_state(buyer_state), normalize_state(seller_state)
    if not buyer or not seller:
        return JurisdictionPolicy(policy) == JurisdictionPolicy.INTRA
    return buyer == seller


def breakdown_for_rate(unit_price, rate_percent, intra: bool, is_inclusive: bool = False) -> TaxBreakdown:
    """Calcula a quebra por unidade para uma alíquota já conhecida."""
    price = Decimal(str(unit_price)) if isinstance(unit_price, float) else Decimal(unit_price)
    rate = Decimal(str(rate_percent)) if isinstance(rate_percent, float) else Decimal(rate_percent)
    if rate < 0:
        raise ValueError(f"alíquota negativa: {rate}")

    if is_inclusive:
        excl_raw = price / (1 + rate / HUNDRED)
        taxable = round_money(excl_raw)
        tax_full = round_money(price) - taxable
        tax_raw = price - excl_raw
    else:
        taxable = round_money(price)
        tax_raw = taxable * rate / HUNDRED
        tax_full = round_money(tax_raw)

    if tax_full == 0:
        cgst = sgst = igst = ZERO
    elif intra:
        cgst = round_money(tax_raw / TWO)
        sgst = tax_full - cgst
        igst = ZERO
    else:
        cgst = sgst = ZERO
        igst = tax_full

    return TaxBreakdown(
        rate_percent=rate,
        is_inclusive=is_inclusive,
        taxable_value=taxable,
        cgst=cgst,
        sgst=sgst,
        igst=igst,
    )


def untaxed_breakdown(unit_price, is_inclusive: bool = False) -> TaxBreakdown:
    """Linha sem alíquota conhecida: tratada como isenta (rate 0)."""
    return breakdown_for_rate(unit_price, ZERO, True, is_inclusive)


def compute_line_tax(unit_price, hsn_code: str | None, buyer_state: str | None, seller_state: str | None,
                     is_inclusive: bool, rates: RateTable,
                     unknown_state_policy: JurisdictionPolicy = JurisdictionPolicy.INTRA) -> TaxBreakdown:
    """Quebra de GST por unidade de uma linha.

    :raises TaxRateNotFound: HSN ausente ou sem alíquota na tabela.
    """
    if not hsn_code:
        raise TaxRateNotFound(hsn_code)
    rate = rates.get_tax_rate(hsn_code)
    intra = is_intra_state(buyer_state, seller_state, unknown_state_policy)
    return breakdown_for_rate(unit_price, rate, intra, is_inclusive)


def price_lines(items: Sequence[LineItem], buyer_state: str | None, seller_state: str | None,
                rates: RateTable,
                unknown_state_policy: JurisdictionPolicy = JurisdictionPolicy.INTRA) -> list[LineItem]:
    """Retorna cópias dos itens com `tax` recalculado.

    Cada linha usa o estado do seu vendedor; sem ele, o estado do pedido.
    Alíquota não encontrada vira linha isenta com `tax_warning`.
    """
    priced: list[LineItem] = []
    for it in items:
        warning = None
        try:
            bd = compute_line_tax(it.unit_price, it.hsn_code, buyer_state, it.seller_state or seller_state,
                                  it.is_tax_inclusive, rates, unknown_state_policy)
        except TaxRateNotFound as exc:
            bd = untaxed_breakdown(it.unit_price, it.is_tax_inclusive)
            warning = str(exc)
        priced.append(it.model_copy(update={"tax": bd, "tax_warning": warning}))
    return priced


def order_totals(priced: Sequence[LineItem], shipping_amount, apply_tax_to_shipping: bool,
                 buyer_state: str | None, seller_state: str | None,
                 shipping_rate_percent=DEFAULT_SHIPPING_RATE,
                 unknown_state_policy: JurisdictionPolicy = JurisdictionPolicy.INTRA) -> OrderTaxResult:
    """Soma itens já precificados e tributa o frete pela regra do pedido (não por vendedor)."""
    subtotal = cgst = sgst = igst = ZERO
    lines: list[OrderTaxLine] = []
    warnings: list[str] = []
    for it in priced:
        q = it.quantity
        bd = it.tax
        subtotal += bd.taxable_value * q
        cgst += bd.cgst * q
        sgst += bd.sgst * q
        igst += bd.igst * q
        if it.tax_warning:
            warnings.append(f"{it.product_id}: {it.tax_warning}")
        lines.append(OrderTaxLine(
            product_id=it.product_id,
            product_name=it.name,
            quantity=q,
            unit_price=bd.taxable_value,
            unit_tax=bd.tax,
            unit_cgst=bd.cgst,
            unit_sgst=bd.sgst,
            unit_igst=bd.igst,
            item_total=bd.price_with_tax * q,
            hsn_code=it.hsn_code,
        ))

    shipping = round_money(shipping_amount or 0)
    ship_bd = TaxBreakdown(taxable_value=shipping)
    if apply_tax_to_shipping and shipping > 0:
        intra = is_intra_state(buyer_state, seller_state, unknown_state_policy)
        ship_bd = breakdown_for_rate(shipping, shipping_rate_percent, intra)

    total_tax = cgst + sgst + igst
    return OrderTaxResult(
        subtotal=subtotal,
        shipping_amount=shipping,
        shipping_tax_amount=ship_bd.tax,
        total_tax_amount=total_tax,
        total_cgst_amount=cgst,
        total_sgst_amount=sgst,
        total_igst_amount=igst,
        total_amount=subtotal + total_tax + shipping + ship_bd.tax,
        items=lines,
        shipping_cgst=ship_bd.cgst,
        shipping_sgst=ship_bd.sgst,
        shipping_igst=ship_bd.igst,
        warnings=warnings,
    )


def compute_order_tax(items: Sequence[LineItem], shipping_amount, apply_tax_to_shipping: bool,
                      buyer_state: str | None, seller_state: str | None, rates: RateTable,
                      shipping_rate_percent=DEFAULT_SHIPPING_RATE,
                      unknown_state_policy: JurisdictionPolicy = JurisdictionPolicy.INTRA) -> OrderTaxResult:
    """Equivalente local de POST /tax/calculate-order-tax."""
    priced = price_lines(items, buyer_state, seller_state, rates, unknown_state_policy)
    return order_totals(priced, shipping_amount, apply_tax_to_shipping, buyer_state, seller_state,
                        shipping_rate_percent, unknown_state_policy)
