"""CartStore: estado em memória do carrinho + snapshot derivado.

Não conhece persistência: cada mutação de LineItem emite um CartMutation para os
ouvintes (o SyncCoordinator decide o que gravar). Itens e snapshot são calculados
juntos e só então gravados no store: uma falha no recálculo não deixa um sem o outro.
"""
from __future__ import annotations
from decimal import Decimal
from typing import Callable, Iterable
from . import tax_engine
from ..models import (
    ZERO,
    CartMutation,
    CartSnapshot,
    JurisdictionPolicy,
    LineItem,
    QuantityChange,
    normalize_state,
    round_money,
)
from ...core.logging import get_logger
from ...core.settings import Settings
from ...ports.interfaces import RateTable, StockService

log = get_logger()

MutationListener = Callable[[CartMutation], None]

HUNDRED = Decimal("100")


class CartStore:
    """Carrinho autoritativo em memória de uma única sessão."""

    def __init__(self, rates: RateTable, stock: StockService | None = None, settings: Settings | None = None):
        s = settings or Settings()
        self.rates = rates
        self.stock = stock
        self.policy = JurisdictionPolicy(s.unknown_state_policy)
        self.shipping_rate_percent = s.shipping_tax_rate_percent
        self.shipping_methods = {k: round_money(v) for k, v in s.shipping_methods.items()}
        self.coupons = {k.strip().upper(): Decimal(v) for k, v in s.coupons.items()}
        self.apply_tax_to_shipping = s.apply_tax_to_shipping
        self.buyer_state = ""
        self.seller_state = normalize_state(s.default_seller_state)
        self.shipping_method: str | None = None
        self.coupon_code: str | None = None
        self._shipping = ZERO
        self._discount = ZERO
        self._items: list[LineItem] = []
        self._listeners: list[MutationListener] = []
        self._snapshot = CartSnapshot()
        self._commit([])

    # ---------- Leitura ----------
    def items(self) -> list[LineItem]:
        return list(self._items)

    def get(self, item_id: str) -> LineItem | None:
        return next((i for i in self._items if i.item_id == item_id), None)

    def find(self, product_id: str, seller_id: str) -> LineItem | None:
        return next((i for i in self._items if i.line_key == (str(product_id), str(seller_id))), None)

    def snapshot(self) -> CartSnapshot:
        return self._snapshot

    def clamp_quantity(self, product_id: str, quantity: int) -> int:
        """Limita a quantidade ao estoque informado pelo serviço de produtos (se houver)."""
        if self.stock is None:
            return quantity
        level = self.stock.get_stock_level(product_id)
        if level is None:
            return quantity
        return min(quantity, max(level, 0))

    def resolve_quantity(self, item: LineItem, requested: int) -> int:
        """Quantidade efetiva: piso no pedido mínimo, teto no estoque; 0 significa remover."""
        if requested <= 0:
            return 0
        applied = self.clamp_quantity(item.product_id, max(requested, item.min_order))
        return applied if applied >= item.min_order else 0

    # ---------- Eventos ----------
    def subscribe(self, listener: MutationListener) -> Callable[[], None]:
        """Registra ouvinte de mutações; retorna função para cancelar o registro."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _emit(self, kind: str, item_id: str | None = None) -> None:
        event = CartMutation(kind=kind, item_id=item_id, items=self.items())
        for listener in list(self._listeners):
            listener(event)

    # ---------- Mutações de itens ----------
    def add_item(self, item: LineItem) -> LineItem:
        """Adiciona item; mesmo (product_id, seller_id) incrementa a quantidade existente."""
        if item.quantity < item.min_order:
            item = item.model_copy(update={"quantity": item.min_order})
        existing = self.find(*item.line_key)
        if existing:
            item_id = existing.item_id
            items = self._swapped(item_id, existing.model_copy(update={"quantity": existing.quantity + item.quantity}))
        else:
            item_id = item.item_id
            items = self._items + [item]
        self._commit(items)
        self._emit("add", item_id)
        return self.get(item_id)

    def update_quantity(self, item_id: str, new_qty: int) -> QuantityChange:
        """Altera quantidade. <= 0 remove; abaixo do pedido mínimo sobe; acima do estoque é limitada."""
        current = self.get(item_id)
        if current is None:
            return QuantityChange(item_id=item_id, requested=new_qty, applied=0)
        if new_qty <= 0:
            self.remove_item(item_id)
            return QuantityChange(item_id=item_id, requested=new_qty, applied=0, removed=True)

        applied = self.resolve_quantity(current, new_qty)
        clamped = applied != new_qty
        if applied <= 0:
            self.remove_item(item_id)
            return QuantityChange(item_id=item_id, requested=new_qty, applied=0, clamped=clamped, removed=True)

        self._commit(self._swapped(item_id, current.model_copy(update={"quantity": applied})))
        self._emit("update", item_id)
        if clamped:
            log.info("quantity_clamped", item_id=item_id, requested=new_qty, applied=applied,
                     min_order=current.min_order)
        return QuantityChange(item_id=item_id, requested=new_qty, applied=applied, clamped=clamped)

    def remove_item(self, item_id: str) -> bool:
        """Remove a linha. Id inexistente é no-op (idempotente)."""
        items = [i for i in self._items if i.item_id != item_id]
        if len(items) == len(self._items):
            return False
        self._commit(items)
        self._emit("remove", item_id)
        return True

    def clear(self) -> None:
        self._commit([])
        self._emit("clear")

    def replace_all(self, items: Iterable[LineItem]) -> None:
        """Substitui o conteúdo inteiro (ex.: recarga do remoto), preservando item_id locais."""
        by_remote = {i.remote_id: i.item_id for i in self._items if i.remote_id}
        by_key = {i.line_key: i.item_id for i in self._items}
        used: set[str] = set()
        fresh: list[LineItem] = []
        for it in items:
            keep = by_remote.get(it.remote_id) if it.remote_id else None
            keep = keep or by_key.get(it.line_key)
            if keep and keep not in used:
                it = it.model_copy(update={"item_id": keep})
            used.add(it.item_id)
            fresh.append(it)
        self._commit(fresh)
        self._emit("replace")

    # ---------- Frete / jurisdição / desconto (só recálculo) ----------
    def set_shipping(self, amount, apply_tax: bool | None = None) -> CartSnapshot:
        """Frete com valor livre (descarta o método escolhido)."""
        changes = {"_shipping": max(round_money(amount or 0), ZERO), "shipping_method": None}
        if apply_tax is not None:
            changes["apply_tax_to_shipping"] = apply_tax
        return self._reconfigure(**changes)

    def set_shipping_method(self, method_id: str, apply_tax: bool | None = None) -> bool:
        """Escolhe um método da tabela de frete; id desconhecido não altera nada."""
        if method_id not in self.shipping_methods:
            log.warning("unknown_shipping_method", method_id=method_id)
            return False
        changes = {"_shipping": self.shipping_methods[method_id], "shipping_method": method_id}
        if apply_tax is not None:
            changes["apply_tax_to_shipping"] = apply_tax
        self._reconfigure(**changes)
        return True

    def set_buyer_state(self, code: str | None) -> CartSnapshot:
        return self._reconfigure(buyer_state=normalize_state(code))

    def set_seller_state(self, code: str | None) -> CartSnapshot:
        return self._reconfigure(seller_state=normalize_state(code))

    def set_discount(self, amount) -> CartSnapshot:
        return self._reconfigure(_discount=max(round_money(amount or 0), ZERO))

    def apply_coupon(self, code: str | None) -> bool:
        """Aplica cupom (% do subtotal). Código inválido remove o cupom vigente."""
        key = (code or "").strip().upper()
        if key not in self.coupons:
            log.warning("invalid_coupon", code=key)
            self._reconfigure(coupon_code=None)
            return False
        self._reconfigure(coupon_code=key)
        return True

    def remove_coupon(self) -> CartSnapshot:
        return self._reconfigure(coupon_code=None)

    # ---------- Interno ----------
    def _swapped(self, item_id: str, new_item: LineItem) -> list[LineItem]:
        return [new_item if i.item_id == item_id else i for i in self._items]

    def _reconfigure(self, **changes) -> CartSnapshot:
        previous = {k: getattr(self, k) for k in changes}
        for k, v in changes.items():
            setattr(self, k, v)
        try:
            return self._commit(self._items)
        except Exception:
            for k, v in previous.items():
                setattr(self, k, v)
            raise

    def _commit(self, items: list[LineItem]) -> CartSnapshot:
        priced, snapshot = self._derive(items)
        self._items = priced
        self._snapshot = snapshot
        return snapshot

    def _derive(self, items: list[LineItem]) -> tuple[list[LineItem], CartSnapshot]:
        priced = tax_engine.price_lines(items, self.buyer_state, self.seller_state, self.rates, self.policy)
        # carrinho vazio não cobra frete nem aplica desconto
        shipping = self._shipping if priced else ZERO
        result = tax_engine.order_totals(
            priced, shipping, self.apply_tax_to_shipping, self.buyer_state, self.seller_state,
            self.shipping_rate_percent, self.policy,
        )
        discount = self._discount
        if self.coupon_code:
            discount += round_money(result.subtotal * self.coupons[self.coupon_code] / HUNDRED)
        discount = min(discount, result.subtotal + result.total_tax_amount) if priced else ZERO
        if result.warnings:
            log.warning("tax_rate_fallback", warnings=result.warnings)
        snapshot = CartSnapshot(
            items=list(priced),
            item_count=sum(i.quantity for i in priced),
            subtotal=result.subtotal,
            tax_amount=result.total_tax_amount,
            cgst_total=result.total_cgst_amount,
            sgst_total=result.total_sgst_amount,
            igst_total=result.total_igst_amount,
            shipping_amount=result.shipping_amount,
            shipping_tax_amount=result.shipping_tax_amount,
            shipping_cgst=result.shipping_cgst,
            shipping_sgst=result.shipping_sgst,
            shipping_igst=result.shipping_igst,
            shipping_method=self.shipping_method,
            discount_amount=discount,
            coupon_code=self.coupon_code,
            grand_total=result.total_amount - discount,
            buyer_state=self.buyer_state,
            seller_state=self.seller_state,
            warnings=list(result.warnings),
        )
        return priced, snapshot
