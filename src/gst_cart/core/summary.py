"""Resumo textual do carrinho (Jinja2) com a quebra de GST, no formato de fatura."""
from __future__ import annotations
from dataclasses import dataclass, field
from jinja2 import Environment, BaseLoader, StrictUndefined
from ..domain.models import CartSnapshot

SUMMARY_TEMPLATE = """
{{ store_name }} · Cart summary ({{ currency }})
{% for it in snapshot.items %}
- {{ it.name or it.product_id }} x{{ it.quantity }} @ {{ it.tax.taxable_value }}{% if it.hsn_code %} [HSN {{ it.hsn_code }}]{% endif %}

  GST {{ it.tax.rate_percent }}%{% if it.tax.igst %}: IGST {{ it.tax.igst }}{% elif it.tax.cgst or it.tax.sgst %}: CGST {{ it.tax.cgst }} + SGST {{ it.tax.sgst }}{% endif %} per unit{% if it.tax_warning %} (!) {{ it.tax_warning }}{% endif %}

{% else %}
(cart is empty)
{% endfor %}
Subtotal: {{ snapshot.subtotal }}
{% if snapshot.igst_total %}IGST: {{ snapshot.igst_total }}
{% endif %}{% if snapshot.cgst_total or snapshot.sgst_total %}CGST: {{ snapshot.cgst_total }}
SGST: {{ snapshot.sgst_total }}
{% endif %}Tax: {{ snapshot.tax_amount }}
Shipping: {{ snapshot.shipping_amount }} (+ tax {{ snapshot.shipping_tax_amount }})
{% if snapshot.discount_amount %}Discount: -{{ snapshot.discount_amount }}
{% endif %}Total: {{ snapshot.grand_total }}
{% for w in warnings %}
Warning: {{ w }}
{% endfor %}
"""

@dataclass
class SummaryRenderer:
    store_name: str = "Storefront"
    currency: str = "INR"
    env: Environment = field(default_factory=lambda: Environment(
        loader=BaseLoader(),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    ))

    def render(self, snapshot: CartSnapshot, warnings: list[str] | None = None) -> str:
        template = self.env.from_string(SUMMARY_TEMPLATE)
        return template.render(
            store_name=self.store_name,
            currency=self.currency,
            snapshot=snapshot,
            warnings=warnings if warnings is not None else snapshot.warnings,
        ).strip() + "\n"
