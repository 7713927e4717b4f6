"""Configurações Pydantic Settings para o motor de carrinho/GST."""
from decimal import Decimal
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    """Configurações da aplicação. Carrega de env e .env.

    Credenciais de sessão (bearer) nunca ficam aqui: chegam por login.
    """
    model_config = SettingsConfigDict(env_file=".env", env_prefix="GC_", case_sensitive=False)

    # Flask
    flask_debug: bool = Field(default=False)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Armazenamento local (modo anônimo)
    local_database_url: str = Field(default="sqlite:///gst_cart_local.db", description="URL SQLAlchemy do cache local durável")
    local_cart_key: str = Field(default="guest-cart")
    local_quota_bytes: int = Field(default=5 * 1024 * 1024, description="Cota do carrinho serializado (equivalente ao localStorage)")
    auto_create_schema: bool = Field(default=True)

    # Backend remoto
    api_base_url: str = Field(default="http://localhost:8000/api", description="URL base da API REST da loja")
    api_timeout_s: float = Field(default=10.0)

    # GST
    default_seller_state: str = Field(default="MH")
    unknown_state_policy: Literal["intra", "inter"] = Field(default="intra")
    apply_tax_to_shipping: bool = Field(default=True)
    shipping_tax_rate_percent: Decimal = Field(default=Decimal("18"))
    shipping_methods: dict[str, Decimal] = Field(
        default_factory=lambda: {"free": Decimal("0"), "standard": Decimal("15"),
                                 "express": Decimal("30"), "premium": Decimal("50")},
        description="Métodos de frete (id -> valor)",
    )
    coupons: dict[str, Decimal] = Field(
        default_factory=lambda: {"AZLOK10": Decimal("10")},
        description="Cupons (código -> % do subtotal)",
    )

    # Sessões de carrinho mantidas em memória (LRU)
    max_sessions: int = Field(default=1000, ge=1)

    # Colaboradores (tabela de alíquotas / estoque)
    catalog_path: str = Field(default="config/catalog.json")
    rate_source: Literal["static", "remote"] = Field(default="static")
    stock_source: Literal["static", "remote", "none"] = Field(default="static")
