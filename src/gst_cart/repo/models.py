"""Modelos SQLAlchemy do cache local do carrinho (modo anônimo)."""
from __future__ import annotations
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import String, JSON, TIMESTAMP
from datetime import datetime

class Base(DeclarativeBase):
    """Base declarativa."""
    pass

class LocalCart(Base):
    """Um carrinho serializado por chave (equivalente ao localStorage do navegador)."""
    __tablename__ = "local_carts"
    cart_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    items: Mapped[list] = mapped_column(JSON, default=list)
    size_bytes: Mapped[int] = mapped_column(default=0)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=False), default=datetime.utcnow, onupdate=datetime.utcnow)
